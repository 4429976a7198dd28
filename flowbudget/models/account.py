from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class AccountType(str, Enum):
    ASSET = "asset"
    LIABILITY = "liability"


class Account(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    household_id: str = Field(index=True)
    name: str
    # signed; only transactions, settlements and explicit backfills move it
    balance: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    account_type: AccountType = AccountType.ASSET
    is_excluded_from_budget: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
