import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    household_id: str = Field(index=True)
    account_id: str = Field(index=True)
    category_id: str
    type: TransactionType = TransactionType.EXPENSE
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    date: dt.date
    note: Optional[str] = None
    payee: Optional[str] = None
    is_shared: bool = Field(default=False, index=True)
    paid_by_user_id: Optional[str] = None
    is_excluded_from_budget: bool = False
    settled: bool = False
    settled_at: Optional[dt.datetime] = None
    settlement_id: Optional[str] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)
