from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class Settlement(SQLModel, table=True):
    """Append-only audit entry. Never read back to derive balances or splits."""
    id: str = Field(default_factory=new_id, primary_key=True)
    household_id: str = Field(index=True)
    payer_user_id: str
    receiver_user_id: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    payer_account_id: str
    receiver_account_id: str
    payment_method: str = "internal_transfer"
    category_id: Optional[str] = None
    note: Optional[str] = None
    settled_at: datetime = Field(default_factory=datetime.utcnow)


class SettlementState(str, Enum):
    PENDING = "pending"
    TRANSFERRED = "transferred"
    SPLITS_RESOLVED = "splits_resolved"
    COMPLETE = "complete"
    FAILED = "failed"


class SettlementIntent(SQLModel, table=True):
    # shares its id with the Settlement record it produces
    id: str = Field(default_factory=new_id, primary_key=True)
    household_id: str = Field(index=True)
    payer_user_id: str
    receiver_user_id: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    payer_account_id: str
    receiver_account_id: str
    selected_split_ids: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    # splits the transfer paid for, fixed in the transfer batch
    matched_split_ids: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    settled_transaction_ids: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    splits_settled: int = 0
    state: SettlementState = Field(default=SettlementState.PENDING, index=True)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
