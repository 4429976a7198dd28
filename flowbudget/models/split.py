from datetime import datetime
from decimal import Decimal
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class SharedExpenseSplit(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    transaction_id: str = Field(index=True)
    ower_user_id: str = Field(index=True)
    owed_to_user_id: str = Field(index=True)
    split_amount: Decimal = Field(max_digits=12, decimal_places=2)
    split_percentage: Decimal = Field(max_digits=5, decimal_places=2)
    is_paid: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
