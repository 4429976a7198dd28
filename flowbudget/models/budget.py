import datetime as dt
from decimal import Decimal
from typing import Optional
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class Budget(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    household_id: str
    category_id: str = Field(index=True)
    period_start: dt.date
    allocated_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    spent_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    category_group: Optional[str] = None
    is_active: bool = True


class BudgetSummary(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    household_id: str
    period_start: dt.date
    total_income: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_allocated: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_spent: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
