from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from flowbudget.models.user import new_id


class SplitMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INVITED = "invited"
    REMOVED = "removed"


class Household(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    split_method: SplitMethod = SplitMethod.AUTOMATIC
    # userId -> percentage, only used with SplitMethod.MANUAL
    manual_split_ratios: Optional[Dict[str, float]] = Field(default=None, sa_column=Column(JSON))
    payday_day: Optional[int] = None


class HouseholdMember(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    household_id: str = Field(index=True)
    user_id: str = Field(index=True)
    status: MemberStatus = MemberStatus.ACTIVE
    payday_day: Optional[int] = None
    joined_at: datetime = Field(default_factory=datetime.utcnow)
