import uuid
from typing import Optional
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid.uuid4())


class User(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    email: Optional[str] = Field(default=None, index=True)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown"
