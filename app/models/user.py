from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from app.models.base import timestamp_field


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = None
    email: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = None
    role: str = Field(default="user")  # user | admin
    can_login: bool = Field(default=True)
    created_at: datetime = timestamp_field()
