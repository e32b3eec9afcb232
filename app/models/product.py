from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from app.models.base import timestamp_field


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    price: int  # cents
    is_active: bool = Field(default=True)
    created_at: datetime = timestamp_field()
