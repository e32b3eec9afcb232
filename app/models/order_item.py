from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from datetime import datetime

from app.models.base import timestamp_field

if TYPE_CHECKING:
    from app.models.order import Order


class OrderItem(SQLModel, table=True):
    """Frozen copy of a product line at purchase time."""

    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    product_id: int = Field(foreign_key="products.id")

    product_name: str
    quantity: int
    price: int  # cents, at time of purchase
    subtotal: int

    created_at: datetime = timestamp_field()

    order: Optional["Order"] = Relationship(back_populates="items")
