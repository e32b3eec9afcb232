from enum import Enum
from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime

from app.models.base import timestamp_field
from app.models.order_item import OrderItem


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    ready = "ready"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    stripe = "stripe"
    credit_card = "credit_card"
    debit_card = "debit_card"
    bank_transfer = "bank_transfer"
    cash_on_delivery = "cash_on_delivery"
    yape = "yape"
    plin = "plin"


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True, max_length=50)
    user_id: int = Field(foreign_key="users.id", index=True)

    status: str = Field(default=OrderStatus.pending.value, index=True)

    # cents
    total_amount: int
    shipping_cost: int = Field(default=0)

    delivery_address_id: Optional[int] = None
    payment_method: str = Field(default=PaymentMethod.stripe.value)
    payment_status: str = Field(default=PaymentStatus.pending.value)
    payment_intent_id: Optional[str] = Field(default=None, index=True)
    notes: Optional[str] = None

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()

    items: List["OrderItem"] = Relationship(back_populates="order")

    @property
    def amount_due(self) -> int:
        return self.total_amount + self.shipping_cost
