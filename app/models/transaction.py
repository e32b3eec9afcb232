from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from app.models.base import timestamp_field


class TransactionStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


# statuses that no longer represent the current settlement attempt
INACTIVE_TRANSACTION_STATUSES = (
    TransactionStatus.failed.value,
    TransactionStatus.cancelled.value,
)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)

    order_id: int = Field(foreign_key="orders.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)

    amount: int  # cents
    currency: str = Field(default="pen", max_length=3)
    status: str = Field(default=TransactionStatus.pending.value)
    payment_method: str = Field(default="stripe")

    # charge / intent id reported by the provider once money moved
    transaction_id: Optional[str] = Field(default=None, unique=True)
    stripe_payment_intent_id: Optional[str] = Field(default=None, index=True)

    refund_id: Optional[str] = None
    refunded_amount: int = Field(default=0)
    error_message: Optional[str] = None

    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
