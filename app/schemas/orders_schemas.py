from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.order import OrderStatus, PaymentMethod
from app.schemas.payment_schemas import CamelModel


class OrderItemIn(CamelModel):
    product_id: int
    quantity: int = Field(gt=0)


class OrderCreate(CamelModel):
    items: List[OrderItemIn] = Field(min_length=1)
    delivery_address_id: Optional[int] = None
    payment_method: PaymentMethod = PaymentMethod.stripe
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderItemOut(CamelModel):
    product_id: int
    product_name: str
    quantity: int
    price: int
    subtotal: int


class TransactionOut(CamelModel):
    id: int
    amount: int
    currency: str
    status: str
    payment_method: str
    transaction_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_amount: int = 0
    error_message: Optional[str] = None
    created_at: datetime


class OrderOut(CamelModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    total_amount: int
    shipping_cost: int
    amount_due: int
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrderDetail(OrderOut):
    items: List[OrderItemOut] = []
    transactions: List[TransactionOut] = []


class OrderEventOut(CamelModel):
    event_type: str
    label: str
    meta: Optional[dict] = None
    created_by: str
    created_at: datetime


class OrderStatusUpdate(CamelModel):
    status: OrderStatus
