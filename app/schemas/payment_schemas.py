from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models use camelCase keys, python code uses snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# -----------------------------
# Gateway results
# -----------------------------

class IntentSnapshot(CamelModel):
    id: str
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = {}
    latest_charge: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def order_id(self) -> Optional[int]:
        raw = self.metadata.get("orderId") or self.metadata.get("order_id")
        try:
            return int(raw) if raw else None
        except ValueError:
            return None


class IntentResult(BaseModel):
    client_secret: Optional[str]
    intent_id: str
    status: str


class ConfirmResult(BaseModel):
    success: bool
    status: str
    transaction_id: Optional[str] = None
    amount: Optional[int] = None
    message: Optional[str] = None
    intent: Optional[IntentSnapshot] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None
    message: Optional[str] = None


class WebhookEndpointInfo(CamelModel):
    id: str
    url: str
    status: Optional[str] = None
    enabled_events: List[str] = []
    secret: Optional[str] = None


# -----------------------------
# Requests
# -----------------------------

class CreateIntentRequest(CamelModel):
    order_id: int
    amount: int
    description: Optional[str] = Field(default=None, max_length=500)


class ConfirmPaymentRequest(CamelModel):
    payment_intent_id: str
    order_id: int
    payment_method_id: Optional[str] = None


class RefundRequest(CamelModel):
    payment_intent_id: str
    order_id: int
    amount: Optional[int] = None


class ReconcileRequest(CamelModel):
    payment_intent_id: Optional[str] = None


class WebhookEndpointCreate(CamelModel):
    url: str = Field(min_length=8, pattern=r"^https?://")


# -----------------------------
# Responses
# -----------------------------

class CreateIntentResponse(CamelModel):
    success: bool
    client_secret: Optional[str]
    payment_intent_id: str
    status: str


class ConfirmPaymentResponse(CamelModel):
    success: bool
    message: str
    order_id: Optional[int] = None
    status: Optional[str] = None


class RefundResponse(CamelModel):
    success: bool
    message: str
    refund_id: Optional[str] = None


class GatewayStatusResponse(CamelModel):
    available: bool
    message: str


class WebhookAck(CamelModel):
    success: bool
    message: Optional[str] = None
    action: Optional[str] = None
    order_id: Optional[int] = None


class PaymentStatusResponse(CamelModel):
    id: str
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = {}
