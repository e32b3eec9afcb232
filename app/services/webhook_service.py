# app/services/webhook_service.py
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from app.schemas.payment_schemas import WebhookAck
from app.services.reconciler import PaymentReconciler
from app.services.stripe_gateway import StripeGateway, snapshot_intent

logger = logging.getLogger(__name__)


class WebhookEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    AMOUNT_CAPTURABLE_UPDATED = "payment_intent.amount_capturable_updated"


def parse_event_type(tag: Optional[str]) -> Optional[WebhookEventType]:
    try:
        return WebhookEventType(tag)
    except ValueError:
        return None


def _handlers(reconciler: PaymentReconciler) -> Dict[WebhookEventType, Callable[[Any], WebhookAck]]:
    return {
        WebhookEventType.PAYMENT_SUCCEEDED:
            lambda obj: reconciler.handle_payment_succeeded(snapshot_intent(obj)),
        WebhookEventType.PAYMENT_FAILED:
            lambda obj: reconciler.handle_payment_failed(snapshot_intent(obj)),
        WebhookEventType.CHARGE_REFUNDED:
            reconciler.handle_charge_refunded,
        WebhookEventType.AMOUNT_CAPTURABLE_UPDATED:
            lambda obj: reconciler.handle_amount_capturable_updated(snapshot_intent(obj)),
    }


def dispatch_event(event: Dict[str, Any], reconciler: PaymentReconciler) -> WebhookAck:
    """Route a verified event to its handler; unknown types are acknowledged."""

    event_type = parse_event_type(event.get("type"))
    if event_type is None:
        logger.info(f"Unhandled event type: {event.get('type')}")
        return WebhookAck(success=True, action="unhandled", message="Unhandled event type")

    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict) or not data_object.get("id"):
        logger.warning(f"Event {event.get('id')} has no data object")
        return WebhookAck(success=True, action="ignored", message="Event has no data object")

    logger.info(f"Processing Stripe event {event.get('id')} ({event_type.value})")
    return _handlers(reconciler)[event_type](data_object)


def process_webhook(
    *,
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    reconciler: PaymentReconciler,
    gateway: StripeGateway,
) -> WebhookAck:
    if not secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured")
        return WebhookAck(success=False, message="Webhook secret not configured")

    event = gateway.verify_webhook(raw_body, signature, secret)
    if event is None:
        return WebhookAck(success=False, message="Invalid webhook signature")

    return dispatch_event(event, reconciler)
