# app/services/stripe_gateway.py
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import stripe

from app.config import settings
from app.exceptions import GatewayUnavailable, PaymentValidationError
from app.schemas.payment_schemas import (
    ConfirmResult,
    IntentResult,
    IntentSnapshot,
    RefundResult,
    WebhookEndpointInfo,
)

logger = logging.getLogger(__name__)

HANDLED_EVENT_TYPES = [
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "charge.refunded",
    "payment_intent.amount_capturable_updated",
]

REFUND_ACCEPTED_STATUSES = ("succeeded", "pending")


def _plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _object_id(value: Any) -> Optional[str]:
    # expandable fields come back either as an id or as the object itself
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def snapshot_intent(intent: Any) -> IntentSnapshot:
    """Normalize a Stripe PaymentIntent (API object or webhook dict)."""

    data = _plain(intent)
    last_error = _plain(data.get("last_payment_error"))

    return IntentSnapshot(
        id=data["id"],
        status=data.get("status") or "unknown",
        amount=data.get("amount") or 0,
        currency=data.get("currency") or settings.STRIPE_CURRENCY,
        client_secret=data.get("client_secret"),
        metadata={
            str(k): str(v) for k, v in _plain(data.get("metadata")).items()
        },
        latest_charge=_object_id(data.get("latest_charge")),
        last_error=last_error.get("message"),
    )


class StripeGateway:
    """Thin adapter over the Stripe API.

    Declines and provider-side rejections come back as negative results;
    only missing credentials and transport/API failures raise
    ``GatewayUnavailable``.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_version: Optional[str] = None,
        currency: str = "pen",
        webhook_tolerance: int = 300,
    ):
        self.api_key = api_key
        self.api_version = api_version
        self.currency = currency
        self.webhook_tolerance = webhook_tolerance

    @classmethod
    def from_settings(cls, config=settings) -> "StripeGateway":
        return cls(
            api_key=config.STRIPE_SECRET_KEY,
            api_version=config.STRIPE_API_VERSION,
            currency=config.STRIPE_CURRENCY,
            webhook_tolerance=config.STRIPE_WEBHOOK_TOLERANCE,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _options(self) -> Dict[str, str]:
        if not self.configured:
            logger.warning("STRIPE_SECRET_KEY is not configured")
            raise GatewayUnavailable()

        options = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    # -----------------------------
    # Payment intents
    # -----------------------------

    def create_intent(
        self,
        order_id: int,
        amount: int,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> IntentResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PaymentValidationError(
                "Amount must be a positive whole number of cents"
            )

        options = self._options()

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.currency,
                description=description or f"Order #{order_id}",
                metadata={**(metadata or {}), "orderId": str(order_id)},
                automatic_payment_methods={"enabled": True},
                **options,
            )
        except stripe.StripeError:
            logger.exception(f"Stripe create intent failed for order {order_id}")
            raise GatewayUnavailable()

        return IntentResult(
            client_secret=intent.client_secret,
            intent_id=intent.id,
            status=intent.status,
        )

    def confirm(
        self,
        intent_id: str,
        payment_method_id: Optional[str] = None,
    ) -> ConfirmResult:
        options = self._options()

        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, **options)

            if intent.status == "succeeded":
                snapshot = snapshot_intent(intent)
                return ConfirmResult(
                    success=True,
                    status=snapshot.status,
                    transaction_id=snapshot.latest_charge or snapshot.id,
                    amount=snapshot.amount,
                    intent=snapshot,
                )

            if intent.status == "requires_payment_method" and payment_method_id:
                intent = stripe.PaymentIntent.confirm(
                    intent_id,
                    payment_method=payment_method_id,
                    **options,
                )

            snapshot = snapshot_intent(intent)

        except stripe.CardError as e:
            # a decline is a normal outcome, not an outage
            logger.info(f"Card declined for intent {intent_id}: {e.code}")
            return ConfirmResult(
                success=False,
                status="requires_payment_method",
                message=e.user_message or "Your card was declined",
            )
        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe rejected confirm for {intent_id}: {e}")
            return ConfirmResult(
                success=False,
                status="invalid",
                message="The payment could not be completed",
            )
        except stripe.StripeError:
            logger.exception(f"Stripe confirm failed for intent {intent_id}")
            raise GatewayUnavailable()

        if snapshot.status == "succeeded":
            return ConfirmResult(
                success=True,
                status=snapshot.status,
                transaction_id=snapshot.latest_charge or snapshot.id,
                amount=snapshot.amount,
                intent=snapshot,
            )

        return ConfirmResult(
            success=False,
            status=snapshot.status,
            message=snapshot.last_error or "The payment could not be completed",
            intent=snapshot,
        )

    def get_status(self, intent_id: str) -> IntentSnapshot:
        options = self._options()

        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, **options)
        except stripe.InvalidRequestError:
            raise PaymentValidationError("Payment not found")
        except stripe.StripeError:
            logger.exception(f"Stripe retrieve failed for intent {intent_id}")
            raise GatewayUnavailable()

        return snapshot_intent(intent)

    def refund(self, intent_id: str, amount: Optional[int] = None) -> RefundResult:
        params: Dict[str, Any] = {"payment_intent": intent_id}

        if amount is not None:
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise PaymentValidationError("Refund amount must be positive")
            params["amount"] = amount

        options = self._options()

        try:
            refund = stripe.Refund.create(**params, **options)
        except stripe.InvalidRequestError as e:
            # e.g. amount above what was captured, or already refunded
            logger.warning(f"Stripe rejected refund for {intent_id}: {e}")
            return RefundResult(
                success=False,
                message="The refund was rejected by the payment provider",
            )
        except stripe.StripeError:
            logger.exception(f"Stripe refund failed for intent {intent_id}")
            raise GatewayUnavailable()

        return RefundResult(
            success=refund.status in REFUND_ACCEPTED_STATUSES,
            refund_id=refund.id,
            status=refund.status,
            amount=refund.amount,
        )

    def is_available(self) -> bool:
        if not self.configured:
            logger.warning("STRIPE_SECRET_KEY is not configured")
            return False

        try:
            stripe.Account.retrieve(**self._options())
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe is not available: {e}")
            return False

    # -----------------------------
    # Webhooks
    # -----------------------------

    def verify_webhook(
        self,
        raw_body: bytes | str,
        signature_header: Optional[str],
        secret: str,
    ) -> Optional[Dict[str, Any]]:
        """Return the decoded event, or None when the signature is not valid."""

        if not signature_header:
            return None

        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                secret,
                self.webhook_tolerance,
            )
            event = json.loads(payload)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning(f"Rejected webhook payload: {e}")
            return None

        if not isinstance(event, dict) or "type" not in event:
            return None
        return event

    def list_webhook_endpoints(self) -> List[WebhookEndpointInfo]:
        options = self._options()

        try:
            endpoints = stripe.WebhookEndpoint.list(**options)
        except stripe.StripeError:
            logger.exception("Stripe webhook endpoint listing failed")
            raise GatewayUnavailable()

        return [self._endpoint_info(ep) for ep in endpoints.data]

    def create_webhook_endpoint(self, url: str) -> WebhookEndpointInfo:
        options = self._options()

        try:
            endpoint = stripe.WebhookEndpoint.create(
                url=url,
                enabled_events=HANDLED_EVENT_TYPES,
                **options,
            )
        except stripe.InvalidRequestError as e:
            raise PaymentValidationError(f"Webhook endpoint rejected: {e.user_message or e}")
        except stripe.StripeError:
            logger.exception("Stripe webhook endpoint creation failed")
            raise GatewayUnavailable()

        logger.info(f"Webhook endpoint created: {endpoint.id}")
        return self._endpoint_info(endpoint, include_secret=True)

    def delete_webhook_endpoint(self, endpoint_id: str) -> None:
        options = self._options()

        try:
            stripe.WebhookEndpoint.delete(endpoint_id, **options)
        except stripe.InvalidRequestError:
            raise PaymentValidationError("Webhook endpoint not found")
        except stripe.StripeError:
            logger.exception(f"Stripe webhook endpoint deletion failed: {endpoint_id}")
            raise GatewayUnavailable()

        logger.info(f"Webhook endpoint deleted: {endpoint_id}")

    @staticmethod
    def _endpoint_info(endpoint: Any, include_secret: bool = False) -> WebhookEndpointInfo:
        data = _plain(endpoint)
        return WebhookEndpointInfo(
            id=data["id"],
            url=data.get("url", ""),
            status=data.get("status"),
            enabled_events=list(data.get("enabled_events") or []),
            secret=data.get("secret") if include_secret else None,
        )


@lru_cache(maxsize=1)
def get_payment_gateway() -> StripeGateway:
    return StripeGateway.from_settings(settings)
