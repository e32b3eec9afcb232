import json
import time

import pytest
import stripe

from app.exceptions import GatewayUnavailable, PaymentValidationError
from app.services.stripe_gateway import StripeGateway, snapshot_intent
from conftest import WEBHOOK_SECRET, sign


class StripeResponse(dict):
    """dict with attribute access, like the objects stripe-python returns"""

    __getattr__ = dict.__getitem__


def _intent(**fields):
    data = {
        "id": "pi_123",
        "object": "payment_intent",
        "status": "requires_payment_method",
        "amount": 4200,
        "currency": "pen",
        "client_secret": "pi_123_secret_456",
        "metadata": {"orderId": "7"},
        "latest_charge": None,
        "last_payment_error": None,
    }
    data.update(fields)
    return StripeResponse(data)


@pytest.fixture
def stripe_gateway():
    return StripeGateway(api_key="sk_test_123", api_version="2024-06-20", currency="pen")


def test_create_intent(stripe_gateway, monkeypatch):
    calls = []

    def create(**params):
        calls.append(params)
        return _intent()

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    result = stripe_gateway.create_intent(7, 4200, metadata={"userId": "3"})

    assert result.intent_id == "pi_123"
    assert result.client_secret == "pi_123_secret_456"
    [params] = calls
    assert params["amount"] == 4200
    assert params["currency"] == "pen"
    assert params["metadata"] == {"userId": "3", "orderId": "7"}
    assert params["api_key"] == "sk_test_123"
    assert params["stripe_version"] == "2024-06-20"


@pytest.mark.parametrize("amount", [0, -5, 10.5, True])
def test_create_intent_validates_amount_first(stripe_gateway, monkeypatch, amount):
    def create(**params):
        raise AssertionError("Stripe must not be called")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    with pytest.raises(PaymentValidationError):
        stripe_gateway.create_intent(7, amount)


def test_unconfigured_gateway():
    gateway = StripeGateway(api_key=None)

    assert gateway.configured is False
    assert gateway.is_available() is False
    with pytest.raises(GatewayUnavailable):
        gateway.create_intent(7, 4200)
    with pytest.raises(GatewayUnavailable):
        gateway.get_status("pi_123")


def test_provider_outage(stripe_gateway, monkeypatch):
    def create(**params):
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    with pytest.raises(GatewayUnavailable):
        stripe_gateway.create_intent(7, 4200)


def test_confirm_already_succeeded(stripe_gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda intent_id, **options: _intent(status="succeeded", latest_charge="ch_1"),
    )

    def confirm(*args, **kwargs):
        raise AssertionError("already succeeded intents are not confirmed again")

    monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)

    result = stripe_gateway.confirm("pi_123", "pm_card_visa")

    assert result.success is True
    assert result.transaction_id == "ch_1"
    assert result.intent.order_id == 7


def test_confirm_with_declined_card(stripe_gateway, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda intent_id, **options: _intent())

    def confirm(intent_id, **kwargs):
        raise stripe.CardError("Your card was declined.", "payment_method", "card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)

    result = stripe_gateway.confirm("pi_123", "pm_card_chargeDeclined")

    assert result.success is False
    assert result.status == "requires_payment_method"
    assert result.message


def test_confirm_still_requires_action(stripe_gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda intent_id, **options: _intent(status="requires_action"),
    )

    result = stripe_gateway.confirm("pi_123")

    assert result.success is False
    assert result.status == "requires_action"


def test_status_of_unknown_intent(stripe_gateway, monkeypatch):
    def retrieve(intent_id, **options):
        raise stripe.InvalidRequestError("No such payment_intent", "intent")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)

    with pytest.raises(PaymentValidationError):
        stripe_gateway.get_status("pi_missing")


@pytest.mark.parametrize("status, accepted", [("succeeded", True), ("pending", True), ("failed", False)])
def test_refund_status(stripe_gateway, monkeypatch, status, accepted):
    monkeypatch.setattr(
        stripe.Refund,
        "create",
        lambda **params: StripeResponse(id="re_1", status=status, amount=params.get("amount", 4200)),
    )

    result = stripe_gateway.refund("pi_123", 1000)

    assert result.success is accepted
    assert result.refund_id == "re_1"
    assert result.amount == 1000


def test_refund_rejected_by_stripe(stripe_gateway, monkeypatch):
    def create(**params):
        raise stripe.InvalidRequestError("Charge has already been refunded", "charge")

    monkeypatch.setattr(stripe.Refund, "create", create)

    result = stripe_gateway.refund("pi_123")

    assert result.success is False


def test_snapshot_from_webhook_payload():
    snapshot = snapshot_intent({
        "id": "pi_9",
        "status": "requires_payment_method",
        "amount": 1500,
        "currency": "pen",
        "metadata": {"orderId": "12"},
        "latest_charge": {"id": "ch_9", "object": "charge"},
        "last_payment_error": {"message": "Your card has expired."},
    })

    assert snapshot.order_id == 12
    assert snapshot.latest_charge == "ch_9"
    assert snapshot.last_error == "Your card has expired."


def test_snapshot_without_order_id():
    assert snapshot_intent({"id": "pi_9", "metadata": {"orderId": "abc"}}).order_id is None
    assert snapshot_intent({"id": "pi_9"}).order_id is None


def test_verify_webhook(stripe_gateway):
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {}}})

    event = stripe_gateway.verify_webhook(payload.encode("utf-8"), sign(payload), WEBHOOK_SECRET)

    assert event["type"] == "payment_intent.succeeded"


def test_verify_webhook_rejects_tampering(stripe_gateway):
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"})
    header = sign(payload)
    tampered = payload.replace("evt_1", "evt_2")

    assert stripe_gateway.verify_webhook(tampered, header, WEBHOOK_SECRET) is None
    assert stripe_gateway.verify_webhook(payload, None, WEBHOOK_SECRET) is None
    assert stripe_gateway.verify_webhook(payload, header, "whsec_other") is None


def test_verify_webhook_rejects_old_deliveries(stripe_gateway):
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"})
    header = sign(payload, timestamp=int(time.time()) - 3600)

    assert stripe_gateway.verify_webhook(payload, header, WEBHOOK_SECRET) is None


def test_verify_webhook_rejects_body_that_is_not_utf8(stripe_gateway):
    header = sign('{"id": "evt_1"}')

    assert stripe_gateway.verify_webhook(b'{"id": "evt_\xff"}', header, WEBHOOK_SECRET) is None
