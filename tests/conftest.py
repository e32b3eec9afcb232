import hashlib
import hmac
import json
import os
import time

# settings are read at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.pop("BREVO_API_KEY", None)

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app import models  # noqa: F401
from app.database import get_session
from app.dependencies.payments import get_reconciler
from app.exceptions import PaymentValidationError
from app.main import app
from app.models.order import Order
from app.models.product import Product
from app.models.user import User
from app.schemas.orders_schemas import OrderCreate, OrderItemIn
from app.schemas.payment_schemas import (
    ConfirmResult,
    IntentResult,
    IntentSnapshot,
    RefundResult,
    WebhookEndpointInfo,
)
from app.services import order_service
from app.services.reconciler import PaymentReconciler
from app.services.stripe_gateway import StripeGateway, get_payment_gateway
from app.utils.token import create_access_token

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
DECLINED_CARD = "pm_card_chargeDeclined"


class FakeGateway(StripeGateway):
    """In-memory Stripe; webhook verification is the real one."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", currency="pen")
        self.intents = {}
        self.refunds = []
        self.endpoints = {}
        self.available = True

    def create_intent(self, order_id, amount, description=None, metadata=None):
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PaymentValidationError("Amount must be a positive whole number of cents")

        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = IntentSnapshot(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=self.currency,
            client_secret=f"{intent_id}_secret_abc",
            metadata={**(metadata or {}), "orderId": str(order_id)},
        )
        return IntentResult(
            client_secret=f"{intent_id}_secret_abc",
            intent_id=intent_id,
            status="requires_payment_method",
        )

    def add_intent(self, intent_id, amount, order_id=None, status="requires_payment_method"):
        metadata = {"orderId": str(order_id)} if order_id is not None else {}
        self.intents[intent_id] = IntentSnapshot(
            id=intent_id,
            status=status,
            amount=amount,
            currency=self.currency,
            metadata=metadata,
        )
        return self.intents[intent_id]

    def succeed(self, intent_id, charge_id=None):
        intent = self.intents[intent_id].model_copy(update={
            "status": "succeeded",
            "latest_charge": charge_id or intent_id.replace("pi_", "ch_"),
        })
        self.intents[intent_id] = intent
        return intent

    def fail(self, intent_id, message="Your card was declined."):
        intent = self.intents[intent_id].model_copy(update={
            "status": "requires_payment_method",
            "last_error": message,
        })
        self.intents[intent_id] = intent
        return intent

    def confirm(self, intent_id, payment_method_id=None):
        intent = self.intents.get(intent_id)
        if intent is None:
            return ConfirmResult(
                success=False,
                status="invalid",
                message="The payment could not be completed",
            )

        if intent.status == "requires_payment_method" and payment_method_id:
            if payment_method_id == DECLINED_CARD:
                return ConfirmResult(
                    success=False,
                    status="requires_payment_method",
                    message="Your card was declined",
                )
            intent = self.succeed(intent_id)

        if intent.status == "succeeded":
            return ConfirmResult(
                success=True,
                status=intent.status,
                transaction_id=intent.latest_charge,
                amount=intent.amount,
                intent=intent,
            )

        return ConfirmResult(
            success=False,
            status=intent.status,
            message="The payment could not be completed",
            intent=intent,
        )

    def get_status(self, intent_id):
        if intent_id not in self.intents:
            raise PaymentValidationError("Payment not found")
        return self.intents[intent_id]

    def refund(self, intent_id, amount=None):
        intent = self.intents[intent_id]
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append((intent_id, amount))
        return RefundResult(
            success=True,
            refund_id=refund_id,
            status="succeeded",
            amount=amount or intent.amount,
        )

    def is_available(self):
        return self.available

    def list_webhook_endpoints(self):
        return list(self.endpoints.values())

    def create_webhook_endpoint(self, url):
        endpoint = WebhookEndpointInfo(
            id=f"we_test_{len(self.endpoints) + 1}",
            url=url,
            status="enabled",
            enabled_events=["payment_intent.succeeded"],
            secret="whsec_new",
        )
        self.endpoints[endpoint.id] = endpoint.model_copy(update={"secret": None})
        return endpoint

    def delete_webhook_endpoint(self, endpoint_id):
        if self.endpoints.pop(endpoint_id, None) is None:
            raise PaymentValidationError("Webhook endpoint not found")


class NotificationRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *, event, order, user, session, extra=None, notify_user=True, notify_admin=True):
        self.calls.append({"event": event, "order_id": order.id, "notify_user": notify_user})

    def events(self, event=None):
        return [c["event"] for c in self.calls if event is None or c["event"] == event]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return NotificationRecorder()


@pytest.fixture
def reconciler(session, gateway, notifier):
    return PaymentReconciler(session, gateway, notifier=notifier)


@pytest.fixture
def client(engine, gateway, notifier, monkeypatch):
    def override_session():
        with Session(engine) as session:
            yield session

    def override_reconciler(session: Session = Depends(get_session)):
        return PaymentReconciler(session, gateway, notifier=notifier)

    monkeypatch.setattr(order_service, "dispatch_order_event", notifier)

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_reconciler] = override_reconciler

    yield TestClient(app)

    app.dependency_overrides.clear()


def _add(session, obj):
    session.add(obj)
    session.commit()
    session.refresh(obj)
    return obj


@pytest.fixture
def customer(session):
    return _add(session, User(name="Lucía", email="lucia@example.com"))


@pytest.fixture
def other_customer(session):
    return _add(session, User(name="Mateo", email="mateo@example.com"))


@pytest.fixture
def admin_user(session):
    return _add(session, User(name="Admin", email="admin@example.com", role="admin"))


@pytest.fixture
def products(session):
    return [
        _add(session, Product(name="Lúcuma pint", price=2500)),
        _add(session, Product(name="Chirimoya cone", price=900)),
    ]


def auth_headers(user):
    token = create_access_token({"user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture
def other_headers(other_customer):
    return auth_headers(other_customer)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def place_order(session, products, notifier, monkeypatch):
    monkeypatch.setattr(order_service, "dispatch_order_event", notifier)

    def _place(user, quantities=None) -> Order:
        quantities = quantities or [1, 1]
        data = OrderCreate(items=[
            OrderItemIn(product_id=p.id, quantity=q)
            for p, q in zip(products, quantities)
        ])
        return order_service.create_order(session, user, data)

    return _place


@pytest.fixture
def pending_order(place_order, customer):
    # 2500 + 900 = 3400, below free shipping so 800 is added
    return place_order(customer)


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def post_event(client):
    def _post(event_type, data_object, event_id="evt_test_1", signature=None, secret=WEBHOOK_SECRET):
        payload = json.dumps({
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        })
        return client.post(
            "/webhooks/stripe",
            content=payload,
            headers={
                "Stripe-Signature": signature or sign(payload, secret=secret),
                "Content-Type": "application/json",
            },
        )

    return _post
