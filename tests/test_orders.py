from sqlmodel import select

from app.models.notifications import Notification, RecipientRole
from app.models.order import OrderStatus
from app.models.product import Product
from app.notifications import OrderEvent, dispatch_order_event
from app.schemas.orders_schemas import OrderCreate, OrderItemIn
from app.services.order_service import create_order, generate_order_number, shipping_for


def test_order_number_format():
    number = generate_order_number()

    prefix, millis, suffix = number.split("-")
    assert prefix == "ORD"
    assert millis.isdigit()
    assert len(suffix) == 9
    assert generate_order_number() != number


def test_shipping_is_free_above_threshold():
    assert shipping_for(4999) == 800
    assert shipping_for(5000) == 0


def test_place_order_snapshots_prices(client, customer_headers, products, session, notifier):
    lucuma, chirimoya = products

    response = client.post(
        "/orders",
        json={
            "items": [
                {"productId": lucuma.id, "quantity": 1},
                {"productId": chirimoya.id, "quantity": 2},
                {"productId": lucuma.id, "quantity": 1},
            ],
            "notes": "Sin cuchara",
        },
        headers=customer_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["paymentStatus"] == "pending"
    assert body["totalAmount"] == 2 * 2500 + 2 * 900
    assert body["shippingCost"] == 0
    assert body["amountDue"] == 6800
    assert {(i["productName"], i["quantity"]) for i in body["items"]} == {
        ("Lúcuma pint", 2),
        ("Chirimoya cone", 2),
    }
    assert notifier.events() == [OrderEvent.ORDER_PLACED]

    # later price changes do not touch the order
    lucuma.price = 9999
    session.add(lucuma)
    session.commit()

    detail = client.get(f"/orders/{body['id']}", headers=customer_headers).json()
    assert detail["totalAmount"] == 6800
    assert {i["price"] for i in detail["items"]} == {2500, 900}


def test_place_order_with_inactive_product(client, customer_headers, session):
    product = Product(name="Seasonal maracuyá", price=1200, is_active=False)
    session.add(product)
    session.commit()
    session.refresh(product)

    response = client.post(
        "/orders",
        json={"items": [{"productId": product.id, "quantity": 1}]},
        headers=customer_headers,
    )

    assert response.status_code == 400


def test_place_order_rejects_empty_cart(client, customer_headers):
    response = client.post("/orders", json={"items": []}, headers=customer_headers)

    assert response.status_code == 422


def test_list_my_orders(client, customer_headers, place_order, customer, other_customer):
    place_order(customer)
    place_order(customer)
    place_order(other_customer)

    response = client.get("/orders?page=1&limit=1", headers=customer_headers)

    body = response.json()
    assert body["total_items"] == 2
    assert body["total_pages"] == 2
    assert len(body["results"]) == 1
    assert "orderNumber" in body["results"][0]


def test_foreign_order_detail_is_hidden(client, other_headers, pending_order):
    assert client.get(f"/orders/{pending_order.id}", headers=other_headers).status_code == 404
    assert client.get(f"/orders/{pending_order.id}/timeline", headers=other_headers).status_code == 404


def test_timeline(client, customer_headers, pending_order):
    client.post(
        "/payments/create-intent",
        json={"orderId": pending_order.id, "amount": pending_order.amount_due},
        headers=customer_headers,
    )

    response = client.get(f"/orders/{pending_order.id}/timeline", headers=customer_headers)

    assert response.status_code == 200
    events = [e["eventType"] for e in response.json()]
    assert events == ["order_placed", "payment_intent_created"]


# -----------------------------
# admin
# -----------------------------

def test_admin_routes_need_admin(client, customer_headers, pending_order):
    assert client.get("/admin/orders", headers=customer_headers).status_code == 403
    response = client.patch(
        f"/admin/orders/{pending_order.id}/status",
        json={"status": "confirmed"},
        headers=customer_headers,
    )
    assert response.status_code == 403


def test_admin_status_changes(client, admin_headers, pending_order, session):
    response = client.patch(
        f"/admin/orders/{pending_order.id}/status",
        json={"status": "confirmed"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = client.patch(
        f"/admin/orders/{pending_order.id}/status",
        json={"status": "delivered"},
        headers=admin_headers,
    )
    assert response.status_code == 409

    session.refresh(pending_order)
    assert pending_order.status == OrderStatus.confirmed.value


def test_admin_status_of_missing_order(client, admin_headers):
    response = client.patch("/admin/orders/999/status", json={"status": "confirmed"}, headers=admin_headers)

    assert response.status_code == 404


def test_admin_list_filters(client, admin_headers, place_order, customer, reconciler):
    first = place_order(customer)
    place_order(customer)
    reconciler.update_status(first.id, OrderStatus.cancelled, actor="admin:1")

    body = client.get("/admin/orders?status=cancelled", headers=admin_headers).json()
    assert [o["id"] for o in body["results"]] == [first.id]
    assert body["results"][0]["userId"] == customer.id

    body = client.get(f"/admin/orders?search={first.order_number[-9:]}", headers=admin_headers).json()
    assert [o["id"] for o in body["results"]] == [first.id]


def test_admin_reconcile(client, admin_headers, customer_headers, pending_order, gateway, session):
    intent_id = client.post(
        "/payments/create-intent",
        json={"orderId": pending_order.id, "amount": pending_order.amount_due},
        headers=customer_headers,
    ).json()["paymentIntentId"]
    gateway.succeed(intent_id)

    response = client.post(f"/admin/orders/{pending_order.id}/reconcile", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["action"] == "reconciled"

    detail = client.get(f"/admin/orders/{pending_order.id}", headers=admin_headers).json()
    assert detail["status"] == "confirmed"
    assert detail["paymentStatus"] == "completed"


def test_admin_webhook_endpoints(client, admin_headers, gateway):
    response = client.post(
        "/admin/webhooks/endpoints",
        json={"url": "https://api.example.com/webhooks/stripe"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    endpoint = response.json()
    assert endpoint["secret"] == "whsec_new"

    listed = client.get("/admin/webhooks/endpoints", headers=admin_headers).json()
    assert [e["id"] for e in listed] == [endpoint["id"]]
    assert "secret" not in listed[0]

    assert client.delete(f"/admin/webhooks/endpoints/{endpoint['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/admin/webhooks/endpoints/{endpoint['id']}", headers=admin_headers).status_code == 400


# -----------------------------
# notifications
# -----------------------------

def test_dispatcher_records_admin_notification(session, customer, products, monkeypatch):
    sent = []
    monkeypatch.setattr(
        "app.notifications.dispatcher.send_user_email",
        lambda **kwargs: sent.append(kwargs["template"]),
    )

    order = create_order(
        session,
        customer,
        OrderCreate(items=[OrderItemIn(product_id=products[0].id, quantity=1)]),
    )

    [notification] = session.exec(select(Notification)).all()
    assert notification.recipient_role == RecipientRole.admin
    assert notification.related_id == order.id
    assert notification.trigger_source == OrderEvent.ORDER_PLACED.value
    assert sent == ["user_emails/order_placed.html"]


def test_payment_failure_only_notifies_admin(session, customer, pending_order, monkeypatch):
    sent = []
    monkeypatch.setattr(
        "app.notifications.dispatcher.send_user_email",
        lambda **kwargs: sent.append(kwargs["template"]),
    )

    dispatch_order_event(
        event=OrderEvent.PAYMENT_FAILED,
        order=pending_order,
        user=customer,
        session=session,
        extra={"admin_title": "Payment Failed"},
        notify_user=False,
    )

    titles = [n.title for n in session.exec(select(Notification)).all()]
    assert titles == ["Payment Failed"]
    assert sent == []


def test_health(client):
    response = client.get("/health/check")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"
