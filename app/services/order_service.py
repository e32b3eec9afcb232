# app/services/order_service.py
import logging
import secrets
import time
from typing import Optional

from sqlmodel import Session, select

from app.config import settings
from app.exceptions import OrderNotFound, PaymentValidationError
from app.models.order import Order, OrderStatus, PaymentStatus
from app.models.order_item import OrderItem
from app.models.product import Product
from app.models.user import User
from app.notifications import OrderEvent, dispatch_order_event
from app.schemas.orders_schemas import OrderCreate
from app.services.order_event_service import log_order_event
from app.utils.pagination import paginate

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def shipping_for(subtotal: int) -> int:
    return 0 if subtotal >= settings.FREE_SHIPPING_THRESHOLD else settings.SHIPPING_FEE


def create_order(session: Session, user: User, data: OrderCreate) -> Order:
    """
    Checkout: snapshot product names/prices into order items.

    Order and items are committed together; payment is a separate step.
    """

    quantities = {}
    for line in data.items:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

    products = session.exec(
        select(Product).where(Product.id.in_(list(quantities)))
    ).all()
    by_id = {p.id: p for p in products if p.is_active}

    missing = [pid for pid in quantities if pid not in by_id]
    if missing:
        raise PaymentValidationError(f"Products not available: {missing}")

    order = Order(
        order_number=generate_order_number(),
        user_id=user.id,
        status=OrderStatus.pending.value,
        payment_status=PaymentStatus.pending.value,
        payment_method=data.payment_method.value,
        delivery_address_id=data.delivery_address_id,
        notes=data.notes,
        total_amount=0,
        shipping_cost=0,
    )

    subtotal = 0
    for product_id, quantity in quantities.items():
        product = by_id[product_id]
        line_total = product.price * quantity
        subtotal += line_total
        order.items.append(
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                price=product.price,
                subtotal=line_total,
            )
        )

    order.total_amount = subtotal
    order.shipping_cost = shipping_for(subtotal)

    session.add(order)
    session.flush()

    log_order_event(
        session,
        order.id,
        "order_placed",
        "Order placed",
        created_by=f"user:{user.id}",
        meta={"amount_due": order.amount_due, "items": len(quantities)},
    )
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.order_number} created for user {user.id}")

    try:
        dispatch_order_event(
            event=OrderEvent.ORDER_PLACED,
            order=order,
            user=user,
            session=session,
            extra={
                "items": list(order.items),
                "admin_title": "New Order Placed",
                "admin_content": f"Order #{order.order_number} placed by {user.email}",
            },
        )
    except Exception:
        logger.exception(f"Order placed notification failed for order {order.id}")

    return order


def get_user_order(session: Session, user: User, order_id: int) -> Order:
    order = session.get(Order, order_id)

    if not order or order.user_id != user.id:
        raise OrderNotFound()
    return order


def list_user_orders(session: Session, user: User, page: int = 1, limit: int = 10, serialize=None):
    query = (
        select(Order)
        .where(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return paginate(session=session, query=query, page=page, limit=limit, serialize=serialize)


def list_orders(
    session: Session,
    page: int = 1,
    limit: int = 10,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    serialize=None,
):
    query = select(Order)

    if status:
        query = query.where(Order.status == OrderStatus(status).value)

    if search:
        query = query.where(Order.order_number.ilike(f"%{search}%"))

    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(session=session, query=query, page=page, limit=limit, serialize=serialize)
