from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from app.database import get_session
from app.exceptions import PaymentError, http_error
from app.models.order import Order
from app.models.user import User
from app.schemas.orders_schemas import (
    OrderCreate,
    OrderDetail,
    OrderEventOut,
    OrderOut,
    TransactionOut,
)
from app.services.order_event_service import list_order_events
from app.services.order_service import create_order, get_user_order, list_user_orders
from app.services.transaction_ledger import TransactionLedger
from app.utils.token import get_current_user

router = APIRouter()


def order_detail(session: Session, order: Order) -> OrderDetail:
    detail = OrderDetail.model_validate(order)
    detail.transactions = [
        TransactionOut.model_validate(t)
        for t in TransactionLedger(session).list_for_order(order.id)
    ]
    return detail


@router.post("", response_model=OrderDetail, status_code=201)
def place_order(
    data: OrderCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        order = create_order(session, current_user, data)
    except PaymentError as e:
        raise http_error(e)

    return order_detail(session, order)


@router.get("")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return list_user_orders(
        session,
        current_user,
        page=page,
        limit=limit,
        serialize=lambda o: OrderOut.model_validate(o).model_dump(by_alias=True),
    )


@router.get("/{order_id}", response_model=OrderDetail)
def my_order_detail(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        order = get_user_order(session, current_user, order_id)
    except PaymentError as e:
        raise http_error(e)

    return order_detail(session, order)


@router.get("/{order_id}/timeline", response_model=List[OrderEventOut])
def my_order_timeline(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    order = session.get(Order, order_id)

    if not order or order.user_id != current_user.id:
        raise HTTPException(404, "Order not found")

    return list_order_events(session, order.id)
