# -------- ADMIN ORDERS --------
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from app.database import get_session
from app.dependencies.admin import require_admin
from app.dependencies.payments import get_reconciler
from app.exceptions import PaymentError, http_error
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.routes.orders import order_detail
from app.schemas.orders_schemas import OrderDetail, OrderOut, OrderStatusUpdate
from app.schemas.payment_schemas import ReconcileRequest, WebhookAck
from app.services.order_service import list_orders
from app.services.reconciler import PaymentReconciler

router = APIRouter()


@router.get("")
def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
    _: User = Depends(require_admin),
):
    return list_orders(
        session,
        page=page,
        limit=limit,
        status=status,
        search=search,
        serialize=lambda o: {
            **OrderOut.model_validate(o).model_dump(by_alias=True),
            "userId": o.user_id,
        },
    )


@router.get("/{order_id}", response_model=OrderDetail)
def admin_order_detail(
    order_id: int,
    session: Session = Depends(get_session),
    _: User = Depends(require_admin),
):
    order = session.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    return order_detail(session, order)


@router.patch("/{order_id}/status", response_model=OrderDetail)
def admin_update_status(
    order_id: int,
    payload: OrderStatusUpdate,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    admin: User = Depends(require_admin),
):
    try:
        order = reconciler.update_status(order_id, payload.status, actor=f"admin:{admin.id}")
    except PaymentError as e:
        raise http_error(e)

    return order_detail(reconciler.session, order)


@router.post(
    "/{order_id}/reconcile",
    response_model=WebhookAck,
    response_model_exclude_none=True,
)
def admin_reconcile_order(
    order_id: int,
    payload: Optional[ReconcileRequest] = None,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    admin: User = Depends(require_admin),
):
    """Re-read the payment from Stripe, for when a webhook never arrived"""
    try:
        return reconciler.reconcile_from_provider(
            order_id,
            payload.payment_intent_id if payload else None,
            actor=f"admin:{admin.id}",
        )
    except PaymentError as e:
        raise http_error(e)
