from fastapi import APIRouter, Depends

from app.dependencies.payments import get_reconciler
from app.exceptions import PaymentError, http_error
from app.models.user import User
from app.schemas.payment_schemas import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateIntentRequest,
    CreateIntentResponse,
    GatewayStatusResponse,
    PaymentStatusResponse,
    RefundRequest,
    RefundResponse,
)
from app.services.reconciler import PaymentReconciler
from app.services.stripe_gateway import StripeGateway, get_payment_gateway
from app.utils.token import get_current_user

router = APIRouter()


@router.post("/create-intent", response_model=CreateIntentResponse)
def create_payment_intent(
    payload: CreateIntentRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    current_user: User = Depends(get_current_user),
):
    """Create a Stripe PaymentIntent for one of the user's orders"""
    try:
        result = reconciler.create_payment_intent(
            current_user,
            payload.order_id,
            payload.amount,
            payload.description,
        )
    except PaymentError as e:
        raise http_error(e)

    return CreateIntentResponse(
        success=True,
        client_secret=result.client_secret,
        payment_intent_id=result.intent_id,
        status=result.status,
    )


@router.post("/confirm", response_model=ConfirmPaymentResponse)
def confirm_payment(
    payload: ConfirmPaymentRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    current_user: User = Depends(get_current_user),
):
    try:
        return reconciler.confirm_payment(
            current_user,
            payload.order_id,
            payload.payment_intent_id,
            payload.payment_method_id,
        )
    except PaymentError as e:
        raise http_error(e)


@router.get("/status/{payment_intent_id}", response_model=PaymentStatusResponse)
def get_payment_status(
    payment_intent_id: str,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    current_user: User = Depends(get_current_user),
):
    try:
        snapshot = reconciler.get_payment_status(current_user, payment_intent_id)
    except PaymentError as e:
        raise http_error(e)

    return PaymentStatusResponse(**snapshot.model_dump(include={
        "id", "status", "amount", "currency", "client_secret", "metadata",
    }))


@router.post("/refund", response_model=RefundResponse)
def refund_payment(
    payload: RefundRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    current_user: User = Depends(get_current_user),
):
    try:
        return reconciler.refund_payment(
            current_user,
            payload.order_id,
            payload.payment_intent_id,
            payload.amount,
        )
    except PaymentError as e:
        raise http_error(e)


@router.get("/check-status", response_model=GatewayStatusResponse)
def check_gateway_status(gateway: StripeGateway = Depends(get_payment_gateway)):
    available = gateway.is_available()
    return GatewayStatusResponse(
        available=available,
        message=(
            "Stripe is ready to process payments"
            if available
            else "Stripe is not configured"
        ),
    )
