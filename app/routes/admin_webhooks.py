from typing import List

from fastapi import APIRouter, Depends

from app.dependencies.admin import require_admin
from app.exceptions import PaymentError, http_error
from app.models.user import User
from app.schemas.payment_schemas import WebhookEndpointCreate, WebhookEndpointInfo
from app.services.stripe_gateway import StripeGateway, get_payment_gateway

router = APIRouter()


@router.get("/endpoints", response_model=List[WebhookEndpointInfo], response_model_exclude_none=True)
def list_endpoints(
    gateway: StripeGateway = Depends(get_payment_gateway),
    _: User = Depends(require_admin),
):
    try:
        return gateway.list_webhook_endpoints()
    except PaymentError as e:
        raise http_error(e)


@router.post("/endpoints", response_model=WebhookEndpointInfo, status_code=201)
def create_endpoint(
    payload: WebhookEndpointCreate,
    gateway: StripeGateway = Depends(get_payment_gateway),
    _: User = Depends(require_admin),
):
    """The signing secret is only returned here, store it as STRIPE_WEBHOOK_SECRET"""
    try:
        return gateway.create_webhook_endpoint(payload.url)
    except PaymentError as e:
        raise http_error(e)


@router.delete("/endpoints/{endpoint_id}")
def delete_endpoint(
    endpoint_id: str,
    gateway: StripeGateway = Depends(get_payment_gateway),
    _: User = Depends(require_admin),
):
    try:
        gateway.delete_webhook_endpoint(endpoint_id)
    except PaymentError as e:
        raise http_error(e)

    return {"success": True, "message": "Endpoint deleted"}
