from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.dependencies.payments import get_reconciler
from app.schemas.payment_schemas import WebhookAck
from app.services.reconciler import PaymentReconciler
from app.services.stripe_gateway import StripeGateway, get_payment_gateway
from app.services.webhook_service import process_webhook

router = APIRouter()


@router.post("/stripe", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """
    Stripe delivery endpoint. Must stay reachable from the internet.

    Unknown or uncorrelated events are acknowledged so Stripe stops retrying;
    only a bad signature is answered with 400.
    """
    raw_body = await request.body()

    ack = await run_in_threadpool(
        process_webhook,
        raw_body=raw_body,
        signature=stripe_signature,
        secret=settings.STRIPE_WEBHOOK_SECRET,
        reconciler=reconciler,
        gateway=gateway,
    )

    if not ack.success:
        return JSONResponse(
            status_code=400,
            content=ack.model_dump(by_alias=True, exclude_none=True),
        )
    return ack
