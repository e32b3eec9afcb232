from fastapi import Depends
from sqlmodel import Session

from app.database import get_session
from app.services.reconciler import PaymentReconciler
from app.services.stripe_gateway import StripeGateway, get_payment_gateway


def get_reconciler(
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> PaymentReconciler:
    return PaymentReconciler(session=session, gateway=gateway)
