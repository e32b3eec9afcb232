# app/services/transaction_ledger.py
from typing import List, Optional

from sqlmodel import Session, select

from app.models.base import utc_now
from app.models.transaction import INACTIVE_TRANSACTION_STATUSES, Transaction


class TransactionLedger:
    """Data access for payment attempts.

    Never commits; the reconciler decides the unit of work.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_by_order(self, order_id: int) -> Optional[Transaction]:
        """Most recent attempt for the order, whatever its status."""
        return self.session.exec(
            select(Transaction)
            .where(Transaction.order_id == order_id)
            .order_by(Transaction.id.desc())
        ).first()

    def find_active_by_order(self, order_id: int) -> Optional[Transaction]:
        return self.session.exec(
            select(Transaction)
            .where(Transaction.order_id == order_id)
            .where(Transaction.status.not_in(INACTIVE_TRANSACTION_STATUSES))
            .order_by(Transaction.id.desc())
        ).first()

    def find_by_intent(self, intent_id: str) -> Optional[Transaction]:
        return self.session.exec(
            select(Transaction)
            .where(Transaction.stripe_payment_intent_id == intent_id)
            .order_by(Transaction.id.desc())
        ).first()

    def find_by_provider_id(self, transaction_id: str) -> Optional[Transaction]:
        return self.session.exec(
            select(Transaction).where(Transaction.transaction_id == transaction_id)
        ).first()

    def list_for_order(self, order_id: int) -> List[Transaction]:
        return list(
            self.session.exec(
                select(Transaction)
                .where(Transaction.order_id == order_id)
                .order_by(Transaction.id)
            ).all()
        )

    def insert(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def update_status(
        self,
        transaction: Transaction,
        status: str,
        error_message: Optional[str] = None,
    ) -> Transaction:
        transaction.status = status
        if error_message is not None:
            transaction.error_message = error_message
        transaction.updated_at = utc_now()
        self.session.add(transaction)
        return transaction

    def set_provider_id(
        self,
        transaction: Transaction,
        transaction_id: str,
        intent_id: Optional[str] = None,
    ) -> Transaction:
        transaction.transaction_id = transaction_id
        if intent_id:
            transaction.stripe_payment_intent_id = intent_id
        transaction.updated_at = utc_now()
        self.session.add(transaction)
        return transaction
