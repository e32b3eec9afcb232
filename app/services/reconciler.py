# app/services/reconciler.py
"""
Order/payment reconciliation.

Every path that moves money-related state (synchronous confirm/refund,
Stripe webhooks, admin polling) goes through ``PaymentReconciler`` so that
the order row, the transaction ledger and the order timeline change together:

* the order row is read with ``SELECT ... FOR UPDATE`` and all writes for one
  event are committed in a single transaction;
* transitions are checked against ``app.constants.order_status``; replays and
  out-of-order events become no-ops that still report success;
* notifications go out only after a commit that changed something.
"""

import logging
from typing import Callable, Optional

from sqlmodel import Session, select

from app.constants.order_status import (
    CANCELLABLE_STATUSES,
    INTENT_STATUS_TO_ORDER_STATUS,
    can_transition,
    can_transition_payment,
)
from app.exceptions import InvalidTransition, OrderNotFound, PaymentValidationError
from app.models.base import utc_now
from app.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.models.transaction import Transaction, TransactionStatus
from app.models.user import User
from app.notifications import OrderEvent, dispatch_order_event
from app.schemas.payment_schemas import (
    ConfirmPaymentResponse,
    IntentResult,
    IntentSnapshot,
    RefundResponse,
    WebhookAck,
)
from app.services.order_event_service import log_order_event
from app.services.stripe_gateway import StripeGateway
from app.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "stripe"


def _positive_cents(value, field: str = "Amount") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise PaymentValidationError(f"{field} must be a positive whole number of cents")
    return value


class PaymentReconciler:

    def __init__(
        self,
        session: Session,
        gateway: StripeGateway,
        ledger: Optional[TransactionLedger] = None,
        notifier: Callable = dispatch_order_event,
    ):
        self.session = session
        self.gateway = gateway
        self.ledger = ledger or TransactionLedger(session)
        self.notifier = notifier

    # =====================================================
    # Loading
    # =====================================================

    def _lock_order(self, order_id: int) -> Optional[Order]:
        return self.session.exec(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def _owned_order(self, user: User, order_id: int, lock: bool = False) -> Order:
        order = self._lock_order(order_id) if lock else self.session.get(Order, order_id)

        # same answer for "missing" and "not yours"
        if not order or order.user_id != user.id:
            raise OrderNotFound()
        return order

    def _resolve_webhook_order(self, intent: IntentSnapshot):
        order_id = intent.order_id
        if not order_id:
            logger.warning(f"No orderId in payment intent {intent.id} metadata")
            return None, WebhookAck(
                success=True,
                action="ignored",
                message="No orderId in payment intent metadata",
            )

        order = self._lock_order(order_id)
        if not order:
            logger.warning(f"Order {order_id} from payment intent {intent.id} not found")
            return None, WebhookAck(
                success=True,
                action="ignored",
                message=f"Order {order_id} not found",
            )

        return order, None

    # =====================================================
    # Synchronous, user initiated
    # =====================================================

    def create_payment_intent(
        self,
        user: User,
        order_id: int,
        amount: int,
        description: Optional[str] = None,
    ) -> IntentResult:
        _positive_cents(amount)
        order = self._owned_order(user, order_id)

        if (
            order.status == OrderStatus.cancelled.value
            or order.payment_status in (PaymentStatus.completed.value, PaymentStatus.refunded.value)
        ):
            raise PaymentValidationError("Order is not awaiting payment")

        if amount != order.amount_due:
            raise PaymentValidationError("Amount does not match the order total")

        result = self.gateway.create_intent(
            order.id,
            amount,
            description=description or f"Order #{order.order_number}",
            metadata={
                "userId": str(user.id),
                "orderNumber": order.order_number,
            },
        )

        order.payment_intent_id = result.intent_id
        order.updated_at = utc_now()
        self.session.add(order)
        log_order_event(
            self.session,
            order.id,
            "payment_intent_created",
            "Payment started",
            created_by=f"user:{user.id}",
            meta={"payment_intent_id": result.intent_id, "amount": amount},
        )
        self.session.commit()

        logger.info(f"Payment intent {result.intent_id} created for order {order.id}")
        return result

    def confirm_payment(
        self,
        user: User,
        order_id: int,
        intent_id: str,
        payment_method_id: Optional[str] = None,
    ) -> ConfirmPaymentResponse:
        order = self._owned_order(user, order_id)

        if order.payment_status == PaymentStatus.completed.value:
            return ConfirmPaymentResponse(
                success=True,
                message="Payment already processed",
                order_id=order.id,
                status="succeeded",
            )

        result = self.gateway.confirm(intent_id, payment_method_id)

        if not result.success:
            # order stays pending, the customer can try again
            logger.info(f"Payment for order {order.id} not completed: {result.status}")
            return ConfirmPaymentResponse(
                success=False,
                message=result.message or "The payment could not be completed",
                order_id=order.id,
                status=result.status,
            )

        intent = result.intent
        if intent is None or intent.order_id != order.id:
            raise PaymentValidationError("Payment does not belong to this order")

        order = self._lock_order(order.id)
        self._settle_success(
            order,
            intent_id=intent_id,
            transaction_id=result.transaction_id or intent_id,
            amount=result.amount or order.amount_due,
            currency=intent.currency,
            created_by=f"user:{user.id}",
        )

        return ConfirmPaymentResponse(
            success=True,
            message="Payment completed successfully",
            order_id=order.id,
            status=result.status,
        )

    def get_payment_status(self, user: User, intent_id: str) -> IntentSnapshot:
        local_order = self._order_for_intent(intent_id)
        if local_order and local_order.user_id != user.id:
            raise OrderNotFound()

        snapshot = self.gateway.get_status(intent_id)

        order_id = snapshot.order_id or (local_order.id if local_order else None)
        order = self.session.get(Order, order_id) if order_id else None
        if not order or order.user_id != user.id:
            raise OrderNotFound()

        return snapshot

    def refund_payment(
        self,
        user: User,
        order_id: int,
        intent_id: str,
        amount: Optional[int] = None,
    ) -> RefundResponse:
        if amount is not None:
            _positive_cents(amount, "Refund amount")

        order = self._owned_order(user, order_id, lock=True)

        transaction = self.ledger.find_by_intent(intent_id)
        if transaction is None or transaction.order_id != order.id:
            raise PaymentValidationError("No payment found for this order")

        if transaction.status == TransactionStatus.refunded.value:
            self.session.rollback()
            return RefundResponse(
                success=True,
                message="Payment already refunded",
                refund_id=transaction.refund_id,
            )

        if transaction.status != TransactionStatus.completed.value:
            raise PaymentValidationError("Only completed payments can be refunded")

        if amount is not None and amount > transaction.amount:
            raise PaymentValidationError("Refund amount exceeds the amount paid")

        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(f"Orders that are {order.status} can no longer be refunded")

        result = self.gateway.refund(intent_id, amount)

        if not result.success:
            self.session.rollback()
            return RefundResponse(
                success=False,
                message=result.message or "The refund could not be processed",
            )

        self._settle_refund(
            order,
            intent_id=intent_id,
            refund_id=result.refund_id,
            amount=result.amount or amount or transaction.amount,
            created_by=f"user:{user.id}",
        )

        return RefundResponse(
            success=True,
            message="Refund processed successfully",
            refund_id=result.refund_id,
        )

    # =====================================================
    # Asynchronous, webhook driven
    # =====================================================

    def handle_payment_succeeded(self, intent: IntentSnapshot) -> WebhookAck:
        order, ack = self._resolve_webhook_order(intent)
        if ack:
            return ack

        changed = self._settle_success(
            order,
            intent_id=intent.id,
            transaction_id=intent.latest_charge or intent.id,
            amount=intent.amount,
            currency=intent.currency,
            created_by=SYSTEM_ACTOR,
        )

        return WebhookAck(
            success=True,
            action="payment_succeeded",
            order_id=order.id,
            message=None if changed else "Already processed",
        )

    def handle_payment_failed(self, intent: IntentSnapshot) -> WebhookAck:
        order, ack = self._resolve_webhook_order(intent)
        if ack:
            return ack

        changed = self._settle_failure(
            order,
            intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            error_message=intent.last_error,
        )

        return WebhookAck(
            success=True,
            action="payment_failed",
            order_id=order.id,
            message=None if changed else "Already processed",
        )

    def handle_charge_refunded(self, charge: dict) -> WebhookAck:
        intent_id = charge.get("payment_intent")
        if isinstance(intent_id, dict):
            intent_id = intent_id.get("id")

        if not intent_id:
            logger.warning(f"No payment_intent in charge {charge.get('id')}")
            return WebhookAck(
                success=True,
                action="ignored",
                message="No payment_intent in charge",
            )

        try:
            intent = self.gateway.get_status(intent_id)
        except PaymentValidationError:
            logger.warning(f"Charge {charge.get('id')} refers to unknown intent {intent_id}")
            return WebhookAck(
                success=True,
                action="ignored",
                message="Payment intent not found",
            )

        order, ack = self._resolve_webhook_order(intent)
        if ack:
            return ack

        refunds = (charge.get("refunds") or {}).get("data") or []
        changed = self._settle_refund(
            order,
            intent_id=intent_id,
            refund_id=refunds[0].get("id") if refunds else None,
            amount=charge.get("amount_refunded") or intent.amount,
            created_by=SYSTEM_ACTOR,
        )

        return WebhookAck(
            success=True,
            action="refund_processed",
            order_id=order.id,
            message=None if changed else "Already processed",
        )

    def handle_amount_capturable_updated(self, intent: IntentSnapshot) -> WebhookAck:
        order, ack = self._resolve_webhook_order(intent)
        if ack:
            return ack

        changed = self._nudge_from_intent(order, intent, created_by=SYSTEM_ACTOR)

        return WebhookAck(
            success=True,
            action="payment_intent_updated",
            order_id=order.id,
            message=None if changed else f"No change for status {intent.status}",
        )

    # =====================================================
    # Admin
    # =====================================================

    def reconcile_from_provider(
        self,
        order_id: int,
        intent_id: Optional[str] = None,
        actor: str = "admin",
    ) -> WebhookAck:
        """Pull the intent from Stripe and apply it, for missed webhooks."""

        order = self.session.get(Order, order_id)
        if not order:
            raise OrderNotFound()

        intent_id = intent_id or order.payment_intent_id
        if not intent_id:
            transaction = self.ledger.find_by_order(order.id)
            intent_id = transaction.stripe_payment_intent_id if transaction else None
        if not intent_id:
            raise PaymentValidationError("Order has no payment to reconcile")

        intent = self.gateway.get_status(intent_id)
        untagged_but_recorded = intent.order_id is None and intent.id == order.payment_intent_id
        if intent.order_id != order.id and not untagged_but_recorded:
            raise PaymentValidationError("Payment does not belong to this order")

        order = self._lock_order(order.id)

        if intent.status == "requires_payment_method" and intent.last_error:
            changed = self._settle_failure(
                order,
                intent_id=intent.id,
                amount=intent.amount,
                currency=intent.currency,
                error_message=intent.last_error,
                created_by=actor,
            )
        else:
            changed = self._nudge_from_intent(order, intent, created_by=actor)

        return WebhookAck(
            success=True,
            action="reconciled" if changed else "unchanged",
            order_id=order.id,
            message=f"Payment status: {intent.status}",
        )

    def update_status(self, order_id: int, target: OrderStatus, actor: str) -> Order:
        order = self._lock_order(order_id)
        if not order:
            raise OrderNotFound()

        target = OrderStatus(target).value
        if order.status == target:
            self.session.rollback()
            return order

        if not can_transition(order.status, target):
            self.session.rollback()
            raise InvalidTransition(f"Cannot move order from {order.status} to {target}")

        previous = order.status
        order.status = target
        order.updated_at = utc_now()
        self.session.add(order)
        log_order_event(
            self.session,
            order.id,
            "status_changed",
            f"Status changed to {target}",
            created_by=actor,
            meta={"from": previous, "to": target},
        )
        self.session.commit()
        self.session.refresh(order)

        logger.info(f"Order {order.id} moved from {previous} to {target} by {actor}")
        self._notify(OrderEvent.STATUS_UPDATED, order)
        return order

    # =====================================================
    # State changes, one unit of work each
    # =====================================================

    def _settle_success(
        self,
        order: Order,
        *,
        intent_id: str,
        transaction_id: str,
        amount: int,
        currency: str,
        created_by: str,
    ) -> bool:
        if not can_transition_payment(order.payment_status, PaymentStatus.completed.value):
            # completed or refunded already, a replay or a late event
            self.session.rollback()
            logger.info(f"Order {order.id} payment already {order.payment_status}, skipping")
            return False

        if can_transition(order.status, OrderStatus.confirmed.value):
            order.status = OrderStatus.confirmed.value
        elif order.status == OrderStatus.cancelled.value:
            logger.warning(f"Payment {intent_id} succeeded for cancelled order {order.id}")

        order.payment_status = PaymentStatus.completed.value
        order.payment_method = PaymentMethod.stripe.value
        order.payment_intent_id = intent_id
        order.updated_at = utc_now()
        self.session.add(order)

        transaction = (
            self.ledger.find_by_provider_id(transaction_id)
            or self.ledger.find_by_intent(intent_id)
        )
        if transaction is None:
            active = self.ledger.find_active_by_order(order.id)
            if active and active.stripe_payment_intent_id in (None, intent_id):
                transaction = active

        if transaction:
            self.ledger.update_status(transaction, TransactionStatus.completed.value)
            self.ledger.set_provider_id(transaction, transaction_id, intent_id)
            transaction.amount = amount
        else:
            transaction = self.ledger.insert(
                Transaction(
                    order_id=order.id,
                    user_id=order.user_id,
                    amount=amount,
                    currency=currency,
                    status=TransactionStatus.completed.value,
                    payment_method=PaymentMethod.stripe.value,
                    transaction_id=transaction_id,
                    stripe_payment_intent_id=intent_id,
                )
            )

        log_order_event(
            self.session,
            order.id,
            "payment_succeeded",
            "Payment received",
            created_by=created_by,
            meta={
                "payment_intent_id": intent_id,
                "transaction_id": transaction_id,
                "amount": amount,
            },
        )
        self.session.commit()

        logger.info(f"Payment succeeded for order {order.id} ({intent_id})")
        self._notify(
            OrderEvent.PAYMENT_SUCCESS,
            order,
            amount=amount,
            transaction_id=transaction_id,
            admin_title="Payment Received",
            admin_content=f"Payment for order #{order.order_number}",
        )
        return True

    def _settle_failure(
        self,
        order: Order,
        *,
        intent_id: str,
        amount: int,
        currency: str,
        error_message: Optional[str],
        created_by: str = SYSTEM_ACTOR,
    ) -> bool:
        if not can_transition_payment(order.payment_status, PaymentStatus.failed.value):
            if order.payment_status != PaymentStatus.failed.value:
                # a newer attempt already settled the order
                self.session.rollback()
                logger.info(f"Ignoring failure of {intent_id}, order {order.id} is {order.payment_status}")
                return False

        transaction = self.ledger.find_by_intent(intent_id)
        if transaction and transaction.status == TransactionStatus.failed.value:
            self.session.rollback()
            return False

        if transaction and transaction.status in (
            TransactionStatus.completed.value,
            TransactionStatus.refunded.value,
        ):
            self.session.rollback()
            return False

        error_message = error_message or "Payment failed"

        if transaction:
            self.ledger.update_status(transaction, TransactionStatus.failed.value, error_message)
        else:
            self.ledger.insert(
                Transaction(
                    order_id=order.id,
                    user_id=order.user_id,
                    amount=amount or order.amount_due,
                    currency=currency,
                    status=TransactionStatus.failed.value,
                    payment_method=PaymentMethod.stripe.value,
                    stripe_payment_intent_id=intent_id,
                    error_message=error_message,
                )
            )

        # the order itself stays pending awaiting a new attempt
        order.payment_status = PaymentStatus.failed.value
        order.updated_at = utc_now()
        self.session.add(order)
        log_order_event(
            self.session,
            order.id,
            "payment_failed",
            "Payment failed",
            created_by=created_by,
            meta={"payment_intent_id": intent_id, "error": error_message},
        )
        self.session.commit()

        logger.info(f"Payment failed for order {order.id} ({intent_id})")
        self._notify(
            OrderEvent.PAYMENT_FAILED,
            order,
            notify_user=False,
            admin_title="Payment Failed",
            admin_content=f"Payment for order #{order.order_number} failed: {error_message}",
        )
        return True

    def _settle_refund(
        self,
        order: Order,
        *,
        intent_id: str,
        refund_id: Optional[str],
        amount: int,
        created_by: str,
    ) -> bool:
        if order.payment_status == PaymentStatus.refunded.value:
            self.session.rollback()
            return False

        if can_transition(order.status, OrderStatus.cancelled.value):
            order.status = OrderStatus.cancelled.value
        elif order.status != OrderStatus.cancelled.value:
            logger.warning(f"Refund for order {order.id} which is already {order.status}")

        order.payment_status = PaymentStatus.refunded.value
        order.updated_at = utc_now()
        self.session.add(order)

        transaction = self.ledger.find_by_intent(intent_id) or self.ledger.find_active_by_order(order.id)
        if transaction:
            self.ledger.update_status(transaction, TransactionStatus.refunded.value)
            transaction.refund_id = refund_id
            transaction.refunded_amount = amount
        else:
            self.ledger.insert(
                Transaction(
                    order_id=order.id,
                    user_id=order.user_id,
                    amount=amount,
                    currency=self.gateway.currency,
                    status=TransactionStatus.refunded.value,
                    payment_method=PaymentMethod.stripe.value,
                    stripe_payment_intent_id=intent_id,
                    refund_id=refund_id,
                    refunded_amount=amount,
                )
            )

        log_order_event(
            self.session,
            order.id,
            "payment_refunded",
            "Payment refunded",
            created_by=created_by,
            meta={"payment_intent_id": intent_id, "refund_id": refund_id, "amount": amount},
        )
        self.session.commit()

        logger.info(f"Refund processed for order {order.id} ({intent_id})")
        self._notify(
            OrderEvent.REFUND_PROCESSED,
            order,
            amount=amount,
            admin_title="Refund Processed",
            admin_content=f"Order #{order.order_number} refunded",
        )
        return True

    def _nudge_from_intent(self, order: Order, intent: IntentSnapshot, created_by: str) -> bool:
        target = INTENT_STATUS_TO_ORDER_STATUS.get(intent.status)

        if target == OrderStatus.confirmed.value:
            return self._settle_success(
                order,
                intent_id=intent.id,
                transaction_id=intent.latest_charge or intent.id,
                amount=intent.amount,
                currency=intent.currency,
                created_by=created_by,
            )

        # "pending" never moves an order backwards
        self.session.rollback()
        return False

    # =====================================================
    # Helpers
    # =====================================================

    def _order_for_intent(self, intent_id: str) -> Optional[Order]:
        order = self.session.exec(
            select(Order).where(Order.payment_intent_id == intent_id)
        ).first()
        if order:
            return order

        transaction = self.ledger.find_by_intent(intent_id)
        return self.session.get(Order, transaction.order_id) if transaction else None

    def _notify(self, event: OrderEvent, order: Order, notify_user: bool = True, **extra):
        try:
            user = self.session.get(User, order.user_id)
            self.notifier(
                event=event,
                order=order,
                user=user,
                session=self.session,
                extra=extra,
                notify_user=notify_user,
            )
        except Exception:
            logger.exception(f"Notification {event.value} failed for order {order.id}")
