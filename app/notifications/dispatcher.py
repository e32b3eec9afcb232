import logging

from app.config import settings
from app.models.notifications import RecipientRole
from app.notifications.channels import Channel
from app.notifications.email_handlers import send_admin_email, send_user_email
from app.notifications.events import OrderEvent
from app.notifications.rules import EMAIL_TEMPLATES, NOTIFICATION_RULES, STATUS_LABELS
from app.services.notification_service import create_notification

logger = logging.getLogger(__name__)


def dispatch_order_event(
    *,
    event: OrderEvent,
    order,
    user,
    session,
    extra: dict | None = None,
    notify_user: bool = True,
    notify_admin: bool = True,
):
    """
    Central notification dispatcher.

    Handles:
    - user email
    - admin email
    - admin in-app notifications

    Fire and forget: failures are logged and never reach the caller.
    """

    rules = NOTIFICATION_RULES.get(event, {})
    templates = EMAIL_TEMPLATES.get(event, {})
    extra = extra or {}

    status_label = STATUS_LABELS.get(order.status, order.status)
    context = {
        "order": order,
        "store_name": settings.STORE_NAME,
        "frontend_url": settings.FRONTEND_URL,
        "customer_name": (user.name if user and user.name else "Customer"),
        "status_label": status_label,
        **extra,
    }
    subject_fields = {
        "order_number": order.order_number,
        "status_label": status_label,
    }

    # -------------------------
    # ADMIN IN-APP NOTIFICATION
    # -------------------------
    if notify_admin and rules.get(Channel.INAPP_ADMIN):
        try:
            create_notification(
                session=session,
                recipient_role=RecipientRole.admin,
                user_id=None,
                trigger_source=event.value,
                related_id=order.id,
                title=extra.get("admin_title", "Order Update"),
                content=extra.get(
                    "admin_content",
                    f"Order #{order.order_number}: {event.value}",
                ),
            )
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(f"In-app notification failed for order {order.id}")

    # -------------------------
    # USER EMAIL
    # -------------------------
    if notify_user and rules.get(Channel.EMAIL_USER) and user:
        try:
            send_user_email(
                template=templates["user_template"],
                subject=templates["user_subject"].format(**subject_fields),
                user=user,
                **context,
            )
        except Exception:
            logger.exception(f"User email failed for order {order.id}")

    # -------------------------
    # ADMIN EMAIL
    # -------------------------
    if notify_admin and rules.get(Channel.EMAIL_ADMIN):
        try:
            send_admin_email(
                template=templates["admin_template"],
                subject=templates["admin_subject"].format(**subject_fields),
                **context,
            )
        except Exception:
            logger.exception(f"Admin email failed for order {order.id}")
