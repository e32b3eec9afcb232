from app.notifications.events import OrderEvent
from app.notifications.channels import Channel


NOTIFICATION_RULES = {

    OrderEvent.ORDER_PLACED: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
    },

    OrderEvent.PAYMENT_SUCCESS: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    # one admin record per failure, the customer retries from checkout
    OrderEvent.PAYMENT_FAILED: {
        Channel.INAPP_ADMIN: True,
    },

    OrderEvent.REFUND_PROCESSED: {
        Channel.EMAIL_USER: True,
        Channel.INAPP_ADMIN: True,
        Channel.EMAIL_ADMIN: True,
    },

    OrderEvent.STATUS_UPDATED: {
        Channel.EMAIL_USER: True,
    },

}


EMAIL_TEMPLATES = {

    OrderEvent.ORDER_PLACED: {
        "user_template": "user_emails/order_placed.html",
        "user_subject": "Order #{order_number} received",
    },

    OrderEvent.PAYMENT_SUCCESS: {
        "user_template": "user_emails/payment_success.html",
        "user_subject": "Payment confirmed - Order #{order_number}",
        "admin_template": "admin_emails/payment_received.html",
        "admin_subject": "Payment received #{order_number}",
    },

    OrderEvent.REFUND_PROCESSED: {
        "user_template": "user_emails/refund_processed.html",
        "user_subject": "Refund processed - Order #{order_number}",
        "admin_template": "admin_emails/refund_processed.html",
        "admin_subject": "Refund processed #{order_number}",
    },

    OrderEvent.STATUS_UPDATED: {
        "user_template": "user_emails/status_updated.html",
        "user_subject": "Order #{order_number}: {status_label}",
    },

}


STATUS_LABELS = {
    "pending": "awaiting payment",
    "confirmed": "confirmed",
    "preparing": "being prepared",
    "ready": "ready",
    "shipped": "on its way",
    "delivered": "delivered",
    "cancelled": "cancelled",
}
