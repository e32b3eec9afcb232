ALLOWED_TRANSITIONS = {
    "pending": ["confirmed", "cancelled"],
    "confirmed": ["preparing", "cancelled"],
    "preparing": ["ready", "cancelled"],
    "ready": ["shipped"],
    "shipped": ["delivered"],
    "delivered": [],
    "cancelled": []
}

PAYMENT_TRANSITIONS = {
    "pending": ["completed", "failed"],
    "failed": ["completed"],
    "completed": ["refunded"],
    "refunded": []
}

# Stripe PaymentIntent.status -> order status
INTENT_STATUS_TO_ORDER_STATUS = {
    "succeeded": "confirmed",
    "processing": "pending",
    "requires_payment_method": "pending",
    "requires_action": "pending",
}

CANCELLABLE_STATUSES = ("pending", "confirmed", "preparing")


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def can_transition_payment(current: str, target: str) -> bool:
    return target in PAYMENT_TRANSITIONS.get(current, [])
