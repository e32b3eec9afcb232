from fastapi import HTTPException


class PaymentError(Exception):
    """Base class for business-rule failures raised by the payment services.

    ``message`` is always safe to show to the customer.
    """

    message = "Payment could not be processed"

    def __init__(self, message: str | None = None):
        if message:
            self.message = message
        super().__init__(self.message)


class PaymentValidationError(PaymentError):
    message = "Invalid payment request"


class OrderNotFound(PaymentError):
    # also raised when the order belongs to somebody else
    message = "Order not found"


class GatewayUnavailable(PaymentError):
    message = "Payment service unavailable"


class InvalidTransition(PaymentError):
    message = "Order status change not allowed"


HTTP_STATUS_CODES = {
    PaymentValidationError: 400,
    OrderNotFound: 404,
    InvalidTransition: 409,
    GatewayUnavailable: 503,
}


def http_error(exc: PaymentError) -> HTTPException:
    status_code = HTTP_STATUS_CODES.get(type(exc), 400)
    return HTTPException(status_code=status_code, detail=exc.message)
