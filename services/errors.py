class BookingPaymentError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class NotFound(BookingPaymentError):
    status_code = 404
    code = "not_found"


class Unauthorized(BookingPaymentError):
    status_code = 403
    code = "unauthorized"


class InvalidState(BookingPaymentError):
    code = "invalid_state"


class PaymentNotReady(BookingPaymentError):
    code = "payment_not_ready"


class ProviderNotOnboarded(BookingPaymentError):
    code = "provider_not_onboarded"


class TransferFailed(BookingPaymentError):
    status_code = 500
    code = "transfer_failed"


class RefundFailed(BookingPaymentError):
    status_code = 500
    code = "refund_failed"


class GatewayError(Exception):
    """
    Raised by the payment processor boundary; carries the processor's message.

    ``rejected`` is set when the processor refused the request outright, so
    nothing moved and the next attempt needs a fresh idempotency key.
    """

    def __init__(self, message: str, rejected: bool = False):
        super().__init__(message)
        self.rejected = rejected
