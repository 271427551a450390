import logging
from dataclasses import dataclass

import stripe

from services.errors import GatewayError

logger = logging.getLogger(__name__)

# Stripe refused these before doing anything; no money moved.
REJECTED_ERRORS = (
    stripe.InvalidRequestError,
    stripe.CardError,
    stripe.AuthenticationError,
    stripe.PermissionError,
)


@dataclass(frozen=True)
class TransferResult:
    id: str
    amount: int
    currency: str
    destination_account: str


@dataclass(frozen=True)
class RefundResult:
    id: str
    amount: int
    status: str


@dataclass(frozen=True)
class VoidResult:
    id: str
    status: str


def _stripe_message(exc: Exception) -> str:
    return getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__


def _gateway_error(exc: Exception) -> GatewayError:
    return GatewayError(_stripe_message(exc), rejected=isinstance(exc, REJECTED_ERRORS))


def idempotency_key(booking_id, operation: str, attempt: int = 0) -> str:
    """
    Stripe replays the stored response for a repeated key, errors included,
    so each attempt after a rejected one gets its own key.
    """
    key = f"booking-{booking_id}-{operation}"
    return f"{key}-{attempt}" if attempt else key


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK. Responses are mapped into the small
    result types above right here so nothing else depends on Stripe's shapes.
    """

    def __init__(self, api_key: str | None, currency: str = "gbp"):
        self.api_key = api_key
        self.currency = (currency or "gbp").lower()

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(api_key=config.get("STRIPE_SECRET_KEY"), currency=config.get("PAYMENT_CURRENCY", "gbp"))

    def _require_key(self):
        if not self.api_key:
            raise GatewayError("Stripe secret key not configured (STRIPE_SECRET_KEY)", rejected=True)

    def create_transfer(self, amount: int, destination_account: str, booking_id, description: str | None = None,
                        attempt: int = 0) -> TransferResult:
        self._require_key()
        try:
            transfer = stripe.Transfer.create(
                amount=int(amount),
                currency=self.currency,
                destination=destination_account,
                transfer_group=f"booking_{booking_id}",
                description=description or f"Booking {booking_id} completion payment",
                metadata={"booking_id": str(booking_id)},
                idempotency_key=idempotency_key(booking_id, "payout", attempt),
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe transfer failed for booking %s: %s", booking_id, exc)
            raise _gateway_error(exc) from exc

        return TransferResult(
            id=transfer["id"],
            amount=int(transfer["amount"]),
            currency=transfer["currency"],
            destination_account=transfer["destination"],
        )

    def create_refund(self, payment_intent_id: str, booking_id, reason: str = "requested_by_customer",
                      attempt: int = 0) -> RefundResult:
        self._require_key()
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                reason=reason,
                metadata={"booking_id": str(booking_id)},
                idempotency_key=idempotency_key(booking_id, "refund", attempt),
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe refund failed for booking %s: %s", booking_id, exc)
            raise _gateway_error(exc) from exc

        return RefundResult(id=refund["id"], amount=int(refund["amount"]), status=refund["status"])

    def cancel_payment_intent(self, payment_intent_id: str, booking_id) -> VoidResult:
        """Release an authorization (or an unpaid intent) so it can never be captured."""
        self._require_key()
        try:
            intent = stripe.PaymentIntent.cancel(
                payment_intent_id,
                cancellation_reason="requested_by_customer",
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe could not cancel payment intent for booking %s: %s", booking_id, exc)
            raise _gateway_error(exc) from exc

        return VoidResult(id=intent["id"], status=intent["status"])

    def construct_event(self, payload: bytes, signature: str | None, secret: str):
        return stripe.Webhook.construct_event(payload, signature, secret)
