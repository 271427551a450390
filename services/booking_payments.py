"""
Booking payment lifecycle.

Each operation takes the booking id and the calling ``Actor`` explicitly and
drives the booking through one transition. Anything that moves money goes
through the payment gateway first; the booking row is only touched after the
processor has answered, and always with a conditional update so two racing
requests cannot both apply the same transition.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking, ESCROW_PAYMENT_STATUSES, RELEASABLE_PAYMENT_STATUSES
from models.provider_payout import ProviderPayout
from services.commission import PayoutSplit, split_amount, format_amount
from services.errors import (
    GatewayError,
    InvalidState,
    NotFound,
    PaymentNotReady,
    ProviderNotOnboarded,
    RefundFailed,
    TransferFailed,
    Unauthorized,
)
from services.notifications import notify
from services.reconciliation import raise_alert
from utils.audit import log_event, count_events

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "declined", "cancelled"},
    "confirmed": {"in_progress", "completed", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "declined": set(),
    "cancelled": set(),
}

COMPLETABLE_STATUSES = ("confirmed", "in_progress")
CANCELLABLE_STATUSES = ("pending", "confirmed")
DEFAULT_DECLINE_REASON = "Provider declined booking"

# audit actions for attempts the processor refused; their count picks the next idempotency key
PAYOUT_REJECTED = "BOOKING_PAYOUT_REJECTED"
REFUND_REJECTED = "BOOKING_REFUND_REJECTED"


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


@dataclass(frozen=True)
class CompletionResult:
    booking_id: int
    transfer_id: str | None
    payout_amount: int | None
    commission_amount: int | None
    currency: str
    paid_at: datetime | None
    already_completed: bool = False

    def to_dict(self):
        out = asdict(self)
        out["paid_at"] = self.paid_at.isoformat() if self.paid_at else None
        out["success"] = True
        return out


@dataclass(frozen=True)
class DeclineResult:
    booking_id: int
    refund_id: str

    def to_dict(self):
        return {"success": True, "booking_id": self.booking_id, "refund_id": self.refund_id}


@dataclass(frozen=True)
class CancelResult:
    booking_id: int
    refund_id: str | None
    payment_voided: bool = False

    def to_dict(self):
        return {
            "success": True,
            "booking_id": self.booking_id,
            "refund_id": self.refund_id,
            "payment_voided": self.payment_voided,
        }


# ---------- helpers ----------

def _load_booking(booking_id) -> Booking:
    try:
        booking = db.session.get(Booking, int(booking_id))
    except (TypeError, ValueError):
        booking = None
    if not booking:
        raise NotFound("Booking not found")
    return booking


def _require_provider(booking: Booking, actor):
    if booking.provider_id != actor.user_id:
        raise Unauthorized("Unauthorized - not your booking")


def _require_party_or_admin(booking: Booking, actor):
    if not (actor.is_admin or booking.is_party(actor.user_id)):
        raise Unauthorized("Unauthorized - not your booking")


def _conditional_update(booking_id: int, values: dict, *criteria) -> int:
    values = dict(values, updated_at=datetime.utcnow())
    return (
        Booking.query
        .filter(Booking.id == booking_id, *criteria)
        .update(values, synchronize_session=False)
    )


def _payout_split(booking: Booking) -> PayoutSplit:
    if booking.amount_held_for_provider is not None and booking.platform_fee_held is not None:
        return PayoutSplit(booking.amount_held_for_provider, booking.platform_fee_held)
    percent = current_app.config.get("PLATFORM_COMMISSION_PERCENT", 10)
    return split_amount(booking.total_amount, percent)


def _stored_completion(booking: Booking) -> CompletionResult:
    return CompletionResult(
        booking_id=booking.id,
        transfer_id=booking.provider_transfer_id,
        payout_amount=booking.provider_payout_amount,
        commission_amount=booking.platform_fee_collected,
        currency=booking.currency,
        paid_at=booking.provider_paid_at,
        already_completed=True,
    )


def get_booking_for(booking_id, actor) -> Booking:
    booking = _load_booking(booking_id)
    _require_party_or_admin(booking, actor)
    return booking


# ---------- completion & payout ----------

def complete_booking(booking_id, actor, gateway) -> CompletionResult:
    """
    Pay the provider for a finished booking and mark it completed.

    Safe to call repeatedly: once ``provider_paid_at`` is set the stored
    result is returned and the gateway is not called again.
    """
    booking = _load_booking(booking_id)
    _require_party_or_admin(booking, actor)

    if booking.provider_paid_at is not None:
        logger.info("Booking %s already paid out by %s", booking.id, booking.provider_transfer_id)
        return _stored_completion(booking)

    if booking.status not in COMPLETABLE_STATUSES:
        raise InvalidState(f"Cannot complete booking in status {booking.status}")

    if booking.payment_status not in ESCROW_PAYMENT_STATUSES:
        raise PaymentNotReady(
            "Payment not available for transfer",
            details=f"Payment status is '{booking.payment_status}'",
        )

    provider = booking.provider
    if provider is None or not provider.stripe_account_id:
        raise ProviderNotOnboarded(
            "Provider payment account not configured",
            details="Provider must complete Stripe onboarding first",
        )

    split = _payout_split(booking)
    booking_id = booking.id
    customer_id = booking.customer_id
    provider_id = booking.provider_id
    currency = booking.currency
    service_title = booking.service_title
    provider_name = provider.display_name
    attempt = count_events(PAYOUT_REJECTED, "booking", booking_id)

    try:
        transfer = gateway.create_transfer(
            amount=split.payout_amount,
            destination_account=provider.stripe_account_id,
            booking_id=booking_id,
            description=f"Booking {booking_id} completion payment - {service_title}",
            attempt=attempt,
        )
    except GatewayError as exc:
        action = PAYOUT_REJECTED if exc.rejected else "BOOKING_PAYOUT_FAILED"
        log_event(action, user_id=actor.user_id, entity="booking", entity_id=booking_id,
                  metadata={"error": str(exc), "attempt": attempt})
        raise TransferFailed("Failed to transfer payment to provider", details=str(exc)) from exc

    logger.info("Transfer %s of %s to %s for booking %s", transfer.id, transfer.amount, transfer.destination_account, booking_id)

    paid_at = datetime.utcnow()
    today = date.today()
    try:
        updated = _conditional_update(
            booking_id,
            {
                "status": "completed",
                "payment_status": "payout_completed",
                "provider_payout_amount": split.payout_amount,
                "platform_fee_collected": split.commission_amount,
                "provider_transfer_id": transfer.id,
                "provider_paid_at": paid_at,
            },
            Booking.status.in_(COMPLETABLE_STATUSES),
            Booking.payment_status.in_(ESCROW_PAYMENT_STATUSES),
            Booking.provider_paid_at.is_(None),
        )
        if updated:
            db.session.add(ProviderPayout(
                booking_id=booking_id,
                provider_id=provider_id,
                transfer_id=transfer.id,
                amount=split.payout_amount,
                commission_amount=split.commission_amount,
                currency=currency.upper(),
                status="completed",
                expected_payout_date=today,
                actual_payout_date=today,
            ))
            log_event(
                "BOOKING_COMPLETED",
                user_id=actor.user_id,
                entity="booking",
                entity_id=booking_id,
                metadata={"transfer_id": transfer.id, "payout_amount": split.payout_amount, "commission_amount": split.commission_amount},
                commit=False,
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise_alert(
            booking_id,
            "transfer_unrecorded",
            external_id=transfer.id,
            amount=transfer.amount,
            detail=f"Booking update failed after successful transfer: {exc}",
        )
        updated = None

    if updated == 0:
        # Lost a race with another completion, or the booking changed underneath us
        current = db.session.get(Booking, booking_id)
        if current is not None and current.provider_paid_at is not None:
            if current.provider_transfer_id != transfer.id:
                raise_alert(
                    booking_id,
                    "duplicate_transfer",
                    external_id=transfer.id,
                    amount=transfer.amount,
                    detail=f"Booking already paid out by transfer {current.provider_transfer_id}",
                )
            return _stored_completion(current)

        raise_alert(
            booking_id,
            "transfer_unrecorded",
            external_id=transfer.id,
            amount=transfer.amount,
            detail="Booking left the completable state while the transfer was in flight "
                   f"(status={getattr(current, 'status', None)}, payment_status={getattr(current, 'payment_status', None)})",
        )

    notify(
        customer_id,
        "service_completed",
        "Service Completed",
        f"Your {service_title} with {provider_name} has been completed. Please leave a review.",
        {"booking_id": booking_id, "provider_id": provider_id},
    )
    notify(
        provider_id,
        "payout_released",
        "Payment Released",
        f"Payment of {format_amount(split.payout_amount, currency)} has been released for completed service.",
        {"booking_id": booking_id, "transfer_id": transfer.id, "amount": split.payout_amount},
    )

    return CompletionResult(
        booking_id=booking_id,
        transfer_id=transfer.id,
        payout_amount=split.payout_amount,
        commission_amount=split.commission_amount,
        currency=currency,
        paid_at=paid_at,
        already_completed=False,
    )


# ---------- refunds: decline & cancel ----------

def issue_refund(booking: Booking, gateway, operation: str, user_id=None):
    """Full refund of the booking's payment intent; raises ``RefundFailed``."""
    attempt = count_events(REFUND_REJECTED, "booking", booking.id)
    try:
        return gateway.create_refund(
            payment_intent_id=booking.stripe_payment_intent_id,
            booking_id=booking.id,
            attempt=attempt,
        )
    except GatewayError as exc:
        action = REFUND_REJECTED if exc.rejected else f"BOOKING_{operation.upper()}_REFUND_FAILED"
        log_event(action, user_id=user_id, entity="booking", entity_id=booking.id,
                  metadata={"operation": operation, "error": str(exc), "attempt": attempt})
        raise RefundFailed("Failed to process refund", details=str(exc)) from exc


def _release_uncaptured(booking: Booking, actor, gateway):
    """
    Cancel a payment intent that has not been captured. Returns a refund when
    Stripe says the intent was captured after all.
    """
    try:
        gateway.cancel_payment_intent(booking.stripe_payment_intent_id, booking.id)
        return None
    except GatewayError as exc:
        if not exc.rejected:
            log_event("BOOKING_CANCEL_VOID_FAILED", user_id=actor.user_id, entity="booking",
                      entity_id=booking.id, metadata={"error": str(exc)})
            raise RefundFailed("Failed to release payment", details=str(exc)) from exc
        logger.info("Payment intent for booking %s not cancellable (%s); refunding", booking.id, exc)

    # captured ahead of the webhook
    return issue_refund(booking, gateway, "cancel", actor.user_id)


def decline_booking(booking_id, actor, gateway, reason: str | None = None) -> DeclineResult:
    booking = _load_booking(booking_id)
    _require_provider(booking, actor)

    if booking.status != "pending":
        raise InvalidState(f"Booking cannot be declined - current status: {booking.status}")

    if not booking.stripe_payment_intent_id:
        raise PaymentNotReady("No payment found for this booking")

    booking_id = booking.id
    customer_id = booking.customer_id
    service_title = booking.service_title

    refund = issue_refund(booking, gateway, "decline", actor.user_id)
    logger.info("Refund %s issued for declined booking %s", refund.id, booking_id)

    declined_reason = reason if reason else DEFAULT_DECLINE_REASON
    try:
        updated = _conditional_update(
            booking_id,
            {
                "status": "declined",
                "payment_status": "refunded",
                "declined_reason": declined_reason,
                "refund_id": refund.id,
                "provider_response_deadline": None,
            },
            Booking.status == "pending",
        )
        if updated:
            log_event(
                "BOOKING_DECLINED",
                user_id=actor.user_id,
                entity="booking",
                entity_id=booking_id,
                metadata={"refund_id": refund.id, "reason": declined_reason},
                commit=False,
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        updated = None
        raise_alert(booking_id, "refund_unrecorded", external_id=refund.id, amount=refund.amount,
                    detail=f"Booking update failed after successful refund: {exc}")

    if updated == 0:
        raise_alert(booking_id, "refund_unrecorded", external_id=refund.id, amount=refund.amount,
                    detail="Booking left pending while the decline refund was in flight")

    notify(
        customer_id,
        "booking_declined",
        "Booking Declined",
        f"Your {service_title} booking was declined and your payment has been refunded.",
        {"booking_id": booking_id, "refund_id": refund.id},
    )
    return DeclineResult(booking_id=booking_id, refund_id=refund.id)


def cancel_booking(booking_id, actor, gateway, reason: str | None = None) -> CancelResult:
    booking = _load_booking(booking_id)
    _require_party_or_admin(booking, actor)

    if booking.status not in CANCELLABLE_STATUSES:
        raise InvalidState(f"Booking cannot be cancelled - current status: {booking.status}")

    booking_id = booking.id
    previous_status = booking.status
    service_title = booking.service_title
    # tell whoever did not cancel
    other_party = booking.provider_id if actor.user_id == booking.customer_id else booking.customer_id

    refund = None
    voided = False
    payment_intent_id = booking.stripe_payment_intent_id
    if payment_intent_id and booking.payment_status in ESCROW_PAYMENT_STATUSES:
        refund = issue_refund(booking, gateway, "cancel", actor.user_id)
    elif payment_intent_id and booking.payment_status in RELEASABLE_PAYMENT_STATUSES:
        refund = _release_uncaptured(booking, actor, gateway)
        voided = refund is None
    if refund is not None:
        logger.info("Refund %s issued for cancelled booking %s", refund.id, booking_id)

    values = {
        "status": "cancelled",
        "cancelled_reason": reason,
        "cancelled_at": datetime.utcnow(),
        "provider_response_deadline": None,
    }
    if refund is not None:
        values.update(payment_status="refunded", refund_id=refund.id)
    elif voided:
        values.update(payment_status="voided")

    if refund is not None:
        alert_kind, external_id, amount = "refund_unrecorded", refund.id, refund.amount
    else:
        alert_kind, external_id, amount = "void_unrecorded", payment_intent_id, booking.total_amount

    try:
        updated = _conditional_update(booking_id, values, Booking.status == previous_status)
        if updated:
            log_event(
                "BOOKING_CANCELLED",
                user_id=actor.user_id,
                entity="booking",
                entity_id=booking_id,
                metadata={"reason": reason, "refund_id": refund.id if refund else None, "payment_voided": voided},
                commit=False,
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        if refund is None and not voided:
            raise
        updated = None
        raise_alert(booking_id, alert_kind, external_id=external_id, amount=amount,
                    detail=f"Booking update failed after the payment was released: {exc}")

    if updated == 0:
        if refund is None and not voided:
            raise InvalidState("Booking changed while cancelling; reload and try again")
        raise_alert(booking_id, alert_kind, external_id=external_id, amount=amount,
                    detail=f"Booking left {previous_status} while the payment was being released")

    if refund is not None:
        note = " A refund has been issued."
    elif voided:
        note = " The payment has been released."
    else:
        note = ""
    notify(
        other_party,
        "booking_cancelled",
        "Booking Cancelled",
        f"The {service_title} booking has been cancelled.{note}",
        {"booking_id": booking_id, "refund_id": refund.id if refund else None},
    )
    return CancelResult(booking_id=booking_id, refund_id=refund.id if refund else None, payment_voided=voided)


# ---------- provider responses ----------

def _provider_transition(booking_id, actor, expected: str, target: str, action: str, extra: dict | None = None) -> Booking:
    booking = _load_booking(booking_id)
    _require_provider(booking, actor)

    if booking.status != expected or not can_transition(booking.status, target):
        raise InvalidState(f"Booking cannot move to {target} - current status: {booking.status}")

    values = {"status": target}
    values.update(extra or {})
    updated = _conditional_update(booking.id, values, Booking.status == expected)
    if not updated:
        db.session.rollback()
        raise InvalidState("Booking changed while updating; reload and try again")

    log_event(action, user_id=actor.user_id, entity="booking", entity_id=booking.id, commit=False)
    db.session.commit()
    return db.session.get(Booking, booking.id)


def accept_booking(booking_id, actor) -> Booking:
    booking = _provider_transition(
        booking_id, actor, "pending", "confirmed", "BOOKING_ACCEPTED",
        extra={"provider_response_deadline": None},
    )
    notify(
        booking.customer_id,
        "booking_confirmed",
        "Booking Confirmed",
        f"Your {booking.service_title} booking has been accepted.",
        {"booking_id": booking.id},
    )
    return booking


def start_service(booking_id, actor) -> Booking:
    return _provider_transition(booking_id, actor, "confirmed", "in_progress", "BOOKING_STARTED")
