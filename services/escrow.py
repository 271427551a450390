import logging
from datetime import datetime, timedelta

from flask import current_app

from models import db
from models.booking import Booking, CLOSED_STATUSES, RELEASABLE_PAYMENT_STATUSES
from services.booking_payments import issue_refund
from services.commission import split_amount
from services.errors import GatewayError, RefundFailed
from services.reconciliation import raise_alert
from utils.audit import log_event

logger = logging.getLogger(__name__)

HOLDABLE_PAYMENT_STATUSES = RELEASABLE_PAYMENT_STATUSES


def _booking_from_intent(payment_intent) -> Booking | None:
    meta = payment_intent.get("metadata") or {}
    booking_id = meta.get("booking_id")
    booking = None
    if booking_id:
        try:
            booking = db.session.get(Booking, int(booking_id))
        except (TypeError, ValueError):
            booking = None
    if not booking and payment_intent.get("id"):
        booking = Booking.query.filter_by(stripe_payment_intent_id=payment_intent["id"]).first()
    if not booking:
        logger.warning("No booking for payment intent %s", payment_intent.get("id"))
    return booking


def _refund_closed_booking(booking: Booking, payment_intent, gateway) -> Booking:
    """Funds were captured for a booking that was already declined or cancelled."""
    booking.stripe_payment_intent_id = payment_intent.get("id") or booking.stripe_payment_intent_id
    booking_id = booking.id
    amount = payment_intent.get("amount") or booking.total_amount
    try:
        refund = issue_refund(booking, gateway, "late_capture")
    except RefundFailed as exc:
        raise_alert(
            booking_id,
            "funds_on_closed_booking",
            external_id=payment_intent.get("id"),
            amount=amount,
            detail=f"Payment captured after the booking closed and the refund failed: {exc.details}",
        )
        return booking

    booking = db.session.get(Booking, booking_id)
    booking.payment_status = "refunded"
    booking.refund_id = refund.id
    log_event(
        "PAYMENT_REFUNDED_AFTER_CLOSE",
        entity="booking",
        entity_id=booking_id,
        metadata={"payment_intent_id": payment_intent.get("id"), "refund_id": refund.id, "status": booking.status},
        commit=False,
    )
    db.session.commit()
    logger.info("Refund %s issued for payment captured on closed booking %s", refund.id, booking_id)
    return booking


def record_funds_held(payment_intent, gateway) -> Booking | None:
    """payment_intent.succeeded: the full amount now sits in the platform balance."""
    booking = _booking_from_intent(payment_intent)
    if not booking:
        return None
    if booking.status in CLOSED_STATUSES:
        if booking.payment_status == "refunded":
            return booking
        return _refund_closed_booking(booking, payment_intent, gateway)
    if booking.payment_status not in HOLDABLE_PAYMENT_STATUSES:
        # replayed or out-of-order event
        return booking

    percent = current_app.config.get("PLATFORM_COMMISSION_PERCENT", 10)
    split = split_amount(booking.total_amount, percent)
    now = datetime.utcnow()

    booking.payment_status = "funds_held_in_escrow"
    booking.stripe_payment_intent_id = payment_intent.get("id") or booking.stripe_payment_intent_id
    booking.amount_held_for_provider = split.payout_amount
    booking.platform_fee_held = split.commission_amount
    booking.funds_held_at = now
    if booking.status == "pending" and booking.provider_response_deadline is None:
        hours = current_app.config.get("PROVIDER_RESPONSE_HOURS", 24)
        booking.provider_response_deadline = now + timedelta(hours=hours)

    log_event(
        "PAYMENT_FUNDS_HELD",
        entity="booking",
        entity_id=booking.id,
        metadata={"payment_intent_id": booking.stripe_payment_intent_id, "held_for_provider": split.payout_amount, "platform_fee": split.commission_amount},
        commit=False,
    )
    db.session.commit()
    return booking


def record_authorized(payment_intent, gateway) -> Booking | None:
    booking = _booking_from_intent(payment_intent)
    if not booking:
        return None

    if booking.status in CLOSED_STATUSES:
        if booking.payment_status in ("refunded", "voided"):
            return booking
        # authorized after the booking closed: release the hold on the card
        booking_id = booking.id
        try:
            gateway.cancel_payment_intent(payment_intent.get("id"), booking_id)
        except GatewayError as exc:
            raise_alert(
                booking_id,
                "authorization_on_closed_booking",
                external_id=payment_intent.get("id"),
                amount=payment_intent.get("amount"),
                detail=f"Could not cancel payment intent after the booking closed: {exc}",
            )
            return booking
        booking.payment_status = "voided"
        log_event("PAYMENT_VOIDED_AFTER_CLOSE", entity="booking", entity_id=booking_id, commit=False)
        db.session.commit()
        return booking

    if booking.payment_status != "pending":
        return booking

    booking.payment_status = "authorized"
    booking.stripe_payment_intent_id = payment_intent.get("id") or booking.stripe_payment_intent_id
    log_event("PAYMENT_AUTHORIZED", entity="booking", entity_id=booking.id, commit=False)
    db.session.commit()
    return booking


def record_payment_failed(payment_intent, gateway) -> Booking | None:
    booking = _booking_from_intent(payment_intent)
    if not booking or booking.payment_status not in HOLDABLE_PAYMENT_STATUSES:
        return booking

    booking.payment_status = "failed"
    error = (payment_intent.get("last_payment_error") or {}).get("message")
    log_event("PAYMENT_FAILED", entity="booking", entity_id=booking.id, metadata={"error": error}, commit=False)
    db.session.commit()
    return booking


EVENT_HANDLERS = {
    "payment_intent.succeeded": record_funds_held,
    "payment_intent.amount_capturable_updated": record_authorized,
    "payment_intent.payment_failed": record_payment_failed,
}


def handle_event(event, gateway) -> bool:
    handler = EVENT_HANDLERS.get(event.get("type"))
    if handler is None:
        return False
    handler(event["data"]["object"], gateway)
    return True
