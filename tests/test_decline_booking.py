import pytest

from models import db
from models.booking import Booking
from models.notification import Notification
from services import booking_payments
from services.errors import InvalidState, PaymentNotReady, RefundFailed, Unauthorized


def test_decline_refunds_and_stores_reason_verbatim(gateway, make_booking, customer, provider, actor_for):
    booking = make_booking(status="pending")
    reason = "  Fully booked that afternoon, sorry!  "

    result = booking_payments.decline_booking(booking.id, actor_for(provider), gateway, reason=reason)

    assert result.refund_id == "re_test_1"
    assert gateway.refunds == [{"payment_intent": "pi_test_123", "booking_id": booking.id}]

    booking = db.session.get(Booking, booking.id)
    assert booking.status == "declined"
    assert booking.payment_status == "refunded"
    assert booking.declined_reason == reason
    assert booking.refund_id == "re_test_1"
    assert booking.provider_response_deadline is None

    note = Notification.query.filter_by(user_id=customer.id).one()
    assert note.type == "booking_declined"


def test_decline_without_reason_uses_default(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="pending")
    booking_payments.decline_booking(booking.id, actor_for(provider), gateway)
    assert db.session.get(Booking, booking.id).declined_reason == "Provider declined booking"


def test_decline_completed_booking_is_rejected_before_refund(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="completed", payment_status="payout_completed")

    with pytest.raises(InvalidState):
        booking_payments.decline_booking(booking.id, actor_for(provider), gateway)

    assert gateway.refunds == []
    assert db.session.get(Booking, booking.id).status == "completed"


def test_only_the_assigned_provider_can_decline(gateway, make_booking, customer, actor_for):
    booking = make_booking(status="pending")

    with pytest.raises(Unauthorized):
        booking_payments.decline_booking(booking.id, actor_for(customer), gateway)
    assert gateway.refunds == []


def test_decline_needs_a_payment_to_refund(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="pending", stripe_payment_intent_id=None)

    with pytest.raises(PaymentNotReady):
        booking_payments.decline_booking(booking.id, actor_for(provider), gateway)


def test_failed_refund_keeps_booking_pending(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="pending")
    gateway.fail_refund = "Charge has already been refunded"

    with pytest.raises(RefundFailed) as exc_info:
        booking_payments.decline_booking(booking.id, actor_for(provider), gateway, reason="busy")

    assert exc_info.value.details == "Charge has already been refunded"
    booking = db.session.get(Booking, booking.id)
    assert booking.status == "pending"
    assert booking.payment_status == "funds_held_in_escrow"
    assert booking.declined_reason is None


def test_second_decline_is_rejected(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="pending")
    booking_payments.decline_booking(booking.id, actor_for(provider), gateway)

    with pytest.raises(InvalidState):
        booking_payments.decline_booking(booking.id, actor_for(provider), gateway)
    assert len(gateway.refunds) == 1


def test_cancel_after_rejected_decline_refund_uses_a_fresh_key(gateway, make_booking, provider, actor_for):
    booking = make_booking(status="pending")
    gateway.fail_refund = "This PaymentIntent's charge is still pending"
    gateway.reject = True

    with pytest.raises(RefundFailed):
        booking_payments.decline_booking(booking.id, actor_for(provider), gateway)

    gateway.fail_refund = None
    result = booking_payments.cancel_booking(booking.id, actor_for(provider), gateway)

    assert result.refund_id == "re_test_1"
    assert gateway.attempts == [("refund", booking.id, 0), ("refund", booking.id, 1)]
