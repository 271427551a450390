import json

from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from models.reconciliation_alert import ReconciliationAlert
from services import booking_payments

SIGNED = {"Stripe-Signature": "t=1,v1=valid", "Content-Type": "application/json"}


def _event(event_type, booking, **intent):
    payment_intent = {"id": booking.stripe_payment_intent_id, "metadata": {"booking_id": str(booking.id)}}
    payment_intent.update(intent)
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": payment_intent}})


def test_succeeded_holds_funds_with_split(client, gateway, make_booking):
    booking = make_booking(status="pending", payment_status="pending")

    resp = client.post("/webhooks/stripe", data=_event("payment_intent.succeeded", booking), headers=SIGNED)

    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}
    booking = db.session.get(Booking, booking.id)
    assert booking.payment_status == "funds_held_in_escrow"
    assert booking.amount_held_for_provider == 9000
    assert booking.platform_fee_held == 1000
    assert booking.funds_held_at is not None
    assert booking.provider_response_deadline is not None
    assert AuditLog.query.filter_by(action="PAYMENT_FUNDS_HELD").count() == 1


def test_replayed_event_changes_nothing(client, gateway, make_booking):
    booking = make_booking(status="pending", payment_status="pending")
    payload = _event("payment_intent.succeeded", booking)

    client.post("/webhooks/stripe", data=payload, headers=SIGNED)
    first_held_at = db.session.get(Booking, booking.id).funds_held_at
    resp = client.post("/webhooks/stripe", data=payload, headers=SIGNED)

    assert resp.status_code == 200
    assert db.session.get(Booking, booking.id).funds_held_at == first_held_at
    assert AuditLog.query.filter_by(action="PAYMENT_FUNDS_HELD").count() == 1


def test_booking_found_by_payment_intent_when_metadata_missing(client, gateway, make_booking):
    booking = make_booking(status="pending", payment_status="pending", stripe_payment_intent_id="pi_lookup")

    payload = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_lookup"}}})
    client.post("/webhooks/stripe", data=payload, headers=SIGNED)

    assert db.session.get(Booking, booking.id).payment_status == "funds_held_in_escrow"


def test_authorized_then_failed(client, gateway, make_booking):
    booking = make_booking(status="pending", payment_status="pending")

    client.post("/webhooks/stripe", data=_event("payment_intent.amount_capturable_updated", booking), headers=SIGNED)
    assert db.session.get(Booking, booking.id).payment_status == "authorized"

    failed = _event("payment_intent.payment_failed", booking, last_payment_error={"message": "Your card was declined."})
    client.post("/webhooks/stripe", data=failed, headers=SIGNED)

    assert db.session.get(Booking, booking.id).payment_status == "failed"
    row = AuditLog.query.filter_by(action="PAYMENT_FAILED").one()
    assert "card was declined" in row.metadata_json


def test_bad_signature_is_rejected(client, gateway, make_booking):
    booking = make_booking(status="pending", payment_status="pending")

    resp = client.post(
        "/webhooks/stripe",
        data=_event("payment_intent.succeeded", booking),
        headers={"Stripe-Signature": "t=1,v1=forged"},
    )

    assert resp.status_code == 400
    assert db.session.get(Booking, booking.id).payment_status == "pending"


def test_unknown_event_is_acknowledged(client, gateway):
    payload = json.dumps({"type": "customer.created", "data": {"object": {"id": "cus_1"}}})
    resp = client.post("/webhooks/stripe", data=payload, headers=SIGNED)
    assert resp.status_code == 200


def test_missing_webhook_secret(app, client, gateway):
    app.config["STRIPE_WEBHOOK_SECRET"] = None
    resp = client.post("/webhooks/stripe", data="{}", headers=SIGNED)
    assert resp.status_code == 500


def test_capture_after_cancellation_is_refunded(client, gateway, make_booking, customer, actor_for):
    booking = make_booking(status="pending", payment_status="authorized")
    booking_payments.cancel_booking(booking.id, actor_for(customer), gateway)

    resp = client.post("/webhooks/stripe", data=_event("payment_intent.succeeded", booking, amount=10000), headers=SIGNED)

    assert resp.status_code == 200
    booking = db.session.get(Booking, booking.id)
    assert booking.status == "cancelled"
    assert booking.payment_status == "refunded"
    assert booking.refund_id == "re_test_1"
    assert booking.amount_held_for_provider is None
    assert gateway.refunds == [{"payment_intent": "pi_test_123", "booking_id": booking.id}]
    assert ReconciliationAlert.query.count() == 0


def test_failed_refund_on_closed_booking_raises_alert(client, gateway, make_booking):
    booking = make_booking(status="cancelled", payment_status="voided")
    gateway.fail_refund = "Stripe is unreachable"

    client.post("/webhooks/stripe", data=_event("payment_intent.succeeded", booking, amount=10000), headers=SIGNED)

    booking = db.session.get(Booking, booking.id)
    assert booking.payment_status == "voided"
    alert = ReconciliationAlert.query.one()
    assert alert.kind == "funds_on_closed_booking"
    assert alert.external_id == "pi_test_123"
    assert alert.amount == 10000


def test_refunded_declined_booking_ignores_late_success(client, gateway, make_booking):
    booking = make_booking(status="declined", payment_status="refunded", refund_id="re_earlier")

    client.post("/webhooks/stripe", data=_event("payment_intent.succeeded", booking), headers=SIGNED)

    assert gateway.refunds == []
    assert db.session.get(Booking, booking.id).refund_id == "re_earlier"


def test_authorization_on_cancelled_booking_is_released(client, gateway, make_booking):
    booking = make_booking(status="cancelled", payment_status="pending")

    client.post("/webhooks/stripe", data=_event("payment_intent.amount_capturable_updated", booking), headers=SIGNED)

    assert gateway.voided == ["pi_test_123"]
    assert db.session.get(Booking, booking.id).payment_status == "voided"
