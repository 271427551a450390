from flask import Blueprint, request, jsonify, current_app

from services import booking_payments
from utils.auth_context import login_required, current_actor

bookings_bp = Blueprint("bookings", __name__, url_prefix="/bookings")

MAX_REASON_LENGTH = 500


def _payment_gateway():
    return current_app.extensions["payment_gateway"]


def _booking_id_from_body(data: dict):
    booking_id = data.get("booking_id", data.get("bookingId"))
    if booking_id in (None, ""):
        return None
    try:
        return int(booking_id)
    except (TypeError, ValueError):
        return None


def _reason_from_body(data: dict):
    reason = data.get("reason")
    if reason is not None and (not isinstance(reason, str) or len(reason) > MAX_REASON_LENGTH):
        return False, None
    return True, reason


@bookings_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = booking_payments.get_booking_for(booking_id, current_actor())
    return jsonify(booking.to_dict()), 200


@bookings_bp.post("/complete")
@login_required
def complete_booking():
    data = request.get_json(silent=True) or {}
    booking_id = _booking_id_from_body(data)
    if booking_id is None:
        return jsonify(error="booking_id is required"), 400

    result = booking_payments.complete_booking(booking_id, current_actor(), _payment_gateway())
    return jsonify(result.to_dict()), 200


@bookings_bp.post("/decline")
@login_required
def decline_booking():
    data = request.get_json(silent=True) or {}
    booking_id = _booking_id_from_body(data)
    if booking_id is None:
        return jsonify(error="booking_id is required"), 400
    ok, reason = _reason_from_body(data)
    if not ok:
        return jsonify(error=f"reason must be a string of at most {MAX_REASON_LENGTH} characters"), 400

    result = booking_payments.decline_booking(booking_id, current_actor(), _payment_gateway(), reason=reason)
    return jsonify(result.to_dict()), 200


@bookings_bp.post("/cancel")
@login_required
def cancel_booking():
    data = request.get_json(silent=True) or {}
    booking_id = _booking_id_from_body(data)
    if booking_id is None:
        return jsonify(error="booking_id is required"), 400
    ok, reason = _reason_from_body(data)
    if not ok:
        return jsonify(error=f"reason must be a string of at most {MAX_REASON_LENGTH} characters"), 400

    actor = current_actor()
    result = booking_payments.cancel_booking(booking_id, actor, _payment_gateway(), reason=reason)
    booking = booking_payments.get_booking_for(booking_id, actor)
    return jsonify(result.to_dict() | {"booking": booking.to_dict()}), 200


@bookings_bp.post("/accept")
@login_required
def accept_booking():
    data = request.get_json(silent=True) or {}
    booking_id = _booking_id_from_body(data)
    if booking_id is None:
        return jsonify(error="booking_id is required"), 400

    booking = booking_payments.accept_booking(booking_id, current_actor())
    return jsonify(success=True, booking=booking.to_dict()), 200


@bookings_bp.post("/start")
@login_required
def start_service():
    data = request.get_json(silent=True) or {}
    booking_id = _booking_id_from_body(data)
    if booking_id is None:
        return jsonify(error="booking_id is required"), 400

    booking = booking_payments.start_service(booking_id, current_actor())
    return jsonify(success=True, booking=booking.to_dict()), 200
