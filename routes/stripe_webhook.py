import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from services import escrow

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    gateway = current_app.extensions["payment_gateway"]
    try:
        event = gateway.construct_event(request.data, request.headers.get("Stripe-Signature"), endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    handled = escrow.handle_event(event, gateway)
    if not handled:
        logger.debug("Ignoring Stripe event %s", event.get("type"))

    return jsonify(received=True), 200
