import json
import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from services import get_fulfillment

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


def normalize_event(event: dict) -> dict:
    """Reduce a Stripe event to the {type, data: {id}} payment notification envelope."""
    event_type = event.get("type") or ""
    data = event.get("data") or {}
    obj = data.get("object") or {}

    if event_type == "payment":
        return {"type": "payment", "data": {"id": data.get("id")}}
    if event_type.startswith("payment_intent."):
        return {"type": "payment", "data": {"id": obj.get("id")}}
    if event_type in ("charge.refunded", "charge.dispute.closed"):
        return {"type": "payment", "data": {"id": obj.get("payment_intent")}}
    return {"type": event_type, "data": {"id": obj.get("id")}}


@webhook_bp.post("/payments")
def payment_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        stripe.Webhook.construct_event(request.data, request.headers.get("Stripe-Signature"), endpoint_secret)
        event = json.loads(request.data)
    except (ValueError, stripe.SignatureVerificationError):
        logger.warning("Rejected payment webhook with invalid signature or payload")
        return jsonify(error="Invalid webhook signature"), 400

    result = get_fulfillment().payments.handle_webhook(normalize_event(event))
    return jsonify(received=True, handled=result.handled, message=result.message), 200
