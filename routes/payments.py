from decimal import Decimal

from flask import Blueprint, current_app, g, jsonify, request

from models import db
from models.payment import Payment, PaymentPurpose
from models.service_provider import ServiceProvider
from models.subscription import Plan
from models.service_request import ServiceRequest
from security.rbac import ADMIN, SERVICE_PROVIDER, has_role, require_roles
from services import get_fulfillment
from utils.auth_context import login_required
from utils.errors import ForbiddenError, NotFoundError, ValidationError
from utils.settings import get_unlock_price

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _int_field(data, *names):
    for name in names:
        value = data.get(name)
        if value in (None, ""):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be an integer")
    return None


def _intent_response(intent):
    return jsonify(
        success=True,
        preference_id=intent["external_id"],
        checkout_url=intent["checkout_url"],
        payment_id=intent["payment_id"],
    ), 200


@payments_bp.post("/unlock")
@require_roles(SERVICE_PROVIDER)
def start_unlock_payment():
    data = request.get_json(silent=True) or {}
    request_id = _int_field(data, "requestId")
    if request_id is None:
        return jsonify(error="requestId is required"), 400

    fulfillment = get_fulfillment()
    booking = fulfillment.ledger.get(request_id)
    if booking.provider_id != g.user.id:
        raise NotFoundError("Booking not found")

    if fulfillment.payments.unlock_status(booking.id, g.user.id):
        return jsonify(success=True, already=True), 200

    service_name = booking.service.name if booking.service else "service"
    intent = fulfillment.payments.create_intent(
        PaymentPurpose.UNLOCK,
        g.user,
        get_unlock_price(),
        {"booking_id": booking.id, "description": f"Unlock client contact for {service_name} request #{booking.id}"},
    )
    return _intent_response(intent)


@payments_bp.post("/subscribe")
@require_roles(SERVICE_PROVIDER)
def start_subscription_payment():
    data = request.get_json(silent=True) or {}
    profile = ServiceProvider.query.filter_by(user_id=g.user.id).first()
    if profile is None:
        raise NotFoundError("Provider profile not found")

    plan_id = _int_field(data, "planId")
    if plan_id is not None:
        plan = db.session.get(Plan, plan_id)
    else:
        plan = Plan.query.filter_by(name=current_app.config.get("UNLIMITED_PLAN_NAME", "Enterprise")).first()
    if plan is None or not plan.is_active:
        raise NotFoundError("Plan not found")

    amount = plan.price if plan.price and plan.price > 0 else Decimal(current_app.config.get("SUBSCRIPTION_PRICE", "59.90"))
    intent = get_fulfillment().payments.create_intent(
        PaymentPurpose.SUBSCRIPTION,
        g.user,
        amount,
        {"provider_id": profile.id, "plan_id": plan.id, "description": f"{plan.name} plan, 1 month"},
    )
    return _intent_response(intent)


@payments_bp.post("/booking")
@require_roles(SERVICE_PROVIDER)
def start_booking_payment():
    data = request.get_json(silent=True) or {}
    booking_id = _int_field(data, "bookingId")
    if booking_id is None or data.get("amount") in (None, ""):
        return jsonify(error="bookingId and amount are required"), 400

    fulfillment = get_fulfillment()
    booking = fulfillment.ledger.get(booking_id)
    if booking.provider_id != g.user.id:
        raise ForbiddenError("Only the booking's provider can create its payment")

    intent = fulfillment.payments.create_intent(
        PaymentPurpose.BOOKING,
        g.user,
        data.get("amount"),
        {"booking_id": booking.id},
    )
    return _intent_response(intent)


def _payment_view(payment, booking=None):
    data = payment.to_dict()
    data["booking"] = None
    if booking is not None:
        data["booking"] = {
            "id": booking.id,
            "service": booking.service.name if booking.service else None,
            "client": booking.client.name if booking.client else None,
            "provider": booking.provider.name if booking.provider else None,
        }
    return data


@payments_bp.get("")
@login_required
def get_payment():
    payment_id = _int_field(request.args, "paymentId")
    booking_id = _int_field(request.args, "bookingId")

    fulfillment = get_fulfillment()
    payment = fulfillment.payments.find_payment(payment_id=payment_id, booking_id=booking_id)
    booking = db.session.get(ServiceRequest, payment.service_request_id) if payment.service_request_id else None

    allowed = {payment.user_id}
    if booking is not None:
        allowed.update((booking.client_id, booking.provider_id))
    if g.user.id not in allowed and not has_role(ADMIN):
        raise ForbiddenError("You cannot view this payment")

    payment = fulfillment.payments.refresh_payment(payment)
    return jsonify(success=True, payment=_payment_view(payment, booking)), 200


@payments_bp.get("/history")
@login_required
def payment_history():
    payments = (
        Payment.query.filter_by(user_id=g.user.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return jsonify(payments=[p.to_dict() for p in payments]), 200
