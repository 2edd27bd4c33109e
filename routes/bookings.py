from flask import Blueprint, g, jsonify, request

from models.service_request import BookingStatus, CancelledBy
from security.rbac import ADMIN, SERVICE_PROVIDER, has_role, require_roles
from services import get_fulfillment
from utils.auth_context import login_required
from utils.errors import ForbiddenError

bookings_bp = Blueprint("bookings", __name__, url_prefix="/bookings")

# statuses a caller may request; EXPIRED is set by the expire-holds job only
UPDATABLE_STATUSES = {
    BookingStatus.ACCEPTED.value,
    BookingStatus.REJECTED.value,
    BookingStatus.COMPLETED.value,
    BookingStatus.CANCELLED.value,
}


def _participant_booking(booking_id):
    booking = get_fulfillment().ledger.get(booking_id)
    if g.user.id not in (booking.client_id, booking.provider_id) and not has_role(ADMIN):
        raise ForbiddenError("You are not part of this booking")
    return booking


def _result_response(result):
    return jsonify(success=True, booking=result.booking.to_dict(), message=result.message), 200


@bookings_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking = _participant_booking(booking_id)
    return jsonify(booking=booking.to_dict()), 200


@bookings_bp.patch("/<int:booking_id>")
@login_required
def update_booking_status(booking_id):
    data = request.get_json(silent=True) or {}
    status = str(data.get("status") or "").strip().upper()
    if status not in UPDATABLE_STATUSES:
        return jsonify(error="Invalid status value"), 400

    notes = (data.get("notes") or "").strip() or None
    fulfillment = get_fulfillment()
    booking = _participant_booking(booking_id)

    if status == BookingStatus.ACCEPTED.value:
        result = fulfillment.gate.accept(booking.id, g.user.id, notes=notes)
    elif status == BookingStatus.CANCELLED.value:
        cancelled_by = CancelledBy.CLIENT if g.user.id == booking.client_id else CancelledBy.PROVIDER
        result = fulfillment.ledger.transition(
            booking.id,
            BookingStatus.CANCELLED,
            notes,
            cancel_reason=data.get("cancelReason"),
            cancelled_by=cancelled_by,
        )
    else:
        if g.user.id != booking.provider_id:
            raise ForbiddenError("Only the booking's provider can do this")
        payment = data.get("payment") if status == BookingStatus.COMPLETED.value else None
        result = fulfillment.ledger.transition(
            booking.id,
            BookingStatus(status),
            notes,
            completion_payment=payment if isinstance(payment, dict) else None,
        )

    return _result_response(result)


@bookings_bp.patch("/<int:booking_id>/schedule")
@require_roles(SERVICE_PROVIDER)
def schedule_booking(booking_id):
    data = request.get_json(silent=True) or {}
    scheduled_date = data.get("scheduledDate")
    scheduled_time = data.get("scheduledTime")
    if not scheduled_date or not scheduled_time:
        return jsonify(error="scheduledDate and scheduledTime are required"), 400

    fulfillment = get_fulfillment()
    booking = fulfillment.ledger.get(booking_id)
    if booking.provider_id != g.user.id:
        raise ForbiddenError("Only the booking's provider can schedule it")

    # scheduling a pending request accepts it, so it needs the same entitlement
    if booking.status == BookingStatus.PENDING:
        decision = fulfillment.gate.authorize_acceptance(booking.id, g.user.id)
        if not decision.allowed:
            raise fulfillment.gate.error_for(decision)

    result = fulfillment.ledger.schedule_from_quote(booking.id, scheduled_date, scheduled_time)
    return _result_response(result)


@bookings_bp.post("/<int:booking_id>/provider-review")
@require_roles(SERVICE_PROVIDER)
def review_client(booking_id):
    data = request.get_json(silent=True) or {}
    if data.get("rating") is None:
        return jsonify(error="rating is required"), 400

    booking = get_fulfillment().ledger.record_provider_review(
        booking_id, g.user.id, data.get("rating"), data.get("comment")
    )
    return jsonify(success=True, booking=booking.to_dict()), 200
