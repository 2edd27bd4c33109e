import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from models import db
from models.notification import Notification
from models.payment import IN_FLIGHT_STATUSES, Payment, PaymentPurpose, PaymentStatus
from models.service_request import (
    BookingStatus,
    CancelledBy,
    RequestType,
    ServiceRequest,
    can_transition,
)
from services.slots import SlotAllocator
from utils.audit import log_event
from utils.errors import (
    BookingNotSchedulableError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

STATUS_TITLES = {
    BookingStatus.ACCEPTED: "Request accepted",
    BookingStatus.REJECTED: "Request declined",
    BookingStatus.COMPLETED: "Service completed",
    BookingStatus.CANCELLED: "Request cancelled",
    BookingStatus.EXPIRED: "Request expired",
}


@dataclass
class TransitionResult:
    booking: ServiceRequest
    message: str


def status_message(booking: ServiceRequest) -> str:
    service = booking.service.name if booking.service else "your service"
    status = booking.status
    if status == BookingStatus.ACCEPTED:
        if booking.scheduled_date and booking.scheduled_time:
            return f"Your request for {service} was accepted for {booking.scheduled_date.isoformat()} at {booking.scheduled_time}."
        return f"Your request for {service} was accepted. The provider will contact you soon."
    if status == BookingStatus.REJECTED:
        return f"Your request for {service} was declined by the provider."
    if status == BookingStatus.COMPLETED:
        return f"Your {service} service was completed. Thank you for using the platform!"
    if status == BookingStatus.CANCELLED:
        who = "the client" if booking.cancelled_by == CancelledBy.CLIENT else "the provider"
        return f"The request for {service} was cancelled by {who}."
    if status == BookingStatus.EXPIRED:
        return f"Your request for {service} expired without an answer from the provider."
    return f"Your request for {service} is {status.value.lower()}."


def parse_schedule_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or "")[:10])
    except ValueError:
        raise ValidationError("scheduledDate must be an ISO date (YYYY-MM-DD)")


def parse_schedule_time(value) -> str:
    value = str(value or "").strip()
    if not TIME_RE.match(value):
        raise ValidationError("scheduledTime must be HH:MM (00:00-23:59)")
    return value


def _coerce(enum_cls, value, field):
    try:
        return enum_cls(str(value).upper()) if not isinstance(value, enum_cls) else value
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}")


def _parse_completion_payment(payment: dict):
    method = str(payment.get("method") or "").strip().upper()
    if not method:
        raise ValidationError("payment.method is required")
    try:
        amount = Decimal(str(payment.get("amount")))
        if not amount.is_finite():
            raise InvalidOperation(amount)
        amount = amount.quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError("payment.amount must be a number")
    if amount <= 0:
        raise ValidationError("payment.amount must be positive")
    return method[:30], amount


class RequestLedger:
    """Owns ServiceRequest state. Every status write is conditional on the status it was read with."""

    def __init__(self, dispatcher=None, slots: SlotAllocator = None):
        self.dispatcher = dispatcher
        self.slots = slots or SlotAllocator()

    def get(self, booking_id: int) -> ServiceRequest:
        booking = db.session.get(ServiceRequest, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def transition(self, booking_id, target_status, notes=None, *, cancel_reason=None,
                   cancelled_by=None, completion_payment=None) -> TransitionResult:
        target = _coerce(BookingStatus, target_status, "status")
        booking = self.get(booking_id)
        current = booking.status

        if booking.is_terminal:
            raise InvalidTransitionError(f"Booking is already {current.value}", current_status=current.value)
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot change booking from {current.value} to {target.value}",
                current_status=current.value,
            )

        now = datetime.utcnow()
        changes = {"status": target}
        if target != BookingStatus.EXPIRED:
            changes["expires_at"] = None
        if notes:
            changes["description"] = notes

        manual_payment = None
        if target == BookingStatus.CANCELLED:
            reason = (cancel_reason or "").strip()
            if not 5 <= len(reason) <= 500:
                raise ValidationError("cancelReason must be between 5 and 500 characters")
            if cancelled_by is None:
                raise ValidationError("cancelledBy is required")
            changes.update(
                cancellation_reason=reason,
                cancelled_by=_coerce(CancelledBy, cancelled_by, "cancelledBy"),
                cancelled_at=now,
            )
        elif target == BookingStatus.COMPLETED and completion_payment:
            manual_payment = _parse_completion_payment(completion_payment)
            changes.update(payment_method=manual_payment[0], final_price=manual_payment[1])

        self._conditional_update(booking.id, current, changes)

        if target == BookingStatus.CANCELLED:
            voided = (
                Payment.query
                .filter(Payment.service_request_id == booking.id, Payment.status.in_(IN_FLIGHT_STATUSES))
                .update({"status": PaymentStatus.REJECTED}, synchronize_session=False)
            )
            if voided:
                logger.info(f"Booking {booking.id} cancelled, {voided} open payment(s) rejected")
        if manual_payment:
            self._record_manual_payment(booking, *manual_payment, now=now)

        db.session.commit()
        logger.info(f"Booking {booking.id}: {current.value} -> {target.value}")
        log_event(
            f"BOOKING_{target.value}",
            entity="service_request",
            entity_id=booking.id,
            metadata={"from": current.value, "to": target.value},
        )
        return self._finish(booking)

    def schedule_from_quote(self, booking_id, scheduled_date, scheduled_time) -> TransitionResult:
        day = parse_schedule_date(scheduled_date)
        time_slot = parse_schedule_time(scheduled_time)
        booking = self.get(booking_id)

        if booking.is_terminal:
            raise BookingNotSchedulableError(f"Booking is already {booking.status.value}")
        if booking.request_type != RequestType.QUOTE and booking.scheduled_date and booking.scheduled_time:
            raise BookingNotSchedulableError("Booking is already scheduled")
        if self.slots.check_conflict(booking.provider_id, day, time_slot, excluding_booking_id=booking.id):
            raise SlotUnavailableError()

        current = booking.status
        if current != BookingStatus.ACCEPTED and not can_transition(current, BookingStatus.ACCEPTED):
            raise InvalidTransitionError(
                f"Cannot schedule a booking in status {current.value}", current_status=current.value
            )

        changes = {
            "request_type": RequestType.SCHEDULING,
            "status": BookingStatus.ACCEPTED,
            "scheduled_date": day,
            "scheduled_time": time_slot,
            "expires_at": None,
        }
        try:
            self._conditional_update(booking.id, current, changes)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info(f"Slot {day} {time_slot} for provider {booking.provider_id} taken concurrently")
            raise SlotUnavailableError()

        logger.info(f"Booking {booking.id} scheduled for {day} {time_slot}")
        log_event(
            "BOOKING_SCHEDULED",
            entity="service_request",
            entity_id=booking.id,
            metadata={"date": day.isoformat(), "time": time_slot, "from": current.value},
        )
        return self._finish(booking)

    def expire_holds(self, now: datetime = None) -> int:
        now = now or datetime.utcnow()
        due = [
            row.id for row in
            ServiceRequest.query
            .with_entities(ServiceRequest.id)
            .filter(
                ServiceRequest.status == BookingStatus.PENDING,
                ServiceRequest.expires_at.isnot(None),
                ServiceRequest.expires_at <= now,
            )
            .all()
        ]
        expired = 0
        for booking_id in due:
            try:
                self.transition(booking_id, BookingStatus.EXPIRED)
            except InvalidTransitionError:
                # answered by the provider in the meantime
                continue
            expired += 1
        if expired:
            logger.info(f"Expired {expired} booking hold(s)")
        return expired

    def record_provider_review(self, booking_id, provider_id, rating, comment=None) -> ServiceRequest:
        booking = self.get(booking_id)
        if booking.provider_id != provider_id:
            raise ForbiddenError("Only the booking's provider can review the client")
        if booking.status != BookingStatus.COMPLETED:
            raise ConflictError("Only completed bookings can be reviewed")
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValidationError("rating must be an integer between 1 and 5")
        if not 1 <= rating <= 5:
            raise ValidationError("rating must be an integer between 1 and 5")

        updated = (
            ServiceRequest.query
            .filter(ServiceRequest.id == booking.id, ServiceRequest.provider_reviewed_at.is_(None))
            .update(
                {
                    "provider_rating": rating,
                    "provider_review_comment": (comment or "").strip() or None,
                    "provider_reviewed_at": datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.session.rollback()
            raise ConflictError("Booking was already reviewed")
        db.session.commit()
        log_event("BOOKING_PROVIDER_REVIEW", user_id=provider_id, entity="service_request",
                  entity_id=booking.id, metadata={"rating": rating})
        return self.get(booking.id)

    def _conditional_update(self, booking_id, expected_status, changes):
        updated = (
            ServiceRequest.query
            .filter(ServiceRequest.id == booking_id, ServiceRequest.status == expected_status)
            .update(changes, synchronize_session=False)
        )
        if updated != 1:
            db.session.rollback()
            raise InvalidTransitionError(
                "Booking was modified concurrently, reload and try again",
                expected_status=expected_status.value,
            )

    def _record_manual_payment(self, booking, method, amount, now):
        payment = (
            Payment.query
            .filter(
                Payment.service_request_id == booking.id,
                Payment.gateway == "MANUAL",
                Payment.purpose == PaymentPurpose.BOOKING,
            )
            .order_by(Payment.created_at.desc())
            .first()
        )
        if payment is None:
            payment = Payment(
                user_id=booking.provider_id,
                service_request_id=booking.id,
                purpose=PaymentPurpose.BOOKING,
                gateway="MANUAL",
                description="Payment collected on completion",
            )
            db.session.add(payment)
        payment.amount = amount
        payment.payment_method = method
        payment.status = PaymentStatus.APPROVED
        payment.approved_at = now

    def _finish(self, booking: ServiceRequest) -> TransitionResult:
        db.session.refresh(booking)
        message = status_message(booking)
        self._notify(booking, message)
        return TransitionResult(booking, message)

    def _recipient(self, booking: ServiceRequest):
        if booking.status == BookingStatus.CANCELLED and booking.cancelled_by == CancelledBy.CLIENT:
            return booking.provider
        return booking.client

    def _notify(self, booking: ServiceRequest, message: str):
        if self.dispatcher is None:
            return
        try:
            recipient = self._recipient(booking)
            title = STATUS_TITLES.get(booking.status, "Request updated")
            data = {"booking_id": booking.id, "status": booking.status.value}
            note = Notification(
                user_id=recipient.id,
                type="SERVICE_REQUEST",
                title=title,
                message=message,
                sent_via=",".join(self.dispatcher.channels_for({"recipient": recipient.to_contact()})),
                data_json=json.dumps(data),
            )
            db.session.add(note)
            db.session.commit()

            payload = {
                "notification_id": note.id,
                "booking_id": booking.id,
                "new_status": booking.status.value,
                "title": title,
                "message": message,
                "recipient": recipient.to_contact(),
                "client": booking.client.to_contact(),
                "provider": booking.provider.to_contact(),
                "service": booking.service.name if booking.service else None,
                "scheduled_date": booking.scheduled_date.isoformat() if booking.scheduled_date else None,
                "scheduled_time": booking.scheduled_time,
                "cancellation_reason": booking.cancellation_reason,
            }
            self.dispatcher.dispatch(payload)
        except Exception:
            db.session.rollback()
            logger.exception(f"Notification for booking {booking.id} failed, status change kept")
