from datetime import date, datetime

from models import db
from models.service_request import ACTIVE_STATUSES, ServiceRequest


def as_calendar_day(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


class SlotAllocator:
    """Answers whether a provider's (day, time) slot is already taken."""

    def _occupying(self, provider_id: int, day, time_slot: str, excluding_booking_id=None):
        query = ServiceRequest.query.filter(
            ServiceRequest.provider_id == provider_id,
            ServiceRequest.scheduled_date == as_calendar_day(day),
            ServiceRequest.scheduled_time == time_slot,
            ServiceRequest.status.in_(ACTIVE_STATUSES),
        )
        if excluding_booking_id is not None:
            query = query.filter(ServiceRequest.id != excluding_booking_id)
        return query

    def check_conflict(self, provider_id: int, day, time_slot: str, excluding_booking_id=None) -> bool:
        query = self._occupying(provider_id, day, time_slot, excluding_booking_id)
        return db.session.query(query.exists()).scalar()
