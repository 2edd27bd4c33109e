from datetime import date, datetime

import pytest

from models import BookingStatus, RequestType
from utils.errors import SlotUnavailableError

DAY = date(2026, 11, 3)


def _scheduled(make_booking, status=BookingStatus.ACCEPTED, time_slot="10:00", **kwargs):
    return make_booking(
        status=status,
        request_type=RequestType.SCHEDULING,
        scheduled_date=DAY,
        scheduled_time=time_slot,
        **kwargs,
    )


def test_same_slot_conflicts(fulfillment, make_booking, people):
    _scheduled(make_booking)

    assert fulfillment.slots.check_conflict(people.provider.id, DAY, "10:00")
    assert fulfillment.slots.check_conflict(people.provider.id, datetime(2026, 11, 3, 18, 45), "10:00")


def test_other_time_day_or_provider_is_free(fulfillment, make_booking, people):
    _scheduled(make_booking)

    assert not fulfillment.slots.check_conflict(people.provider.id, DAY, "10:30")
    assert not fulfillment.slots.check_conflict(people.provider.id, date(2026, 11, 4), "10:00")
    assert not fulfillment.slots.check_conflict(people.other_provider.id, DAY, "10:00")


def test_booking_does_not_conflict_with_itself(fulfillment, make_booking, people):
    booking = _scheduled(make_booking)

    assert not fulfillment.slots.check_conflict(people.provider.id, DAY, "10:00", excluding_booking_id=booking.id)


@pytest.mark.parametrize("status", [BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.EXPIRED])
def test_released_statuses_free_the_slot(fulfillment, make_booking, people, status):
    _scheduled(make_booking, status=status)

    assert not fulfillment.slots.check_conflict(people.provider.id, DAY, "10:00")


def test_completed_booking_keeps_the_slot(fulfillment, make_booking, people):
    _scheduled(make_booking, status=BookingStatus.COMPLETED)

    assert fulfillment.slots.check_conflict(people.provider.id, DAY, "10:00")


def test_unique_index_blocks_double_booking_when_check_is_skipped(fulfillment, make_booking, monkeypatch):
    _scheduled(make_booking)
    quote = make_booking()
    monkeypatch.setattr(fulfillment.slots, "check_conflict", lambda *args, **kwargs: False)

    with pytest.raises(SlotUnavailableError):
        fulfillment.ledger.schedule_from_quote(quote.id, DAY.isoformat(), "10:00")

    assert fulfillment.ledger.get(quote.id).status == BookingStatus.PENDING
