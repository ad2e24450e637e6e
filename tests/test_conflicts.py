"""Tests for the conflict filter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from slotbook.core.conflicts import booking_busy, busy_intervals, filter_conflicts, meeting_busy
from slotbook.models import (
    Booking,
    BookingPage,
    BookingStatus,
    Meeting,
    MeetingStatus,
    MeetingType,
    TimeSlot,
)

DAY = datetime(2030, 6, 3, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY + timedelta(hours=hour, minutes=minute)


def iv(start: tuple[int, int], end: tuple[int, int]) -> TimeSlot:
    return TimeSlot(start=at(*start), end=at(*end))


WORKDAY = [iv((9, 0), (17, 0))]


def test_booking_busy_uses_page_buffers():
    booking = Booking(slot=iv((10, 0), (10, 30)))
    page = BookingPage(buffer_before=10, buffer_after=5)
    assert booking_busy(booking, page) == iv((9, 50), (10, 35))


def test_booking_busy_prefers_stored_interval():
    booking = Booking(slot=iv((10, 0), (10, 30)), busy=iv((9, 45), (10, 45)))
    assert booking_busy(booking, BookingPage()) == iv((9, 45), (10, 45))


def test_meeting_travel_buffer_only_in_person():
    virtual = Meeting(slot=iv((12, 0), (13, 0)), buffer_before=5, travel_buffer=30)
    in_person = Meeting(
        slot=iv((12, 0), (13, 0)),
        buffer_before=5,
        buffer_after=10,
        travel_buffer=30,
        meeting_type=MeetingType.IN_PERSON,
    )
    assert meeting_busy(virtual) == iv((11, 55), (13, 0))
    assert meeting_busy(in_person) == iv((11, 25), (13, 40))


def test_cancelled_and_completed_items_do_not_block():
    bookings = [
        Booking(slot=iv((10, 0), (10, 30)), status=BookingStatus.CANCELLED),
        Booking(slot=iv((11, 0), (11, 30)), status=BookingStatus.COMPLETED),
    ]
    meetings = [Meeting(slot=iv((12, 0), (13, 0)), status=MeetingStatus.CANCELLED)]
    assert busy_intervals(bookings, meetings) == []
    assert filter_conflicts(WORKDAY, bookings, meetings) == WORKDAY


def test_filter_removes_bookings_and_meetings():
    bookings = [Booking(slot=iv((10, 0), (10, 30)), busy=iv((10, 0), (10, 30)))]
    meetings = [Meeting(slot=iv((14, 0), (15, 0)), buffer_after=15)]
    result = filter_conflicts(WORKDAY, bookings, meetings)
    assert result == [
        iv((9, 0), (10, 0)),
        iv((10, 30), (14, 0)),
        iv((15, 15), (17, 0)),
    ]


def test_filter_without_items_is_identity():
    assert filter_conflicts(WORKDAY) == WORKDAY
