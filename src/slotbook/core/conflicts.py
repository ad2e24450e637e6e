"""Conflict filter: removes time held by the owner's own bookings and meetings."""

from __future__ import annotations

from collections.abc import Iterable

from ..models import (
    Booking,
    BookingPage,
    BookingStatus,
    Meeting,
    MeetingStatus,
    MeetingType,
    TimeSlot,
)
from .intervals import expand, merge, subtract_all


def booking_busy(booking: Booking, page: BookingPage | None = None) -> TimeSlot:
    """Busy interval of a booking: its window expanded by the page buffers.

    Stored rows already carry the expanded interval in `booking.busy`.
    """
    if booking.busy is not None:
        return booking.busy
    if page is None:
        return expand(booking.slot)
    return expand(booking.slot, page.buffer_before, page.buffer_after)


def meeting_busy(meeting: Meeting) -> TimeSlot:
    """Busy interval of a meeting: buffers plus travel time for in-person ones."""
    before = meeting.buffer_before
    after = meeting.buffer_after
    if meeting.meeting_type == MeetingType.IN_PERSON:
        before += meeting.travel_buffer
        after += meeting.travel_buffer
    return expand(meeting.slot, before, after)


def busy_intervals(
    bookings: Iterable[Booking] = (),
    meetings: Iterable[Meeting] = (),
) -> list[TimeSlot]:
    """Merged busy set: confirmed bookings and scheduled meetings only."""
    busy = [booking_busy(b) for b in bookings if b.status == BookingStatus.CONFIRMED]
    busy.extend(meeting_busy(m) for m in meetings if m.status == MeetingStatus.SCHEDULED)
    return merge(busy)


def filter_conflicts(
    open_intervals: Iterable[TimeSlot],
    bookings: Iterable[Booking] = (),
    meetings: Iterable[Meeting] = (),
) -> list[TimeSlot]:
    return subtract_all(open_intervals, busy_intervals(bookings, meetings))
