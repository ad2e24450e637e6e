"""Slot generator: slices open intervals into fixed-footprint bookable slots."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from ..errors import ValidationError
from ..models import Slot, TimeSlot


def generate_slots(
    open_intervals: Iterable[TimeSlot],
    duration: int,
    buffer_before: int = 0,
    buffer_after: int = 0,
    visitor_booking_count: int = 0,
    max_bookings_per_visitor: int | None = None,
    not_before: datetime | None = None,
) -> list[Slot]:
    """Emit slots on a grid of `duration + buffer_before + buffer_after` minutes.

    Each open interval is sliced from its own start; a slot is kept while its
    whole footprint fits. The visitor window excludes the buffer padding.
    Returns an empty list when the visitor is already at the booking cap.
    `not_before` drops slots whose visitor window starts earlier without
    shifting the grid.
    """
    if duration < 1:
        raise ValidationError("duration", "must be at least 1 minute")
    if buffer_before < 0 or buffer_after < 0:
        raise ValidationError("buffer", "must be non-negative")
    if max_bookings_per_visitor is not None and visitor_booking_count >= max_bookings_per_visitor:
        return []

    before = timedelta(minutes=buffer_before)
    length = timedelta(minutes=duration)
    footprint = timedelta(minutes=duration + buffer_before + buffer_after)

    slots: list[Slot] = []
    for interval in sorted(open_intervals, key=lambda i: i.start):
        slot_start = interval.start
        while slot_start + footprint <= interval.end:
            visible_start = slot_start + before
            if not_before is None or visible_start >= not_before:
                slots.append(Slot(
                    start=visible_start,
                    end=visible_start + length,
                    footprint=TimeSlot(start=slot_start, end=slot_start + footprint),
                ))
            slot_start += footprint
    return slots
