"""Pure interval arithmetic over half-open [start, end) time slots."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from ..errors import InvalidInterval
from ..models import TimeSlot


def _as_delta(value: int | timedelta) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(minutes=value)


def validate_interval(interval: TimeSlot) -> TimeSlot:
    """Raise InvalidInterval unless end > start."""
    if interval.end <= interval.start:
        raise InvalidInterval(
            f"Interval end {interval.end.isoformat()} is not after start {interval.start.isoformat()}"
        )
    return interval


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    """True iff the intervals share time. Touching endpoints do not overlap."""
    validate_interval(a)
    validate_interval(b)
    return a.start < b.end and b.start < a.end


def expand(interval: TimeSlot, before: int | timedelta = 0, after: int | timedelta = 0) -> TimeSlot:
    """Pad an interval. Integer paddings are minutes."""
    validate_interval(interval)
    before = _as_delta(before)
    after = _as_delta(after)
    if before < timedelta(0) or after < timedelta(0):
        raise InvalidInterval("Buffers must be non-negative")
    return TimeSlot(start=interval.start - before, end=interval.end + after)


def merge(intervals: Iterable[TimeSlot]) -> list[TimeSlot]:
    """Union of intervals; overlapping or touching ones are joined."""
    ordered = sorted((validate_interval(i) for i in intervals), key=lambda i: i.start)
    merged: list[TimeSlot] = []
    for interval in ordered:
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = TimeSlot(start=merged[-1].start, end=interval.end)
        else:
            merged.append(TimeSlot(start=interval.start, end=interval.end))
    return merged


def subtract(free: TimeSlot, busy: Iterable[TimeSlot]) -> list[TimeSlot]:
    """Remove every busy range from `free`.

    Returns zero or more disjoint intervals sorted by start.
    """
    validate_interval(free)
    remaining: list[TimeSlot] = []
    cursor = free.start
    for b in merge(busy):
        if b.end <= cursor or b.start >= free.end:
            continue
        if b.start > cursor:
            remaining.append(TimeSlot(start=cursor, end=b.start))
        cursor = max(cursor, b.end)
        if cursor >= free.end:
            break
    if cursor < free.end:
        remaining.append(TimeSlot(start=cursor, end=free.end))
    return remaining


def subtract_all(free: Iterable[TimeSlot], busy: Iterable[TimeSlot]) -> list[TimeSlot]:
    """Apply `subtract` to each free interval and flatten the result."""
    busy = merge(busy)
    result: list[TimeSlot] = []
    for interval in sorted(free, key=lambda i: i.start):
        result.extend(subtract(interval, busy))
    return result
