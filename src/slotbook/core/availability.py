"""Availability resolver: weekly working hours minus provider busy times."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from ..errors import InvalidWorkingHours
from ..models import TimeSlot, WorkingHoursRule
from .intervals import subtract

logger = logging.getLogger(__name__)

# Indexed by WorkingHoursRule.day_of_week (0 = Sunday)
DAYS_OF_WEEK = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time(value: str) -> time:
    """Parse 'HH:MM' (00:00-23:59)."""
    m = TIME_RE.match(value.strip()) if value else None
    if not m or int(m.group(1)) > 23 or int(m.group(2)) > 59:
        raise InvalidWorkingHours(f"Invalid time: {value!r}. Use HH:MM (00:00-23:59).")
    return time(int(m.group(1)), int(m.group(2)))


def parse_time_range(time_range: str) -> tuple[time, time]:
    """Parse 'HH:MM-HH:MM' into (start, end)."""
    start_str, end_str = time_range.strip().split("-")
    return parse_time(start_str), parse_time(end_str)


def weekday_index(day: date) -> int:
    """Day of week with 0 = Sunday, matching WorkingHoursRule.day_of_week."""
    return (day.weekday() + 1) % 7


def rule_for_day(rules: Iterable[WorkingHoursRule], day: date) -> WorkingHoursRule | None:
    index = weekday_index(day)
    for rule in rules:
        if rule.day_of_week == index:
            return rule
    return None


def validate_rule(rule: WorkingHoursRule) -> None:
    """Check weekday range and HH:MM bounds. Cross-midnight shifts are rejected."""
    if not 0 <= rule.day_of_week <= 6:
        raise InvalidWorkingHours(f"Invalid day_of_week: {rule.day_of_week}")
    start = parse_time(rule.start_time)
    end = parse_time(rule.end_time)
    if start > end:
        raise InvalidWorkingHours(
            f"{DAYS_OF_WEEK[rule.day_of_week].capitalize()}: start {rule.start_time} "
            f"is after end {rule.end_time}"
        )


def working_interval(rule: WorkingHoursRule | None, day: date, tz: ZoneInfo) -> TimeSlot | None:
    """The rule's window on `day`, localised in `tz` and returned in UTC.

    None when the day is off or the window is empty.
    """
    if rule is None or not rule.is_available:
        return None
    validate_rule(rule)
    start = parse_time(rule.start_time)
    end = parse_time(rule.end_time)
    if start == end:
        return None
    return TimeSlot(
        start=datetime.combine(day, start, tzinfo=tz).astimezone(timezone.utc),
        end=datetime.combine(day, end, tzinfo=tz).astimezone(timezone.utc),
    )


def resolve_open_intervals(
    rule: WorkingHoursRule | None,
    day: date,
    tz: ZoneInfo,
    provider_busy: Iterable[TimeSlot] = (),
) -> list[TimeSlot]:
    """Open intervals for `day`: the working window minus provider busy times."""
    window = working_interval(rule, day, tz)
    if window is None:
        return []
    busy = list(provider_busy)
    open_intervals = subtract(window, busy)
    logger.debug(
        "Resolved %d open interval(s) on %s from %d provider busy period(s)",
        len(open_intervals), day.isoformat(), len(busy),
    )
    return open_intervals
