"""Abstract base for busy-interval providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ..models import Calendar, TimeSlot


class ProviderError(Exception):
    """A provider could not fetch busy times. Distinct from 'no busy times'."""


class CalendarProvider(ABC):
    """Base class for external calendar feeds (Google, etc.).

    Providers only report busy intervals; they never see bookings or
    working hours.
    """

    @abstractmethod
    async def get_busy_times(self, calendar: Calendar, start: datetime, end: datetime) -> list[TimeSlot]:
        """Busy intervals of `calendar` overlapping [start, end).

        Raises ProviderError when the feed is unreachable.
        """
        ...


class NullCalendarProvider(CalendarProvider):
    """No external integration: never reports busy time."""

    async def get_busy_times(self, calendar: Calendar, start: datetime, end: datetime) -> list[TimeSlot]:
        return []
