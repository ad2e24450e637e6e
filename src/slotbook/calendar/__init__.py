"""Busy-interval providers."""

from .base import CalendarProvider, NullCalendarProvider, ProviderError
from .factory import build_calendar_provider
from .google_calendar import GoogleCalendarProvider
from .multi_calendar import MultiCalendarProvider

__all__ = [
    "CalendarProvider",
    "GoogleCalendarProvider",
    "MultiCalendarProvider",
    "NullCalendarProvider",
    "ProviderError",
    "build_calendar_provider",
]
