"""Multi-source provider: unions busy times from several feeds."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..core.intervals import merge
from ..models import Calendar, TimeSlot
from .base import CalendarProvider, ProviderError

logger = logging.getLogger(__name__)


class MultiCalendarProvider(CalendarProvider):
    """Wraps several CalendarProvider instances.

    - required sources: a failure propagates as ProviderError (showing slots
      without them could offer time that is actually taken)
    - optional sources: failures are logged and tolerated
    """

    def __init__(
        self,
        required: list[CalendarProvider],
        optional: list[CalendarProvider] | None = None,
    ):
        self.required = required
        self.optional = optional or []

    async def get_busy_times(self, calendar: Calendar, start: datetime, end: datetime) -> list[TimeSlot]:
        async def _safe_get_busy(provider: CalendarProvider) -> list[TimeSlot]:
            try:
                return await provider.get_busy_times(calendar, start, end)
            except Exception:
                logger.exception("Failed to get busy times from an optional calendar source")
                return []

        required_results = await asyncio.gather(
            *[p.get_busy_times(calendar, start, end) for p in self.required],
            return_exceptions=True,
        )
        optional_results = await asyncio.gather(*[_safe_get_busy(p) for p in self.optional])

        all_busy: list[TimeSlot] = []
        for result in required_results:
            if isinstance(result, BaseException):
                if isinstance(result, ProviderError) or not isinstance(result, Exception):
                    raise result
                raise ProviderError(f"Required calendar source failed: {result}") from result
            all_busy.extend(result)
        for slots in optional_results:
            all_busy.extend(slots)

        return merge(all_busy)
