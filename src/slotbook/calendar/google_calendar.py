"""Google Calendar free/busy provider."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from googleapiclient.discovery import build

from ..config import CalendarConfig
from ..models import Calendar, TimeSlot
from ..retry import RetryPolicy
from .base import CalendarProvider, ProviderError
from .google_auth import get_google_credentials

logger = logging.getLogger(__name__)

# Per-calendar freebusy errors that mean "this account cannot see it"
IGNORED_CALENDAR_ERRORS = {"notFound"}


class GoogleCalendarProvider(CalendarProvider):
    """Queries the Google Calendar freebusy API for a calendar's external id."""

    def __init__(self, config: CalendarConfig, name: str = "google"):
        self.config = config
        self.name = name
        self._service = None
        self.retry = RetryPolicy(max_retries=config.max_retries, base_delay=config.retry_base_delay)

    def _build_service(self):
        creds = get_google_credentials(
            credentials_path=self.config.credentials_path,
            token_path=self.config.token_path,
        )
        return build("calendar", "v3", credentials=creds)

    async def get_service(self):
        """The Calendar API client, built on first use in a worker thread.

        Loading and refreshing the token and fetching the discovery document
        are blocking calls.
        """
        if not self._service:
            self._service = await asyncio.to_thread(self._build_service)
        return self._service

    async def get_busy_times(self, calendar: Calendar, start: datetime, end: datetime) -> list[TimeSlot]:
        external_id = calendar.external_calendar_id
        if not external_id:
            return []

        body = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "items": [{"id": external_id}],
        }

        try:
            service = await self.get_service()
            request = service.freebusy().query(body=body)
            result = await self.retry.run(request.execute, label=f"{self.name}.freebusy")
        except Exception as e:
            raise ProviderError(f"{self.name}: freebusy query failed: {e}") from e

        entry = result.get("calendars", {}).get(external_id, {})
        errors = entry.get("errors", [])
        if errors:
            reasons = {err.get("reason", "") for err in errors}
            if reasons <= IGNORED_CALENDAR_ERRORS:
                logger.debug("%s: calendar %s not visible to this account", self.name, external_id)
                return []
            raise ProviderError(f"{self.name}: freebusy errors for {external_id}: {sorted(reasons)}")

        busy_slots = []
        for period in entry.get("busy", []):
            busy_start = datetime.fromisoformat(period["start"].replace("Z", "+00:00"))
            busy_end = datetime.fromisoformat(period["end"].replace("Z", "+00:00"))
            busy_slots.append(TimeSlot(start=busy_start, end=busy_end))

        logger.info("%s: found %d busy periods for calendar #%s", self.name, len(busy_slots), calendar.id)
        return busy_slots
