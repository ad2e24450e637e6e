"""Tests for busy-interval providers: Google free/busy, multi-source and factory."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from slotbook.calendar.base import CalendarProvider, NullCalendarProvider, ProviderError
from slotbook.calendar.factory import build_calendar_provider
from slotbook.calendar.google_calendar import GoogleCalendarProvider
from slotbook.calendar.multi_calendar import MultiCalendarProvider
from slotbook.config import CalendarConfig, CalendarSourceConfig
from slotbook.models import Calendar, TimeSlot

START = datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)
END = datetime(2030, 6, 3, 17, 0, tzinfo=timezone.utc)
CAL = Calendar(id=7, user_id=1, alias="work", external_calendar_id="alice@gmail.com")


def hours(start: int, end: int) -> TimeSlot:
    return TimeSlot(start=START.replace(hour=start), end=START.replace(hour=end))


# --- Fixtures ---


class FakeCalendar(CalendarProvider):
    """Fake busy-interval feed for testing."""

    def __init__(self, busy: list[TimeSlot] | None = None, error: Exception | None = None):
        self.busy = busy or []
        self.error = error

    async def get_busy_times(self, calendar: Calendar, start: datetime, end: datetime) -> list[TimeSlot]:
        if self.error:
            raise self.error
        return self.busy


def google_provider(response: dict | None = None, error: Exception | None = None) -> GoogleCalendarProvider:
    provider = GoogleCalendarProvider(CalendarConfig(provider="google"), name="work")
    service = MagicMock()
    execute = service.freebusy.return_value.query.return_value.execute
    if error:
        execute.side_effect = error
    else:
        execute.return_value = response or {}
    provider._service = service
    return provider


# --- NullCalendarProvider ---


@pytest.mark.asyncio
async def test_null_provider_reports_nothing():
    assert await NullCalendarProvider().get_busy_times(CAL, START, END) == []


# --- GoogleCalendarProvider ---


@pytest.mark.asyncio
async def test_google_parses_busy_periods():
    provider = google_provider({
        "calendars": {
            "alice@gmail.com": {
                "busy": [
                    {"start": "2030-06-03T10:00:00Z", "end": "2030-06-03T11:00:00Z"},
                    {"start": "2030-06-03T14:00:00+02:00", "end": "2030-06-03T15:00:00+02:00"},
                ]
            }
        }
    })
    busy = await provider.get_busy_times(CAL, START, END)
    assert busy == [hours(10, 11), hours(12, 13)]

    query = provider._service.freebusy.return_value.query
    body = query.call_args.kwargs["body"]
    assert body["items"] == [{"id": "alice@gmail.com"}]
    assert body["timeMin"] == START.isoformat()


@pytest.mark.asyncio
async def test_google_skips_calendar_without_external_id():
    provider = google_provider()
    assert await provider.get_busy_times(Calendar(id=8, alias="local"), START, END) == []
    assert not provider._service.freebusy.called


@pytest.mark.asyncio
async def test_google_not_found_calendar_is_empty():
    provider = google_provider({
        "calendars": {"alice@gmail.com": {"errors": [{"domain": "global", "reason": "notFound"}]}}
    })
    assert await provider.get_busy_times(CAL, START, END) == []


@pytest.mark.asyncio
async def test_google_backend_error_raises_provider_error():
    provider = google_provider({
        "calendars": {"alice@gmail.com": {"errors": [{"domain": "global", "reason": "backendError"}]}}
    })
    with pytest.raises(ProviderError):
        await provider.get_busy_times(CAL, START, END)


@pytest.mark.asyncio
async def test_google_api_failure_raises_provider_error():
    provider = google_provider(error=ValueError("invalid_grant"))
    with pytest.raises(ProviderError, match="invalid_grant"):
        await provider.get_busy_times(CAL, START, END)


# --- MultiCalendarProvider ---


@pytest.mark.asyncio
async def test_multi_unions_and_merges():
    multi = MultiCalendarProvider(
        [FakeCalendar([hours(14, 15)]), FakeCalendar([hours(10, 11)])],
        [FakeCalendar([hours(10, 12)])],
    )
    assert await multi.get_busy_times(CAL, START, END) == [hours(10, 12), hours(14, 15)]


@pytest.mark.asyncio
async def test_multi_required_failure_propagates():
    multi = MultiCalendarProvider([FakeCalendar(error=ProviderError("work down"))], [FakeCalendar()])
    with pytest.raises(ProviderError, match="work down"):
        await multi.get_busy_times(CAL, START, END)


@pytest.mark.asyncio
async def test_multi_required_unexpected_error_is_wrapped():
    multi = MultiCalendarProvider([FakeCalendar(error=RuntimeError("boom"))])
    with pytest.raises(ProviderError, match="boom"):
        await multi.get_busy_times(CAL, START, END)


@pytest.mark.asyncio
async def test_multi_optional_failure_tolerated():
    multi = MultiCalendarProvider(
        [FakeCalendar([hours(10, 11)])],
        [FakeCalendar(error=ProviderError("personal down"))],
    )
    assert await multi.get_busy_times(CAL, START, END) == [hours(10, 11)]


# --- Factory ---


def test_factory_none_provider():
    assert isinstance(build_calendar_provider(CalendarConfig()), NullCalendarProvider)


def test_factory_single_calendar_no_sources():
    """Empty sources = one GoogleCalendarProvider from the top-level paths."""
    config = CalendarConfig(provider="google", credentials_path="/tmp/c.json", token_path="/tmp/t.json")
    with patch("slotbook.calendar.factory.GoogleCalendarProvider") as mock_cls:
        mock_cls.return_value = MagicMock()
        build_calendar_provider(config)
        mock_cls.assert_called_once_with(config)


def test_factory_single_required_source_is_direct():
    config = CalendarConfig(
        provider="google",
        sources=[CalendarSourceConfig(name="work", token_path="/tmp/t-work.json")],
    )
    provider = build_calendar_provider(config)
    assert isinstance(provider, GoogleCalendarProvider)
    assert provider.name == "work"
    assert provider.config.token_path == "/tmp/t-work.json"


@pytest.mark.asyncio
async def test_factory_single_optional_source_keeps_tolerance():
    config = CalendarConfig(
        provider="google",
        sources=[CalendarSourceConfig(name="personal", token_path="/tmp/t-personal.json", required=False)],
    )
    provider = build_calendar_provider(config)
    assert isinstance(provider, MultiCalendarProvider)
    assert provider.required == []
    assert [p.name for p in provider.optional] == ["personal"]

    provider.optional[0]._service = google_provider(error=ValueError("invalid_grant"))._service
    assert await provider.get_busy_times(CAL, START, END) == []


def test_factory_multi_source():
    config = CalendarConfig(
        provider="google",
        sources=[
            CalendarSourceConfig(name="work", token_path="/tmp/t-work.json"),
            CalendarSourceConfig(name="personal", token_path="/tmp/t-personal.json", required=False),
        ],
    )
    provider = build_calendar_provider(config)
    assert isinstance(provider, MultiCalendarProvider)
    assert [p.name for p in provider.required] == ["work"]
    assert [p.name for p in provider.optional] == ["personal"]


@pytest.mark.asyncio
async def test_google_service_built_once_off_the_event_loop():
    provider = GoogleCalendarProvider(CalendarConfig(provider="google"), name="work")
    service = MagicMock()
    service.freebusy.return_value.query.return_value.execute.return_value = {}
    loop_thread = threading.get_ident()
    build_threads = []

    def fake_build():
        build_threads.append(threading.get_ident())
        return service

    with patch.object(provider, "_build_service", side_effect=fake_build):
        await provider.get_busy_times(CAL, START, END)
        await provider.get_busy_times(CAL, START, END)

    assert len(build_threads) == 1
    assert build_threads[0] != loop_thread
    assert service.freebusy.return_value.query.call_count == 2
