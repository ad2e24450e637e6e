"""Booking engine: the public slot listing and booking operations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from ..calendar.base import CalendarProvider, ProviderError
from ..config import AvailabilityConfig
from ..database import Database
from ..errors import (
    BookingError,
    BookingLimitReached,
    InvalidDate,
    InvalidInterval,
    InvalidWorkingHours,
    NotFound,
    PageNotFound,
    PageUnavailable,
    ProviderUnavailable,
    SlotConflict,
    ValidationError,
)
from ..models import Booking, BookingPage, Meeting, MeetingType, Slot, TimeSlot, User, utcnow
from .admission import BookingAdmission
from .availability import resolve_open_intervals, rule_for_day, working_interval
from .conflicts import busy_intervals, filter_conflicts, meeting_busy
from .intervals import expand, overlaps, validate_interval
from .slots import generate_slots

logger = logging.getLogger(__name__)


@dataclass
class SlotListing:
    """Result of a slot query. `error` carries the failure code; slots are then empty."""

    slots: list[Slot] = field(default_factory=list)
    error: str | None = None
    degraded: bool = False  # provider failed and was skipped ("open" policy)
    timezone: str = "UTC"

    def to_dict(self) -> dict:
        result: dict = {
            "slots": [s.to_dict() for s in self.slots],
            "timezone": self.timezone,
        }
        if self.error:
            result["error"] = self.error
        if self.degraded:
            result["degraded"] = True
        return result


def parse_datetime(value: datetime | str, tz: ZoneInfo, field_name: str) -> datetime:
    """ISO string or datetime; naive values are read in the owner's timezone."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(field_name, f"invalid ISO datetime: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value


class BookingEngine:
    """Computes a booking page's open slots and admits visitor bookings.

    All interval arithmetic runs in UTC; working hours are localised in the
    owner's timezone first and slots are handed back in that timezone.
    """

    def __init__(
        self,
        config: AvailabilityConfig,
        db: Database,
        calendar: CalendarProvider,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.db = db
        self.calendar = calendar
        self.clock = clock or utcnow
        self.admission = BookingAdmission(db)

    # --- Lookups ---

    def resolve_page(self, user_alias: str, page_alias: str) -> tuple[User, BookingPage]:
        owner = self.db.get_user_by_alias(user_alias)
        page = self.db.get_booking_page_by_alias(user_alias, page_alias) if owner else None
        if not owner or not page:
            raise PageNotFound(f"No booking page {user_alias}/{page_alias}")
        if not page.is_bookable:
            raise PageUnavailable(f"Booking page {user_alias}/{page_alias} is not accepting bookings")
        return owner, page

    def _parse_day(self, value: date | str, tz: ZoneInfo) -> date:
        if isinstance(value, str):
            try:
                value = date.fromisoformat(value.strip())
            except ValueError:
                raise InvalidDate(f"Invalid date: {value!r}. Use YYYY-MM-DD.")
        elif isinstance(value, datetime):
            value = value.date()
        today = self.clock().astimezone(tz).date()
        if value < today:
            raise InvalidDate(f"{value.isoformat()} is in the past")
        if value > today + timedelta(days=self.config.max_days_ahead):
            raise InvalidDate(f"{value.isoformat()} is more than {self.config.max_days_ahead} days ahead")
        return value

    def _not_before(self) -> datetime:
        return self.clock() + timedelta(minutes=self.config.min_notice_minutes)

    # --- Public operations ---

    async def get_available_slots(
        self,
        user_alias: str,
        page_alias: str,
        day: date | str,
        visitor_email: str | None = None,
    ) -> SlotListing:
        """Bookable slots of a page on one day in the owner's timezone.

        Expected failures come back as `SlotListing.error`, never raised.
        With `visitor_email`, a visitor already at the page's cap gets
        BookingLimitReached instead of slots.
        """
        try:
            owner, page = self.resolve_page(user_alias, page_alias)
            tz = owner.tz
            day = self._parse_day(day, tz)
        except BookingError as e:
            return SlotListing(error=e.code)

        listing = SlotListing(timezone=owner.timezone)
        count = self.db.count_visitor_bookings(page.id, visitor_email) if visitor_email else 0
        if count >= page.max_bookings_per_visitor:
            listing.error = BookingLimitReached.code
            return listing

        rule = rule_for_day(self.db.get_working_hours(owner.id), day)
        try:
            window = working_interval(rule, day, tz)
        except InvalidWorkingHours as e:
            logger.error("Stored working hours for user %s are invalid: %s", owner.id, e)
            listing.error = e.code
            return listing
        if window is None:
            return listing

        try:
            provider_busy, listing.degraded = await self._provider_busy(page, window)
        except ProviderUnavailable as e:
            listing.error = e.code
            return listing

        open_intervals = resolve_open_intervals(rule, day, tz, provider_busy)
        bookings = self.db.get_calendar_bookings(page.calendar_id, window.start, window.end)
        meetings = self.db.get_calendar_meetings(page.calendar_id, window.start, window.end)
        free = filter_conflicts(open_intervals, bookings, meetings)

        slots = generate_slots(
            free,
            page.duration,
            page.buffer_before,
            page.buffer_after,
            visitor_booking_count=count,
            max_bookings_per_visitor=page.max_bookings_per_visitor,
            not_before=self._not_before(),
        )
        listing.slots = [
            Slot(
                start=s.start.astimezone(tz),
                end=s.end.astimezone(tz),
                footprint=s.footprint,
            )
            for s in slots
        ]
        logger.debug(
            "%s/%s on %s: %d slot(s), %d booking(s), %d meeting(s) in the way",
            user_alias, page_alias, day.isoformat(), len(listing.slots), len(bookings), len(meetings),
        )
        return listing

    async def create_booking(
        self,
        user_alias: str,
        page_alias: str,
        visitor_email: str,
        visitor_name: str,
        slot_start: datetime | str,
        notes: str = "",
    ) -> Booking:
        """Admit a visitor booking. Raises a BookingError subclass on failure.

        The requested start is checked against the same open slots a listing
        of that day would offer, calendar feed included, before the storage
        transaction re-checks bookings and meetings.
        """
        owner, page = self.resolve_page(user_alias, page_alias)
        tz = owner.tz
        start = parse_datetime(slot_start, tz, "slot_start")

        if start < self._not_before():
            raise ValidationError("slot_start", "is in the past or inside the minimum notice period")
        day = start.astimezone(tz).date()
        horizon = self.clock().astimezone(tz).date() + timedelta(days=self.config.max_days_ahead)
        if day > horizon:
            raise ValidationError("slot_start", f"is more than {self.config.max_days_ahead} days ahead")

        rule = rule_for_day(self.db.get_working_hours(owner.id), day)
        window = working_interval(rule, day, tz)
        requested = TimeSlot(start=start, end=start + timedelta(minutes=page.duration))
        footprint = expand(requested, page.buffer_before, page.buffer_after)
        if window is None or footprint.start < window.start or footprint.end > window.end:
            raise ValidationError("slot_start", "is outside the owner's working hours")

        provider_busy, _ = await self._provider_busy(page, window)
        bookings = self.db.get_calendar_bookings(page.calendar_id, window.start, window.end)
        meetings = self.db.get_calendar_meetings(page.calendar_id, window.start, window.end)
        busy = [*provider_busy, *busy_intervals(bookings, meetings)]
        if any(overlaps(footprint, b) for b in busy):
            logger.info("Booking on page %s refused before admission: %s is busy", page.id, requested)
            raise SlotConflict("Requested time is no longer available")

        free = filter_conflicts(resolve_open_intervals(rule, day, tz, provider_busy), bookings, meetings)
        offered = generate_slots(
            free, page.duration, page.buffer_before, page.buffer_after, not_before=self._not_before(),
        )
        if start not in {s.start for s in offered}:
            raise ValidationError("slot_start", "is not one of the offered slot times")

        return self.admission.admit(page, visitor_email, visitor_name, start, notes)

    async def _provider_busy(self, page: BookingPage, window: TimeSlot) -> tuple[list[TimeSlot], bool]:
        """Calendar-feed busy times for the page's calendar, and whether the feed was skipped.

        Raises ProviderUnavailable under the "closed" failure policy.
        """
        calendar = self.db.get_calendar(page.calendar_id)
        try:
            return await self.calendar.get_busy_times(calendar, window.start, window.end), False
        except ProviderError as e:
            logger.warning("Busy-time fetch failed for calendar %s: %s", page.calendar_id, e)
            if self.config.provider_failure_policy == "closed":
                raise ProviderUnavailable(f"Busy times for calendar {page.calendar_id} could not be checked") from e
            return [], True

    # --- Owner operations ---

    def create_meeting(self, owner: User, meeting: Meeting) -> Meeting:
        """Schedule an owner meeting; it must not collide with anything on its calendar."""
        calendar = self.db.get_calendar(meeting.calendar_id)
        if not calendar or calendar.user_id != owner.id:
            raise NotFound("Calendar not found")
        if not meeting.title.strip():
            raise ValidationError("title", "required")
        try:
            validate_interval(meeting.slot)
        except InvalidInterval:
            raise ValidationError("end", "must be after start")
        for name in ("buffer_before", "buffer_after", "travel_buffer"):
            if getattr(meeting, name) < 0:
                raise ValidationError(name, "must be non-negative")
        if meeting.meeting_type != MeetingType.IN_PERSON:
            meeting.travel_buffer = 0
        meeting.user_id = owner.id
        meeting = self.db.insert_meeting_checked(meeting, meeting_busy(meeting))
        logger.info("Meeting #%s scheduled on calendar %s: %s", meeting.id, meeting.calendar_id, meeting.slot)
        return meeting

    def dashboard_stats(self, owner: User) -> dict[str, int]:
        tz = owner.tz
        now = self.clock()
        today = now.astimezone(tz).date()
        day = TimeSlot(
            start=datetime.combine(today, time.min, tzinfo=tz).astimezone(timezone.utc),
            end=datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc),
        )
        return self.db.get_dashboard_stats(owner.id, day, now)
