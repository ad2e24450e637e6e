"""Core data models for slotbook."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "user"
    SUPER_ADMIN = "super_admin"


class BookingStatus(str, Enum):
    """Lifecycle of a visitor booking. Only CONFIRMED occupies time."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MeetingType(str, Enum):
    VIRTUAL = "virtual"
    IN_PERSON = "in_person"


@dataclass
class TimeSlot:
    """A half-open [start, end) time interval."""

    start: datetime
    end: datetime

    def __str__(self) -> str:
        day = self.start.strftime("%A, %B %d")
        start_time = self.start.strftime("%H:%M")
        end_time = self.end.strftime("%H:%M")
        return f"{day} {start_time}-{end_time}"

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def format_in_tz(self, tz: ZoneInfo) -> str:
        """Format the interval converted to the given timezone."""
        start_local = self.start.astimezone(tz)
        end_local = self.end.astimezone(tz)
        day = start_local.strftime("%A, %B %d")
        return f"{day} {start_local.strftime('%H:%M')}-{end_local.strftime('%H:%M')}"


@dataclass
class Slot:
    """A bookable slot: the visitor-facing window plus its buffered footprint."""

    start: datetime
    end: datetime
    footprint: TimeSlot

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class User:
    id: int | None = None
    name: str = ""
    email: str = ""
    alias: str = ""
    role: UserRole = UserRole.USER
    timezone: str = "UTC"
    api_key: str = ""
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class Calendar:
    id: int | None = None
    user_id: int = 0
    alias: str = ""
    is_primary: bool = False
    external_calendar_id: str = ""  # id at the busy-interval provider, "" = none
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class WorkingHoursRule:
    """Weekly working hours for one weekday, in the owner's timezone."""

    id: int | None = None
    user_id: int = 0
    day_of_week: int = 0  # 0 = Sunday .. 6 = Saturday
    start_time: str = ""  # "09:00"
    end_time: str = ""  # "17:00"
    is_available: bool = True


@dataclass
class BookingPage:
    id: int | None = None
    user_id: int = 0
    calendar_id: int = 0
    alias: str = ""
    duration: int = 30  # minutes
    buffer_before: int = 0
    buffer_after: int = 0
    max_bookings_per_visitor: int = 5
    description: str = ""
    is_approved: bool = False
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_bookable(self) -> bool:
        return self.is_approved and self.is_active


@dataclass
class Booking:
    """A visitor reservation against a booking page."""

    id: int | None = None
    booking_page_id: int = 0
    visitor_email: str = ""
    visitor_name: str = ""
    slot: TimeSlot | None = None  # visitor-facing window
    busy: TimeSlot | None = None  # window expanded by the page buffers
    status: BookingStatus = BookingStatus.CONFIRMED
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_page_id": self.booking_page_id,
            "visitor_email": self.visitor_email,
            "visitor_name": self.visitor_name,
            "start": self.slot.start.isoformat() if self.slot else None,
            "end": self.slot.end.isoformat() if self.slot else None,
            "status": self.status.value,
            "notes": self.notes,
        }


@dataclass
class Meeting:
    """An owner-created calendar entry. Occupies time like a booking."""

    id: int | None = None
    user_id: int = 0
    calendar_id: int = 0
    title: str = ""
    description: str = ""
    slot: TimeSlot | None = None
    meeting_type: MeetingType = MeetingType.VIRTUAL
    location: str = ""
    video_url: str = ""
    participants: list[str] = field(default_factory=list)
    buffer_before: int = 0
    buffer_after: int = 0
    travel_buffer: int = 0  # in-person only, applied on both sides
    status: MeetingStatus = MeetingStatus.SCHEDULED
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "calendar_id": self.calendar_id,
            "title": self.title,
            "description": self.description,
            "start": self.slot.start.isoformat() if self.slot else None,
            "end": self.slot.end.isoformat() if self.slot else None,
            "meeting_type": self.meeting_type.value,
            "location": self.location,
            "video_url": self.video_url,
            "participants": self.participants,
            "buffer_before": self.buffer_before,
            "buffer_after": self.buffer_after,
            "travel_buffer": self.travel_buffer,
            "status": self.status.value,
        }


@dataclass
class BlacklistedAlias:
    alias: str
    reason: str = ""
    created_by: int | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Team:
    id: int | None = None
    user_id: int = 0
    name: str = ""
    description: str = ""
    emails: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
