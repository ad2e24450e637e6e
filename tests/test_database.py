"""Tests for the sqlite repository."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from slotbook.database import Database
from slotbook.errors import SlotConflict
from slotbook.models import (
    BlacklistedAlias,
    Booking,
    BookingPage,
    BookingStatus,
    Calendar,
    Meeting,
    MeetingStatus,
    MeetingType,
    Team,
    TimeSlot,
    User,
    UserRole,
    WorkingHoursRule,
)

DAY = datetime(2030, 6, 3, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return DAY + timedelta(hours=hour, minutes=minute)


@pytest.fixture
def db(tmp_path):
    d = Database(tmp_path / "test.db")
    d.connect()
    yield d
    d.close()


@pytest.fixture
def owner(db):
    return db.create_user(User(name="Alice", email="Alice@Example.com", alias="alice", timezone="Europe/Berlin"))


@pytest.fixture
def calendar(db, owner):
    return db.create_calendar(Calendar(user_id=owner.id, alias="work", is_primary=True))


@pytest.fixture
def page(db, calendar):
    return db.create_booking_page(BookingPage(
        user_id=calendar.user_id, calendar_id=calendar.id, alias="intro", is_approved=True,
    ))


def _book(db, page, start: datetime, email: str = "bob@example.com") -> Booking:
    slot = TimeSlot(start=start, end=start + timedelta(minutes=30))
    return db.insert_booking_checked(
        Booking(visitor_email=email, visitor_name="Bob", slot=slot, busy=slot), page,
    )


# ── Users ────────────────────────────────────────────────


def test_create_user_generates_key_and_lowercases_email(db, owner):
    assert owner.id is not None
    assert owner.email == "alice@example.com"
    assert len(owner.api_key) > 20
    assert db.get_user_by_email("ALICE@example.com").id == owner.id
    assert db.get_user_by_api_key(owner.api_key).alias == "alice"
    assert db.get_user_by_api_key("") is None


def test_users_without_alias_do_not_collide(db):
    db.create_user(User(name="A", email="a@example.com"))
    db.create_user(User(name="B", email="b@example.com"))
    assert len(db.list_users()) == 2
    assert db.get_user_by_alias("") is None


def test_duplicate_email_rejected(db, owner):
    with pytest.raises(sqlite3.IntegrityError):
        db.create_user(User(name="Other", email="alice@example.com"))


def test_update_user(db, owner):
    updated = db.update_user(owner.id, name="Alice B", timezone="UTC", role=UserRole.SUPER_ADMIN, api_key="x")
    assert updated.name == "Alice B"
    assert updated.timezone == "UTC"
    assert updated.is_super_admin
    assert updated.api_key == owner.api_key  # not an updatable field


# ── Calendars and working hours ──────────────────────────


def test_calendar_crud(db, owner, calendar):
    db.create_calendar(Calendar(user_id=owner.id, alias="home", external_calendar_id="home@gmail.com"))
    assert [c.alias for c in db.list_calendars(owner.id)] == ["work", "home"]
    db.update_calendar(calendar.id, alias="office")
    assert db.get_calendar(calendar.id).alias == "office"
    assert db.delete_calendar(calendar.id)
    assert db.get_calendar(calendar.id) is None


def test_set_working_hours_replaces_week(db, owner):
    db.set_working_hours(owner.id, [
        WorkingHoursRule(day_of_week=d, start_time="09:00", end_time="17:00") for d in range(1, 6)
    ])
    db.set_working_hours(owner.id, [
        WorkingHoursRule(day_of_week=1, start_time="10:00", end_time="12:00", is_available=False),
    ])
    rules = db.get_working_hours(owner.id)
    assert len(rules) == 1
    assert rules[0].start_time == "10:00"
    assert rules[0].is_available is False


def test_set_working_hours_rolls_back_on_duplicate_day(db, owner):
    db.set_working_hours(owner.id, [WorkingHoursRule(day_of_week=1, start_time="09:00", end_time="17:00")])
    with pytest.raises(sqlite3.IntegrityError):
        db.set_working_hours(owner.id, [
            WorkingHoursRule(day_of_week=2, start_time="09:00", end_time="17:00"),
            WorkingHoursRule(day_of_week=2, start_time="10:00", end_time="11:00"),
        ])
    rules = db.get_working_hours(owner.id)
    assert [r.day_of_week for r in rules] == [1]


# ── Booking pages ────────────────────────────────────────


def test_page_lookup_by_alias_ignores_approval(db, owner, calendar):
    draft = db.create_booking_page(BookingPage(user_id=owner.id, calendar_id=calendar.id, alias="draft"))
    found = db.get_booking_page_by_alias("alice", "draft")
    assert found.id == draft.id
    assert not found.is_bookable
    assert db.get_booking_page_by_alias("alice", "missing") is None
    assert db.get_booking_page_by_alias("nobody", "draft") is None


def test_pending_pages_and_approval(db, page, calendar):
    draft = db.create_booking_page(BookingPage(user_id=calendar.user_id, calendar_id=calendar.id, alias="draft"))
    assert [p.id for p in db.list_pending_booking_pages()] == [draft.id]
    db.update_booking_page(draft.id, is_approved=True)
    assert db.list_pending_booking_pages() == []
    assert db.get_booking_page(draft.id).is_approved is True


def test_page_alias_unique_per_owner(db, page, calendar):
    with pytest.raises(sqlite3.IntegrityError):
        db.create_booking_page(BookingPage(user_id=calendar.user_id, calendar_id=calendar.id, alias="intro"))


# ── Bookings ─────────────────────────────────────────────


def test_booking_round_trip_keeps_utc(db, page):
    booking = _book(db, page, at(10))
    stored = db.get_booking(booking.id)
    assert stored.slot.start == at(10)
    assert stored.slot.start.tzinfo is not None
    assert stored.visitor_email == "bob@example.com"


def test_insert_booking_checked_conflict(db, page):
    _book(db, page, at(10))
    with pytest.raises(SlotConflict):
        _book(db, page, at(10, 15), email="carol@example.com")


def test_bookings_on_other_calendars_do_not_conflict(db, owner, page):
    other_cal = db.create_calendar(Calendar(user_id=owner.id, alias="side"))
    other_page = db.create_booking_page(BookingPage(
        user_id=owner.id, calendar_id=other_cal.id, alias="side", is_approved=True,
    ))
    _book(db, page, at(10))
    assert _book(db, other_page, at(10)).id is not None


def test_calendar_bookings_window(db, page):
    _book(db, page, at(9))
    _book(db, page, at(12))
    cancelled = _book(db, page, at(15))
    db.update_booking_status(cancelled.id, BookingStatus.CANCELLED)
    found = db.get_calendar_bookings(page.calendar_id, at(8), at(11))
    assert [b.slot.start for b in found] == [at(9)]
    assert len(db.get_calendar_bookings(page.calendar_id, at(0), at(23))) == 2


def test_update_booking_status_expected(db, page):
    booking = _book(db, page, at(10))
    assert db.update_booking_status(booking.id, BookingStatus.COMPLETED, expected=BookingStatus.CONFIRMED)
    assert not db.update_booking_status(booking.id, BookingStatus.CANCELLED, expected=BookingStatus.CONFIRMED)
    assert db.get_booking(booking.id).status == BookingStatus.COMPLETED


def test_count_and_list_user_bookings(db, owner, page):
    _book(db, page, at(9))
    _book(db, page, at(10), email="BOB@example.com")
    assert db.count_visitor_bookings(page.id, "bob@example.com") == 2
    assert len(db.list_user_bookings(owner.id)) == 2


# ── Meetings ─────────────────────────────────────────────


def test_meeting_round_trip_and_conflicts(db, owner, calendar, page):
    meeting = Meeting(
        user_id=owner.id,
        calendar_id=calendar.id,
        title="Site visit",
        slot=TimeSlot(start=at(13), end=at(14)),
        meeting_type=MeetingType.IN_PERSON,
        participants=["x@example.com"],
        travel_buffer=15,
    )
    db.insert_meeting_checked(meeting, TimeSlot(start=at(12, 45), end=at(14, 15)))
    stored = db.get_meeting(meeting.id)
    assert stored.participants == ["x@example.com"]
    assert stored.meeting_type == MeetingType.IN_PERSON

    with pytest.raises(SlotConflict):
        _book(db, page, at(14))
    with pytest.raises(SlotConflict):
        db.insert_meeting_checked(
            Meeting(user_id=owner.id, calendar_id=calendar.id, title="Clash",
                    slot=TimeSlot(start=at(12, 30), end=at(13))),
            TimeSlot(start=at(12, 30), end=at(13)),
        )

    assert db.update_meeting_status(meeting.id, MeetingStatus.CANCELLED, expected=MeetingStatus.SCHEDULED)
    assert not db.update_meeting_status(meeting.id, MeetingStatus.CANCELLED, expected=MeetingStatus.SCHEDULED)
    assert db.get_calendar_meetings(calendar.id, at(0), at(23)) == []
    assert _book(db, page, at(14)).id is not None


# ── Blacklist, teams, dashboard ──────────────────────────


def test_blacklist(db, owner):
    db.add_to_blacklist(BlacklistedAlias(alias="Admin", reason="reserved", created_by=owner.id))
    assert db.get_blacklisted_alias("ADMIN").reason == "reserved"
    assert [e.alias for e in db.list_blacklist()] == ["admin"]
    assert db.remove_from_blacklist("admin")
    assert db.get_blacklisted_alias("admin") is None


def test_teams(db, owner):
    db.create_team(Team(user_id=owner.id, name="Sales", emails=["a@example.com", "b@example.com"]))
    teams = db.list_teams(owner.id)
    assert teams[0].name == "Sales"
    assert teams[0].emails == ["a@example.com", "b@example.com"]


def test_dashboard_stats(db, owner, calendar, page):
    db.create_calendar(Calendar(user_id=owner.id, alias="g", external_calendar_id="g@gmail.com"))
    db.create_team(Team(user_id=owner.id, name="Sales"))
    db.insert_meeting_checked(
        Meeting(user_id=owner.id, calendar_id=calendar.id, title="Today",
                slot=TimeSlot(start=at(16), end=at(17))),
        TimeSlot(start=at(16), end=at(17)),
    )
    _book(db, page, at(10))
    _book(db, page, at(8))  # before `now`

    stats = db.get_dashboard_stats(owner.id, TimeSlot(start=at(0), end=at(24)), now=at(9))
    assert stats == {
        "today_meetings": 1,
        "upcoming_bookings": 1,
        "active_teams": 1,
        "synced_calendars": 1,
    }


def test_page_deletion_cascades_bookings(db, page):
    booking = _book(db, page, at(10))
    assert db.delete_booking_page(page.id)
    assert db.get_booking(booking.id) is None
