"""Tests for booking page and alias validation."""

from __future__ import annotations

import pytest

from slotbook.core.pages import validate_alias, validate_page
from slotbook.database import Database
from slotbook.errors import NotFound, ValidationError
from slotbook.models import BlacklistedAlias, BookingPage, Calendar, User


@pytest.fixture
def db(tmp_path):
    d = Database(tmp_path / "pages.db")
    d.connect()
    yield d
    d.close()


@pytest.fixture
def owner(db):
    return db.create_user(User(name="Alice", email="alice@example.com", alias="alice"))


@pytest.fixture
def calendar(db, owner):
    return db.create_calendar(Calendar(user_id=owner.id, alias="work"))


def test_alias_is_lowercased(db):
    assert validate_alias(db, " Intro-Call ") == "intro-call"


@pytest.mark.parametrize("alias", ["", "-intro", "intro-", "in tro", "intro_call", "a" * 65])
def test_alias_format_rejected(db, alias):
    with pytest.raises(ValidationError):
        validate_alias(db, alias)


def test_blacklisted_alias_rejected(db):
    db.add_to_blacklist(BlacklistedAlias(alias="admin"))
    with pytest.raises(ValidationError) as exc:
        validate_alias(db, "Admin", field="page_alias")
    assert exc.value.field == "page_alias"


def test_validate_page_ok(db, owner, calendar):
    page = validate_page(db, owner, BookingPage(user_id=owner.id, calendar_id=calendar.id, alias="Intro"))
    assert page.alias == "intro"


@pytest.mark.parametrize("kwargs,field", [
    ({"duration": 0}, "duration"),
    ({"buffer_before": -1}, "buffer_before"),
    ({"buffer_after": -1}, "buffer_after"),
    ({"max_bookings_per_visitor": 0}, "max_bookings_per_visitor"),
])
def test_validate_page_rejects_numbers(db, owner, calendar, kwargs, field):
    page = BookingPage(user_id=owner.id, calendar_id=calendar.id, alias="intro", **kwargs)
    with pytest.raises(ValidationError) as exc:
        validate_page(db, owner, page)
    assert exc.value.field == field


def test_validate_page_foreign_calendar(db, owner):
    other = db.create_user(User(name="Bob", email="bob@example.com", alias="bob"))
    foreign = db.create_calendar(Calendar(user_id=other.id, alias="bob-cal"))
    with pytest.raises(NotFound):
        validate_page(db, owner, BookingPage(user_id=owner.id, calendar_id=foreign.id, alias="intro"))


def test_validate_page_alias_unique_per_owner(db, owner, calendar):
    existing = db.create_booking_page(BookingPage(user_id=owner.id, calendar_id=calendar.id, alias="intro"))
    with pytest.raises(ValidationError):
        validate_page(db, owner, BookingPage(user_id=owner.id, calendar_id=calendar.id, alias="intro"))
    # Re-validating the same page keeps its own alias
    assert validate_page(db, owner, existing).alias == "intro"
