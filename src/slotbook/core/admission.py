"""Booking admission: write-time validation and commit of a visitor booking."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from ..database import Database
from ..errors import (
    BookingLimitReached,
    PageNotFound,
    PageUnavailable,
    SlotConflict,
    ValidationError,
)
from ..models import Booking, BookingPage, TimeSlot
from .intervals import expand

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 1000


def validate_visitor(visitor_email: str, visitor_name: str, notes: str = "") -> tuple[str, str, str]:
    """Normalise and check visitor fields. Returns (email, name, notes)."""
    email = (visitor_email or "").strip().lower()
    name = (visitor_name or "").strip()
    notes = (notes or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationError("visitor_email", "invalid email address")
    if not name:
        raise ValidationError("visitor_name", "required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("visitor_name", f"too long (max {MAX_NAME_LENGTH} characters)")
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError("notes", f"too long (max {MAX_NOTES_LENGTH} characters)")
    return email, name, notes


class BookingAdmission:
    """Turns a visitor's slot choice into a confirmed Booking, or a named failure.

    The overlap re-check, the visitor cap and the insert run inside one
    storage transaction (see Database.insert_booking_checked), so two
    concurrent requests for overlapping slots cannot both win.
    """

    def __init__(self, db: Database):
        self.db = db

    def admit(
        self,
        page: BookingPage | None,
        visitor_email: str,
        visitor_name: str,
        start: datetime,
        notes: str = "",
    ) -> Booking:
        if page is None:
            raise PageNotFound("Booking page not found")
        if not page.is_bookable:
            raise PageUnavailable("Booking page is not accepting bookings")
        if start.tzinfo is None:
            raise ValidationError("slot_start", "must include a timezone offset")

        email, name, notes = validate_visitor(visitor_email, visitor_name, notes)
        window = TimeSlot(start=start, end=start + timedelta(minutes=page.duration))
        booking = Booking(
            booking_page_id=page.id,
            visitor_email=email,
            visitor_name=name,
            slot=window,
            busy=expand(window, page.buffer_before, page.buffer_after),
            notes=notes,
        )

        try:
            booking = self.db.insert_booking_checked(booking, page)
        except (SlotConflict, BookingLimitReached) as e:
            logger.info("Booking rejected on page %s for %s: %s", page.id, email, e.code)
            raise

        logger.info("Booking #%s confirmed on page %s: %s", booking.id, page.id, window)
        return booking
