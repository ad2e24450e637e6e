"""Booking page and alias rules applied when owners create or edit pages."""

from __future__ import annotations

import logging
import re

from ..database import Database
from ..errors import NotFound, ValidationError
from ..models import BookingPage, User

logger = logging.getLogger(__name__)

ALIAS_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,62}[a-z0-9])?$")


def validate_alias(db: Database, alias: str, field: str = "alias") -> str:
    """Lower-case, URL-safe and not blacklisted."""
    alias = (alias or "").strip().lower()
    if not ALIAS_RE.match(alias):
        raise ValidationError(field, "use lowercase letters, digits and inner hyphens (max 64)")
    if db.get_blacklisted_alias(alias):
        logger.info("Rejected blacklisted alias %r", alias)
        raise ValidationError(field, "alias is not allowed")
    return alias


def validate_page(db: Database, owner: User, page: BookingPage) -> BookingPage:
    """Check a new or edited page against the owner's data. Returns it normalised."""
    if page.duration < 1:
        raise ValidationError("duration", "must be at least 1 minute")
    if page.buffer_before < 0:
        raise ValidationError("buffer_before", "must be non-negative")
    if page.buffer_after < 0:
        raise ValidationError("buffer_after", "must be non-negative")
    if page.max_bookings_per_visitor < 1:
        raise ValidationError("max_bookings_per_visitor", "must be at least 1")

    calendar = db.get_calendar(page.calendar_id)
    if not calendar or calendar.user_id != owner.id:
        raise NotFound("Calendar not found")

    page.alias = validate_alias(db, page.alias)
    for existing in db.list_booking_pages(owner.id):
        if existing.alias == page.alias and existing.id != page.id:
            raise ValidationError("alias", "already used by another of your booking pages")
    return page
