"""SQLite repository for users, calendars, booking pages, bookings and meetings."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from .errors import BookingLimitReached, SlotConflict
from .models import (
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

logger = logging.getLogger(__name__)

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    alias TEXT UNIQUE,
    role TEXT NOT NULL DEFAULT 'user',
    timezone TEXT NOT NULL DEFAULT 'UTC',
    api_key TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calendars (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    alias TEXT NOT NULL,
    is_primary INTEGER DEFAULT 0,
    external_calendar_id TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_availability (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    day_of_week INTEGER NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    is_available INTEGER DEFAULT 1,
    UNIQUE (user_id, day_of_week)
);

CREATE TABLE IF NOT EXISTS booking_pages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    calendar_id INTEGER NOT NULL REFERENCES calendars(id) ON DELETE CASCADE,
    alias TEXT NOT NULL,
    duration INTEGER NOT NULL DEFAULT 30,
    buffer_before INTEGER NOT NULL DEFAULT 0,
    buffer_after INTEGER NOT NULL DEFAULT 0,
    max_bookings_per_visitor INTEGER NOT NULL DEFAULT 5,
    description TEXT DEFAULT '',
    is_approved INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, alias)
);

CREATE TABLE IF NOT EXISTS bookings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    booking_page_id INTEGER NOT NULL REFERENCES booking_pages(id) ON DELETE CASCADE,
    calendar_id INTEGER NOT NULL,
    visitor_email TEXT NOT NULL,
    visitor_name TEXT DEFAULT '',
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    busy_start TEXT NOT NULL,
    busy_end TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'confirmed',
    notes TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meetings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    calendar_id INTEGER NOT NULL REFERENCES calendars(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    busy_start TEXT NOT NULL,
    busy_end TEXT NOT NULL,
    meeting_type TEXT NOT NULL DEFAULT 'virtual',
    location TEXT DEFAULT '',
    video_url TEXT DEFAULT '',
    participants TEXT DEFAULT '[]',
    buffer_before INTEGER NOT NULL DEFAULT 0,
    buffer_after INTEGER NOT NULL DEFAULT 0,
    travel_buffer INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'scheduled',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alias_blacklist (
    alias TEXT PRIMARY KEY,
    reason TEXT DEFAULT '',
    created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    emails TEXT DEFAULT '[]',
    created_at TEXT NOT NULL
);
"""

MIGRATIONS = [
    # Migration 1: Indexes for the overlap checks and the visitor cap
    [
        "CREATE INDEX IF NOT EXISTS idx_bookings_calendar_busy ON bookings(calendar_id, status, busy_start, busy_end)",
        "CREATE INDEX IF NOT EXISTS idx_bookings_visitor ON bookings(booking_page_id, visitor_email, status)",
        "CREATE INDEX IF NOT EXISTS idx_meetings_calendar_busy ON meetings(calendar_id, status, busy_start, busy_end)",
    ],
]

CALENDAR_FIELDS = {"alias", "is_primary", "external_calendar_id"}
BOOKING_PAGE_FIELDS = {
    "calendar_id", "alias", "duration", "buffer_before", "buffer_after",
    "max_bookings_per_visitor", "description", "is_approved", "is_active",
}
USER_FIELDS = {"name", "alias", "timezone", "role"}


def _ts(value: datetime) -> str:
    """Fixed-width UTC ISO timestamp so string comparison orders correctly."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


class Database:
    def __init__(self, db_path: str | Path = "slotbook.db", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        # Autocommit mode: every write below opens its own explicit transaction
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(DB_SCHEMA)
        self._run_migrations()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _run_migrations(self) -> None:
        for migration_stmts in MIGRATIONS:
            for stmt in migration_stmts:
                try:
                    self._conn.execute(stmt)
                except sqlite3.OperationalError:
                    pass  # Already applied

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            self.connect()
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialised write transaction.

        BEGIN IMMEDIATE takes sqlite's write lock up front, so a check made
        inside the block still holds when the insert commits, also across
        processes sharing the file.
        """
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _update(self, table: str, row_id: int, fields: dict, allowed: set[str]) -> bool:
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = ?" for k in updates)
        values = [int(v) if isinstance(v, bool) else v for v in updates.values()]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?", [*values, row_id]
            )
            return cursor.rowcount > 0

    # --- Users ---

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            alias=row["alias"] or "",
            role=UserRole(row["role"]),
            timezone=row["timezone"],
            api_key=row["api_key"],
            created_at=_dt(row["created_at"]),
        )

    def create_user(self, user: User) -> User:
        if not user.api_key:
            user.api_key = secrets.token_urlsafe(32)
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO users (name, email, alias, role, timezone, api_key, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    user.name,
                    user.email.lower(),
                    user.alias or None,
                    user.role.value,
                    user.timezone,
                    user.api_key,
                    _ts(user.created_at),
                ),
            )
        user.id = cursor.lastrowid
        user.email = user.email.lower()
        return user

    def get_user(self, user_id: int) -> User | None:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> User | None:
        row = self._fetchone("SELECT * FROM users WHERE email = ?", (email.lower(),))
        return self._row_to_user(row) if row else None

    def get_user_by_alias(self, alias: str) -> User | None:
        if not alias:
            return None
        row = self._fetchone("SELECT * FROM users WHERE alias = ?", (alias,))
        return self._row_to_user(row) if row else None

    def get_user_by_api_key(self, api_key: str) -> User | None:
        if not api_key:
            return None
        row = self._fetchone("SELECT * FROM users WHERE api_key = ?", (api_key,))
        return self._row_to_user(row) if row else None

    def list_users(self) -> list[User]:
        return [self._row_to_user(r) for r in self._fetchall("SELECT * FROM users ORDER BY id")]

    def update_user(self, user_id: int, **fields) -> User | None:
        if "alias" in fields:
            fields["alias"] = fields["alias"] or None
        if "role" in fields and isinstance(fields["role"], UserRole):
            fields["role"] = fields["role"].value
        self._update("users", user_id, fields, USER_FIELDS)
        return self.get_user(user_id)

    # --- Calendars ---

    def _row_to_calendar(self, row: sqlite3.Row) -> Calendar:
        return Calendar(
            id=row["id"],
            user_id=row["user_id"],
            alias=row["alias"],
            is_primary=bool(row["is_primary"]),
            external_calendar_id=row["external_calendar_id"] or "",
            created_at=_dt(row["created_at"]),
        )

    def create_calendar(self, calendar: Calendar) -> Calendar:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO calendars (user_id, alias, is_primary, external_calendar_id, created_at)
                VALUES (?, ?, ?, ?, ?)""",
                (
                    calendar.user_id,
                    calendar.alias,
                    int(calendar.is_primary),
                    calendar.external_calendar_id,
                    _ts(calendar.created_at),
                ),
            )
        calendar.id = cursor.lastrowid
        return calendar

    def get_calendar(self, calendar_id: int) -> Calendar | None:
        row = self._fetchone("SELECT * FROM calendars WHERE id = ?", (calendar_id,))
        return self._row_to_calendar(row) if row else None

    def list_calendars(self, user_id: int) -> list[Calendar]:
        rows = self._fetchall(
            "SELECT * FROM calendars WHERE user_id = ? ORDER BY is_primary DESC, alias",
            (user_id,),
        )
        return [self._row_to_calendar(r) for r in rows]

    def update_calendar(self, calendar_id: int, **fields) -> Calendar | None:
        self._update("calendars", calendar_id, fields, CALENDAR_FIELDS)
        return self.get_calendar(calendar_id)

    def delete_calendar(self, calendar_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM calendars WHERE id = ?", (calendar_id,))
            return cursor.rowcount > 0

    # --- Working hours ---

    def get_working_hours(self, user_id: int) -> list[WorkingHoursRule]:
        rows = self._fetchall(
            "SELECT * FROM user_availability WHERE user_id = ? ORDER BY day_of_week",
            (user_id,),
        )
        return [
            WorkingHoursRule(
                id=row["id"],
                user_id=row["user_id"],
                day_of_week=row["day_of_week"],
                start_time=row["start_time"],
                end_time=row["end_time"],
                is_available=bool(row["is_available"]),
            )
            for row in rows
        ]

    def set_working_hours(self, user_id: int, rules: list[WorkingHoursRule]) -> list[WorkingHoursRule]:
        """Replace the user's whole week in one transaction."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM user_availability WHERE user_id = ?", (user_id,))
            for rule in rules:
                cursor = conn.execute(
                    """INSERT INTO user_availability
                    (user_id, day_of_week, start_time, end_time, is_available)
                    VALUES (?, ?, ?, ?, ?)""",
                    (user_id, rule.day_of_week, rule.start_time, rule.end_time, int(rule.is_available)),
                )
                rule.id = cursor.lastrowid
                rule.user_id = user_id
        return rules

    # --- Booking pages ---

    def _row_to_page(self, row: sqlite3.Row) -> BookingPage:
        return BookingPage(
            id=row["id"],
            user_id=row["user_id"],
            calendar_id=row["calendar_id"],
            alias=row["alias"],
            duration=row["duration"],
            buffer_before=row["buffer_before"],
            buffer_after=row["buffer_after"],
            max_bookings_per_visitor=row["max_bookings_per_visitor"],
            description=row["description"] or "",
            is_approved=bool(row["is_approved"]),
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]),
        )

    def create_booking_page(self, page: BookingPage) -> BookingPage:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO booking_pages
                (user_id, calendar_id, alias, duration, buffer_before, buffer_after,
                 max_bookings_per_visitor, description, is_approved, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    page.user_id,
                    page.calendar_id,
                    page.alias,
                    page.duration,
                    page.buffer_before,
                    page.buffer_after,
                    page.max_bookings_per_visitor,
                    page.description,
                    int(page.is_approved),
                    int(page.is_active),
                    _ts(page.created_at),
                ),
            )
        page.id = cursor.lastrowid
        return page

    def get_booking_page(self, page_id: int) -> BookingPage | None:
        row = self._fetchone("SELECT * FROM booking_pages WHERE id = ?", (page_id,))
        return self._row_to_page(row) if row else None

    def get_booking_page_by_alias(self, user_alias: str, page_alias: str) -> BookingPage | None:
        """Look up a page by owner alias and page alias, whatever its approval state."""
        row = self._fetchone(
            """SELECT p.* FROM booking_pages p JOIN users u ON u.id = p.user_id
            WHERE u.alias = ? AND p.alias = ?""",
            (user_alias, page_alias),
        )
        return self._row_to_page(row) if row else None

    def list_booking_pages(self, user_id: int) -> list[BookingPage]:
        rows = self._fetchall(
            "SELECT * FROM booking_pages WHERE user_id = ? ORDER BY alias", (user_id,)
        )
        return [self._row_to_page(r) for r in rows]

    def list_pending_booking_pages(self) -> list[BookingPage]:
        rows = self._fetchall(
            "SELECT * FROM booking_pages WHERE is_approved = 0 ORDER BY created_at"
        )
        return [self._row_to_page(r) for r in rows]

    def update_booking_page(self, page_id: int, **fields) -> BookingPage | None:
        self._update("booking_pages", page_id, fields, BOOKING_PAGE_FIELDS)
        return self.get_booking_page(page_id)

    def delete_booking_page(self, page_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM booking_pages WHERE id = ?", (page_id,))
            return cursor.rowcount > 0

    # --- Bookings ---

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            booking_page_id=row["booking_page_id"],
            visitor_email=row["visitor_email"],
            visitor_name=row["visitor_name"] or "",
            slot=TimeSlot(start=_dt(row["start_time"]), end=_dt(row["end_time"])),
            busy=TimeSlot(start=_dt(row["busy_start"]), end=_dt(row["busy_end"])),
            status=BookingStatus(row["status"]),
            notes=row["notes"] or "",
            created_at=_dt(row["created_at"]),
        )

    def _calendar_conflicts(self, conn: sqlite3.Connection, calendar_id: int, busy: TimeSlot) -> int:
        """Count occupying bookings and meetings overlapping `busy` on a calendar."""
        params = (calendar_id, _ts(busy.end), _ts(busy.start))
        bookings = conn.execute(
            """SELECT COUNT(*) AS cnt FROM bookings
            WHERE calendar_id = ? AND status = 'confirmed'
            AND busy_start < ? AND busy_end > ?""",
            params,
        ).fetchone()["cnt"]
        meetings = conn.execute(
            """SELECT COUNT(*) AS cnt FROM meetings
            WHERE calendar_id = ? AND status = 'scheduled'
            AND busy_start < ? AND busy_end > ?""",
            params,
        ).fetchone()["cnt"]
        return bookings + meetings

    def _visitor_count(self, conn: sqlite3.Connection, page_id: int, visitor_email: str) -> int:
        return conn.execute(
            """SELECT COUNT(*) AS cnt FROM bookings
            WHERE booking_page_id = ? AND visitor_email = ? AND status = 'confirmed'""",
            (page_id, visitor_email.lower()),
        ).fetchone()["cnt"]

    def insert_booking_checked(self, booking: Booking, page: BookingPage) -> Booking:
        """Overlap check, visitor cap check and insert as one write transaction.

        Raises SlotConflict or BookingLimitReached; nothing is written then.
        """
        booking.visitor_email = booking.visitor_email.lower()
        try:
            with self._transaction() as conn:
                if self._calendar_conflicts(conn, page.calendar_id, booking.busy):
                    raise SlotConflict("Requested time overlaps an existing booking or meeting")
                if self._visitor_count(conn, page.id, booking.visitor_email) >= page.max_bookings_per_visitor:
                    raise BookingLimitReached(
                        f"Visitor already holds {page.max_bookings_per_visitor} booking(s) on this page"
                    )
                cursor = conn.execute(
                    """INSERT INTO bookings
                    (booking_page_id, calendar_id, visitor_email, visitor_name,
                     start_time, end_time, busy_start, busy_end, status, notes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        page.id,
                        page.calendar_id,
                        booking.visitor_email,
                        booking.visitor_name,
                        _ts(booking.slot.start),
                        _ts(booking.slot.end),
                        _ts(booking.busy.start),
                        _ts(booking.busy.end),
                        BookingStatus.CONFIRMED.value,
                        booking.notes,
                        _ts(booking.created_at),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise SlotConflict("Booking was rejected by a storage constraint") from e
        booking.id = cursor.lastrowid
        booking.booking_page_id = page.id
        booking.status = BookingStatus.CONFIRMED
        return booking

    def get_booking(self, booking_id: int) -> Booking | None:
        row = self._fetchone("SELECT * FROM bookings WHERE id = ?", (booking_id,))
        return self._row_to_booking(row) if row else None

    def list_page_bookings(self, page_id: int) -> list[Booking]:
        rows = self._fetchall(
            "SELECT * FROM bookings WHERE booking_page_id = ? ORDER BY start_time DESC",
            (page_id,),
        )
        return [self._row_to_booking(r) for r in rows]

    def list_user_bookings(self, user_id: int, limit: int = 100) -> list[Booking]:
        rows = self._fetchall(
            """SELECT b.* FROM bookings b JOIN booking_pages p ON p.id = b.booking_page_id
            WHERE p.user_id = ? ORDER BY b.start_time DESC LIMIT ?""",
            (user_id, limit),
        )
        return [self._row_to_booking(r) for r in rows]

    def get_calendar_bookings(self, calendar_id: int, start: datetime, end: datetime) -> list[Booking]:
        """Confirmed bookings whose busy interval overlaps [start, end)."""
        rows = self._fetchall(
            """SELECT * FROM bookings
            WHERE calendar_id = ? AND status = 'confirmed'
            AND busy_start < ? AND busy_end > ?
            ORDER BY busy_start""",
            (calendar_id, _ts(end), _ts(start)),
        )
        return [self._row_to_booking(r) for r in rows]

    def count_visitor_bookings(self, page_id: int, visitor_email: str) -> int:
        with self._lock:
            return self._visitor_count(self.conn, page_id, visitor_email)

    def update_booking_status(
        self, booking_id: int, status: BookingStatus, expected: BookingStatus | None = None
    ) -> bool:
        """Set a booking's status, optionally only if it currently has `expected`."""
        sql = "UPDATE bookings SET status = ? WHERE id = ?"
        params: list = [status.value, booking_id]
        if expected is not None:
            sql += " AND status = ?"
            params.append(expected.value)
        with self._transaction() as conn:
            return conn.execute(sql, params).rowcount > 0

    # --- Meetings ---

    def _row_to_meeting(self, row: sqlite3.Row) -> Meeting:
        return Meeting(
            id=row["id"],
            user_id=row["user_id"],
            calendar_id=row["calendar_id"],
            title=row["title"],
            description=row["description"] or "",
            slot=TimeSlot(start=_dt(row["start_time"]), end=_dt(row["end_time"])),
            meeting_type=MeetingType(row["meeting_type"]),
            location=row["location"] or "",
            video_url=row["video_url"] or "",
            participants=json.loads(row["participants"] or "[]"),
            buffer_before=row["buffer_before"],
            buffer_after=row["buffer_after"],
            travel_buffer=row["travel_buffer"],
            status=MeetingStatus(row["status"]),
            created_at=_dt(row["created_at"]),
        )

    def insert_meeting_checked(self, meeting: Meeting, busy: TimeSlot) -> Meeting:
        """Insert a meeting unless its busy interval collides on its calendar."""
        with self._transaction() as conn:
            if self._calendar_conflicts(conn, meeting.calendar_id, busy):
                raise SlotConflict("Meeting overlaps an existing booking or meeting")
            cursor = conn.execute(
                """INSERT INTO meetings
                (user_id, calendar_id, title, description, start_time, end_time,
                 busy_start, busy_end, meeting_type, location, video_url, participants,
                 buffer_before, buffer_after, travel_buffer, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    meeting.user_id,
                    meeting.calendar_id,
                    meeting.title,
                    meeting.description,
                    _ts(meeting.slot.start),
                    _ts(meeting.slot.end),
                    _ts(busy.start),
                    _ts(busy.end),
                    meeting.meeting_type.value,
                    meeting.location,
                    meeting.video_url,
                    json.dumps(meeting.participants),
                    meeting.buffer_before,
                    meeting.buffer_after,
                    meeting.travel_buffer,
                    meeting.status.value,
                    _ts(meeting.created_at),
                ),
            )
        meeting.id = cursor.lastrowid
        return meeting

    def get_meeting(self, meeting_id: int) -> Meeting | None:
        row = self._fetchone("SELECT * FROM meetings WHERE id = ?", (meeting_id,))
        return self._row_to_meeting(row) if row else None

    def list_meetings(self, user_id: int) -> list[Meeting]:
        rows = self._fetchall(
            "SELECT * FROM meetings WHERE user_id = ? ORDER BY start_time DESC", (user_id,)
        )
        return [self._row_to_meeting(r) for r in rows]

    def get_calendar_meetings(self, calendar_id: int, start: datetime, end: datetime) -> list[Meeting]:
        """Scheduled meetings whose busy interval overlaps [start, end)."""
        rows = self._fetchall(
            """SELECT * FROM meetings
            WHERE calendar_id = ? AND status = 'scheduled'
            AND busy_start < ? AND busy_end > ?
            ORDER BY busy_start""",
            (calendar_id, _ts(end), _ts(start)),
        )
        return [self._row_to_meeting(r) for r in rows]

    def update_meeting_status(
        self, meeting_id: int, status: MeetingStatus, expected: MeetingStatus | None = None
    ) -> bool:
        """Set a meeting's status, optionally only if it currently has `expected`."""
        sql = "UPDATE meetings SET status = ? WHERE id = ?"
        params: list = [status.value, meeting_id]
        if expected is not None:
            sql += " AND status = ?"
            params.append(expected.value)
        with self._transaction() as conn:
            return conn.execute(sql, params).rowcount > 0

    # --- Alias blacklist ---

    def get_blacklisted_alias(self, alias: str) -> BlacklistedAlias | None:
        row = self._fetchone("SELECT * FROM alias_blacklist WHERE alias = ?", (alias.lower(),))
        if not row:
            return None
        return BlacklistedAlias(
            alias=row["alias"],
            reason=row["reason"] or "",
            created_by=row["created_by"],
            created_at=_dt(row["created_at"]),
        )

    def list_blacklist(self) -> list[BlacklistedAlias]:
        rows = self._fetchall("SELECT * FROM alias_blacklist ORDER BY alias")
        return [
            BlacklistedAlias(
                alias=r["alias"],
                reason=r["reason"] or "",
                created_by=r["created_by"],
                created_at=_dt(r["created_at"]),
            )
            for r in rows
        ]

    def add_to_blacklist(self, entry: BlacklistedAlias) -> BlacklistedAlias:
        entry.alias = entry.alias.lower()
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO alias_blacklist (alias, reason, created_by, created_at)
                VALUES (?, ?, ?, ?)""",
                (entry.alias, entry.reason, entry.created_by, _ts(entry.created_at)),
            )
        return entry

    def remove_from_blacklist(self, alias: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM alias_blacklist WHERE alias = ?", (alias.lower(),))
            return cursor.rowcount > 0

    # --- Teams ---

    def create_team(self, team: Team) -> Team:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO teams (user_id, name, description, emails, created_at)
                VALUES (?, ?, ?, ?, ?)""",
                (team.user_id, team.name, team.description, json.dumps(team.emails), _ts(team.created_at)),
            )
        team.id = cursor.lastrowid
        return team

    def list_teams(self, user_id: int) -> list[Team]:
        rows = self._fetchall("SELECT * FROM teams WHERE user_id = ? ORDER BY name", (user_id,))
        return [
            Team(
                id=r["id"],
                user_id=r["user_id"],
                name=r["name"],
                description=r["description"] or "",
                emails=json.loads(r["emails"] or "[]"),
                created_at=_dt(r["created_at"]),
            )
            for r in rows
        ]

    # --- Dashboard ---

    def get_dashboard_stats(self, user_id: int, day: TimeSlot, now: datetime) -> dict[str, int]:
        """Counts for the owner dashboard. `day` is today's span in the owner's timezone."""
        today_meetings = self._fetchone(
            """SELECT COUNT(*) AS cnt FROM meetings
            WHERE user_id = ? AND status = 'scheduled' AND start_time >= ? AND start_time < ?""",
            (user_id, _ts(day.start), _ts(day.end)),
        )["cnt"]
        upcoming_bookings = self._fetchone(
            """SELECT COUNT(*) AS cnt FROM bookings b JOIN booking_pages p ON p.id = b.booking_page_id
            WHERE p.user_id = ? AND b.status = 'confirmed' AND b.start_time >= ?""",
            (user_id, _ts(now)),
        )["cnt"]
        teams = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM teams WHERE user_id = ?", (user_id,)
        )["cnt"]
        synced = self._fetchone(
            """SELECT COUNT(*) AS cnt FROM calendars
            WHERE user_id = ? AND external_calendar_id != ''""",
            (user_id,),
        )["cnt"]
        return {
            "today_meetings": today_meetings,
            "upcoming_bookings": upcoming_bookings,
            "active_teams": teams,
            "synced_calendars": synced,
        }
