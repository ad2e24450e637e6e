"""HTTP layer using FastAPI: public booking flow plus the owner/admin management API."""

import hmac
import logging
import time
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import ServerConfig
from .core.availability import validate_rule
from .core.engine import BookingEngine, parse_datetime
from .core.pages import validate_alias, validate_page
from .errors import (
    BookingError,
    NotFound,
    PermissionDenied,
    ValidationError,
    status_for_code,
)
from .models import (
    BlacklistedAlias,
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

RATE_WINDOW = 60  # seconds
RATE_LIMITER_MAX_KEYS = 10000


class RateLimiter:
    """Sliding-window request counter per client IP."""

    def __init__(self, limit: int, window: float = RATE_WINDOW):
        self.limit = limit
        self.window = window
        self._history: dict[str, list[float]] = {}
        self._cleanup_counter = 0

    def allow(self, client_ip: str) -> bool:
        now = time.time()
        history = [t for t in self._history.get(client_ip, []) if now - t < self.window]
        if len(history) >= self.limit:
            self._history[client_ip] = history
            return False
        history.append(now)
        self._history[client_ip] = history
        # Periodic cleanup: evict stale entries
        self._cleanup_counter += 1
        if self._cleanup_counter >= 100:
            self._cleanup_counter = 0
            stale = [k for k, v in self._history.items() if not v or now - v[-1] > self.window]
            for k in stale:
                del self._history[k]
            if len(self._history) > RATE_LIMITER_MAX_KEYS:
                excess = len(self._history) - RATE_LIMITER_MAX_KEYS
                for k in list(self._history)[:excess]:
                    del self._history[k]
        return True


def _page_dict(page: BookingPage) -> dict:
    return {
        "id": page.id,
        "calendar_id": page.calendar_id,
        "alias": page.alias,
        "duration": page.duration,
        "buffer_before": page.buffer_before,
        "buffer_after": page.buffer_after,
        "max_bookings_per_visitor": page.max_bookings_per_visitor,
        "description": page.description,
        "is_approved": page.is_approved,
        "is_active": page.is_active,
    }


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "alias": user.alias,
        "role": user.role.value,
        "timezone": user.timezone,
    }


def _calendar_dict(calendar: Calendar) -> dict:
    return {
        "id": calendar.id,
        "alias": calendar.alias,
        "is_primary": calendar.is_primary,
        "external_calendar_id": calendar.external_calendar_id,
    }


def _rule_dict(rule: WorkingHoursRule) -> dict:
    return {
        "day_of_week": rule.day_of_week,
        "start_time": rule.start_time,
        "end_time": rule.end_time,
        "is_available": rule.is_available,
    }


def _check_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError("timezone", f"unknown timezone {value!r}")
    return value


def create_app(engine: BookingEngine, server: ServerConfig | None = None):
    """Build the FastAPI application around a BookingEngine."""
    try:
        from fastapi import Depends, FastAPI, HTTPException, Request
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
        from pydantic import BaseModel
    except ImportError:
        raise ImportError("fastapi not installed. Run: pip install fastapi uvicorn")

    from . import __version__

    server = server or ServerConfig()
    db = engine.db
    limiter = RateLimiter(server.rate_limit)

    app = FastAPI(title="slotbook", version=__version__)
    if server.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=server.allowed_origins,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
        )

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        body = {"code": exc.code, "detail": exc.message}
        if isinstance(exc, ValidationError):
            body["field"] = exc.field
        return JSONResponse(status_code=exc.status_code, content=body)

    # --- Auth and rate limiting ---

    def check_rate_limit(request: Request) -> None:
        """Per-IP rate limiting for public endpoints."""
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"
        if not limiter.allow(client_ip):
            raise HTTPException(status_code=429, detail="Too many requests. Please wait.")

    def current_user(request: Request) -> User:
        auth = request.headers.get("authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
        user = db.get_user_by_api_key(token) if token else None
        if not user or not hmac.compare_digest(user.api_key, token):
            raise HTTPException(status_code=401, detail="Invalid API key")
        return user

    def super_admin(user: User = Depends(current_user)) -> User:
        if not user.is_super_admin:
            raise PermissionDenied("Super-admin role required")
        return user

    def own_calendar(user: User, calendar_id: int) -> Calendar:
        calendar = db.get_calendar(calendar_id)
        if not calendar or calendar.user_id != user.id:
            raise NotFound("Calendar not found")
        return calendar

    def own_page(user: User, page_id: int) -> BookingPage:
        page = db.get_booking_page(page_id)
        if not page or page.user_id != user.id:
            raise NotFound("Booking page not found")
        return page

    # --- Request models ---

    class BookingRequest(BaseModel):
        visitor_email: str
        visitor_name: str
        slot_start: str
        notes: str = ""

    class ProfileUpdate(BaseModel):
        name: Optional[str] = None
        alias: Optional[str] = None
        timezone: Optional[str] = None

    class UserCreate(BaseModel):
        name: str
        email: str
        alias: str = ""
        timezone: str = "UTC"
        role: UserRole = UserRole.USER

    class CalendarRequest(BaseModel):
        alias: str
        is_primary: bool = False
        external_calendar_id: str = ""

    class CalendarUpdate(BaseModel):
        alias: Optional[str] = None
        is_primary: Optional[bool] = None
        external_calendar_id: Optional[str] = None

    class RuleRequest(BaseModel):
        day_of_week: int
        start_time: str
        end_time: str
        is_available: bool = True

    class AvailabilityRequest(BaseModel):
        rules: list[RuleRequest]

    class PageRequest(BaseModel):
        calendar_id: int
        alias: str
        duration: int = 30
        buffer_before: int = 0
        buffer_after: int = 0
        max_bookings_per_visitor: int = 5
        description: str = ""
        is_active: bool = True

    class PageUpdate(BaseModel):
        calendar_id: Optional[int] = None
        alias: Optional[str] = None
        duration: Optional[int] = None
        buffer_before: Optional[int] = None
        buffer_after: Optional[int] = None
        max_bookings_per_visitor: Optional[int] = None
        description: Optional[str] = None
        is_active: Optional[bool] = None

    class MeetingRequest(BaseModel):
        calendar_id: int
        title: str
        start: str
        end: str
        description: str = ""
        meeting_type: MeetingType = MeetingType.VIRTUAL
        location: str = ""
        video_url: str = ""
        participants: list[str] = []
        buffer_before: int = 0
        buffer_after: int = 0
        travel_buffer: int = 0

    class TeamRequest(BaseModel):
        name: str
        description: str = ""
        emails: list[str] = []

    class BlacklistRequest(BaseModel):
        alias: str
        reason: str = ""

    # --- Public booking flow ---

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/book/{user_alias}/{page_alias}")
    async def get_page(user_alias: str, page_alias: str, request: Request):
        check_rate_limit(request)
        owner, page = engine.resolve_page(user_alias, page_alias)
        return {
            "owner": owner.name,
            "timezone": owner.timezone,
            "alias": page.alias,
            "duration": page.duration,
            "description": page.description,
        }

    @app.get("/api/book/{user_alias}/{page_alias}/slots")
    async def get_slots(
        user_alias: str, page_alias: str, request: Request, date: str, email: str = "",
    ):
        check_rate_limit(request)
        listing = await engine.get_available_slots(
            user_alias, page_alias, date, visitor_email=email or None,
        )
        body = listing.to_dict()
        if listing.error:
            body["code"] = listing.error
            return JSONResponse(status_code=status_for_code(listing.error), content=body)
        return body

    @app.post("/api/book/{user_alias}/{page_alias}", status_code=201)
    async def book(user_alias: str, page_alias: str, req: BookingRequest, request: Request):
        check_rate_limit(request)
        booking = await engine.create_booking(
            user_alias, page_alias, req.visitor_email, req.visitor_name, req.slot_start, req.notes,
        )
        return booking.to_dict()

    # --- Profile ---

    @app.get("/api/me")
    async def get_me(user: User = Depends(current_user)):
        return _user_dict(user)

    @app.patch("/api/me")
    async def update_me(req: ProfileUpdate, user: User = Depends(current_user)):
        fields = req.model_dump(exclude_none=True)
        if "alias" in fields and fields["alias"]:
            fields["alias"] = validate_alias(db, fields["alias"])
            other = db.get_user_by_alias(fields["alias"])
            if other and other.id != user.id:
                raise ValidationError("alias", "already taken")
        if "timezone" in fields:
            _check_timezone(fields["timezone"])
        if "name" in fields and not fields["name"].strip():
            raise ValidationError("name", "required")
        return _user_dict(db.update_user(user.id, **fields))

    @app.get("/api/dashboard")
    async def dashboard(user: User = Depends(current_user)):
        return engine.dashboard_stats(user)

    # --- Calendars ---

    @app.get("/api/calendars")
    async def list_calendars(user: User = Depends(current_user)):
        return {"calendars": [_calendar_dict(c) for c in db.list_calendars(user.id)]}

    @app.post("/api/calendars", status_code=201)
    async def create_calendar(req: CalendarRequest, user: User = Depends(current_user)):
        if not req.alias.strip():
            raise ValidationError("alias", "required")
        calendar = db.create_calendar(Calendar(
            user_id=user.id,
            alias=req.alias.strip(),
            is_primary=req.is_primary,
            external_calendar_id=req.external_calendar_id.strip(),
        ))
        return _calendar_dict(calendar)

    @app.patch("/api/calendars/{calendar_id}")
    async def update_calendar(calendar_id: int, req: CalendarUpdate, user: User = Depends(current_user)):
        own_calendar(user, calendar_id)
        calendar = db.update_calendar(calendar_id, **req.model_dump(exclude_none=True))
        return _calendar_dict(calendar)

    @app.delete("/api/calendars/{calendar_id}")
    async def delete_calendar(calendar_id: int, user: User = Depends(current_user)):
        own_calendar(user, calendar_id)
        db.delete_calendar(calendar_id)
        return {"status": "deleted"}

    # --- Working hours ---

    @app.get("/api/availability")
    async def get_availability(user: User = Depends(current_user)):
        return {
            "timezone": user.timezone,
            "rules": [_rule_dict(r) for r in db.get_working_hours(user.id)],
        }

    @app.put("/api/availability")
    async def set_availability(req: AvailabilityRequest, user: User = Depends(current_user)):
        rules = [WorkingHoursRule(user_id=user.id, **r.model_dump()) for r in req.rules]
        seen: set[int] = set()
        for rule in rules:
            validate_rule(rule)
            if rule.day_of_week in seen:
                raise ValidationError("rules", f"day_of_week {rule.day_of_week} listed twice")
            seen.add(rule.day_of_week)
        rules = db.set_working_hours(user.id, rules)
        logger.info("Working hours replaced for user %s (%d day(s))", user.id, len(rules))
        return {"rules": [_rule_dict(r) for r in rules]}

    # --- Booking pages ---

    @app.get("/api/pages")
    async def list_pages(user: User = Depends(current_user)):
        return {"pages": [_page_dict(p) for p in db.list_booking_pages(user.id)]}

    @app.post("/api/pages", status_code=201)
    async def create_page(req: PageRequest, user: User = Depends(current_user)):
        page = validate_page(db, user, BookingPage(user_id=user.id, **req.model_dump()))
        page = db.create_booking_page(page)
        logger.info("Booking page %s/%s created, awaiting approval", user.alias, page.alias)
        return _page_dict(page)

    @app.patch("/api/pages/{page_id}")
    async def update_page(page_id: int, req: PageUpdate, user: User = Depends(current_user)):
        page = own_page(user, page_id)
        fields = req.model_dump(exclude_none=True)
        for key, value in fields.items():
            setattr(page, key, value)
        validate_page(db, user, page)
        fields["alias"] = page.alias
        return _page_dict(db.update_booking_page(page_id, **fields))

    @app.delete("/api/pages/{page_id}")
    async def delete_page(page_id: int, user: User = Depends(current_user)):
        own_page(user, page_id)
        db.delete_booking_page(page_id)
        return {"status": "deleted"}

    @app.get("/api/pages/{page_id}/bookings")
    async def list_page_bookings(page_id: int, user: User = Depends(current_user)):
        own_page(user, page_id)
        return {"bookings": [b.to_dict() for b in db.list_page_bookings(page_id)]}

    # --- Bookings ---

    @app.get("/api/bookings")
    async def list_bookings(user: User = Depends(current_user)):
        return {"bookings": [b.to_dict() for b in db.list_user_bookings(user.id)]}

    def _transition_booking(user: User, booking_id: int, status: BookingStatus) -> dict:
        booking = db.get_booking(booking_id)
        if not booking:
            raise NotFound("Booking not found")
        own_page(user, booking.booking_page_id)
        if not db.update_booking_status(booking_id, status, expected=BookingStatus.CONFIRMED):
            raise ValidationError("status", f"booking is {booking.status.value}, not confirmed")
        logger.info("Booking #%s marked %s", booking_id, status.value)
        return db.get_booking(booking_id).to_dict()

    @app.post("/api/bookings/{booking_id}/cancel")
    async def cancel_booking(booking_id: int, user: User = Depends(current_user)):
        return _transition_booking(user, booking_id, BookingStatus.CANCELLED)

    @app.post("/api/bookings/{booking_id}/complete")
    async def complete_booking(booking_id: int, user: User = Depends(current_user)):
        return _transition_booking(user, booking_id, BookingStatus.COMPLETED)

    # --- Meetings ---

    @app.get("/api/meetings")
    async def list_meetings(user: User = Depends(current_user)):
        return {"meetings": [m.to_dict() for m in db.list_meetings(user.id)]}

    @app.post("/api/meetings", status_code=201)
    async def create_meeting(req: MeetingRequest, user: User = Depends(current_user)):
        fields = req.model_dump()
        slot = TimeSlot(
            start=parse_datetime(fields.pop("start"), user.tz, "start"),
            end=parse_datetime(fields.pop("end"), user.tz, "end"),
        )
        meeting = engine.create_meeting(user, Meeting(user_id=user.id, slot=slot, **fields))
        return meeting.to_dict()

    @app.post("/api/meetings/{meeting_id}/cancel")
    async def cancel_meeting(meeting_id: int, user: User = Depends(current_user)):
        meeting = db.get_meeting(meeting_id)
        if not meeting or meeting.user_id != user.id:
            raise NotFound("Meeting not found")
        if not db.update_meeting_status(meeting_id, MeetingStatus.CANCELLED, expected=MeetingStatus.SCHEDULED):
            raise ValidationError("status", f"meeting is {meeting.status.value}, not scheduled")
        logger.info("Meeting #%s cancelled", meeting_id)
        return {"status": "cancelled"}

    # --- Teams ---

    @app.get("/api/teams")
    async def list_teams(user: User = Depends(current_user)):
        return {
            "teams": [
                {"id": t.id, "name": t.name, "description": t.description, "emails": t.emails}
                for t in db.list_teams(user.id)
            ]
        }

    @app.post("/api/teams", status_code=201)
    async def create_team(req: TeamRequest, user: User = Depends(current_user)):
        if not req.name.strip():
            raise ValidationError("name", "required")
        team = db.create_team(Team(user_id=user.id, **req.model_dump()))
        return {"id": team.id, "name": team.name}

    # --- Super-admin ---

    @app.get("/api/admin/users")
    async def list_users(admin: User = Depends(super_admin)):
        return {"users": [_user_dict(u) for u in db.list_users()]}

    @app.post("/api/admin/users", status_code=201)
    async def create_user(req: UserCreate, admin: User = Depends(super_admin)):
        if db.get_user_by_email(req.email):
            raise ValidationError("email", "already registered")
        alias = validate_alias(db, req.alias) if req.alias else ""
        if alias and db.get_user_by_alias(alias):
            raise ValidationError("alias", "already taken")
        user = db.create_user(User(
            name=req.name,
            email=req.email,
            alias=alias,
            role=req.role,
            timezone=_check_timezone(req.timezone),
        ))
        return {**_user_dict(user), "api_key": user.api_key}

    @app.get("/api/admin/pages/pending")
    async def pending_pages(admin: User = Depends(super_admin)):
        return {"pages": [_page_dict(p) for p in db.list_pending_booking_pages()]}

    @app.post("/api/admin/pages/{page_id}/approve")
    async def approve_page(page_id: int, admin: User = Depends(super_admin)):
        if not db.get_booking_page(page_id):
            raise NotFound("Booking page not found")
        page = db.update_booking_page(page_id, is_approved=True)
        logger.info("Booking page #%s approved by user %s", page_id, admin.id)
        return _page_dict(page)

    @app.get("/api/admin/blacklist")
    async def list_blacklist(admin: User = Depends(super_admin)):
        return {"aliases": [{"alias": e.alias, "reason": e.reason} for e in db.list_blacklist()]}

    @app.post("/api/admin/blacklist", status_code=201)
    async def add_blacklist(req: BlacklistRequest, admin: User = Depends(super_admin)):
        alias = req.alias.strip().lower()
        if not alias:
            raise ValidationError("alias", "required")
        if db.get_blacklisted_alias(alias):
            raise ValidationError("alias", "already blacklisted")
        db.add_to_blacklist(BlacklistedAlias(alias=alias, reason=req.reason, created_by=admin.id))
        return {"alias": alias, "reason": req.reason}

    @app.delete("/api/admin/blacklist/{alias}")
    async def remove_blacklist(alias: str, admin: User = Depends(super_admin)):
        if not db.remove_from_blacklist(alias):
            raise NotFound("Alias is not blacklisted")
        return {"status": "deleted"}

    return app


class WebServer:
    """Runs the FastAPI app under uvicorn."""

    def __init__(self, engine: BookingEngine, config: ServerConfig):
        self.engine = engine
        self.config = config
        self._server = None

    async def start(self) -> None:
        try:
            import uvicorn
        except ImportError:
            raise ImportError("uvicorn not installed. Run: pip install uvicorn")

        if "*" in self.config.allowed_origins:
            logger.warning(
                "CORS allow_origins contains '*'. Any website can call the management API "
                "with a user's key."
            )
        app = create_app(self.engine, self.config)
        config = uvicorn.Config(app, host=self.config.host, port=self.config.port, log_level="info")
        self._server = uvicorn.Server(config)
        logger.info("Web server starting on %s:%s", self.config.host, self.config.port)
        await self._server.serve()

    async def stop(self) -> None:
        if self._server:
            self._server.should_exit = True
            logger.info("Web server stopped")
