"""CLI entry point for slotbook."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import signal
import sys
from datetime import date, timedelta
from pathlib import Path

from . import __version__

MINIMAL_CONFIG = """\
server:
  host: "0.0.0.0"
  port: 8080

database:
  path: "slotbook.db"

availability:
  min_notice_minutes: 60
  max_days_ahead: 60
  provider_failure_policy: "closed"

calendar:
  provider: "none"

admin:
  email: "${SLOTBOOK_ADMIN_EMAIL}"
"""

MINIMAL_ENV = "DATABASE_PATH=slotbook.db\nSLOTBOOK_ADMIN_EMAIL=admin@example.com\n"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _open_db(config):
    from .database import Database

    db = Database(config.database.path, busy_timeout=config.database.busy_timeout)
    db.connect()
    return db


def _build_engine(config, db):
    from .calendar import build_calendar_provider
    from .core.engine import BookingEngine

    return BookingEngine(config.availability, db, build_calendar_provider(config.calendar))


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize slotbook configuration in the current directory."""
    config_dest = Path("config.yaml")
    env_dest = Path(".env")

    pkg_dir = Path(__file__).parent.parent.parent  # src/slotbook -> project root
    config_src = pkg_dir / "config.example.yaml"
    env_src = pkg_dir / ".env.example"

    if config_dest.exists() and not args.force:
        print("config.yaml already exists. Use --force to overwrite.")
    else:
        if config_src.exists():
            shutil.copy(config_src, config_dest)
        else:
            config_dest.write_text(MINIMAL_CONFIG)
        print(f"Created {config_dest}")

    if env_dest.exists() and not args.force:
        print(".env already exists. Use --force to overwrite.")
    else:
        if env_src.exists():
            shutil.copy(env_src, env_dest)
        else:
            env_dest.write_text(MINIMAL_ENV)
        print(f"Created {env_dest}")

    print("\nNext steps:")
    print("  1. Edit config.yaml and .env")
    print("  2. Create the admin: slotbook create-user --admin \"Your Name\" you@example.com")
    print("  3. Optional Google free/busy: set calendar.provider and run slotbook check --authorize")
    print("  4. Run: slotbook serve")


def cmd_check(args: argparse.Namespace) -> None:
    """Check config, database and the busy-time provider."""
    from .config import load_config

    print(f"slotbook v{__version__} connection check\n")

    try:
        config = load_config(args.config)
        print(f"[OK] Config loaded from {args.config}")
    except Exception as e:
        print(f"[FAIL] Config: {e}")
        sys.exit(1)

    try:
        db = _open_db(config)
        print(f"[OK] Database: {config.database.path} ({len(db.list_users())} user(s))")
        db.close()
    except Exception as e:
        print(f"[FAIL] Database: {e}")

    if config.calendar.provider == "none":
        print("[--] Calendar provider: none (bookings and meetings only)")
        return

    from .calendar.google_auth import get_google_credentials

    sources = config.calendar.sources or [config.calendar]
    for src in sources:
        name = getattr(src, "name", config.calendar.provider)
        try:
            get_google_credentials(src.credentials_path, src.token_path, interactive=args.authorize)
            print(f"[OK] Google Calendar '{name}' authenticated")
        except Exception as e:
            print(f"[FAIL] Google Calendar '{name}': {e}")


def cmd_create_user(args: argparse.Namespace) -> None:
    """Create a user and print its API key."""
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    from .config import load_config
    from .core.pages import validate_alias
    from .errors import ValidationError
    from .models import User, UserRole

    config = load_config(args.config)
    db = _open_db(config)
    try:
        email = args.email or config.admin.email
        if not email:
            print("Email required (argument or admin.email in config).")
            sys.exit(1)
        if db.get_user_by_email(email):
            print(f"User {email} already exists.")
            sys.exit(1)
        try:
            ZoneInfo(args.timezone)
            alias = validate_alias(db, args.alias) if args.alias else ""
        except ZoneInfoNotFoundError:
            print(f"Unknown timezone: {args.timezone}")
            sys.exit(1)
        except ValidationError as e:
            print(f"Invalid alias: {e.message}")
            sys.exit(1)
        if alias and db.get_user_by_alias(alias):
            print(f"Alias {alias} is already taken.")
            sys.exit(1)

        user = db.create_user(User(
            name=args.name,
            email=email,
            alias=alias,
            role=UserRole.SUPER_ADMIN if args.admin else UserRole.USER,
            timezone=args.timezone,
        ))
        print(f"Created {user.role.value} #{user.id}: {user.name} <{user.email}>")
        print(f"API key: {user.api_key}")
    finally:
        db.close()


def cmd_hours(args: argparse.Namespace) -> None:
    """Replace a user's weekly working hours, e.g. mon=09:00-17:00."""
    from .config import load_config
    from .core.availability import DAYS_OF_WEEK, parse_time_range, validate_rule
    from .errors import BookingError
    from .models import WorkingHoursRule

    config = load_config(args.config)
    db = _open_db(config)
    try:
        user = db.get_user_by_email(args.email)
        if not user:
            print(f"No user with email {args.email}")
            sys.exit(1)

        rules = []
        try:
            for spec in args.days:
                day, _, time_range = spec.partition("=")
                matches = [i for i, d in enumerate(DAYS_OF_WEEK) if d.startswith(day.strip().lower())]
                if not day or len(matches) != 1:
                    print(f"Unknown day: {day!r}")
                    sys.exit(1)
                if any(r.day_of_week == matches[0] for r in rules):
                    print(f"Day listed twice: {day!r}")
                    sys.exit(1)
                start, end = parse_time_range(time_range)
                rule = WorkingHoursRule(
                    user_id=user.id,
                    day_of_week=matches[0],
                    start_time=start.strftime("%H:%M"),
                    end_time=end.strftime("%H:%M"),
                )
                validate_rule(rule)
                rules.append(rule)
        except (BookingError, ValueError) as e:
            print(f"Invalid working hours: {e}")
            sys.exit(1)

        db.set_working_hours(user.id, rules)
        print(f"Working hours for {user.email} ({user.timezone}):")
        for rule in rules:
            print(f"  {DAYS_OF_WEEK[rule.day_of_week].capitalize()}: {rule.start_time}-{rule.end_time}")
    finally:
        db.close()


def cmd_slots(args: argparse.Namespace) -> None:
    """Display available slots of a booking page for debugging."""
    from .config import load_config

    config = load_config(args.config)
    _setup_logging(args.verbose)
    db = _open_db(config)
    engine = _build_engine(config, db)
    start = date.fromisoformat(args.date) if args.date else date.today()

    async def show():
        total = 0
        for offset in range(args.days):
            day = start + timedelta(days=offset)
            listing = await engine.get_available_slots(args.user, args.page, day)
            if listing.error:
                print(f"{day.isoformat()}: {listing.error}")
                continue
            if not listing.slots:
                continue
            suffix = " (degraded)" if listing.degraded else ""
            print(f"{day.strftime('%A, %B %d')} [{listing.timezone}]{suffix}")
            for slot in listing.slots:
                print(f"  {slot.start.strftime('%H:%M')}-{slot.end.strftime('%H:%M')}")
            total += len(listing.slots)
        print(f"\nTotal: {total} slots")

    try:
        asyncio.run(show())
    finally:
        db.close()


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP API."""
    from .config import load_config

    config = load_config(args.config)
    if args.port:
        config.server.port = args.port
    _setup_logging(args.verbose)
    asyncio.run(_serve(config))


async def _serve(config) -> None:
    from .web import WebServer

    db = _open_db(config)
    server = WebServer(_build_engine(config, db), config.server)

    stop_event = asyncio.Event()

    def signal_handler():
        print("\nShutting down...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    task = asyncio.create_task(server.start())
    await stop_event.wait()
    await server.stop()
    await task
    db.close()


def main():
    parser = argparse.ArgumentParser(
        prog="slotbook",
        description="Booking pages with conflict-free slot scheduling",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    # init
    init_parser = subparsers.add_parser("init", help="Initialize configuration")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing files")

    # check
    check_parser = subparsers.add_parser("check", help="Check config, database and calendar access")
    check_parser.add_argument("-c", "--config", default="config.yaml", help="Config file path")
    check_parser.add_argument("--authorize", action="store_true", help="Run the Google OAuth flow if needed")

    # create-user
    user_parser = subparsers.add_parser("create-user", help="Create a user and print its API key")
    user_parser.add_argument("name", help="Display name")
    user_parser.add_argument("email", nargs="?", default="", help="Email (defaults to admin.email)")
    user_parser.add_argument("-c", "--config", default="config.yaml", help="Config file path")
    user_parser.add_argument("--alias", default="", help="Public alias used in booking URLs")
    user_parser.add_argument("--timezone", default="UTC", help="IANA timezone")
    user_parser.add_argument("--admin", action="store_true", help="Grant the super-admin role")

    # hours
    hours_parser = subparsers.add_parser("hours", help="Replace a user's weekly working hours")
    hours_parser.add_argument("email", help="User email")
    hours_parser.add_argument("days", nargs="+", help="DAY=HH:MM-HH:MM, e.g. mon=09:00-17:00")
    hours_parser.add_argument("-c", "--config", default="config.yaml", help="Config file path")

    # slots
    slots_parser = subparsers.add_parser("slots", help="Show available slots of a booking page")
    slots_parser.add_argument("user", help="Owner alias")
    slots_parser.add_argument("page", help="Booking page alias")
    slots_parser.add_argument("-c", "--config", default="config.yaml", help="Config file path")
    slots_parser.add_argument("--date", default="", help="First day (YYYY-MM-DD), default today")
    slots_parser.add_argument("--days", type=int, default=7, help="Number of days to show")
    slots_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("-c", "--config", default="config.yaml", help="Config file path")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Override server.port")
    serve_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    commands = {
        "init": cmd_init,
        "check": cmd_check,
        "create-user": cmd_create_user,
        "hours": cmd_hours,
        "slots": cmd_slots,
        "serve": cmd_serve,
    }
    commands[args.command](args)
