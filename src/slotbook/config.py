"""Configuration loading from YAML + environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

PROVIDER_POLICIES = ("closed", "open")
CALENDAR_PROVIDERS = ("none", "google")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    allowed_origins: list[str] = field(default_factory=list)
    rate_limit: int = 30  # public requests per IP per minute


@dataclass
class DatabaseConfig:
    path: str = "slotbook.db"
    busy_timeout: float = 5.0  # seconds to wait for sqlite's write lock


@dataclass
class AvailabilityConfig:
    min_notice_minutes: int = 0
    max_days_ahead: int = 60
    # "closed": a failed provider fetch yields ProviderUnavailable and no slots
    # "open": slots are computed without that provider and flagged degraded
    provider_failure_policy: str = "closed"


@dataclass
class CalendarSourceConfig:
    name: str = "google"
    credentials_path: str = "credentials.json"
    token_path: str = "token.json"
    required: bool = True


@dataclass
class CalendarConfig:
    provider: str = "none"  # none | google
    credentials_path: str = "credentials.json"
    token_path: str = "token.json"
    max_retries: int = 2  # extra attempts for transient freebusy failures
    retry_base_delay: float = 0.5
    sources: list[CalendarSourceConfig] = field(default_factory=list)


@dataclass
class AdminConfig:
    email: str = ""  # bootstrap super-admin created by `slotbook create-user --admin`


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    availability: AvailabilityConfig = field(default_factory=AvailabilityConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)


def _resolve_env_vars(value: str) -> str:
    """Replace ${VAR} with environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _resolve(value):
    """Recursively resolve env vars in strings, dicts and lists."""
    if isinstance(value, str):
        return _resolve_env_vars(value)
    if isinstance(value, dict):
        return {k: _resolve(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v) for v in value]
    return value


def load_config(config_path: str | Path, env_path: str | Path | None = None) -> Config:
    """Load config from YAML file with env var resolution."""
    config_path = Path(config_path).resolve()
    config_dir = config_path.parent

    if env_path:
        load_dotenv(env_path)
    else:
        # Look for .env next to config file first, then CWD
        env_beside_config = config_dir / ".env"
        if env_beside_config.exists():
            load_dotenv(env_beside_config)
        else:
            load_dotenv()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _resolve(raw)

    server_data = raw.get("server", {})
    port = int(server_data.get("port", 8080))
    if not (1 <= port <= 65535):
        raise ValueError(f"Invalid server port: {port}. Must be 1-65535.")
    server = ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=port,
        allowed_origins=server_data.get("allowed_origins", []),
        rate_limit=int(server_data.get("rate_limit", 30)),
    )

    db_data = raw.get("database", {})
    database = DatabaseConfig(
        path=os.environ.get("DATABASE_PATH") or db_data.get("path", "slotbook.db"),
        busy_timeout=float(db_data.get("busy_timeout", 5.0)),
    )

    avail_data = raw.get("availability", {})
    policy = avail_data.get("provider_failure_policy", "closed")
    if policy not in PROVIDER_POLICIES:
        raise ValueError(f"Invalid provider_failure_policy: {policy}. Use one of {PROVIDER_POLICIES}.")
    availability = AvailabilityConfig(
        min_notice_minutes=int(avail_data.get("min_notice_minutes", 0)),
        max_days_ahead=int(avail_data.get("max_days_ahead", 60)),
        provider_failure_policy=policy,
    )

    cal_data = raw.get("calendar", {})
    provider = cal_data.get("provider", "none")
    if provider not in CALENDAR_PROVIDERS:
        raise ValueError(f"Unknown calendar provider: {provider}")
    sources = []
    for src_data in cal_data.get("sources", []):
        if isinstance(src_data, dict):
            sources.append(CalendarSourceConfig(
                name=src_data.get("name", "google"),
                credentials_path=src_data.get("credentials_path", "credentials.json"),
                token_path=src_data.get("token_path", "token.json"),
                required=bool(src_data.get("required", True)),
            ))
    calendar = CalendarConfig(
        provider=provider,
        credentials_path=cal_data.get("credentials_path", "credentials.json"),
        token_path=cal_data.get("token_path", "token.json"),
        max_retries=int(cal_data.get("max_retries", 2)),
        retry_base_delay=float(cal_data.get("retry_base_delay", 0.5)),
        sources=sources,
    )

    admin_data = raw.get("admin", {})
    admin = AdminConfig(email=admin_data.get("email", ""))

    return Config(
        server=server,
        database=database,
        availability=availability,
        calendar=calendar,
        admin=admin,
    )
