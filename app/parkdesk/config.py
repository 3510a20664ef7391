import os
from dataclasses import dataclass
from zoneinfo import ZoneInfoNotFoundError

from app.parkdesk.modules.showings.resolver import GridConfig


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    showing_timezone: str
    showing_day_start_hour: int
    showing_day_end_hour: int
    showing_slot_minutes: int
    calendar_failure_policy: str

    google_client_id: str
    google_client_secret: str
    google_redirect_uri: str

    invite_ttl_days: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _check_grid(timezone: str, start_hour: int, end_hour: int, slot_minutes: int) -> None:
    """Fail at startup rather than on the first slot lookup."""
    try:
        GridConfig(
            timezone=timezone,
            start_hour=start_hour,
            end_hour=end_hour,
            slot_minutes=slot_minutes,
        ).tz
    except ZoneInfoNotFoundError:
        raise RuntimeError(f"SHOWING_TIMEZONE is not a known IANA timezone (got {timezone!r}).")
    except ValueError as e:
        raise RuntimeError(f"Invalid showing grid settings: {e}")


def load_settings() -> Settings:
    policy = _getenv("CALENDAR_FAILURE_POLICY", "open").lower()
    if policy not in ("open", "closed"):
        raise RuntimeError("CALENDAR_FAILURE_POLICY must be 'open' or 'closed'.")
    showing_timezone = _getenv("SHOWING_TIMEZONE", "America/Chicago")
    start_hour = _getenv_int("SHOWING_DAY_START_HOUR", 8)
    end_hour = _getenv_int("SHOWING_DAY_END_HOUR", 19)
    slot_minutes = _getenv_int("SHOWING_SLOT_MINUTES", 30)
    _check_grid(showing_timezone, start_hour, end_hour, slot_minutes)
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///parkdesk.db"),
        showing_timezone=showing_timezone,
        showing_day_start_hour=start_hour,
        showing_day_end_hour=end_hour,
        showing_slot_minutes=slot_minutes,
        calendar_failure_policy=policy,
        google_client_id=_getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=_getenv("GOOGLE_CLIENT_SECRET", ""),
        google_redirect_uri=_getenv("GOOGLE_REDIRECT_URI", "http://localhost:5000/calendar/callback"),
        invite_ttl_days=_getenv_int("INVITE_TTL_DAYS", 7),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        # showing grid
        "SHOWING_TIMEZONE": s.showing_timezone,
        "SHOWING_DAY_START_HOUR": s.showing_day_start_hour,
        "SHOWING_DAY_END_HOUR": s.showing_day_end_hour,
        "SHOWING_SLOT_MINUTES": s.showing_slot_minutes,
        "CALENDAR_FAILURE_POLICY": s.calendar_failure_policy,
        # google calendar oauth
        "GOOGLE_CLIENT_ID": s.google_client_id,
        "GOOGLE_CLIENT_SECRET": s.google_client_secret,
        "GOOGLE_REDIRECT_URI": s.google_redirect_uri,
        "INVITE_TTL_DAYS": s.invite_ttl_days,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
