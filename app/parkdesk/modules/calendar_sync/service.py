from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.parkdesk.modules.calendar_sync.google_client import (
    SCOPES,
    CalendarError,
    GoogleCalendarClient,
    calendar_client_from_config,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.parkdesk.modules.calendar_sync.models import CalendarToken
    from app.parkdesk.modules.properties.models import Lot
    from app.parkdesk.modules.showings.models import Showing

logger = logging.getLogger(__name__)

# Refresh a little early so a token does not expire mid-request.
_EXPIRY_SKEW = timedelta(seconds=60)


@dataclass
class BusyLookup:
    """Result of asking a manager's calendar for busy ranges."""

    connected: bool
    ok: bool = True
    intervals: list[tuple[datetime, datetime]] = field(default_factory=list)
    error: str | None = None


def get_calendar_client() -> GoogleCalendarClient:
    """
    The app-wide calendar client. Tests (and alternative providers) install their own
    under app.extensions["calendar_client"].
    """
    from flask import current_app

    client = current_app.extensions.get("calendar_client")
    if client is None:
        client = calendar_client_from_config(current_app.config)
        current_app.extensions["calendar_client"] = client
    return client


def get_token_row(s: "Session", user_id: int) -> "CalendarToken | None":
    from app.parkdesk.modules.calendar_sync.models import CalendarToken

    return s.query(CalendarToken).filter(CalendarToken.user_id == user_id).one_or_none()


def store_tokens(s: "Session", user_id: int, tokens: dict[str, Any], *, now: datetime | None = None) -> "CalendarToken":
    """
    Upsert tokens returned by Google. Google omits refresh_token on refresh responses,
    so the previously stored one is kept.
    """
    from app.parkdesk.modules.calendar_sync.models import CalendarToken

    now = now or datetime.utcnow()
    access_token = tokens.get("access_token")
    if not access_token:
        raise CalendarError("No access token in Google token response")

    row = get_token_row(s, user_id)
    refresh_token = tokens.get("refresh_token") or (row.refresh_token if row else None)
    if not refresh_token:
        raise CalendarError("No refresh token available and none provided in new tokens")

    expires_in = int(tokens.get("expires_in") or 3600)
    if row is None:
        row = CalendarToken(user_id=user_id, created_at=now)
        s.add(row)
    row.access_token = access_token
    row.refresh_token = refresh_token
    row.expires_at = now + timedelta(seconds=expires_in)
    row.scope = tokens.get("scope") or " ".join(SCOPES)
    row.token_type = tokens.get("token_type") or "Bearer"
    row.updated_at = now
    s.flush()
    return row


def disconnect_calendar(s: "Session", user_id: int) -> bool:
    row = get_token_row(s, user_id)
    if row is None:
        return False
    s.delete(row)
    s.flush()
    return True


def get_valid_access_token(
    s: "Session",
    user_id: int,
    *,
    client: GoogleCalendarClient | None = None,
    now: datetime | None = None,
) -> str | None:
    """
    A usable access token for the user, refreshing it when expired.
    A connection whose refresh fails is removed and treated as disconnected.
    """
    row = get_token_row(s, user_id)
    if row is None:
        return None

    now = now or datetime.utcnow()
    if now + _EXPIRY_SKEW < row.expires_at:
        return row.access_token

    if not row.refresh_token:
        logger.warning("Calendar token expired without refresh token (user_id=%s); disconnecting", user_id)
        disconnect_calendar(s, user_id)
        return None

    client = client or get_calendar_client()
    try:
        tokens = client.refresh(row.refresh_token)
        row = store_tokens(s, user_id, tokens, now=now)
    except CalendarError as e:
        logger.error("Failed to refresh Google Calendar token (user_id=%s): %s", user_id, e)
        disconnect_calendar(s, user_id)
        return None
    return row.access_token


def is_calendar_connected(s: "Session", user_id: int, *, client: GoogleCalendarClient | None = None) -> bool:
    return get_valid_access_token(s, user_id, client=client) is not None


def fetch_manager_busy(
    s: "Session",
    manager_id: int,
    start: datetime,
    end: datetime,
    *,
    client: GoogleCalendarClient | None = None,
) -> BusyLookup:
    """
    Busy ranges from the manager's primary calendar between start and end (naive UTC).
    A failed fetch is reported, not retried; callers apply the failure policy.
    """
    client = client or get_calendar_client()
    token = get_valid_access_token(s, manager_id, client=client)
    if token is None:
        return BusyLookup(connected=False)
    try:
        intervals = client.free_busy(token, start, end)
    except CalendarError as e:
        logger.warning("Manager busy lookup failed (manager_id=%s): %s", manager_id, e)
        return BusyLookup(connected=True, ok=False, error=str(e))
    logger.debug("Manager %s busy ranges %s..%s: %d", manager_id, start, end, len(intervals))
    return BusyLookup(connected=True, intervals=intervals)


def _event_body(showing: "Showing", lot: "Lot") -> dict[str, Any]:
    park_name = lot.park.name if lot.park else ""
    return {
        "summary": f"Property Showing - {showing.client_name}",
        "description": (
            f"Property showing for {park_name} lot {lot.name_or_number}\n\n"
            f"Client: {showing.client_name}\n"
            f"Email: {showing.client_email or 'N/A'}\n"
            f"Phone: {showing.client_phone}"
        ),
        "start": {"dateTime": showing.start_dt.isoformat() + "Z", "timeZone": "UTC"},
        "end": {"dateTime": showing.end_dt.isoformat() + "Z", "timeZone": "UTC"},
        "attendees": (
            [{"email": showing.client_email, "displayName": showing.client_name}] if showing.client_email else []
        ),
    }


def create_showing_event(
    s: "Session",
    showing: "Showing",
    lot: "Lot",
    *,
    client: GoogleCalendarClient | None = None,
) -> dict[str, Any] | None:
    """
    Put the showing on the manager's calendar. Returns None when the manager has no
    calendar connected; raises CalendarError when Google rejects the insert.
    """
    client = client or get_calendar_client()
    token = get_valid_access_token(s, showing.manager_id, client=client)
    if token is None:
        return None
    return client.insert_event(token, _event_body(showing, lot))


def delete_showing_event(s: "Session", showing: "Showing", *, client: GoogleCalendarClient | None = None) -> bool:
    if not showing.calendar_event_id:
        return False
    client = client or get_calendar_client()
    token = get_valid_access_token(s, showing.manager_id, client=client)
    if token is None:
        return False
    client.delete_event(token, showing.calendar_event_id)
    return True
