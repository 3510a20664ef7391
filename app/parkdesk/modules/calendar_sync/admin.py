from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session

from app.parkdesk.audit import record_event
from app.parkdesk.db import db_session
from app.parkdesk.models import User
from app.parkdesk.modules.calendar_sync.google_client import CalendarError, CalendarNotConfigured
from app.parkdesk.modules.calendar_sync.service import (
    disconnect_calendar,
    get_calendar_client,
    get_token_row,
    is_calendar_connected,
    store_tokens,
)
from app.parkdesk.modules.properties.admin import get_active_lot_or_404
from app.parkdesk.modules.showings.service import manager_busy
from app.parkdesk.rbac import require_permission
from app.parkdesk.utils import isoformat_utc, json_error

bp = Blueprint("calendar_sync", __name__)

_STATE_KEY = "calendar_oauth_state"
_AVAILABILITY_WINDOW = timedelta(days=7)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/calendar/status")
@require_permission("calendar.connect")
def calendar_status():
    s = db_session()
    u = _current_user()
    connected = is_calendar_connected(s, u.id)
    row = get_token_row(s, u.id) if connected else None
    s.commit()
    return jsonify({"connected": connected, "expiresAt": isoformat_utc(row.expires_at) if row else None})


@bp.get("/calendar/connect")
@require_permission("calendar.connect")
def calendar_connect():
    state = secrets.token_urlsafe(24)
    try:
        url = get_calendar_client().authorization_url(state)
    except CalendarNotConfigured:
        return json_error("Google Calendar is not configured.", 503)
    session[_STATE_KEY] = state
    return jsonify({"authUrl": url})


@bp.get("/calendar/callback")
@require_permission("calendar.connect")
def calendar_callback():
    expected = session.pop(_STATE_KEY, None)
    state = request.args.get("state") or ""
    if not expected or not secrets.compare_digest(state, expected):
        return json_error("Invalid OAuth state.", 400)
    if request.args.get("error"):
        return json_error(f"Calendar connection was declined: {request.args['error']}", 400)
    code = request.args.get("code")
    if not code:
        return json_error("Missing authorization code.", 400)

    s = db_session()
    u = _current_user()
    try:
        tokens = get_calendar_client().exchange_code(code)
        store_tokens(s, u.id, tokens)
    except CalendarError as e:
        s.rollback()
        current_app.logger.error("Calendar connect failed (user_id=%s): %s", u.id, e)
        return json_error("Failed to connect calendar", 502)

    record_event(s, actor=u, action="calendar.connect", entity_type="User", entity_id=str(u.id))
    s.commit()
    return jsonify({"connected": True})


@bp.post("/calendar/disconnect")
@require_permission("calendar.connect")
def calendar_disconnect():
    s = db_session()
    u = _current_user()
    if disconnect_calendar(s, u.id):
        record_event(s, actor=u, action="calendar.disconnect", entity_type="User", entity_id=str(u.id))
    s.commit()
    return jsonify({"message": "Calendar disconnected successfully"})


@bp.get("/lots/<int:lot_id>/manager-availability")
def lot_manager_availability(lot_id: int):
    """Busy ranges only, never event details, for the next seven days."""
    lot = get_active_lot_or_404(lot_id)
    s = db_session()
    start = datetime.utcnow()
    lookup = manager_busy(s, lot, start, start + _AVAILABILITY_WINDOW)
    s.commit()
    if not lookup.ok:
        return json_error("Failed to fetch manager availability", 502)
    return jsonify(
        {
            "busySlots": [{"start": isoformat_utc(a), "end": isoformat_utc(b)} for a, b in lookup.intervals],
            "managerConnected": lookup.connected,
        }
    )
