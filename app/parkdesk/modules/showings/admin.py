from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.parkdesk.db import db_session
from app.parkdesk.models import User
from app.parkdesk.modules.properties.admin import get_active_lot_or_404
from app.parkdesk.modules.properties.service import manager_can_access_lot
from app.parkdesk.modules.showings.models import AvailabilityRule, Showing
from app.parkdesk.modules.showings.resolver import GridConfig, week_start
from app.parkdesk.modules.showings.service import (
    LOOKAHEAD_DAYS,
    BookingError,
    book_showing,
    cancel_showing,
    complete_showing,
    create_rule,
    delete_rule,
    list_manager_showings,
    list_rules,
    rule_to_dict,
    schedule_for_week,
    showing_to_dict,
    slots_for_day,
    validate_rule_payload,
)
from app.parkdesk.rbac import is_admin, require_permission
from app.parkdesk.utils import json_error, parse_date, payload_str, request_payload

bp = Blueprint("showings", __name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _grid() -> GridConfig:
    return GridConfig.from_config(current_app.config)


def _policy() -> str:
    return current_app.config.get("CALENDAR_FAILURE_POLICY", "open")


def _booking_error(e: BookingError):
    return json_error(e.message, e.status_code, errors=e.errors or None, reason=getattr(e, "reason", None))


def _require_lot_access(lot) -> None:
    if not manager_can_access_lot(db_session(), _current_user(), lot):
        abort(403)


# ---------- Public availability ----------
@bp.get("/lots/<int:lot_id>/slots")
def lot_day_slots(lot_id: int):
    lot = get_active_lot_or_404(lot_id)
    try:
        day = parse_date(request.args.get("date"))
    except ValueError:
        day = None
    if day is None:
        return json_error("date (YYYY-MM-DD) is required.", 400)
    now = _utcnow()
    if abs((day - now.date()).days) > LOOKAHEAD_DAYS:
        return json_error(f"date must be within {LOOKAHEAD_DAYS} days of today.", 400)

    s = db_session()
    slots = slots_for_day(s, lot, day, now=now, grid=_grid(), failure_policy=_policy())
    s.commit()  # token refreshes
    return jsonify(
        {
            "date": day.isoformat(),
            "slots": [slot.to_dict() for slot in slots],
            "availableTimes": [slot.local_start.strftime("%H:%M") for slot in slots if slot.is_available],
        }
    )


@bp.get("/lots/<int:lot_id>/schedule")
def lot_week_schedule(lot_id: int):
    lot = get_active_lot_or_404(lot_id)
    s = db_session()
    now = _utcnow()
    grid = _grid()
    days = schedule_for_week(s, lot, now=now, grid=grid, failure_policy=_policy())
    s.commit()
    return jsonify(
        {
            "weekStart": week_start(now, grid).isoformat(),
            "timezone": grid.timezone,
            "days": [d.to_dict() for d in days],
        }
    )


@bp.get("/lots/<int:lot_id>/showings")
def lot_showings_public(lot_id: int):
    """Times and status only; client details stay private."""
    lot = get_active_lot_or_404(lot_id)
    s = db_session()
    rows = s.query(Showing).filter(Showing.lot_id == lot.id).order_by(Showing.start_dt.asc()).all()
    return jsonify([showing_to_dict(r, include_client=False) for r in rows])


@bp.post("/lots/<int:lot_id>/book")
def lot_book(lot_id: int):
    lot = get_active_lot_or_404(lot_id)
    s = db_session()
    try:
        showing = book_showing(
            s,
            lot,
            request_payload(),
            now=_utcnow(),
            grid=_grid(),
            failure_policy=_policy(),
        )
    except BookingError as e:
        s.rollback()
        current_app.logger.info("Booking rejected for lot %s: %s", lot_id, e.message)
        return _booking_error(e)
    s.commit()
    return jsonify(showing_to_dict(showing)), 201


# ---------- Manager showings ----------
@bp.get("/showings")
@require_permission("showings.view")
def showings_list():
    s = db_session()
    u = _current_user()
    rows = list_manager_showings(s, u, include_all=is_admin(u))
    return jsonify([showing_to_dict(r) for r in rows])


def _get_showing_for_manager(showing_id: int) -> Showing:
    s = db_session()
    showing = s.get(Showing, showing_id)
    if not showing:
        abort(404)
    _require_lot_access(showing.lot)
    return showing


@bp.post("/showings/<int:showing_id>/cancel")
@require_permission("showings.manage")
def showing_cancel(showing_id: int):
    s = db_session()
    showing = _get_showing_for_manager(showing_id)
    reason = payload_str(request_payload(), "reason") or None
    try:
        cancel_showing(s, showing, _current_user(), reason=reason)
    except BookingError as e:
        s.rollback()
        return _booking_error(e)
    s.commit()
    return jsonify(showing_to_dict(showing))


@bp.post("/showings/<int:showing_id>/complete")
@require_permission("showings.manage")
def showing_complete(showing_id: int):
    s = db_session()
    showing = _get_showing_for_manager(showing_id)
    try:
        complete_showing(s, showing, _current_user())
    except BookingError as e:
        s.rollback()
        return _booking_error(e)
    s.commit()
    return jsonify(showing_to_dict(showing))


# ---------- Availability rules ----------
@bp.get("/lots/<int:lot_id>/availability")
def availability_list(lot_id: int):
    """Public so the booking page can grey out blocks; notes are for the lot's managers only."""
    s = db_session()
    lot = get_active_lot_or_404(lot_id)
    show_note = manager_can_access_lot(s, getattr(g, "current_user", None), lot)
    return jsonify([rule_to_dict(r, include_note=show_note) for r in list_rules(s, lot.id)])


@bp.post("/lots/<int:lot_id>/availability")
@require_permission("availability.manage")
def availability_create(lot_id: int):
    s = db_session()
    lot = get_active_lot_or_404(lot_id)
    _require_lot_access(lot)

    payload = request_payload()
    errors = validate_rule_payload(payload)
    if errors:
        return json_error("Invalid availability data", 400, errors=errors)

    rule = create_rule(s, lot, payload, _current_user())
    s.commit()
    return jsonify(rule_to_dict(rule)), 201


@bp.delete("/availability/<int:rule_id>")
@require_permission("availability.manage")
def availability_delete(rule_id: int):
    s = db_session()
    rule = s.get(AvailabilityRule, rule_id)
    if not rule:
        abort(404)
    _require_lot_access(get_active_lot_or_404(rule.lot_id))
    delete_rule(s, rule, _current_user())
    s.commit()
    return "", 204
