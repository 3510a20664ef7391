from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import TYPE_CHECKING

from app.parkdesk.audit import record_event
from app.parkdesk.modules.calendar_sync.google_client import CalendarError
from app.parkdesk.modules.calendar_sync.service import (
    BusyLookup,
    create_showing_event,
    delete_showing_event,
    fetch_manager_busy,
)
from app.parkdesk.modules.properties.service import assigned_manager_id
from app.parkdesk.modules.showings.models import REMINDER_PREFERENCES, RULE_TYPES
from app.parkdesk.modules.showings.resolver import (
    REASON_BLOCKED,
    REASON_BOOKED,
    REASON_BUSY,
    REASON_CALENDAR_UNAVAILABLE,
    REASON_PAST,
    DaySchedule,
    GridConfig,
    Interval,
    Slot,
    day_bounds_utc,
    find_slot,
    is_weekend,
    resolve_day,
    resolve_week,
    to_intervals,
    utc_to_local,
    week_days,
)
from app.parkdesk.utils import isoformat_utc, parse_iso_datetime, payload_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.parkdesk.models import User
    from app.parkdesk.modules.calendar_sync.google_client import GoogleCalendarClient
    from app.parkdesk.modules.properties.models import Lot
    from app.parkdesk.modules.showings.models import AvailabilityRule, Showing

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
US_PHONE_RE = re.compile(r"^(\+1[-.\s]?)?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})$")

# Slot lookups and bookings further than this from today are refused.
LOOKAHEAD_DAYS = 366

UNAVAILABLE_MESSAGES = {
    REASON_PAST: "Time slot is in the past",
    REASON_CALENDAR_UNAVAILABLE: "Manager availability could not be confirmed; please try again later",
    REASON_BLOCKED: "Time slot is blocked for showings",
    REASON_BOOKED: "Time slot is not available due to existing booking",
    REASON_BUSY: "Time slot is not available - manager has a calendar conflict",
    "weekend": "Showings are not available on weekends",
    "outside_hours": "Requested time is outside showing hours",
}


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str, *, errors: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class NoManagerAssigned(BookingError):
    pass


class SlotUnavailable(BookingError):
    status_code = 409

    def __init__(self, reason: str):
        super().__init__(UNAVAILABLE_MESSAGES.get(reason, "Time slot is not available"))
        self.reason = reason


class ShowingStateError(BookingError):
    status_code = 409


# ---------- Validation ----------
def validate_booking_payload(payload: dict) -> list[str]:
    """Validate a public booking request. Returns list of errors."""
    errors = []
    name = payload_str(payload, "clientName")
    if not name:
        errors.append("Full name is required")

    email = payload_str(payload, "clientEmail")
    if email and not EMAIL_RE.match(email):
        errors.append("Please enter a valid email address")

    phone = payload_str(payload, "clientPhone")
    if not phone:
        errors.append("Phone number is required")
    elif not US_PHONE_RE.match(phone):
        errors.append("Please enter a valid US phone number (e.g., (555) 123-4567 or 555-123-4567)")

    pref = (payload_str(payload, "reminderPreference") or "BOTH").upper()
    if pref not in REMINDER_PREFERENCES:
        errors.append(f"Invalid reminder preference. Must be one of: {', '.join(REMINDER_PREFERENCES)}")

    errors.extend(_validate_range(payload.get("startDt"), payload.get("endDt")))
    return errors


def _validate_range(raw_start, raw_end) -> list[str]:
    try:
        start = parse_iso_datetime(raw_start)
        end = parse_iso_datetime(raw_end)
    except (TypeError, ValueError):
        return ["Start and end must be ISO-8601 datetimes"]
    if start is None or end is None:
        return ["Please select both date and time"]
    if end <= start:
        return ["End time must be after start time"]
    return []


def validate_rule_payload(payload: dict) -> list[str]:
    errors = []
    rule_type = payload_str(payload, "ruleType").upper()
    if rule_type not in RULE_TYPES:
        errors.append(f"Invalid rule type. Must be one of: {', '.join(RULE_TYPES)}")
    errors.extend(_validate_range(payload.get("startDt"), payload.get("endDt")))
    return errors


# ---------- Availability inputs ----------
def scheduled_intervals(s: "Session", lot_id: int, start: datetime, end: datetime) -> list[Interval]:
    from app.parkdesk.modules.showings.models import Showing

    rows = (
        s.query(Showing.start_dt, Showing.end_dt)
        .filter(Showing.lot_id == lot_id)
        .filter(Showing.status == "SCHEDULED")
        .filter(Showing.start_dt < end)
        .filter(Showing.end_dt > start)
        .all()
    )
    return to_intervals((r[0], r[1]) for r in rows)


def blocked_intervals(s: "Session", lot_id: int, start: datetime, end: datetime) -> list[Interval]:
    from app.parkdesk.modules.showings.models import AvailabilityRule

    rows = (
        s.query(AvailabilityRule.start_dt, AvailabilityRule.end_dt)
        .filter(AvailabilityRule.lot_id == lot_id)
        .filter(AvailabilityRule.rule_type == "BLOCKED")
        .filter(AvailabilityRule.start_dt < end)
        .filter(AvailabilityRule.end_dt > start)
        .all()
    )
    return to_intervals((r[0], r[1]) for r in rows)


def manager_busy(
    s: "Session",
    lot: "Lot",
    start: datetime,
    end: datetime,
    *,
    client: "GoogleCalendarClient | None" = None,
) -> BusyLookup:
    manager_id = assigned_manager_id(s, lot)
    if manager_id is None:
        return BusyLookup(connected=False)
    return fetch_manager_busy(s, manager_id, start, end, client=client)


def _resolver_inputs(
    s: "Session",
    lot: "Lot",
    start: datetime,
    end: datetime,
    *,
    failure_policy: str,
    client: "GoogleCalendarClient | None",
) -> dict:
    lookup = manager_busy(s, lot, start, end, client=client)
    calendar_failed = not lookup.ok and failure_policy == "closed"
    if not lookup.ok and not calendar_failed:
        logger.info("Calendar lookup failed for lot %s; failing open", lot.id)
    return {
        "busy": to_intervals(lookup.intervals),
        "showings": scheduled_intervals(s, lot.id, start, end),
        "blocked": blocked_intervals(s, lot.id, start, end),
        "calendar_failed": calendar_failed,
    }


def slots_for_day(
    s: "Session",
    lot: "Lot",
    day: date,
    *,
    now: datetime,
    grid: GridConfig,
    failure_policy: str = "open",
    client: "GoogleCalendarClient | None" = None,
) -> list[Slot]:
    """All grid slots for the lot on one local date; recomputed on every call."""
    if is_weekend(day):
        return []
    start, end = day_bounds_utc(day, grid)
    inputs = _resolver_inputs(s, lot, start, end, failure_policy=failure_policy, client=client)
    return resolve_day(day, now=now, grid=grid, **inputs)


def schedule_for_week(
    s: "Session",
    lot: "Lot",
    *,
    now: datetime,
    grid: GridConfig,
    failure_policy: str = "open",
    client: "GoogleCalendarClient | None" = None,
) -> list[DaySchedule]:
    days = week_days(now, grid)
    start, _ = day_bounds_utc(days[0], grid)
    _, end = day_bounds_utc(days[-1], grid)
    inputs = _resolver_inputs(s, lot, start, end, failure_policy=failure_policy, client=client)
    return resolve_week(now=now, grid=grid, **inputs)


# ---------- Booking ----------
def book_showing(
    s: "Session",
    lot: "Lot",
    payload: dict,
    *,
    now: datetime,
    grid: GridConfig,
    failure_policy: str = "open",
    client: "GoogleCalendarClient | None" = None,
) -> "Showing":
    """
    Book a public showing. The requested slot is re-resolved against the same inputs
    the grid uses, so a booking can only land on a slot the grid would show as free.
    """
    from app.parkdesk.modules.showings.models import Showing

    errors = validate_booking_payload(payload)
    if errors:
        raise BookingError("Please fix the errors in the form before submitting.", errors=errors)

    start = parse_iso_datetime(payload.get("startDt"))
    end = parse_iso_datetime(payload.get("endDt"))
    if end - start != grid.slot_length:
        raise BookingError(f"Showings are {grid.slot_minutes} minutes long.")
    if abs((start - now).days) > LOOKAHEAD_DAYS:
        raise BookingError(f"Showings can only be booked within {LOOKAHEAD_DAYS} days.")

    manager_id = assigned_manager_id(s, lot)
    if manager_id is None:
        raise NoManagerAssigned("No manager assigned to this park")

    day = utc_to_local(start, grid).date()
    if is_weekend(day):
        raise SlotUnavailable("weekend")

    slot = find_slot(
        slots_for_day(s, lot, day, now=now, grid=grid, failure_policy=failure_policy, client=client),
        start,
    )
    if slot is None:
        raise SlotUnavailable("outside_hours")
    if not slot.is_available:
        raise SlotUnavailable(slot.reason or "")

    showing = Showing(
        lot_id=lot.id,
        manager_id=manager_id,
        start_dt=start,
        end_dt=end,
        client_name=payload_str(payload, "clientName"),
        client_email=payload_str(payload, "clientEmail") or None,
        client_phone=payload_str(payload, "clientPhone"),
        reminder_preference=(payload_str(payload, "reminderPreference") or "BOTH").upper(),
        status="SCHEDULED",
        created_at=now,
        updated_at=now,
    )
    s.add(showing)
    s.flush()

    record_event(
        s,
        actor=None,
        action="showing.book",
        entity_type="Showing",
        entity_id=str(showing.id),
        metadata={"lot_id": lot.id, "manager_id": manager_id, "start": isoformat_utc(start)},
    )

    try:
        event = create_showing_event(s, showing, lot, client=client)
        if event:
            showing.calendar_event_id = event.get("id")
            showing.calendar_html_link = event.get("htmlLink")
            logger.info("Calendar event created for showing %s: %s", showing.id, showing.calendar_event_id)
    except CalendarError as e:
        logger.error("Calendar sync error for showing %s: %s", showing.id, e)
        showing.calendar_sync_error = True
    return showing


def _require_scheduled(showing: "Showing") -> None:
    if showing.status != "SCHEDULED":
        raise ShowingStateError(f"Showing is already {showing.status.lower()}")


def cancel_showing(
    s: "Session",
    showing: "Showing",
    user: "User",
    *,
    reason: str | None = None,
    client: "GoogleCalendarClient | None" = None,
) -> "Showing":
    _require_scheduled(showing)
    showing.status = "CANCELED"
    showing.updated_at = datetime.utcnow()
    try:
        delete_showing_event(s, showing, client=client)
    except CalendarError as e:
        logger.warning("Could not remove calendar event for showing %s: %s", showing.id, e)
        showing.calendar_sync_error = True

    record_event(
        s,
        actor=user,
        action="showing.cancel",
        entity_type="Showing",
        entity_id=str(showing.id),
        reason=reason,
        metadata={"lot_id": showing.lot_id},
    )
    return showing


def complete_showing(s: "Session", showing: "Showing", user: "User") -> "Showing":
    _require_scheduled(showing)
    showing.status = "COMPLETED"
    showing.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="showing.complete",
        entity_type="Showing",
        entity_id=str(showing.id),
        metadata={"lot_id": showing.lot_id},
    )
    return showing


def list_manager_showings(s: "Session", user: "User", *, include_all: bool = False) -> list["Showing"]:
    from app.parkdesk.modules.showings.models import Showing

    q = s.query(Showing)
    if not include_all:
        q = q.filter(Showing.manager_id == user.id)
    return q.order_by(Showing.start_dt.asc()).all()


def showing_to_dict(showing: "Showing", *, include_client: bool = True) -> dict:
    d = {
        "id": showing.id,
        "startDt": isoformat_utc(showing.start_dt),
        "endDt": isoformat_utc(showing.end_dt),
        "status": showing.status,
    }
    if include_client:
        d.update(
            {
                "lotId": showing.lot_id,
                "managerId": showing.manager_id,
                "clientName": showing.client_name,
                "clientEmail": showing.client_email,
                "clientPhone": showing.client_phone,
                "reminderPreference": showing.reminder_preference,
                "calendarEventId": showing.calendar_event_id,
                "calendarHtmlLink": showing.calendar_html_link,
                "calendarSyncError": showing.calendar_sync_error,
            }
        )
    return d


# ---------- Availability rules ----------
def list_rules(s: "Session", lot_id: int) -> list["AvailabilityRule"]:
    from app.parkdesk.modules.showings.models import AvailabilityRule

    return (
        s.query(AvailabilityRule)
        .filter(AvailabilityRule.lot_id == lot_id)
        .order_by(AvailabilityRule.start_dt.asc())
        .all()
    )


def create_rule(s: "Session", lot: "Lot", payload: dict, user: "User") -> "AvailabilityRule":
    from app.parkdesk.modules.showings.models import AvailabilityRule

    rule = AvailabilityRule(
        lot_id=lot.id,
        rule_type=payload_str(payload, "ruleType").upper(),
        start_dt=parse_iso_datetime(payload["startDt"]),
        end_dt=parse_iso_datetime(payload["endDt"]),
        note=payload_str(payload, "note") or None,
        created_by_user_id=user.id,
    )
    s.add(rule)
    s.flush()
    record_event(
        s,
        actor=user,
        action="availability.create",
        entity_type="AvailabilityRule",
        entity_id=str(rule.id),
        metadata={"lot_id": lot.id, "rule_type": rule.rule_type},
    )
    return rule


def delete_rule(s: "Session", rule: "AvailabilityRule", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="availability.delete",
        entity_type="AvailabilityRule",
        entity_id=str(rule.id),
        metadata={"lot_id": rule.lot_id, "rule_type": rule.rule_type},
    )
    s.delete(rule)


def rule_to_dict(rule: "AvailabilityRule", *, include_note: bool = True) -> dict:
    d = {
        "id": rule.id,
        "lotId": rule.lot_id,
        "ruleType": rule.rule_type,
        "startDt": isoformat_utc(rule.start_dt),
        "endDt": isoformat_utc(rule.end_dt),
    }
    if include_note:
        d["note"] = rule.note
    return d
