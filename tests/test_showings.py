from datetime import datetime, timedelta

import pytest

from app.parkdesk.db import session_scope
from app.parkdesk.models import AuditEvent
from app.parkdesk.modules.showings import admin as showings_admin
from app.parkdesk.modules.showings.models import Showing

NOW = datetime(2026, 10, 19, 12, 0)  # Monday 07:00 America/Chicago
TUESDAY_10AM = ("2026-10-20T15:00:00Z", "2026-10-20T15:30:00Z")


@pytest.fixture(autouse=True)
def frozen_now(monkeypatch):
    monkeypatch.setattr(showings_admin, "_utcnow", lambda: NOW)


def _booking(start=TUESDAY_10AM[0], end=TUESDAY_10AM[1], **overrides):
    payload = {
        "clientName": "Pat Doe",
        "clientEmail": "pat@example.com",
        "clientPhone": "(555) 123-4567",
        "reminderPreference": "EMAIL",
        "startDt": start,
        "endDt": end,
    }
    payload.update(overrides)
    return payload


def _book(client, csrf, lot_id, **kwargs):
    return client.post(f"/lots/{lot_id}/book", json=_booking(**kwargs), headers=csrf)


def _slot(client, lot_id, day, time):
    r = client.get(f"/lots/{lot_id}/slots?date={day}")
    assert r.status_code == 200
    return next(s for s in r.json["slots"] if s["time"] == time)


def test_day_slots(client, ids):
    r = client.get(f"/lots/{ids['lot']}/slots?date=2026-10-20")
    assert r.status_code == 200
    assert len(r.json["slots"]) == 23
    assert r.json["availableTimes"][0] == "08:00"
    assert r.json["availableTimes"][-1] == "19:00"

    r = client.get(f"/lots/{ids['lot']}/slots?date=2026-10-24")
    assert r.json["slots"] == []

    assert client.get(f"/lots/{ids['lot']}/slots").status_code == 400
    assert client.get(f"/lots/{ids['lot']}/slots?date=not-a-date").status_code == 400


def test_week_schedule(client, ids):
    r = client.get(f"/lots/{ids['lot']}/schedule")
    assert r.status_code == 200
    assert r.json["weekStart"] == "2026-10-19"
    assert r.json["timezone"] == "America/Chicago"
    assert [d["dayName"] for d in r.json["days"]] == ["Mon", "Tue", "Wed", "Thu", "Fri"]


def test_book_showing_without_calendar(app, client, csrf, ids, fake_calendar):
    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 201
    assert r.json["status"] == "SCHEDULED"
    assert r.json["managerId"] == ids["manager"]
    assert r.json["calendarEventId"] is None
    assert r.json["calendarSyncError"] is False
    assert fake_calendar.inserted == []

    slot = _slot(client, ids["lot"], "2026-10-20", "10:00")
    assert slot["isAvailable"] is False
    assert slot["reason"] == "booked"
    assert _slot(client, ids["lot"], "2026-10-20", "10:30")["isAvailable"] is True

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "showing.book").count() == 1


def test_book_showing_creates_calendar_event(client, csrf, ids, fake_calendar, connect_calendar):
    connect_calendar(ids["manager"])
    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 201
    assert r.json["calendarEventId"] == "evt-1"
    assert r.json["calendarHtmlLink"]

    token, event = fake_calendar.inserted[0]
    assert token == "access-1"
    assert event["summary"] == "Property Showing - Pat Doe"
    assert event["start"]["dateTime"] == "2026-10-20T15:00:00Z"
    assert event["attendees"] == [{"email": "pat@example.com", "displayName": "Pat Doe"}]


def test_calendar_insert_failure_keeps_booking(client, csrf, ids, fake_calendar, connect_calendar):
    connect_calendar(ids["manager"])
    fake_calendar.fail_insert = True
    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 201
    assert r.json["calendarSyncError"] is True
    assert r.json["calendarEventId"] is None


def test_double_booking_rejected(client, csrf, ids):
    assert _book(client, csrf, ids["lot"]).status_code == 201
    r = _book(client, csrf, ids["lot"], clientName="Someone Else")
    assert r.status_code == 409
    assert r.json["reason"] == "booked"


def test_manager_busy_rejects_booking(client, csrf, ids, fake_calendar, connect_calendar):
    connect_calendar(ids["manager"])
    fake_calendar.busy = [(datetime(2026, 10, 20, 14, 45), datetime(2026, 10, 20, 15, 15))]

    slot = _slot(client, ids["lot"], "2026-10-20", "10:00")
    assert slot["reason"] == "busy"
    assert _slot(client, ids["lot"], "2026-10-20", "10:30")["isAvailable"] is True

    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 409
    assert r.json["reason"] == "busy"


def test_calendar_failure_fails_open_by_default(client, csrf, ids, fake_calendar, connect_calendar):
    connect_calendar(ids["manager"])
    fake_calendar.fail_free_busy = True
    assert _slot(client, ids["lot"], "2026-10-20", "10:00")["isAvailable"] is True
    assert _book(client, csrf, ids["lot"]).status_code == 201


def test_calendar_failure_can_fail_closed(app, client, csrf, ids, fake_calendar, connect_calendar):
    app.config["CALENDAR_FAILURE_POLICY"] = "closed"
    connect_calendar(ids["manager"])
    fake_calendar.fail_free_busy = True

    r = client.get(f"/lots/{ids['lot']}/slots?date=2026-10-20")
    assert r.json["availableTimes"] == []
    assert {s["reason"] for s in r.json["slots"]} == {"calendar_unavailable"}

    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 409
    assert r.json["reason"] == "calendar_unavailable"


def test_lot_without_manager_cannot_be_booked(client, csrf, ids):
    r = _book(client, csrf, ids["orphan_lot"])
    assert r.status_code == 400
    assert "No manager" in r.json["message"]


@pytest.mark.parametrize(
    "overrides,status,reason",
    [
        ({"start": "2026-10-20T15:15:00Z", "end": "2026-10-20T15:45:00Z"}, 409, "outside_hours"),
        ({"start": "2026-10-21T01:00:00Z", "end": "2026-10-21T01:30:00Z"}, 409, "outside_hours"),  # 8:00pm local
        ({"start": "2026-10-24T15:00:00Z", "end": "2026-10-24T15:30:00Z"}, 409, "weekend"),
        ({"start": "2026-10-19T11:00:00Z", "end": "2026-10-19T11:30:00Z"}, 409, "outside_hours"),  # 6:00am local
        ({"end": "2026-10-20T16:00:00Z"}, 400, None),
    ],
)
def test_booking_must_land_on_an_open_grid_slot(client, csrf, ids, overrides, status, reason):
    r = _book(client, csrf, ids["lot"], **overrides)
    assert r.status_code == status
    assert r.json.get("reason") == reason


def test_booking_in_the_past_rejected(client, csrf, ids, monkeypatch):
    monkeypatch.setattr(showings_admin, "_utcnow", lambda: datetime(2026, 10, 20, 16, 0))
    r = _book(client, csrf, ids["lot"])
    assert r.status_code == 409
    assert r.json["reason"] == "past"


def test_booking_validation_errors(client, csrf, ids):
    r = _book(client, csrf, ids["lot"], clientName="", clientPhone="12", clientEmail="nope", reminderPreference="FAX")
    assert r.status_code == 400
    errors = r.json["errors"]
    assert "Full name is required" in errors
    assert "Please enter a valid email address" in errors
    assert any(e.startswith("Please enter a valid US phone number") for e in errors)
    assert any(e.startswith("Invalid reminder preference") for e in errors)

    r = _book(client, csrf, ids["lot"], start="", end="")
    assert r.status_code == 400
    assert "Please select both date and time" in r.json["errors"]


def test_back_to_back_showings_are_allowed(client, csrf, ids):
    assert _book(client, csrf, ids["lot"]).status_code == 201
    r = _book(client, csrf, ids["lot"], start="2026-10-20T15:30:00Z", end="2026-10-20T16:00:00Z", clientName="Next Up")
    assert r.status_code == 201
    assert _slot(client, ids["lot"], "2026-10-20", "10:30")["reason"] == "booked"


def test_day_slots_reject_dates_out_of_range(client, ids):
    for day in ("9999-12-31", "0001-01-01", "2028-01-01"):
        r = client.get(f"/lots/{ids['lot']}/slots?date={day}")
        assert r.status_code == 400
        assert "within" in r.json["message"]


def test_booking_far_in_the_future_rejected(client, csrf, ids):
    r = _book(client, csrf, ids["lot"], start="9999-12-31T15:00:00Z", end="9999-12-31T15:30:00Z")
    assert r.status_code == 400
    assert "within" in r.json["message"]


def test_booking_rejects_non_string_fields(client, csrf, ids):
    r = _book(client, csrf, ids["lot"], clientName=123, clientPhone={"n": 1}, reminderPreference=["SMS"])
    assert r.status_code == 400
    assert "Full name is required" in r.json["errors"]
    assert "Phone number is required" in r.json["errors"]

    r = _book(client, csrf, ids["lot"], start=20261020, end=20261021)
    assert r.status_code == 400


def test_booking_requires_csrf(client, ids):
    r = client.post(f"/lots/{ids['lot']}/book", json=_booking())
    assert r.status_code == 400


def test_public_showings_hide_client_details(client, csrf, ids):
    _book(client, csrf, ids["lot"])
    r = client.get(f"/lots/{ids['lot']}/showings")
    assert r.status_code == 200
    assert len(r.json) == 1
    assert "clientName" not in r.json[0]
    assert r.json[0]["startDt"] == TUESDAY_10AM[0]


def test_manager_lists_and_cancels_showing(client, csrf, ids, fake_calendar, connect_calendar):
    connect_calendar(ids["manager"])
    showing_id = _book(client, csrf, ids["lot"]).json["id"]

    headers = {"X-CSRF-Token": csrf["X-CSRF-Token"]}
    client.post("/auth/login", json={"email": "manager@example.com", "password": "pw"})

    r = client.get("/showings")
    assert r.status_code == 200
    assert [s["id"] for s in r.json] == [showing_id]
    assert r.json[0]["clientName"] == "Pat Doe"

    r = client.post(f"/showings/{showing_id}/cancel", json={"reason": "client called"}, headers=headers)
    assert r.status_code == 200
    assert r.json["status"] == "CANCELED"
    assert fake_calendar.deleted == [("access-1", "evt-1")]

    r = client.post(f"/showings/{showing_id}/cancel", json={}, headers=headers)
    assert r.status_code == 409

    # The slot opens up again.
    assert _slot(client, ids["lot"], "2026-10-20", "10:00")["isAvailable"] is True


def test_manager_completes_showing(client, csrf, ids):
    showing_id = _book(client, csrf, ids["lot"]).json["id"]
    client.post("/auth/login", json={"email": "manager@example.com", "password": "pw"})

    r = client.post(f"/showings/{showing_id}/complete", headers=csrf)
    assert r.status_code == 200
    assert r.json["status"] == "COMPLETED"

    r = client.post(f"/showings/{showing_id}/cancel", headers=csrf)
    assert r.status_code == 409


def test_other_manager_cannot_touch_showing(client, csrf, ids):
    showing_id = _book(client, csrf, ids["lot"]).json["id"]
    client.post("/auth/login", json={"email": "other@example.com", "password": "pw"})

    assert client.get("/showings").json == []
    r = client.post(f"/showings/{showing_id}/cancel", headers=csrf)
    assert r.status_code == 403


def test_admin_sees_all_showings(client, csrf, ids, login_as):
    _book(client, csrf, ids["lot"])
    login_as("admin@example.com")
    r = client.get("/showings")
    assert r.status_code == 200
    assert len(r.json) == 1


def test_availability_rules(client, ids, login_as):
    rule = {"ruleType": "BLOCKED", "startDt": "2026-10-20T15:00:00Z", "endDt": "2026-10-20T16:00:00Z", "note": "lunch"}

    headers = login_as("tenant@example.com")
    assert client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers).status_code == 403

    headers = login_as("other@example.com")
    assert client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers).status_code == 403

    headers = login_as("manager@example.com")
    r = client.post(f"/lots/{ids['lot']}/availability", json={**rule, "ruleType": "MAYBE"}, headers=headers)
    assert r.status_code == 400

    r = client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers)
    assert r.status_code == 201
    rule_id = r.json["id"]
    assert r.json["ruleType"] == "BLOCKED"

    r = client.get(f"/lots/{ids['lot']}/availability")
    assert [x["id"] for x in r.json] == [rule_id]

    assert _slot(client, ids["lot"], "2026-10-20", "10:00")["reason"] == "blocked"
    assert _slot(client, ids["lot"], "2026-10-20", "10:30")["reason"] == "blocked"
    assert _slot(client, ids["lot"], "2026-10-20", "11:00")["isAvailable"] is True

    r = client.post(f"/lots/{ids['lot']}/book", json=_booking(), headers=headers)
    assert r.status_code == 409
    assert r.json["reason"] == "blocked"

    assert client.delete(f"/availability/{rule_id}", headers=headers).status_code == 204
    assert client.get(f"/lots/{ids['lot']}/availability").json == []
    assert client.delete(f"/availability/{rule_id}", headers=headers).status_code == 404


def test_open_slot_rules_do_not_remove_slots(client, ids, login_as):
    headers = login_as("manager@example.com")
    rule = {"ruleType": "OPEN_SLOT", "startDt": "2026-10-20T15:00:00Z", "endDt": "2026-10-20T16:00:00Z"}
    assert client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers).status_code == 201
    assert _slot(client, ids["lot"], "2026-10-20", "10:00")["isAvailable"] is True


def test_showing_rows_store_naive_utc(app, client, csrf, ids):
    _book(client, csrf, ids["lot"])
    with session_scope(app) as s:
        showing = s.query(Showing).one()
        assert showing.start_dt == datetime(2026, 10, 20, 15, 0)
        assert showing.end_dt - showing.start_dt == timedelta(minutes=30)
        assert showing.reminder_preference == "EMAIL"


def test_public_availability_hides_notes(client, ids, login_as):
    headers = login_as("manager@example.com")
    rule = {"ruleType": "BLOCKED", "startDt": "2026-10-20T15:00:00Z", "endDt": "2026-10-20T16:00:00Z", "note": "dentist"}
    assert client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers).status_code == 201
    assert client.get(f"/lots/{ids['lot']}/availability").json[0]["note"] == "dentist"

    login_as("other@example.com")
    assert "note" not in client.get(f"/lots/{ids['lot']}/availability").json[0]

    client.post("/auth/logout")
    r = client.get(f"/lots/{ids['lot']}/availability")
    assert r.status_code == 200
    assert "note" not in r.json[0]
    assert r.json[0]["ruleType"] == "BLOCKED"


def test_availability_rule_with_non_string_type_rejected(client, ids, login_as):
    headers = login_as("manager@example.com")
    rule = {"ruleType": 1, "startDt": "2026-10-20T15:00:00Z", "endDt": "2026-10-20T16:00:00Z", "note": 5}
    r = client.post(f"/lots/{ids['lot']}/availability", json=rule, headers=headers)
    assert r.status_code == 400
