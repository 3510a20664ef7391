from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.parkdesk import auth
from app.parkdesk import create_app
from app.parkdesk.db import session_scope
from app.parkdesk.models import Base, Permission, Role, User
from app.parkdesk.modules.calendar_sync.google_client import CalendarAuthError, CalendarError
from app.parkdesk.modules.calendar_sync.models import CalendarToken
from app.parkdesk.modules.properties.models import Lot, ManagerAssignment, Park

MANAGER_PERMS = (
    "lots.manage",
    "showings.view",
    "showings.manage",
    "availability.manage",
    "calendar.connect",
    "invites.manage",
)
ALL_PERMS = ("parks.manage",) + MANAGER_PERMS


class FakeCalendarClient:
    """Stands in for GoogleCalendarClient; records calls and returns canned data."""

    configured = True

    def __init__(self):
        self.busy: list[tuple[datetime, datetime]] = []
        self.fail_free_busy = False
        self.fail_insert = False
        self.fail_refresh = False
        self.refresh_response: dict = {"access_token": "refreshed-token", "expires_in": 3600}
        self.inserted: list[tuple[str, dict]] = []
        self.deleted: list[tuple[str, str]] = []
        self.refreshed: list[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://accounts.example.com/auth?state={state}"

    def exchange_code(self, code: str) -> dict:
        return {"access_token": f"access-{code}", "refresh_token": f"refresh-{code}", "expires_in": 3600}

    def refresh(self, refresh_token: str) -> dict:
        self.refreshed.append(refresh_token)
        if self.fail_refresh:
            raise CalendarAuthError("invalid_grant")
        return dict(self.refresh_response)

    def free_busy(self, access_token, time_min, time_max, *, calendar_id="primary"):
        if self.fail_free_busy:
            raise CalendarError("HTTP 500 from Google")
        return [(a, b) for a, b in self.busy if a < time_max and b > time_min]

    def insert_event(self, access_token, event, *, calendar_id="primary"):
        if self.fail_insert:
            raise CalendarError("HTTP 500 from Google")
        self.inserted.append((access_token, event))
        return {"id": f"evt-{len(self.inserted)}", "htmlLink": "https://calendar.example.com/evt"}

    def delete_event(self, access_token, event_id, *, calendar_id="primary"):
        self.deleted.append((access_token, event_id))


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SHOWING_TIMEZONE", "America/Chicago")
    for k in ("CALENDAR_FAILURE_POLICY", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "SHOWING_SLOT_MINUTES"):
        monkeypatch.delenv(k, raising=False)
    auth._login_attempts.clear()

    app = create_app()
    app.extensions["calendar_client"] = FakeCalendarClient()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {k: Permission(key=k, name=k) for k in ALL_PERMS}
        admin_role = Role(key="admin", name="Administrator")
        admin_role.permissions.extend(perms.values())
        manager_role = Role(key="manager", name="Park manager")
        manager_role.permissions.extend(perms[k] for k in MANAGER_PERMS)
        tenant_role = Role(key="tenant", name="Tenant")

        def user(email, role):
            u = User(email=email, password_hash=generate_password_hash("pw"), is_active=True)
            u.roles.append(role)
            return u

        admin = user("admin@example.com", admin_role)
        manager = user("manager@example.com", manager_role)
        other_manager = user("other@example.com", manager_role)
        tenant = user("tenant@example.com", tenant_role)

        park = Park(name="Shady Pines")
        lot = Lot(park=park, name_or_number="12", price=Decimal("50000.00"))
        orphan_park = Park(name="No Manager Acres")
        orphan_lot = Lot(park=orphan_park, name_or_number="1", price=Decimal("30000.00"))
        other_park = Park(name="Elsewhere")
        other_lot = Lot(park=other_park, name_or_number="7")

        s.add_all(list(perms.values()) + [admin_role, manager_role, tenant_role])
        s.add_all([admin, manager, other_manager, tenant, park, lot, orphan_park, orphan_lot, other_park, other_lot])
        s.flush()
        s.add(ManagerAssignment(user_id=manager.id, park_id=park.id))
        s.add(ManagerAssignment(user_id=other_manager.id, park_id=other_park.id))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def fake_calendar(app):
    return app.extensions["calendar_client"]


@pytest.fixture()
def ids(app):
    with session_scope(app) as s:
        return {
            "admin": s.query(User).filter_by(email="admin@example.com").one().id,
            "manager": s.query(User).filter_by(email="manager@example.com").one().id,
            "other_manager": s.query(User).filter_by(email="other@example.com").one().id,
            "tenant": s.query(User).filter_by(email="tenant@example.com").one().id,
            "lot": s.query(Lot).filter_by(name_or_number="12").one().id,
            "orphan_lot": s.query(Lot).filter_by(name_or_number="1").one().id,
            "other_lot": s.query(Lot).filter_by(name_or_number="7").one().id,
        }


@pytest.fixture()
def connect_calendar(app):
    """Store a calendar connection for a user directly, skipping the OAuth dance."""

    def _connect(user_id, *, expires_in=timedelta(hours=1), refresh_token="refresh-1"):
        with session_scope(app) as s:
            now = datetime.utcnow()
            s.add(
                CalendarToken(
                    user_id=user_id,
                    access_token="access-1",
                    refresh_token=refresh_token,
                    expires_at=now + expires_in,
                    scope="calendar",
                    token_type="Bearer",
                    created_at=now,
                    updated_at=now,
                )
            )

    return _connect


@pytest.fixture()
def csrf(client):
    return {"X-CSRF-Token": client.get("/csrf-token").json["csrfToken"]}


@pytest.fixture()
def login_as(client):
    """Log in and return headers carrying the session's CSRF token."""

    def _login(email, password="pw"):
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        return {"X-CSRF-Token": client.get("/csrf-token").json["csrfToken"]}

    return _login
