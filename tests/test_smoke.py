import pytest

from app.parkdesk import auth, create_app
from app.parkdesk.db import session_scope
from app.parkdesk.models import AuditEvent


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_me(client):
    r = client.get("/auth/me")
    assert r.status_code == 401

    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    assert r.json["user"]["roles"] == ["admin"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["email"] == "admin@example.com"

    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_login_failure_is_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "admin@example.com"


def test_login_rate_limited(client):
    for _ in range(auth._LOGIN_RATE_LIMIT):
        client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 429


def test_permission_gating(client, login_as):
    # Anonymous
    assert client.get("/showings").status_code == 401

    # Tenants have no manager permissions
    login_as("tenant@example.com")
    r = client.get("/showings")
    assert r.status_code == 403
    assert r.is_json


def test_mutations_require_csrf(client, ids):
    login_payload = {"email": "manager@example.com", "password": "pw"}
    assert client.post("/auth/login", json=login_payload).status_code == 200

    r = client.post(f"/lots/{ids['lot']}/availability", json={"ruleType": "BLOCKED"})
    assert r.status_code == 400
    assert "CSRF" in r.json["message"]


def test_unknown_lot_is_json_404(client):
    r = client.get("/lots/9999")
    assert r.status_code == 404
    assert "message" in r.json


def test_lot_detail(client, ids):
    r = client.get(f"/lots/{ids['lot']}")
    assert r.status_code == 200
    assert r.json["parkName"] == "Shady Pines"
    assert r.json["price"] == 50000.0


def test_login_rejects_non_string_credentials(client):
    r = client.post("/auth/login", json={"email": 5, "password": ["pw"]})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid credentials."


@pytest.mark.parametrize(
    "name,value",
    [
        ("SHOWING_TIMEZONE", "Mars/Olympus"),
        ("SHOWING_SLOT_MINUTES", "25"),
        ("SHOWING_DAY_START_HOUR", "20"),
        ("SHOWING_DAY_END_HOUR", "24"),
    ],
)
def test_bad_showing_grid_fails_at_startup(tmp_path, monkeypatch, name, value):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("SHOWING_TIMEZONE", "SHOWING_DAY_START_HOUR", "SHOWING_DAY_END_HOUR", "SHOWING_SLOT_MINUTES"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv(name, value)

    with pytest.raises(RuntimeError):
        create_app()
