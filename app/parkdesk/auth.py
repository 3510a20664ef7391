from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.parkdesk.audit import record_event
from app.parkdesk.db import db_session
from app.parkdesk.models import User
from app.parkdesk.utils import json_error, payload_str, request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def user_summary(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "roles": sorted(r.key for r in user.roles),
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.post("/login")
def login_post():
    payload = request_payload()
    email = payload_str(payload, "email").lower()
    password = payload_str(payload, "password", strip=False)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return json_error("Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email, "user_agent": request.headers.get("User-Agent")},
        )
        s.commit()
        return json_error("Invalid credentials.", 401)

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(
        s,
        actor=user,
        action="auth.login",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"user_agent": request.headers.get("User-Agent")},
    )
    s.commit()
    current_app.logger.info("Login ok user_id=%s request_id=%s", user.id, getattr(g, "request_id", None))
    return jsonify({"user": user_summary(user)})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"ok": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return json_error("Not authenticated.", 401)
    return jsonify(user_summary(user))
