from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.parkdesk.audit import record_event
from app.parkdesk.rbac import is_admin
from app.parkdesk.utils import isoformat_utc

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.parkdesk.models import User
    from app.parkdesk.modules.invites.models import Invite

INVITABLE_ROLES = ("admin", "manager", "tenant")
MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class InviteError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InviteNotFound(InviteError):
    status_code = 404


class InviteConflict(InviteError):
    status_code = 409


class InviteExpired(InviteError):
    status_code = 410


class InviteForbidden(InviteError):
    status_code = 403


def allowed_roles_for(actor: "User") -> tuple[str, ...]:
    """Admins invite anyone; managers only bring on tenants."""
    if is_admin(actor):
        return INVITABLE_ROLES
    if actor.has_role("manager"):
        return ("tenant",)
    return ()


def create_invite(
    s: "Session",
    *,
    email: str,
    role_key: str,
    actor: "User",
    ttl_days: int = 7,
    now: datetime | None = None,
) -> "Invite":
    from app.parkdesk.models import User
    from app.parkdesk.modules.invites.models import Invite

    email = (email or "").strip().lower()
    role_key = (role_key or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise InviteError("Please enter a valid email address")
    if role_key not in INVITABLE_ROLES:
        raise InviteError(f"Invalid role. Must be one of: {', '.join(INVITABLE_ROLES)}")
    if role_key not in allowed_roles_for(actor):
        raise InviteForbidden(f"You cannot invite a {role_key}")
    if s.query(User).filter(User.email == email).one_or_none():
        raise InviteConflict("User already exists")

    now = now or datetime.utcnow()
    invite = Invite(
        email=email,
        role_key=role_key,
        token=secrets.token_urlsafe(32),
        expires_at=now + timedelta(days=ttl_days),
        created_at=now,
        created_by_user_id=actor.id,
    )
    s.add(invite)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="invite.create",
        entity_type="Invite",
        entity_id=str(invite.id),
        metadata={"email": email, "role": role_key},
    )
    return invite


def accept_invite(
    s: "Session",
    *,
    token: str,
    password: str,
    full_name: str | None = None,
    now: datetime | None = None,
) -> "User":
    from app.parkdesk.models import Role, User
    from app.parkdesk.modules.invites.models import Invite

    if not token or not password:
        raise InviteError("Token and password required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InviteError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    invite = s.query(Invite).filter(Invite.token == token).one_or_none()
    if invite is None:
        raise InviteNotFound("Invalid invite token")
    if invite.accepted_at is not None:
        raise InviteConflict("Invite already accepted")
    now = now or datetime.utcnow()
    if invite.expires_at < now:
        raise InviteExpired("Invite has expired")
    if s.query(User).filter(User.email == invite.email).one_or_none():
        raise InviteConflict("User already exists")

    role = s.query(Role).filter(Role.key == invite.role_key).one_or_none()
    if role is None:
        # Roles come from scripts/init_db.py.
        raise InviteError(f"Role {invite.role_key!r} is not configured")

    user = User(
        email=invite.email,
        full_name=(full_name or "").strip() or None,
        password_hash=generate_password_hash(password),
        is_active=True,
        created_at=now,
    )
    user.roles.append(role)
    s.add(user)
    invite.accepted_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="invite.accept",
        entity_type="Invite",
        entity_id=str(invite.id),
        metadata={"email": invite.email, "role": invite.role_key},
    )
    return user


def delete_invite(s: "Session", invite: "Invite", actor: "User") -> None:
    record_event(
        s,
        actor=actor,
        action="invite.delete",
        entity_type="Invite",
        entity_id=str(invite.id),
        metadata={"email": invite.email, "role": invite.role_key},
    )
    s.delete(invite)


def invite_to_dict(invite: "Invite", *, include_token: bool = False) -> dict:
    d = {
        "id": invite.id,
        "email": invite.email,
        "role": invite.role_key,
        "expiresAt": isoformat_utc(invite.expires_at),
        "acceptedAt": isoformat_utc(invite.accepted_at),
        "createdAt": isoformat_utc(invite.created_at),
    }
    if include_token:
        d["token"] = invite.token
    return d
