from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request, session

from app.parkdesk.auth import user_summary
from app.parkdesk.db import db_session
from app.parkdesk.models import User
from app.parkdesk.modules.invites.models import Invite
from app.parkdesk.modules.invites.service import (
    InviteError,
    accept_invite,
    create_invite,
    delete_invite,
    invite_to_dict,
)
from app.parkdesk.rbac import is_admin, require_permission
from app.parkdesk.utils import json_error, payload_str, request_payload

bp = Blueprint("invites", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/invites")
@require_permission("invites.manage")
def invites_list():
    s = db_session()
    u = _current_user()
    q = s.query(Invite)
    if not is_admin(u):
        q = q.filter(Invite.created_by_user_id == u.id)
    invites = q.order_by(Invite.created_at.desc()).all()
    return jsonify({"invites": [invite_to_dict(i) for i in invites]})


@bp.post("/invites")
@require_permission("invites.manage")
def invites_create():
    s = db_session()
    payload = request_payload()
    try:
        invite = create_invite(
            s,
            email=payload_str(payload, "email"),
            role_key=payload_str(payload, "role"),
            actor=_current_user(),
            ttl_days=int(current_app.config.get("INVITE_TTL_DAYS", 7)),
        )
    except InviteError as e:
        s.rollback()
        return json_error(e.message, e.status_code)
    s.commit()

    body = invite_to_dict(invite, include_token=True)
    body["inviteUrl"] = f"{request.host_url.rstrip('/')}/accept-invite?token={invite.token}"
    return jsonify(body), 201


@bp.delete("/invites/<int:invite_id>")
@require_permission("invites.manage")
def invites_delete(invite_id: int):
    s = db_session()
    u = _current_user()
    invite = s.get(Invite, invite_id)
    if not invite:
        abort(404)
    if not is_admin(u) and invite.created_by_user_id != u.id:
        abort(403)
    delete_invite(s, invite, u)
    s.commit()
    return "", 204


@bp.post("/invites/accept")
def invites_accept():
    s = db_session()
    payload = request_payload()
    try:
        user = accept_invite(
            s,
            token=payload_str(payload, "token"),
            password=payload_str(payload, "password", strip=False),
            full_name=payload_str(payload, "fullName") or None,
        )
    except InviteError as e:
        s.rollback()
        return json_error(e.message, e.status_code)
    s.commit()
    session["user_id"] = user.id
    return jsonify({"user": user_summary(user)}), 201
