from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.parkdesk.db import db_session
from app.parkdesk.models import User
from app.parkdesk.modules.properties.models import Lot, Park
from app.parkdesk.modules.properties.service import (
    assign_manager,
    create_lot,
    create_park,
    deactivate_lot,
    deactivate_park,
    lot_summary,
    managed_park_ids,
    park_summary,
    parse_price,
    parse_price_range,
    unassign_manager,
    validate_lot_payload,
    validate_park_payload,
)
from app.parkdesk.rbac import is_admin, require_permission
from app.parkdesk.utils import json_error, request_payload

bp = Blueprint("properties", __name__)

_DEFAULT_PAGE_SIZE = 20
_MAX_PAGE_SIZE = 100


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _paging() -> tuple[int, int]:
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = request.args.get("limit", _DEFAULT_PAGE_SIZE, type=int) or _DEFAULT_PAGE_SIZE
    return page, min(max(limit, 1), _MAX_PAGE_SIZE)


def get_active_lot_or_404(lot_id: int) -> Lot:
    s = db_session()
    lot = s.get(Lot, lot_id)
    if not lot or not lot.is_active or not lot.park.is_active:
        abort(404)
    return lot


def get_active_park_or_404(park_id: int) -> Park:
    s = db_session()
    park = s.get(Park, park_id)
    if not park or not park.is_active:
        abort(404)
    return park


# ---------- Public browsing ----------
@bp.get("/parks")
def parks_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    city = (request.args.get("city") or "").strip()
    state = (request.args.get("state") or "").strip()
    page, limit = _paging()

    q = s.query(Park).filter(Park.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(
            (Park.name.ilike(like))
            | (Park.description.ilike(like))
            | (Park.address.ilike(like))
        )
    if city:
        q = q.filter(Park.city.ilike(city))
    if state:
        q = q.filter(Park.state.ilike(state))

    total = q.count()
    parks = q.order_by(Park.name.asc(), Park.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "parks": [park_summary(p) for p in parks],
            "totalCount": total,
            "page": page,
            "limit": limit,
        }
    )


@bp.get("/parks/<int:park_id>")
def park_detail(park_id: int):
    return jsonify(park_summary(get_active_park_or_404(park_id), include_lots=True))


@bp.get("/lots")
def lots_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    state = (request.args.get("state") or "").strip()
    park_id = request.args.get("parkId", type=int)
    page, limit = _paging()
    try:
        range_min, range_max = parse_price_range(request.args.get("price"))
        min_price = parse_price(request.args.get("minPrice"), "minPrice")
        max_price = parse_price(request.args.get("maxPrice"), "maxPrice")
    except ValueError as e:
        return json_error(str(e), 400)
    # Explicit bounds win over the bucket.
    min_price = min_price if min_price is not None else range_min
    max_price = max_price if max_price is not None else range_max

    q = s.query(Lot).join(Lot.park).filter(Lot.is_active.is_(True), Park.is_active.is_(True))
    if park_id is not None:
        q = q.filter(Lot.park_id == park_id)
    if state:
        q = q.filter(Park.state.ilike(state))
    if search:
        like = f"%{search}%"
        q = q.filter(
            (Lot.name_or_number.ilike(like))
            | (Lot.description.ilike(like))
            | (Park.name.ilike(like))
        )
    if min_price is not None:
        q = q.filter(Lot.price >= min_price)
    if max_price is not None:
        q = q.filter(Lot.price <= max_price)

    total = q.count()
    lots = (
        q.order_by(Park.name.asc(), Lot.name_or_number.asc(), Lot.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "lots": [lot_summary(lot) for lot in lots],
            "totalCount": total,
            "page": page,
            "limit": limit,
        }
    )


@bp.get("/lots/<int:lot_id>")
def lot_detail(lot_id: int):
    return jsonify(lot_summary(get_active_lot_or_404(lot_id)))


# ---------- Parks (admin) ----------
@bp.post("/parks")
@require_permission("parks.manage")
def parks_create():
    s = db_session()
    payload = request_payload()
    errors = validate_park_payload(payload)
    if errors:
        return json_error("Invalid park data", 400, errors=errors)
    park = create_park(s, payload, _current_user())
    s.commit()
    return jsonify(park_summary(park)), 201


@bp.delete("/parks/<int:park_id>")
@require_permission("parks.manage")
def parks_delete(park_id: int):
    s = db_session()
    park = get_active_park_or_404(park_id)
    deactivate_park(s, park, _current_user())
    s.commit()
    return "", 204


@bp.post("/parks/<int:park_id>/managers/<int:user_id>")
@require_permission("parks.manage")
def park_manager_assign(park_id: int, user_id: int):
    s = db_session()
    park = get_active_park_or_404(park_id)
    manager = s.get(User, user_id)
    if not manager or not manager.is_active:
        abort(404)
    if not manager.has_role("manager"):
        return json_error("Only managers can be assigned to a park.", 400)
    created = assign_manager(s, park, manager, _current_user())
    s.commit()
    return jsonify({"parkId": park.id, "userId": manager.id}), 201 if created else 200


@bp.delete("/parks/<int:park_id>/managers/<int:user_id>")
@require_permission("parks.manage")
def park_manager_unassign(park_id: int, user_id: int):
    s = db_session()
    park = get_active_park_or_404(park_id)
    manager = s.get(User, user_id)
    if not manager:
        abort(404)
    unassign_manager(s, park, manager, _current_user())
    s.commit()
    return "", 204


# ---------- Lots (admin and assigned managers) ----------
def _require_park_access(park: Park) -> None:
    u = _current_user()
    if not is_admin(u) and park.id not in managed_park_ids(db_session(), u):
        abort(403)


@bp.post("/lots")
@require_permission("lots.manage")
def lots_create():
    s = db_session()
    payload = request_payload()
    errors = validate_lot_payload(payload)
    if errors:
        return json_error("Invalid lot data", 400, errors=errors)
    park = get_active_park_or_404(int(payload["parkId"]))
    _require_park_access(park)
    lot = create_lot(s, park, payload, _current_user())
    s.commit()
    return jsonify(lot_summary(lot)), 201


@bp.delete("/lots/<int:lot_id>")
@require_permission("lots.manage")
def lots_delete(lot_id: int):
    s = db_session()
    lot = get_active_lot_or_404(lot_id)
    _require_park_access(lot.park)
    deactivate_lot(s, lot, _current_user())
    s.commit()
    return "", 204
