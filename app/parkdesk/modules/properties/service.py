from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from app.parkdesk.audit import record_event
from app.parkdesk.rbac import is_admin
from app.parkdesk.utils import payload_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.parkdesk.models import User
    from app.parkdesk.modules.properties.models import Lot, Park


def assigned_manager_id(s: "Session", lot: "Lot") -> int | None:
    """First manager assigned to the lot's park (lowest assignment id), if any."""
    from app.parkdesk.modules.properties.models import ManagerAssignment

    row = (
        s.query(ManagerAssignment.user_id)
        .filter(ManagerAssignment.park_id == lot.park_id)
        .order_by(ManagerAssignment.id.asc())
        .first()
    )
    return row[0] if row else None


def managed_park_ids(s: "Session", user: "User") -> set[int]:
    from app.parkdesk.modules.properties.models import ManagerAssignment

    rows = s.query(ManagerAssignment.park_id).filter(ManagerAssignment.user_id == user.id).all()
    return {r[0] for r in rows}


def manager_can_access_lot(s: "Session", user: "User | None", lot: "Lot") -> bool:
    """Admins see every lot; managers only lots in parks they are assigned to."""
    if user is None:
        return False
    if is_admin(user):
        return True
    return lot.park_id in managed_park_ids(s, user)


def lot_summary(lot: "Lot") -> dict:
    return {
        "id": lot.id,
        "nameOrNumber": lot.name_or_number,
        "parkId": lot.park_id,
        "parkName": lot.park.name if lot.park else None,
        "price": float(lot.price) if lot.price is not None else None,
        "description": lot.description,
        "city": lot.park.city if lot.park else None,
        "state": lot.park.state if lot.park else None,
        "isActive": lot.is_active,
    }


def park_summary(park: "Park", *, include_lots: bool = False) -> dict:
    d = {
        "id": park.id,
        "name": park.name,
        "address": park.address,
        "city": park.city,
        "state": park.state,
        "zip": park.zip,
        "description": park.description,
        "isActive": park.is_active,
        "lotCount": sum(1 for lot in park.lots if lot.is_active),
    }
    if include_lots:
        d["lots"] = [lot_summary(lot) for lot in park.lots if lot.is_active]
    return d


# ---------- Filters ----------
def parse_price(raw: str | None, label: str) -> Decimal | None:
    if raw is None or not raw.strip():
        return None
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"{label} must be a number.")
    if not value.is_finite() or value < 0:
        raise ValueError(f"{label} must be a non-negative number.")
    return value


def parse_price_range(raw: str | None) -> tuple[Decimal | None, Decimal | None]:
    """
    Listing-page price buckets: "100000-200000", "300000+" or "all".
    Returns (min, max); either end may be None.
    """
    raw = (raw or "").strip()
    if not raw or raw == "all":
        return None, None
    if raw.endswith("+"):
        return parse_price(raw[:-1], "price"), None
    low, sep, high = raw.partition("-")
    if not sep:
        raise ValueError("price must look like 100000-200000 or 300000+.")
    return parse_price(low, "price"), parse_price(high, "price")


# ---------- Validation ----------
# lots.price is NUMERIC(10, 2).
_MAX_PRICE = Decimal("100000000")


def _validate_price(raw) -> list[str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        return ["Price must be a number"]
    try:
        price = parse_price(str(raw), "Price")
    except ValueError as e:
        return [str(e)]
    if price is not None and price >= _MAX_PRICE:
        return ["Price is too large"]
    return []


def validate_park_payload(payload: dict) -> list[str]:
    errors = []
    if not payload_str(payload, "name"):
        errors.append("Park name is required")
    for key in ("address", "city", "state", "zip", "description"):
        value = payload.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be text")
    return errors


def validate_lot_payload(payload: dict) -> list[str]:
    errors = []
    if not payload_str(payload, "nameOrNumber"):
        errors.append("Lot name or number is required")
    park_id = payload.get("parkId")
    if isinstance(park_id, bool) or not isinstance(park_id, (int, str)) or not str(park_id).strip().isdigit():
        errors.append("parkId is required")
    description = payload.get("description")
    if description is not None and not isinstance(description, str):
        errors.append("description must be text")
    errors.extend(_validate_price(payload.get("price")))
    return errors


# ---------- Mutations ----------
def create_park(s: "Session", payload: dict, user: "User") -> "Park":
    from app.parkdesk.modules.properties.models import Park

    park = Park(
        name=payload_str(payload, "name"),
        address=payload_str(payload, "address") or None,
        city=payload_str(payload, "city") or None,
        state=payload_str(payload, "state") or None,
        zip=payload_str(payload, "zip") or None,
        description=payload_str(payload, "description") or None,
        is_active=True,
    )
    s.add(park)
    s.flush()
    record_event(
        s,
        actor=user,
        action="park.create",
        entity_type="Park",
        entity_id=str(park.id),
        metadata={"name": park.name, "city": park.city, "state": park.state},
    )
    return park


def deactivate_park(s: "Session", park: "Park", user: "User") -> None:
    """Parks are never hard-deleted; their lots go inactive with them so showing history stays intact."""
    park.is_active = False
    lot_ids = []
    for lot in park.lots:
        if lot.is_active:
            lot.is_active = False
            lot_ids.append(lot.id)
    record_event(
        s,
        actor=user,
        action="park.deactivate",
        entity_type="Park",
        entity_id=str(park.id),
        metadata={"lot_ids": lot_ids},
    )


def create_lot(s: "Session", park: "Park", payload: dict, user: "User") -> "Lot":
    from app.parkdesk.modules.properties.models import Lot

    raw_price = payload.get("price")
    price = parse_price(str(raw_price), "Price") if raw_price not in (None, "") else None
    lot = Lot(
        park=park,
        name_or_number=payload_str(payload, "nameOrNumber"),
        price=price,
        description=payload_str(payload, "description") or None,
        is_active=True,
    )
    s.add(lot)
    s.flush()
    record_event(
        s,
        actor=user,
        action="lot.create",
        entity_type="Lot",
        entity_id=str(lot.id),
        metadata={"park_id": park.id, "name_or_number": lot.name_or_number, "price": price},
    )
    return lot


def deactivate_lot(s: "Session", lot: "Lot", user: "User") -> None:
    lot.is_active = False
    record_event(
        s,
        actor=user,
        action="lot.deactivate",
        entity_type="Lot",
        entity_id=str(lot.id),
        metadata={"park_id": lot.park_id},
    )


def assign_manager(s: "Session", park: "Park", manager: "User", user: "User") -> bool:
    """Returns False when the manager was already assigned."""
    from app.parkdesk.modules.properties.models import ManagerAssignment

    existing = (
        s.query(ManagerAssignment)
        .filter(ManagerAssignment.park_id == park.id, ManagerAssignment.user_id == manager.id)
        .one_or_none()
    )
    if existing:
        return False
    s.add(ManagerAssignment(park_id=park.id, user_id=manager.id))
    s.flush()
    record_event(
        s,
        actor=user,
        action="park.assign_manager",
        entity_type="Park",
        entity_id=str(park.id),
        metadata={"manager_id": manager.id, "manager_email": manager.email},
    )
    return True


def unassign_manager(s: "Session", park: "Park", manager: "User", user: "User") -> bool:
    from app.parkdesk.modules.properties.models import ManagerAssignment

    existing = (
        s.query(ManagerAssignment)
        .filter(ManagerAssignment.park_id == park.id, ManagerAssignment.user_id == manager.id)
        .one_or_none()
    )
    if not existing:
        return False
    s.delete(existing)
    record_event(
        s,
        actor=user,
        action="park.unassign_manager",
        entity_type="Park",
        entity_id=str(park.id),
        metadata={"manager_id": manager.id, "manager_email": manager.email},
    )
    return True
