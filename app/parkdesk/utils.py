from __future__ import annotations

from datetime import date, datetime, timezone

from flask import jsonify, request


def request_payload() -> dict:
    """JSON body for SPA requests, falling back to form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def payload_str(payload: dict, key: str, *, strip: bool = True) -> str:
    """String field from a request payload; anything that is not a string reads as blank."""
    value = payload.get(key)
    if not isinstance(value, str):
        return ""
    return value.strip() if strip else value


def json_error(message: str, status: int, **extra):
    body = {"message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 timestamp into naive UTC (the storage convention).
    Naive input is assumed to already be UTC. A trailing "Z" is accepted.
    """
    if not value or not str(value).strip():
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def isoformat_utc(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")
