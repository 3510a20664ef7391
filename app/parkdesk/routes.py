from flask import Blueprint, jsonify

from app.parkdesk.security import ensure_csrf_token

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"name": "parkdesk", "ok": True})


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for the load balancer. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/csrf-token")
def csrf_token():
    """The SPA fetches this once and echoes it back in X-CSRF-Token."""
    return {"csrfToken": ensure_csrf_token()}
