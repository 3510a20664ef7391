import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request, session
from werkzeug.exceptions import HTTPException

from app.parkdesk.config import load_config
from app.parkdesk.db import init_db, teardown_db_session
from app.parkdesk.routes import bp as routes_bp
from app.parkdesk.auth import bp as auth_bp, load_current_user
from app.parkdesk.modules.properties.admin import bp as properties_bp
from app.parkdesk.modules.calendar_sync.admin import bp as calendar_sync_bp
from app.parkdesk.modules.showings.admin import bp as showings_bp
from app.parkdesk.modules.calculator.admin import bp as calculator_bp
from app.parkdesk.modules.invites.admin import bp as invites_bp
from app.parkdesk.security import ensure_csrf_token, validate_csrf
from app.parkdesk.utils import json_error

_UNCHECKED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNCHECKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout carry no session state worth forging.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return json_error("CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("GOOGLE_CLIENT_ID"):
            app.logger.warning("GOOGLE_CLIENT_ID not set; manager calendars cannot be connected.")

    init_db(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(properties_bp)
    app.register_blueprint(calendar_sync_bp)
    app.register_blueprint(showings_bp)
    app.register_blueprint(calculator_bp)
    app.register_blueprint(invites_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNCHECKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s",
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        return json_error(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return json_error("Internal server error", 500, requestId=rid)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
