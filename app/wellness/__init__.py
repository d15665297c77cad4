import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv

from app.wellness.config import load_config
from app.wellness.db import init_db, teardown_db_session
from app.wellness.errors import register_error_handlers
from app.wellness.realtime import init_realtime
from app.wellness.routes import bp as routes_bp
from app.wellness.auth import bp as auth_bp, load_current_user
from app.wellness.admin import bp as admin_bp
from app.wellness.modules.companies.routes import bp as companies_bp
from app.wellness.modules.tasks.routes import bp as tasks_bp
from app.wellness.modules.uploads.routes import bp as uploads_bp
from app.wellness.modules.events.routes import bp as events_bp
from app.wellness.modules.polls.routes import bp as polls_bp

# Unauthenticated endpoints that change state but carry no session to protect.
_CSRF_EXEMPT_ENDPOINTS = {
    "events.register",
    "polls.cast_vote_view",
}


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)
    logging.getLogger("app.wellness").setLevel(level)


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False
    _configure_logging(app)

    from app.wellness.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz", "/api/health")):
            return None
        if not app.config.get("CSRF_ENABLED"):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/signup/reset run before a session exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if request.endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return jsonify({"message": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if str(app.config.get("QR_SECRET") or "") in ("", "default-secret-change-me"):
            raise RuntimeError("QR_SECRET must be set in production (not default).")
    elif app.config.get("QR_SECRET") == "default-secret-change-me":
        app.logger.warning("QR_SECRET is the default value; check-in tokens are forgeable.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    register_error_handlers(app)
    init_realtime(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(companies_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(polls_bp)

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _session_permanent(response):
        if session.get("user_id"):
            session.permanent = True
        return response

    app.logger.info("create_app() complete; app ready to serve")
    return app
