from flask import Blueprint
from sqlalchemy import text

from app.wellness.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/health")
def api_health():
    """Readiness check: confirms the database answers."""
    try:
        db_session().execute(text("SELECT 1"))
    except Exception as e:
        return {"ok": False, "database": "unavailable", "error": str(e)}, 503
    return {"ok": True, "database": "ok"}
