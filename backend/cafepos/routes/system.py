# backend/cafepos/routes/system.py
"""
System health endpoint.

Unauthenticated; used by load balancers and the React client's boot check.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Round-trip a trivial query; returns status and latency."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        db.session.rollback()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "ok": healthy,
        "service": "cafepos",
        "database": database["status"],
        "latency_ms": database["latency_ms"],
    }
    return jsonify(body), 200 if healthy else 503
