"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready : simple 200 for load balancers
    GET /api/v1/health/live  : dependency status (database, rate limiter storage)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from agromonitor.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status; 503 when the database is down."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    storage = current_app.config.get("REDIS_URL", "")
    checks["rate_limit_storage"] = {
        "status": "configured" if storage.startswith("redis") else "memory",
    }
    checks["app"] = {
        "name": "AgroMonitor",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), 200 if overall else 503
