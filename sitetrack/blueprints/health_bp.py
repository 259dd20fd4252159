"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip and engine settings
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from sitetrack.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe — always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database latency."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    checks["engine"] = {
        "acceptance_workflow": current_app.config.get("ACCEPTANCE_WORKFLOW"),
        "progress_method": current_app.config.get("PROGRESS_METHOD"),
    }
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
