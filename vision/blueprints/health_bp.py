"""
Health check blueprint.

Endpoints:
    GET /api/v1/health          simple 200 for load balancers
    GET /api/v1/health/ready    readiness with database and storage checks
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from vision.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    """Liveness probe: always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness with dependency status; 503 when the database is unreachable."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Upload storage ───────────────────────────────────────────────
    upload_dir = current_app.config.get("UPLOAD_FOLDER", "")
    if upload_dir and os.path.isdir(upload_dir):
        checks["storage"] = {"status": "ok", "writable": os.access(upload_dir, os.W_OK)}
    else:
        checks["storage"] = {"status": "missing", "detail": "created on first upload"}

    checks["app"] = {
        "name": "VISION Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status = "ok" if overall else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if overall else 503
