"""
Health probes.

    GET /api/v1/health/ready   process is up (no I/O)
    GET /api/v1/health/live    database reachable and workflow schema present
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from saleflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

WORKFLOW_TABLES = (
    "operations",
    "operation_units",
    "operation_steps",
    "step_documents",
    "step_comments",
    "audit_logs",
)


def _check_database() -> dict:
    started = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_schema() -> dict:
    present = set(inspect(db.engine).get_table_names())
    missing = [t for t in WORKFLOW_TABLES if t not in present]
    if missing:
        return {"status": "error", "missing_tables": missing}
    return {"status": "ok"}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    try:
        checks["database"] = _check_database()
        checks["schema"] = _check_schema()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness check failed: %s", exc)
        failed = "schema" if "database" in checks else "database"
        checks[failed] = {"status": "error", "detail": str(exc)}

    healthy = "schema" in checks and all(c["status"] == "ok" for c in checks.values())
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
