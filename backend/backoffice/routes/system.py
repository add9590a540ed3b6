# backend/backoffice/routes/system.py
"""
System health endpoint.

Checks the store and the ledger tables the restore and admin tooling
depend on.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Activity, Branch
from ..services import schema_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)

REQUIRED_TABLES = ("branches", "users", "products", "inventory", "activities")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        activity_count = db.session.query(Activity).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "activities": activity_count,
            },
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_schema_health() -> dict:
    """Verify the ledger and inventory tables exist (migrations applied)."""
    start_time = time.time()
    try:
        present = set(schema_service.table_names())
        missing = [t for t in REQUIRED_TABLES if t not in present]
        elapsed_ms = (time.time() - start_time) * 1000
        if missing:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing tables: {', '.join(missing)}",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "admin_tools_enabled": bool(current_app.config.get("ADMIN_TOOLS_ENABLED")),
                "admin_audit_table": "admin_audit_log" in present,
            },
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Schema health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Schema inspection error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    schema_health = check_schema_health()

    all_checks = [database_health, schema_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000
    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "schema": schema_health,
        },
    }
    return response, http_status
