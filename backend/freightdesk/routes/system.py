# Overview: Flask API routes for system health; reports store and ledger readiness.

"""
System health endpoint.

Checks database connectivity and ledger readiness (a supervisor must exist
for any dual write to succeed).
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import BalanceTransaction, User
from ..models.users import USER_TYPE_ADMIN
from freightdesk.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        transaction_count = db.session.query(BalanceTransaction).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "balance_transactions": transaction_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    """Degraded when no active supervisor exists: dual writes would all fail."""
    try:
        supervisors = (
            db.session.query(User)
            .filter_by(user_type=USER_TYPE_ADMIN, is_active=True)
            .count()
        )
    except Exception:
        current_app.logger.exception("Ledger health check failed")
        return {"status": "unhealthy", "error": "Ledger check failed"}

    if not supervisors:
        return {"status": "degraded", "warning": "No active supervisor user configured"}
    return {"status": "healthy", "details": {"supervisors": supervisors}}


@system_bp.get("/api/health")
def health():
    checks = {
        "database": check_database_health(),
        "ledger": check_ledger_health(),
    }
    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "degraded" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    body = {"status": overall, "checks": checks, "timestamp": to_utc_z(utcnow())}
    return jsonify(body), 503 if overall == "unhealthy" else 200
