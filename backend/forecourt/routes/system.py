# backend/forecourt/routes/system.py
"""
System health endpoint.

Checks the database and the shift tables the forecourt depends on.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import MeterAssignment, AttendantShift, STATUS_OPEN
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        open_assignments = db.session.query(MeterAssignment).filter_by(status=STATUS_OPEN).count()
        open_shifts = db.session.query(AttendantShift).filter_by(status=STATUS_OPEN).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_assignments": open_assignments,
                "open_attendant_shifts": open_shifts,
            }
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
        }
    }
    return response, http_status
