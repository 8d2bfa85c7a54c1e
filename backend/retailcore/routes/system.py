# backend/retailcore/routes/system.py
"""
System health endpoint.

Reports database reachability through the data access layer, including its
retry policy, so load balancers see the same view as the order engine.
"""

import time

from flask import Blueprint, current_app

from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Round-trip SELECT 1 through the DatabaseService."""
    database_service = current_app.extensions["database_service"]
    start_time = time.time()
    healthy = database_service.health_check()
    elapsed_ms = (time.time() - start_time) * 1000

    if not healthy:
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }

    return {
        "status": "healthy",
        "latency_ms": round(elapsed_ms, 2),
        "details": {"dialect": database_service.dialect},
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unreachable after retries
    """
    start_time = time.time()
    database_health = check_database_health()

    if database_health["status"] == "healthy":
        overall_status, http_status = "healthy", 200
    else:
        overall_status, http_status = "unhealthy", 503

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
        },
    }

    return response, http_status
