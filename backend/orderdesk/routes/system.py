# backend/orderdesk/routes/system.py
"""
System health and version endpoints.

/api/health reports each dependency separately so a load balancer can tell
a dead database (503) from a reward batch that needs attention (degraded, 200).
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Customer, CustomerReward, Order, Product, RewardStatus
from orderdesk.time_utils import seconds_ago, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "0.1.0"


def _elapsed_ms(start: float) -> float:
    return round((time.time() - start) * 1000, 2)


def check_database_health() -> dict:
    start = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "products": db.session.query(Product).count(),
            "customers": db.session.query(Customer).count(),
            "orders": db.session.query(Order).count(),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start), "error": "Database error"}
    return {"status": "healthy", "latency_ms": _elapsed_ms(start), "details": details}


def check_reward_batch_health() -> dict:
    """
    Rewards left in processing past the stale window mean a batch run died
    mid-way. They are reclaimed by the next run, so this only degrades.
    """
    start = time.time()
    stale_seconds = current_app.config.get("REWARD_PROCESSING_STALE_SECONDS", 900)
    try:
        stuck = (
            db.session.query(CustomerReward)
            .filter(
                CustomerReward.status == RewardStatus.PROCESSING.value,
                CustomerReward.processing_started_at < seconds_ago(stale_seconds),
            )
            .count()
        )
    except Exception:
        current_app.logger.exception("Reward batch health check failed")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start), "error": "Reward batch check error"}

    result = {
        "status": "degraded" if stuck else "healthy",
        "latency_ms": _elapsed_ms(start),
        "details": {"stale_processing_rewards": stuck},
    }
    if stuck:
        result["warning"] = f"{stuck} reward(s) stuck in processing; re-run the batch"
    return result


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: any check unhealthy
    """
    start = time.time()
    checks = {
        "database": check_database_health(),
        "reward_batch": check_reward_batch_health(),
    }
    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start),
        "checks": checks,
    }, http_status


@system_bp.get("/api/version")
def version():
    """Non-sensitive deployment info."""
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
