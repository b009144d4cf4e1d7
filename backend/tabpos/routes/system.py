# backend/tabpos/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether the reward programs have been
configured (an unconfigured program is degraded, not down).
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CashbackConfig, LoyaltyConfig, TillSession
from tabpos.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        open_sessions = db.session.query(TillSession).filter_by(status="OPEN").count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"open_till_sessions": open_sessions},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_rewards_health() -> dict:
    try:
        loyalty = db.session.query(LoyaltyConfig.id).first() is not None
        cashback = db.session.query(CashbackConfig.id).first() is not None
    except SQLAlchemyError:
        current_app.logger.exception("Rewards health check failed")
        return {"status": "unhealthy", "error": "Rewards configuration error"}

    missing = [name for name, present in (("loyalty", loyalty), ("cashback", cashback)) if not present]
    if missing:
        return {"status": "degraded", "warning": f"Not configured: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    rewards_health = check_rewards_health()

    all_checks = [database_health, rewards_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "rewards": rewards_health,
        },
    }
    return response, http_status
