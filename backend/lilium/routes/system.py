# backend/lilium/routes/system.py
"""
Public health endpoint for load balancers and deploy checks.

The database check is a round trip plus two cheap counts that operators
watch: active products and settlements still waiting for verification.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Product, Settlement
from ..models.settlements import SETTLEMENT_PENDING
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        active_products = db.session.query(Product).filter(Product.is_active.is_(True)).count()
        pending_settlements = db.session.query(Settlement).filter_by(status=SETTLEMENT_PENDING).count()
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": "Database error",
        }

    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": {
            "active_products": active_products,
            "pending_settlements": pending_settlements,
        },
    }


@system_bp.get("/health")
def health():
    """200 when the database answers, 503 otherwise."""
    database = check_database()
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, 200 if database["status"] == "healthy" else 503
