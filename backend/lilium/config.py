# backend/lilium/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///lilium.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Session lifetime for bearer tokens issued by /api/auth/login
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # Inventory alerting and restock planning
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)
    CRITICAL_STOCK_THRESHOLD = _env_int("CRITICAL_STOCK_THRESHOLD", 5)
    RESTOCK_RUNWAY_DAYS = _env_int("RESTOCK_RUNWAY_DAYS", 14)
    RESTOCK_COVER_DAYS = _env_int("RESTOCK_COVER_DAYS", 30)

    # Settlements: percentage used when a company has no commission rate set
    DEFAULT_COMMISSION_RATE = os.environ.get("DEFAULT_COMMISSION_RATE", "10")
    CASH_AMOUNT_TOLERANCE = os.environ.get("CASH_AMOUNT_TOLERANCE", "0.01")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
