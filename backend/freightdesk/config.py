# backend/freightdesk/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local SQLite by default; Postgres in deployment
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///freightdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Carrier API (RapidDeals)
    RAPIDDEALS_API_URL = os.environ.get("RAPIDDEALS_API_URL", "https://ship.rapiddeals.com/api/shipment")
    RAPIDDEALS_API_ID = os.environ.get("RAPIDDEALS_API_ID", "")
    RAPIDDEALS_API_KEY = os.environ.get("RAPIDDEALS_API_KEY", "")

    # Insurance API (Loadsure)
    LOADSURE_API_URL = os.environ.get("LOADSURE_API_URL", "https://api.loadsure.com")
    LOADSURE_API_KEY = os.environ.get("LOADSURE_API_KEY", "")

    # Outbound HTTP policy (connection-class errors only)
    EXTERNAL_API_TIMEOUT_SECONDS = _env_float("EXTERNAL_API_TIMEOUT_SECONDS", 30.0)
    EXTERNAL_API_MAX_RETRIES = _env_int("EXTERNAL_API_MAX_RETRIES", 3)
    EXTERNAL_API_MAX_BACKOFF_SECONDS = _env_float("EXTERNAL_API_MAX_BACKOFF_SECONDS", 5.0)

    INSURANCE_REFUND_WINDOW_HOURS = _env_int("INSURANCE_REFUND_WINDOW_HOURS", 24)
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "Rapiddeals")
