# backend/freshroute/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/freshroute.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///freshroute.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoices fall due this many days after the order is approved
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "30"))

    # Approval refuses orders that would push a store past its credit limit
    ENFORCE_CREDIT_LIMIT = _env_bool("ENFORCE_CREDIT_LIMIT", True)

    # Chilled goods above this reading are flagged as a temperature excursion
    DELIVERY_TEMPERATURE_MAX_C = float(os.environ.get("DELIVERY_TEMPERATURE_MAX_C", "5.0"))
