# backend/freshroute/routes/system.py
"""
System health endpoint.

Reports database reachability plus the fulfillment backlog operators watch
after an approval leaves warnings behind: approved orders still missing a
kitchen sheet, delivery or invoice, and the overdue invoice count.

    200  every check healthy, or some degraded
    503  any check unhealthy
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Invoice, Order, Product, Store
from ..services.approval_service import find_orders_missing_documents
from ..services.invoice_service import PAYMENT_STATUS_OVERDUE
from freshroute.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

STATUS_HEALTHY = "healthy"
STATUS_DEGRADED = "degraded"
STATUS_UNHEALTHY = "unhealthy"


def _run_check(name: str, check) -> dict:
    """Time ``check`` and wrap its (status, details) in a check entry."""
    started = time.perf_counter()
    try:
        status, details = check()
    except Exception:
        current_app.logger.exception("Health check '%s' failed", name)
        db.session.rollback()
        status, details = STATUS_UNHEALTHY, {"error": f"{name} check error"}
    details["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return {"status": status, **details}


def _database_status():
    counts = {
        "stores": db.session.query(Store).count(),
        "products": db.session.query(Product).count(),
        "orders": db.session.query(Order).count(),
    }
    return STATUS_HEALTHY, {"details": counts}


def _fulfillment_status():
    missing = find_orders_missing_documents()
    overdue = db.session.query(Invoice).filter_by(payment_status=PAYMENT_STATUS_OVERDUE).count()
    details = {"details": {"orders_missing_documents": len(missing), "overdue_invoices": overdue}}
    if missing:
        details["warning"] = f"{len(missing)} approved order(s) missing documents"
        return STATUS_DEGRADED, details
    return STATUS_HEALTHY, details


def check_database_health() -> dict:
    return _run_check("database", _database_status)


def check_fulfillment_health() -> dict:
    return _run_check("fulfillment", _fulfillment_status)


@system_bp.get("/health")
def health():
    started = time.perf_counter()
    checks = {
        "database": check_database_health(),
        "fulfillment": check_fulfillment_health(),
    }

    statuses = {c["status"] for c in checks.values()}
    if STATUS_UNHEALTHY in statuses:
        overall = STATUS_UNHEALTHY
    elif STATUS_DEGRADED in statuses:
        overall = STATUS_DEGRADED
    else:
        overall = STATUS_HEALTHY

    body = {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }
    return body, 503 if overall == STATUS_UNHEALTHY else 200
