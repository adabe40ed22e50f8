# Overview: Service-layer operations for deliveries and their notes, cold-chain readings and GPS fixes.

"""
Deliveries

    pending -> assigned -> in_transit -> delivered

Forward only, one step at a time. 'assigned' needs a driver. Reaching
'delivered' is what unlocks returns processing and delivery payments.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import NotFound, StateConflict, ValidationError
from ..extensions import db
from ..models import Delivery, DeliveryNote, GpsLog, TemperatureLog, Product
from ..validation import DeliveryUpdate
from freshroute.time_utils import parse_iso_datetime, utcnow
from . import document_service
from .lifecycle_service import STOCK_COMMITTED_STATUSES, get_order_or_404


DELIVERY_STATUS_PENDING = "pending"
DELIVERY_STATUS_ASSIGNED = "assigned"
DELIVERY_STATUS_IN_TRANSIT = "in_transit"
DELIVERY_STATUS_DELIVERED = "delivered"

DELIVERY_FLOW = [
    DELIVERY_STATUS_PENDING,
    DELIVERY_STATUS_ASSIGNED,
    DELIVERY_STATUS_IN_TRANSIT,
    DELIVERY_STATUS_DELIVERED,
]

TEMPERATURE_SOURCES = {"manual", "sensor"}


def get_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFound(f"Delivery {delivery_id} not found", {"delivery_id": delivery_id})
    return delivery


def require_delivered(delivery: Delivery) -> None:
    if delivery.status != DELIVERY_STATUS_DELIVERED:
        raise StateConflict(
            f"Delivery {delivery.id} is {delivery.status}; it must be delivered first",
            {"delivery_id": delivery.id, "status": delivery.status},
        )


def generate_delivery(order_id: int) -> Delivery:
    """
    Create the delivery and its delivery note for an approved order.

    Idempotent: fills in whichever of the two is missing. Flushes only; the
    caller commits.
    """
    order = get_order_or_404(order_id)
    if order.status not in STOCK_COMMITTED_STATUSES:
        raise StateConflict(
            f"Order {order.order_number} is {order.status}; deliveries are generated for approved orders",
            {"order_id": order_id, "status": order.status},
        )

    delivery = db.session.query(Delivery).filter_by(order_id=order_id).first()
    if delivery is None:
        delivery = Delivery(order_id=order_id, store_id=order.store_id, status=DELIVERY_STATUS_PENDING)
        db.session.add(delivery)
        db.session.flush()

    if delivery.note is None:
        note = DeliveryNote(
            delivery_id=delivery.id,
            note_number=document_service.allocate(order.store_id, document_service.DOC_DELIVERY_NOTE),
        )
        db.session.add(note)
        db.session.flush()

    return delivery


def advance_delivery(
    delivery_id: int,
    status: str,
    *,
    driver_id: str | None = None,
    proof_of_delivery_url: str | None = None,
    recipient_name: str | None = None,
) -> Delivery:
    """Move a delivery exactly one step forward and stamp the matching time."""
    delivery = get_delivery(delivery_id)

    if status not in DELIVERY_FLOW:
        raise ValidationError(f"Invalid delivery status '{status}'", {"allowed": DELIVERY_FLOW})

    current_idx = DELIVERY_FLOW.index(delivery.status)
    target_idx = DELIVERY_FLOW.index(status)
    if target_idx != current_idx + 1:
        raise StateConflict(
            f"Delivery {delivery_id} cannot move from {delivery.status} to {status}",
            {"delivery_id": delivery_id, "status": delivery.status, "target": status},
        )

    now = utcnow()
    if status == DELIVERY_STATUS_ASSIGNED:
        driver = driver_id or delivery.driver_id
        if not driver:
            raise ValidationError("driver_id is required to assign a delivery")
        delivery.driver_id = driver
    elif status == DELIVERY_STATUS_IN_TRANSIT:
        delivery.dispatched_at = now
    elif status == DELIVERY_STATUS_DELIVERED:
        delivery.delivered_at = now
        if proof_of_delivery_url:
            delivery.proof_of_delivery_url = proof_of_delivery_url
        if recipient_name:
            delivery.recipient_name = recipient_name

    delivery.status = status
    db.session.commit()
    return delivery


def update_delivery(delivery_id: int, update: DeliveryUpdate) -> Delivery:
    delivery = get_delivery(delivery_id)
    present = update.present()
    if "driver_id" in present and present["driver_id"] is None and delivery.status != DELIVERY_STATUS_PENDING:
        raise StateConflict("Cannot clear the driver once a delivery is assigned", {"delivery_id": delivery_id})
    update.apply_to(delivery)
    db.session.commit()
    return delivery


def record_temperature(
    delivery_id: int,
    temperature_c: float,
    *,
    product_id: int | None = None,
    location: str | None = None,
    source: str = "manual",
    notes: str | None = None,
    recorded_by: str | None = None,
) -> TemperatureLog:
    delivery = get_delivery(delivery_id)

    if isinstance(temperature_c, bool) or not isinstance(temperature_c, (int, float)):
        raise ValidationError("temperature_c must be a number")
    if source not in TEMPERATURE_SOURCES:
        raise ValidationError(f"source must be one of: {', '.join(sorted(TEMPERATURE_SOURCES))}")
    if product_id is not None and db.session.get(Product, product_id) is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})

    max_c = current_app.config.get("DELIVERY_TEMPERATURE_MAX_C", 5.0)
    log = TemperatureLog(
        delivery_id=delivery.id,
        product_id=product_id,
        temperature_c=float(temperature_c),
        location=location,
        source=source,
        is_excursion=float(temperature_c) > max_c,
        notes=notes,
        recorded_by=recorded_by,
    )
    db.session.add(log)
    db.session.commit()

    if log.is_excursion:
        current_app.logger.warning(
            "Temperature excursion on delivery %s: %.1fC (max %.1fC)", delivery.id, log.temperature_c, max_c
        )
    return log


# =============================================================================
# GPS TRACKING
# =============================================================================

GPS_BOUNDS = {
    "latitude": (-90.0, 90.0),
    "longitude": (-180.0, 180.0),
}
GPS_OPTIONAL_BOUNDS = {
    "accuracy_m": (0.0, None),
    "speed_kmh": (0.0, None),
    "heading_deg": (0.0, 360.0),
}


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(name: str, value, low, high, errors: list[str]) -> None:
    if not _is_number(value):
        errors.append(f"{name} must be a number")
    elif (low is not None and value < low) or (high is not None and value > high):
        bound = f"between {low:g} and {high:g}" if high is not None else f">= {low:g}"
        errors.append(f"{name} must be {bound}")


def record_gps(
    delivery_id: int,
    latitude,
    longitude,
    *,
    driver_id: str | None,
    accuracy_m=None,
    speed_kmh=None,
    heading_deg=None,
    recorded_at=None,
) -> GpsLog:
    """
    Record one position fix for a delivery.

    Problems are aggregated into a single ValidationError. A delivery that
    has already been delivered takes no more fixes.
    """
    delivery = get_delivery(delivery_id)

    errors: list[str] = []
    coords = {"latitude": latitude, "longitude": longitude}
    for name, (low, high) in GPS_BOUNDS.items():
        if coords[name] is None:
            errors.append(f"{name} is required")
        else:
            _check_range(name, coords[name], low, high, errors)

    optional = {"accuracy_m": accuracy_m, "speed_kmh": speed_kmh, "heading_deg": heading_deg}
    for name, (low, high) in GPS_OPTIONAL_BOUNDS.items():
        if optional[name] is not None:
            _check_range(name, optional[name], low, high, errors)

    if not isinstance(driver_id, str) or not driver_id.strip():
        errors.append("driver_id is required")

    when = None
    if recorded_at is not None:
        if isinstance(recorded_at, datetime):
            when = recorded_at
        elif isinstance(recorded_at, str):
            try:
                when = parse_iso_datetime(recorded_at)
            except ValueError:
                when = None
        if when is None:
            errors.append("recorded_at must be an ISO-8601 datetime")

    if errors:
        raise ValidationError("Invalid GPS fix", {"errors": errors})

    if delivery.status == DELIVERY_STATUS_DELIVERED:
        raise StateConflict(
            f"Delivery {delivery.id} is already delivered",
            {"delivery_id": delivery.id, "status": delivery.status},
        )

    log = GpsLog(
        delivery_id=delivery.id,
        driver_id=driver_id.strip(),
        latitude=float(latitude),
        longitude=float(longitude),
        accuracy_m=float(accuracy_m) if accuracy_m is not None else None,
        speed_kmh=float(speed_kmh) if speed_kmh is not None else None,
        heading_deg=float(heading_deg) if heading_deg is not None else None,
        recorded_at=when or utcnow(),
    )
    db.session.add(log)
    db.session.commit()
    return log


def list_gps(delivery_id: int, *, start=None, end=None, limit: int = 100) -> list[GpsLog]:
    """Fixes in recorded order, optionally bounded by start/end datetimes."""
    get_delivery(delivery_id)
    query = db.session.query(GpsLog).filter(GpsLog.delivery_id == delivery_id)
    if start is not None:
        query = query.filter(GpsLog.recorded_at >= start)
    if end is not None:
        query = query.filter(GpsLog.recorded_at <= end)
    return query.order_by(GpsLog.recorded_at.asc(), GpsLog.id.asc()).limit(limit).all()
