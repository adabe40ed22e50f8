# Overview: Flask API routes for deliveries, delivery notes, temperature logs and GPS tracking.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, ValidationError, error_response
from ..models import Delivery
from ..services import delivery_service, document_service
from ..validation import DeliveryUpdate, ModelValidationPolicy, validate_payload
from freshroute.time_utils import parse_iso_datetime


DELIVERY_POLICY = ModelValidationPolicy(
    writable_fields={"driver_id", "scheduled_at", "proof_of_delivery_url", "recipient_name", "notes"},
)

deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.get("/<int:delivery_id>")
def get_delivery_route(delivery_id: int):
    try:
        return jsonify({"delivery": delivery_service.get_delivery(delivery_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.patch("/<int:delivery_id>")
def update_delivery_route(delivery_id: int):
    """Partial update; omitted fields are untouched, explicit null clears."""
    try:
        payload = request.get_json(silent=True) or {}
        patch = validate_payload(model=Delivery, payload=payload, policy=DELIVERY_POLICY, partial=True)
        delivery = delivery_service.update_delivery(delivery_id, DeliveryUpdate.from_patch(patch))
        return jsonify({"delivery": delivery.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/<int:delivery_id>/status")
def advance_delivery_route(delivery_id: int):
    """
    Request body:
    {
        "status": "assigned",              (next status in the flow)
        "driver_id": "driver-4",           (required for assigned unless already set)
        "proof_of_delivery_url": "...",    (optional, delivered)
        "recipient_name": "..."            (optional, delivered)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            raise ValidationError("status is required")
        delivery = delivery_service.advance_delivery(
            delivery_id,
            status,
            driver_id=data.get("driver_id"),
            proof_of_delivery_url=data.get("proof_of_delivery_url"),
            recipient_name=data.get("recipient_name"),
        )
        return jsonify({"delivery": delivery.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance delivery")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/<int:delivery_id>/temperatures")
def record_temperature_route(delivery_id: int):
    try:
        data = request.get_json(silent=True) or {}
        log = delivery_service.record_temperature(
            delivery_id,
            data.get("temperature_c"),
            product_id=data.get("product_id"),
            location=data.get("location"),
            source=data.get("source", "manual"),
            notes=data.get("notes"),
            recorded_by=data.get("recorded_by"),
        )
        return jsonify({"temperature_log": log.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record temperature")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/<int:delivery_id>/note")
def delivery_note_route(delivery_id: int):
    try:
        return jsonify(document_service.delivery_note_view(delivery_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build delivery note")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/<int:delivery_id>/gps")
def record_gps_route(delivery_id: int):
    """
    Request body:
    {
        "latitude": 51.5072, "longitude": -0.1276, "driver_id": "driver-7",
        "accuracy_m": 8, "speed_kmh": 32.5, "heading_deg": 270,
        "recorded_at": "2026-10-18T09:30:00Z"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        log = delivery_service.record_gps(
            delivery_id,
            data.get("latitude"),
            data.get("longitude"),
            driver_id=data.get("driver_id"),
            accuracy_m=data.get("accuracy_m"),
            speed_kmh=data.get("speed_kmh"),
            heading_deg=data.get("heading_deg"),
            recorded_at=data.get("recorded_at"),
        )
        return jsonify({"gps": log.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record GPS fix")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.get("/<int:delivery_id>/gps")
def list_gps_route(delivery_id: int):
    """Query: start, end (ISO-8601), limit (default 100, max 1000)."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 datetimes")
        limit = min(request.args.get("limit", 100, type=int), 1000)
        logs = delivery_service.list_gps(delivery_id, start=start, end=end, limit=limit)
        return jsonify({
            "gps": [log.to_dict() for log in logs],
            "count": len(logs),
        })
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list GPS fixes")
        return jsonify({"error": "Internal server error"}), 500
