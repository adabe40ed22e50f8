# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/freshroute/routes/returns.py
"""
Returns & Wastage API Routes

DESIGN:
- Validate a proposed return without writing anything (all problems reported)
- Process returns against a delivered, invoiced order
- The response includes the credited invoice and any restock warnings
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, ValidationError, error_response
from ..services import return_service


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _delivery_id(data: dict) -> int:
    delivery_id = data.get("delivery_id")
    if not isinstance(delivery_id, int):
        raise ValidationError("delivery_id is required")
    return delivery_id


@returns_bp.post("/validate")
def validate_returns_route():
    try:
        data = request.get_json(silent=True) or {}
        result = return_service.validate_returns(_delivery_id(data), data.get("items"))
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("")
def process_returns_route():
    """
    Process returns (ProcessReturns).

    Request body:
    {
        "delivery_id": 12,
        "items": [
            {"product_id": 3, "quantity": 4, "reason": "expired", "expiry_date": "2026-10-01"}
        ],
        "actor": "driver-4"
    }

    Returns:
        201: returns recorded, invoice credited
        400: validation failed (all item errors in details)
        404: delivery or invoice not found
        409: delivery not yet delivered
    """
    try:
        data = request.get_json(silent=True) or {}
        result = return_service.process_returns(
            _delivery_id(data), data.get("items"), actor=data.get("actor")
        )
        return jsonify(result.to_dict()), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
def list_returns_route():
    delivery_id = request.args.get("delivery_id", type=int)
    if delivery_id is None:
        return jsonify({"error": "delivery_id is required"}), 400
    try:
        rows = return_service.get_returns_for_delivery(delivery_id)
        return jsonify({"returns": [r.to_dict() for r in rows], "count": len(rows)})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500
