# Overview: Flask API routes for replenishment planning.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services import replenishment_service


replenishment_bp = Blueprint("replenishment", __name__, url_prefix="/api/replenishment")


@replenishment_bp.get("/stores/<int:store_id>/needs")
def store_needs_route(store_id: int):
    try:
        needs = replenishment_service.check_store_needs(store_id)
        return jsonify({"store_id": store_id, "items": [n.to_dict() for n in needs]})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check replenishment needs")
        return jsonify({"error": "Internal server error"}), 500


@replenishment_bp.post("/stores/<int:store_id>")
def generate_store_order_route(store_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = replenishment_service.generate_order(store_id, actor=data.get("actor"))
        if order is None:
            return jsonify({"order": None, "created": False})
        return jsonify({"order": order.to_dict(), "created": True}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate replenishment order")
        return jsonify({"error": "Internal server error"}), 500


@replenishment_bp.post("/run")
def generate_all_route():
    """GenerateReplenishment: sweep every active store."""
    try:
        data = request.get_json(silent=True) or {}
        run = replenishment_service.generate_all_orders(actor=data.get("actor"))
        return jsonify(run.to_dict())
    except Exception:
        current_app.logger.exception("Failed to run replenishment")
        return jsonify({"error": "Internal server error"}), 500
