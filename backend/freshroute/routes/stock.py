# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services import stock_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/stores/<int:store_id>")
def store_stock_route(store_id: int):
    try:
        records = stock_service.list_store_stock(store_id)
        return jsonify({"store_id": store_id, "items": records, "count": len(records)})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list store stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/stores/<int:store_id>/movements")
def stock_movements_route(store_id: int):
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", 100, type=int), 500)
    try:
        return jsonify({"movements": stock_service.list_stock_movements(store_id, product_id, limit)})
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjust")
def update_stock_route():
    """
    Apply one stock change (UpdateStock).

    Request body:
    {
        "store_id": 1,
        "product_id": 3,
        "quantity": -2,            (signed for adjust, positive otherwise)
        "reason": "wastage",       (consume | restore | adjust, or an event alias)
        "note": "dropped crate",   (optional)
        "actor": "admin-1"         (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = data.get("store_id")
        product_id = data.get("product_id")
        if not isinstance(store_id, int) or not isinstance(product_id, int):
            return jsonify({"error": "store_id and product_id are required"}), 400

        record = stock_service.apply_stock(
            store_id,
            product_id,
            data.get("quantity"),
            data.get("reason", ""),
            note=data.get("note"),
            actor=data.get("actor"),
        )
        return jsonify({"stock": record.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/orders/<int:order_id>/reservation")
def modify_reservation_route(order_id: int):
    """
    Apply the per-product delta between two item sets.

    Request body:
    {
        "store_id": 1,
        "old_items": [{"product_id": 3, "quantity": 10}],
        "new_items": [{"product_id": 3, "quantity": 7}],
        "actor": "admin-1"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = data.get("store_id")
        if not isinstance(store_id, int):
            return jsonify({"error": "store_id is required"}), 400

        applied = stock_service.modify_reservation(
            order_id,
            data.get("old_items") or [],
            data.get("new_items") or [],
            store_id,
            actor=data.get("actor"),
        )
        return jsonify({"applied": {str(k): v for k, v in applied.items()}})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to modify reservation")
        return jsonify({"error": "Internal server error"}), 500
