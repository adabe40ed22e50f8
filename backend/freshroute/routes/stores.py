# Overview: Flask API routes for store management.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..models import Store
from ..services import store_service
from ..validation import ModelValidationPolicy, StoreUpdate, validate_payload

STORE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "code", "email", "phone", "address", "city", "state", "zip_code",
        "credit_limit_cents", "is_active",
    },
    required_on_create={"name"},
)

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
def list_stores_route():
    stores = store_service.list_stores(active_only=request.args.get("active") == "1")
    return jsonify({"stores": [s.to_dict() for s in stores], "count": len(stores)})


@stores_bp.post("")
def create_store_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=False)
        store = store_service.create_store(patch=patch)
        return jsonify({"store": store.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create store")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.get("/<int:store_id>")
def get_store_route(store_id: int):
    try:
        return jsonify({"store": store_service.get_store(store_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)


@stores_bp.patch("/<int:store_id>")
def update_store_route(store_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=True)
        store = store_service.update_store(store_id, StoreUpdate.from_patch(patch))
        return jsonify({"store": store.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update store")
        return jsonify({"error": "Internal server error"}), 500
