# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/freshroute/routes/products.py
"""
Product catalog routes.

SKUs are normalized to upper case and must be unique (409 on collision).
DELETE deactivates products that existing orders reference.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..models import Product
from ..services import products_service
from ..validation import ModelValidationPolicy, ProductUpdate, validate_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "price_cents", "cost_cents",
        "unit", "category", "min_stock_level", "is_active",
    },
    required_on_create={"sku", "name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - active: "1" to list active products only
    - category: exact category match
    - page / per_page: optional pagination (per_page max 100)
    """
    try:
        result = products_service.list_products(
            active_only=request.args.get("active") == "1",
            category=request.args.get("category"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        product = products_service.create_product(patch=patch)
        return jsonify({"product": product.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": products_service.get_product(product_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        product = products_service.update_product(product_id, ProductUpdate.from_patch(patch))
        return jsonify({"product": product.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    try:
        return jsonify(products_service.delete_product(product_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
