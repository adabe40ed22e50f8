# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/freshroute/routes/orders.py
"""
Order API Routes

DESIGN:
- Create orders (draft or pending) for a store
- Replace, add or remove items while draft/pending
- Lifecycle events: submit, approve, reject, cancel, complete
- Approval returns the order plus whichever documents were produced and a
  list of warnings for best-effort steps that failed
- Regenerate missing documents for approved orders
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services import approval_service, lifecycle_service, order_service, stock_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INTAKE
# =============================================================================

@orders_bp.get("")
def list_orders_route():
    store_id = request.args.get("store_id", type=int)
    status = request.args.get("status")
    try:
        orders = order_service.list_orders(store_id=store_id, status=status)
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders], "count": len(orders)})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list orders")


@orders_bp.post("")
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "store_id": 1,
        "items": [{"product_id": 3, "quantity": 10, "unit_price_cents": 450}],
        "discount_cents": 0,        (optional)
        "status": "draft",          (optional: draft | pending)
        "notes": "...",             (optional)
        "entered_by_admin": false,  (optional; allows unit_price_cents overrides)
        "actor": "user-17"          (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = data.get("store_id")
        if not isinstance(store_id, int):
            return jsonify({"error": "store_id is required"}), 400

        order = order_service.create_order(
            store_id,
            data.get("items"),
            discount_cents=data.get("discount_cents", 0),
            status=data.get("status", lifecycle_service.ORDER_STATUS_DRAFT),
            notes=data.get("notes"),
            actor=data.get("actor"),
            allow_price_override=bool(data.get("entered_by_admin", False)),
        )
        return jsonify({"order": order.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create order")


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = lifecycle_service.get_order_or_404(order_id)
        return jsonify({"order": order.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to get order")


# =============================================================================
# ITEM MODIFICATION
# =============================================================================

@orders_bp.put("/<int:order_id>/items")
def modify_items_route(order_id: int):
    """
    Replace the item set (ModifyOrderItems).

    Request body:
    {
        "items": [{"product_id": 3, "quantity": 7}],
        "discount_cents": 100,      (optional; omitted keeps the current discount)
        "entered_by_admin": false   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.modify_order_items(
            order_id,
            data.get("items"),
            discount_cents=data.get("discount_cents"),
            allow_price_override=bool(data.get("entered_by_admin", False)),
        )
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to modify order items")


@orders_bp.post("/<int:order_id>/items")
def add_item_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        quantity = data.get("quantity")
        if not isinstance(product_id, int) or not isinstance(quantity, int):
            return jsonify({"error": "product_id and quantity are required"}), 400

        result = order_service.add_item(
            order_id,
            product_id,
            quantity,
            unit_price_cents=data.get("unit_price_cents"),
            allow_price_override=bool(data.get("entered_by_admin", False)),
        )
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to add order item")


@orders_bp.delete("/<int:order_id>/items/<int:product_id>")
def remove_item_route(order_id: int, product_id: int):
    try:
        result = order_service.remove_item(order_id, product_id)
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to remove order item")


@orders_bp.get("/<int:order_id>/stock-check")
def stock_check_route(order_id: int):
    try:
        return jsonify(stock_service.validate_availability(order_id).to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to validate stock")


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.post("/<int:order_id>/submit")
def submit_order_route(order_id: int):
    try:
        order = lifecycle_service.submit_order(order_id)
        return jsonify({"order": order.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to submit order")


@orders_bp.post("/<int:order_id>/approve")
def approve_order_route(order_id: int):
    """
    Approve an order (ApproveOrder).

    Request body: {"actor": "admin-1"}

    Returns:
        200: order approved; body lists generated documents and warnings
        400: order incomplete / credit limit
        404: order not found
        409: wrong status, lost race, or insufficient stock (with shortages)
    """
    try:
        data = request.get_json(silent=True) or {}
        result = approval_service.approve_order(order_id, actor=data.get("actor"))
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to approve order")


@orders_bp.post("/<int:order_id>/reject")
def reject_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = lifecycle_service.reject_order(order_id, data.get("reason"), actor=data.get("actor"))
        return jsonify({"order": order.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to reject order")


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = lifecycle_service.cancel_order(order_id, actor=data.get("actor"))
        return jsonify({"order": order.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to cancel order")


@orders_bp.post("/<int:order_id>/complete")
def complete_order_route(order_id: int):
    try:
        order = lifecycle_service.complete_order(order_id)
        return jsonify({"order": order.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to complete order")


@orders_bp.post("/<int:order_id>/regenerate-documents")
def regenerate_documents_route(order_id: int):
    try:
        result = approval_service.regenerate_documents(order_id)
        return jsonify(result.to_dict())
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to regenerate documents")
