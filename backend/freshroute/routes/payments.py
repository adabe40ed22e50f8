# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/freshroute/routes/payments.py
"""
Payment API Routes

DESIGN:
- Record payments against an invoice (or the order it bills)
- Collect payment on delivery once the delivery is delivered
- Overpayment is rejected and nothing is written
- Reconcile a store's running balance from payment/return/order rows
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
def record_payment_route():
    """
    Record a payment (RecordPayment).

    Request body:
    {
        "invoice_id": 7,            (or "order_id")
        "amount_cents": 3000,
        "method": "direct_debit",   (cash | direct_debit | bank_transfer | card)
        "reference": "TX-991",      (optional external transaction id)
        "notes": "..."              (optional)
    }

    Returns:
        201: payment recorded
        400: invalid amount/method or overpayment
        404: invoice not found
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.record_payment(
            data.get("amount_cents"),
            data.get("method"),
            invoice_id=data.get("invoice_id"),
            order_id=data.get("order_id"),
            reference=data.get("reference"),
            receipt_url=data.get("receipt_url"),
            collected_by=data.get("collected_by"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict(), "invoice": payment.invoice.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/deliveries/<int:delivery_id>")
def collect_delivery_payment_route(delivery_id: int):
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.collect_delivery_payment(
            delivery_id,
            data.get("amount_cents"),
            data.get("method"),
            reference=data.get("reference"),
            receipt_url=data.get("receipt_url"),
            collected_by=data.get("collected_by"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict(), "invoice": payment.invoice.to_dict()}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to collect delivery payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES / RECONCILIATION
# =============================================================================

@payments_bp.get("")
def list_payments_route():
    invoice_id = request.args.get("invoice_id", type=int)
    store_id = request.args.get("store_id", type=int)
    try:
        payments = payment_service.list_payments(invoice_id=invoice_id, store_id=store_id)
        return jsonify({"payments": [p.to_dict() for p in payments], "count": len(payments)})
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/stores/<int:store_id>/reconcile")
def reconcile_balance_route(store_id: int):
    try:
        return jsonify(payment_service.reconcile_store_balance(store_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile store balance")
        return jsonify({"error": "Internal server error"}), 500
