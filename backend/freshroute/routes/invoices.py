# Overview: Flask API routes for invoices and overdue handling.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services import invoice_service, reminder_service
from freshroute.time_utils import parse_iso_date


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    store_id = request.args.get("store_id", type=int)
    status = request.args.get("payment_status")
    try:
        invoices = invoice_service.list_invoices(store_id=store_id, payment_status=status)
        return jsonify({"invoices": [i.to_dict() for i in invoices], "count": len(invoices)})
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        return jsonify({"invoice": invoice_service.get_invoice(invoice_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/balance")
def invoice_balance_route(invoice_id: int):
    try:
        return jsonify(invoice_service.invoice_balance(invoice_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice balance")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/mark-overdue")
def mark_overdue_route():
    try:
        data = request.get_json(silent=True) or {}
        flagged = reminder_service.mark_overdue_invoices(parse_iso_date(data.get("today")))
        return jsonify({"invoices": [i.to_dict() for i in flagged], "count": len(flagged)})
    except ValueError:
        return jsonify({"error": "today must be YYYY-MM-DD"}), 400
    except Exception:
        current_app.logger.exception("Failed to mark overdue invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/reminders")
def send_reminders_route():
    try:
        data = request.get_json(silent=True) or {}
        sent = reminder_service.send_payment_reminders(parse_iso_date(data.get("today")))
        return jsonify({"reminders": [r.to_dict() for r in sent], "count": len(sent)})
    except ValueError:
        return jsonify({"error": "today must be YYYY-MM-DD"}), 400
    except Exception:
        current_app.logger.exception("Failed to send payment reminders")
        return jsonify({"error": "Internal server error"}), 500
