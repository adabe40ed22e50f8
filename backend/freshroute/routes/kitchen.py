# Overview: Flask API routes for kitchen preparation sheets.

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, ValidationError, error_response
from ..services import document_service, kitchen_service


kitchen_bp = Blueprint("kitchen", __name__, url_prefix="/api/kitchen-sheets")


@kitchen_bp.get("/<int:sheet_id>")
def get_sheet_route(sheet_id: int):
    try:
        return jsonify({"kitchen_sheet": kitchen_service.get_sheet(sheet_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get kitchen sheet")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.get("/<int:sheet_id>/view")
def sheet_view_route(sheet_id: int):
    """Items grouped by category and expiry, plus preparation progress."""
    try:
        return jsonify(document_service.kitchen_sheet_view(sheet_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build kitchen sheet view")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.post("/<int:sheet_id>/prepare")
def prepare_items_route(sheet_id: int):
    """Request body: {"item_ids": [1, 2], "prepared_by": "chef-3"}"""
    try:
        data = request.get_json(silent=True) or {}
        sheet = kitchen_service.mark_items_prepared(
            sheet_id, data.get("item_ids") or [], prepared_by=data.get("prepared_by")
        )
        return jsonify({"kitchen_sheet": sheet.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark items prepared")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.post("/<int:sheet_id>/batch")
def batch_info_route(sheet_id: int):
    """Request body: {"entries": [{"item_id": 1, "batch_number": "B-17", "expiry_date": "2026-11-02"}]}"""
    try:
        data = request.get_json(silent=True) or {}
        sheet = kitchen_service.record_batch_info(sheet_id, data.get("entries"))
        return jsonify({"kitchen_sheet": sheet.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record batch info")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.post("/<int:sheet_id>/complete")
def complete_sheet_route(sheet_id: int):
    try:
        sheet = kitchen_service.complete_kitchen_sheet(sheet_id)
        return jsonify({"kitchen_sheet": sheet.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete kitchen sheet")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEM LABELS
# =============================================================================

@kitchen_bp.post("/<int:sheet_id>/labels")
def generate_labels_route(sheet_id: int):
    """
    Request body (optional): {"item_ids": [1, 2], "label_type": "both"}

    Without item_ids every item on the sheet gets a label. Existing labels
    are returned unchanged.
    """
    try:
        data = request.get_json(silent=True) or {}
        item_ids = data.get("item_ids")
        if item_ids is not None and (
            not isinstance(item_ids, list) or not all(isinstance(i, int) for i in item_ids)
        ):
            raise ValidationError("item_ids must be a list of integers")
        labels = kitchen_service.generate_sheet_labels(
            sheet_id, item_ids, label_type=data.get("label_type") or "both"
        )
        return jsonify({"labels": [label.to_dict() for label in labels], "count": len(labels)}), 201
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate labels")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.get("/<int:sheet_id>/labels")
def list_labels_route(sheet_id: int):
    try:
        return jsonify(kitchen_service.list_sheet_labels(sheet_id))
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list labels")
        return jsonify({"error": "Internal server error"}), 500


@kitchen_bp.post("/labels/<int:label_id>/printed")
def label_printed_route(label_id: int):
    try:
        return jsonify({"label": kitchen_service.mark_label_printed(label_id).to_dict()})
    except FulfillmentError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark label printed")
        return jsonify({"error": "Internal server error"}), 500
