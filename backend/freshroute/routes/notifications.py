# Overview: Flask API routes for in-app notifications.

from flask import Blueprint, request, jsonify

from ..errors import FulfillmentError, error_response
from ..services import notification_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
def list_notifications_route():
    try:
        items = notification_service.list_notifications(
            store_id=request.args.get("store_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"notifications": items, "count": len(items)})
    except FulfillmentError as e:
        return error_response(e)


@notifications_bp.post("/<int:notification_id>/status")
def set_status_route(notification_id: int):
    data = request.get_json(silent=True) or {}
    try:
        notification = notification_service.set_status(notification_id, data.get("status"))
        return jsonify({"notification": notification.to_dict()})
    except FulfillmentError as e:
        return error_response(e)
