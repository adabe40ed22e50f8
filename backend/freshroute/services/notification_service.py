# Overview: Notification collaborator; persists in-app notifications.

"""
Notifications

The core calls `notify(...)` and never waits on or escalates its outcome.
Delivery transport (email/SMS) is external; the default notifier only writes
Notification rows. Another notifier can be installed on
app.extensions["freshroute.notifier"], e.g. in tests or to bridge to a
message queue.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Notification
from freshroute.time_utils import utcnow


NOTIFIER_EXTENSION_KEY = "freshroute.notifier"

TYPE_ORDER_APPROVED = "order_approved"
TYPE_PAYMENT_REMINDER = "payment_reminder"

STATUS_UNREAD = "unread"
STATUS_READ = "read"
STATUS_ARCHIVED = "archived"
VALID_STATUSES = {STATUS_UNREAD, STATUS_READ, STATUS_ARCHIVED}


class DatabaseNotifier:
    """Writes one Notification row per send, in the caller's transaction."""

    def send(self, user_id, type: str, message: str, data: dict | None = None, *, store_id: int | None = None):
        notification = Notification(
            user_id=str(user_id) if user_id is not None else None,
            store_id=store_id,
            type=type,
            message=message,
            data=data or {},
            status=STATUS_UNREAD,
        )
        with db.session.begin_nested():
            db.session.add(notification)
        return notification


def get_notifier():
    notifier = current_app.extensions.get(NOTIFIER_EXTENSION_KEY)
    if notifier is None:
        notifier = DatabaseNotifier()
        current_app.extensions[NOTIFIER_EXTENSION_KEY] = notifier
    return notifier


def notify(user_id, type: str, message: str, data: dict | None = None, *, store_id: int | None = None) -> bool:
    """
    Fire-and-forget send. Returns False when the notifier failed; the failure
    is logged and not raised.
    """
    try:
        get_notifier().send(user_id, type, message, data, store_id=store_id)
        return True
    except Exception:
        current_app.logger.warning(
            "Notification '%s' for store %s could not be sent", type, store_id, exc_info=True
        )
        return False


def notify_order_approved(order) -> bool:
    message = f"Your order {order.order_number} has been approved and is being prepared."
    return notify(
        None,
        TYPE_ORDER_APPROVED,
        message,
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "final_amount_cents": order.final_amount_cents,
        },
        store_id=order.store_id,
    )


def list_notifications(*, store_id: int | None = None, status: str | None = None, limit: int = 50) -> list[dict]:
    query = db.session.query(Notification)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if status is not None:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid notification status '{status}'")
        query = query.filter_by(status=status)
    rows = query.order_by(Notification.id.desc()).limit(limit).all()
    return [n.to_dict() for n in rows]


def set_status(notification_id: int, status: str) -> Notification:
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid notification status '{status}'")
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFound(f"Notification {notification_id} not found", {"notification_id": notification_id})
    notification.status = status
    if status == STATUS_READ and notification.read_at is None:
        notification.read_at = utcnow()
    db.session.commit()
    return notification
