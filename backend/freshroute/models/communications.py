from __future__ import annotations

from ..extensions import db
from freshroute.time_utils import to_utc_z


class Notification(db.Model):
    """In-app notification written by the default notifier."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    type = db.Column(db.String(32), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=True)

    # unread | read | archived
    status = db.Column(db.String(16), nullable=False, default="unread")
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "type": self.type,
            "message": self.message,
            "data": self.data,
            "status": self.status,
            "read_at": to_utc_z(self.read_at),
            "created_at": to_utc_z(self.created_at),
        }
