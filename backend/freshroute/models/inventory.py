from __future__ import annotations

from ..extensions import db
from freshroute.time_utils import to_utc_z


class StockRecord(db.Model):
    """
    On-hand quantity for one (store, product).

    INVARIANTS:
    - quantity is never negative (checked at write time by stock_service)
    - a missing row means quantity 0
    - created lazily on first write, never deleted
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_stock_records_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    last_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_updated_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("stock_records", lazy=True))
    product = db.relationship("Product")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<StockRecord store_id={self.store_id} product_id={self.product_id} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "last_updated_at": to_utc_z(self.last_updated_at),
            "last_updated_by": self.last_updated_by,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """Append-only audit of every applied stock change."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_store_product", "store_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # consume | restore | adjust
    reason = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "reason": self.reason,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "order_id": self.order_id,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
