from __future__ import annotations

from ..extensions import db
from freshroute.time_utils import to_utc_z, to_iso_date


class Invoice(db.Model):
    """
    Amount billed for one approved order (1:1). Never deleted.

    INVARIANT:
        total_amount_cents = max(0, subtotal - discount - return_amount)

    payment_status (pending | partial | paid | overdue) is derived from the
    Payment rows by invoice_service.derive_payment_status.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_invoices_order"),
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.Index("ix_invoices_store_status", "store_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    return_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    due_date = db.Column(db.Date, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))
    store = db.relationship("Store")
    payments = db.relationship("Payment", back_populates="invoice", order_by="Payment.id")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} total={self.total_amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "return_amount_cents": self.return_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "due_date": to_iso_date(self.due_date),
            "payment_status": self.payment_status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Return(db.Model):
    """
    Immutable return/wastage event for one (delivery, product, reason).

    unit_price_cents is the price actually charged on the order line, not the
    current catalog price.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_delivery_product", "delivery_id", "product_id"),
        db.CheckConstraint("quantity > 0", name="ck_returns_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    # expired | damaged | unsold
    reason = db.Column(db.String(16), nullable=False, default="expired")
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    returned_by = db.Column(db.String(64), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "order_id": self.order_id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "notes": self.notes,
            "returned_by": self.returned_by,
            "returned_at": to_utc_z(self.returned_at),
        }


class Payment(db.Model):
    """
    Immutable payment event against an invoice.

    Corrections are new payments, never edits.
    INVARIANT: sum(amount_cents) over an invoice <= invoice.total_amount_cents
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    # cash | direct_debit | bank_transfer | card
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="completed")

    reference = db.Column(db.String(128), nullable=True)
    receipt_url = db.Column(db.String(512), nullable=True)
    collected_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "delivery_id": self.delivery_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "reference": self.reference,
            "receipt_url": self.receipt_url,
            "collected_by": self.collected_by,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at),
        }


class PaymentReminder(db.Model):
    """At most one reminder per invoice per calendar day."""
    __tablename__ = "payment_reminders"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "sent_on", name="uq_payment_reminders_invoice_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    # first | second | final
    reminder_type = db.Column(db.String(16), nullable=False)
    days_overdue = db.Column(db.Integer, nullable=False)
    sent_on = db.Column(db.Date, nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "store_id": self.store_id,
            "reminder_type": self.reminder_type,
            "days_overdue": self.days_overdue,
            "sent_on": to_iso_date(self.sent_on),
            "sent_at": to_utc_z(self.sent_at),
        }
