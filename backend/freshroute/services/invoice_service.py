# Overview: Service-layer operations for invoices and payment status derivation.

"""
Invoice Ledger

One invoice per approved order, never deleted.

    total_amount = max(0, subtotal - discount - return_amount)

payment_status is not trusted as stored state; derive_payment_status folds
over the invoice's Payment rows every time something changes:

    paid      cumulative payments >= total
    partial   0 < payments < total
    overdue   nothing paid and the due date has passed
    pending   otherwise
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..errors import InvoiceNotFound, StateConflict, ValidationError
from ..extensions import db
from ..models import Invoice, Payment
from freshroute.time_utils import utctoday
from . import document_service
from .lifecycle_service import STOCK_COMMITTED_STATUSES, get_order_or_404


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_OVERDUE = "overdue"

UNPAID_STATUSES = {PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_OVERDUE}


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
    return invoice


def get_invoice_for_order(order_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(order_id=order_id).first()
    if invoice is None:
        raise InvoiceNotFound(f"No invoice exists for order {order_id}", {"order_id": order_id})
    return invoice


def compute_invoice_total(subtotal_cents: int, discount_cents: int, return_amount_cents: int) -> int:
    return max(0, subtotal_cents - discount_cents - return_amount_cents)


def paid_cents(invoice_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.invoice_id == invoice_id)
        .scalar()
    )
    return int(total or 0)


def derive_payment_status(invoice: Invoice, *, today=None) -> str:
    paid = paid_cents(invoice.id)
    if paid >= invoice.total_amount_cents:
        return PAYMENT_STATUS_PAID
    if paid > 0:
        return PAYMENT_STATUS_PARTIAL
    if invoice.due_date < (today or utctoday()):
        return PAYMENT_STATUS_OVERDUE
    return PAYMENT_STATUS_PENDING


def refresh_payment_status(invoice: Invoice, *, today=None) -> str:
    """Write the derived status back; does not commit."""
    invoice.payment_status = derive_payment_status(invoice, today=today)
    return invoice.payment_status


def generate_invoice(order_id: int, *, due_days: int | None = None) -> Invoice:
    """
    Invoice an approved order, snapshotting its totals.

    Idempotent: an existing invoice is returned unchanged. Flushes only; the
    caller commits.
    """
    order = get_order_or_404(order_id)
    if order.status not in STOCK_COMMITTED_STATUSES:
        raise StateConflict(
            f"Order {order.order_number} is {order.status}; invoices are generated for approved orders",
            {"order_id": order_id, "status": order.status},
        )

    existing = db.session.query(Invoice).filter_by(order_id=order_id).first()
    if existing is not None:
        return existing

    if due_days is None:
        due_days = current_app.config.get("INVOICE_DUE_DAYS", 30)

    invoice = Invoice(
        invoice_number=document_service.allocate(order.store_id, document_service.DOC_INVOICE),
        order_id=order.id,
        store_id=order.store_id,
        subtotal_cents=order.subtotal_cents,
        discount_cents=order.discount_cents,
        return_amount_cents=0,
        total_amount_cents=compute_invoice_total(order.subtotal_cents, order.discount_cents, 0),
        due_date=utctoday() + timedelta(days=due_days),
        payment_status=PAYMENT_STATUS_PENDING,
    )
    db.session.add(invoice)
    db.session.flush()
    refresh_payment_status(invoice)
    return invoice


def apply_return_amount(invoice: Invoice, amount_cents: int) -> Invoice:
    """Add a return credit and recompute total and status; does not commit."""
    if amount_cents < 0:
        raise ValidationError("Return amount must be >= 0")
    invoice.return_amount_cents += amount_cents
    invoice.total_amount_cents = compute_invoice_total(
        invoice.subtotal_cents, invoice.discount_cents, invoice.return_amount_cents
    )
    db.session.flush()
    refresh_payment_status(invoice)
    return invoice


def invoice_balance(invoice_id: int) -> dict:
    invoice = get_invoice(invoice_id)
    paid = paid_cents(invoice.id)
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "total_amount_cents": invoice.total_amount_cents,
        "paid_cents": paid,
        "remaining_cents": max(0, invoice.total_amount_cents - paid),
        "payment_status": invoice.payment_status,
    }


def list_invoices(*, store_id: int | None = None, payment_status: str | None = None, limit: int = 100) -> list[Invoice]:
    query = db.session.query(Invoice)
    if store_id is not None:
        query = query.filter(Invoice.store_id == store_id)
    if payment_status is not None:
        query = query.filter(Invoice.payment_status == payment_status)
    return query.order_by(Invoice.id.desc()).limit(limit).all()
