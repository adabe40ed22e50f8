# Overview: Service-layer operations for invoice payments and store balances.

"""
Payment Ledger

Payments are immutable events against an invoice; corrections are new
payments, never edits.

RULES:
- amount must be > 0
- cumulative payments may never exceed the invoice total; an overpayment is
  rejected before any row is written
- payment_status is re-derived from the payment rows after each payment
- the store's running balance drops by the amount, floored at 0

Payment and Return rows are the source of truth for what a store owes;
reconcile_store_balance rebuilds the running balance from them.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import InvoiceNotFound, ValidationError
from ..extensions import db
from ..models import Invoice, Order, Payment, Return, Store
from ..validation import require_positive_cents
from . import invoice_service, store_service
from .concurrency import lock_for_update, run_with_retry
from .delivery_service import get_delivery, require_delivered
from .lifecycle_service import STOCK_COMMITTED_STATUSES


PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_DIRECT_DEBIT = "direct_debit"
PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"
PAYMENT_METHOD_CARD = "card"

VALID_METHODS = {
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_DIRECT_DEBIT,
    PAYMENT_METHOD_BANK_TRANSFER,
    PAYMENT_METHOD_CARD,
}

PAYMENT_STATUS_COMPLETED = "completed"


def _resolve_invoice_id(invoice_id: int | None, order_id: int | None) -> int:
    if invoice_id is None and order_id is None:
        raise ValidationError("invoice_id or order_id is required")
    if invoice_id is not None:
        return invoice_service.get_invoice(invoice_id).id
    return invoice_service.get_invoice_for_order(order_id).id


def record_payment(
    amount_cents: int,
    method: str,
    *,
    invoice_id: int | None = None,
    order_id: int | None = None,
    delivery_id: int | None = None,
    reference: str | None = None,
    receipt_url: str | None = None,
    collected_by: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record one payment against an invoice (given directly or via its order).

    Raises:
        ValidationError: non-positive amount, unknown method, overpayment
        InvoiceNotFound: no invoice for the reference
    """
    require_positive_cents(amount_cents)
    if method not in VALID_METHODS:
        raise ValidationError(
            f"Invalid payment method '{method}'", {"allowed": sorted(VALID_METHODS)}
        )

    resolved_id = _resolve_invoice_id(invoice_id, order_id)

    def _op() -> Payment:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=resolved_id)).first()
        if invoice is None:
            raise InvoiceNotFound(f"Invoice {resolved_id} not found", {"invoice_id": resolved_id})

        paid = invoice_service.paid_cents(invoice.id)
        remaining = invoice.total_amount_cents - paid
        if amount_cents > remaining:
            raise ValidationError(
                f"Payment of {amount_cents} exceeds the outstanding {max(0, remaining)} on invoice {invoice.invoice_number}",
                {
                    "invoice_id": invoice.id,
                    "total_amount_cents": invoice.total_amount_cents,
                    "paid_cents": paid,
                    "remaining_cents": max(0, remaining),
                },
            )

        payment = Payment(
            invoice_id=invoice.id,
            order_id=invoice.order_id,
            store_id=invoice.store_id,
            delivery_id=delivery_id,
            amount_cents=amount_cents,
            method=method,
            status=PAYMENT_STATUS_COMPLETED,
            reference=reference,
            receipt_url=receipt_url,
            collected_by=collected_by,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()

        invoice_service.refresh_payment_status(invoice)
        store_service.adjust_balance(invoice.store_id, -amount_cents, commit=False)

        db.session.commit()
        return payment

    return run_with_retry(_op)


def collect_delivery_payment(delivery_id: int, amount_cents: int, method: str, **kwargs) -> Payment:
    """Payment taken by the driver; the delivery must be delivered."""
    delivery = get_delivery(delivery_id)
    require_delivered(delivery)
    return record_payment(
        amount_cents,
        method,
        order_id=delivery.order_id,
        delivery_id=delivery.id,
        **kwargs,
    )


def list_payments(*, invoice_id: int | None = None, store_id: int | None = None, limit: int = 100) -> list[Payment]:
    query = db.session.query(Payment)
    if invoice_id is not None:
        query = query.filter(Payment.invoice_id == invoice_id)
    if store_id is not None:
        query = query.filter(Payment.store_id == store_id)
    return query.order_by(Payment.id.desc()).limit(limit).all()


def compute_store_balance(store_id: int) -> int:
    """
    Amount owed, folded from the event rows:

        sum(final amount of approved/completed orders)
      - sum(return credits)
      - sum(payments)

    floored at 0.
    """
    billed = (
        db.session.query(func.coalesce(func.sum(Order.final_amount_cents), 0))
        .filter(Order.store_id == store_id, Order.status.in_(sorted(STOCK_COMMITTED_STATUSES)))
        .scalar()
    )
    returned = (
        db.session.query(func.coalesce(func.sum(Return.amount_cents), 0))
        .join(Order, Order.id == Return.order_id)
        .filter(Order.store_id == store_id)
        .scalar()
    )
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.store_id == store_id)
        .scalar()
    )
    return max(0, int(billed) - int(returned) - int(paid))


def reconcile_store_balance(store_id: int) -> dict:
    """Overwrite the running balance with the folded value; reports the drift."""
    store_service.get_store(store_id)

    def _op() -> dict:
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        expected = compute_store_balance(store_id)
        previous = store.current_balance_cents
        store.current_balance_cents = expected
        db.session.commit()
        return {
            "store_id": store_id,
            "previous_balance_cents": previous,
            "balance_cents": expected,
            "drift_cents": previous - expected,
        }

    return run_with_retry(_op)
