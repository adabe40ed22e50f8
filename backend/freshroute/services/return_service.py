"""
Returns & Wastage Processing Service

Post-delivery reduction of billed quantity for expired, damaged or unsold
goods.

DESIGN PRINCIPLES:
- Returns reference the delivery (and through it the order) for traceability
- Credit uses the ORIGINAL order-line unit price, not the current catalog price
- The invoice must already exist; returns are never processed before invoicing
- Return rows and the invoice credit commit together
- A credit may not drop the invoice total below the payments already received
- Restocking and the store balance credit are best-effort: a failure is logged
  and reported, never undoing the recorded return

EXPIRY RULE:
- an explicit expiry_date must be strictly before today (date-only compare)
- with no expiry_date the reason must be exactly 'expired'
So damaged/unsold items are only accepted with a past expiry date.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func

from ..errors import StateConflict, ValidationError
from ..extensions import db
from ..models import Return, Invoice
from freshroute.time_utils import utctoday, parse_iso_date
from . import invoice_service, stock_service, store_service
from .concurrency import lock_for_update, run_best_effort, run_with_retry
from .delivery_service import get_delivery, require_delivered


# =============================================================================
# RETURN REASON CONSTANTS
# =============================================================================

RETURN_REASON_EXPIRED = "expired"
RETURN_REASON_DAMAGED = "damaged"
RETURN_REASON_UNSOLD = "unsold"

VALID_REASONS = {RETURN_REASON_EXPIRED, RETURN_REASON_DAMAGED, RETURN_REASON_UNSOLD}
DEFAULT_REASON = RETURN_REASON_EXPIRED


@dataclass
class ReturnValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)
    invalid_items: list[dict] = field(default_factory=list)
    items: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "errors": self.errors, "invalid_items": self.invalid_items}


@dataclass
class ReturnResult:
    returns: list[Return]
    invoice: Invoice
    total_return_cents: int
    restocked: list[int] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "returns": [r.to_dict() for r in self.returns],
            "invoice": self.invoice.to_dict(),
            "total_return_cents": self.total_return_cents,
            "restocked": self.restocked,
            "warnings": self.warnings,
        }


def _already_returned(delivery_id: int) -> dict[int, int]:
    rows = (
        db.session.query(Return.product_id, func.sum(Return.quantity))
        .filter(Return.delivery_id == delivery_id)
        .group_by(Return.product_id)
        .all()
    )
    return {pid: int(qty or 0) for pid, qty in rows}


# =============================================================================
# VALIDATION
# =============================================================================

def validate_returns(delivery_id: int, items, *, today=None) -> ReturnValidationResult:
    """
    Check every proposed return line and report all problems at once.

    Each item: {"product_id", "quantity", "reason"?, "expiry_date"?,
    "batch_number"?, "notes"?}. Returns the normalized items on success.
    """
    delivery = get_delivery(delivery_id)
    today = today or utctoday()

    if not isinstance(items, list) or not items:
        return ReturnValidationResult(ok=False, errors=["At least one return item is required"])

    ordered = {line.product_id: line for line in delivery.order.items}
    returned = _already_returned(delivery_id)
    claimed: dict[int, int] = {}

    result = ReturnValidationResult(ok=True)

    for idx, raw in enumerate(items):
        item_errors: list[str] = []
        if not isinstance(raw, dict):
            result.invalid_items.append({"index": idx, "product_id": None, "errors": ["must be an object"]})
            result.errors.append(f"items[{idx}]: must be an object")
            continue

        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        reason = raw.get("reason") or DEFAULT_REASON
        expiry = None

        line = None
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            item_errors.append("product_id must be an integer")
            product_id = None
        else:
            line = ordered.get(product_id)
            if line is None:
                item_errors.append(f"product {product_id} is not part of this delivery")

        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            item_errors.append("quantity must be a positive integer")
        elif line is not None:
            already = returned.get(product_id, 0) + claimed.get(product_id, 0)
            if already + quantity > line.quantity:
                item_errors.append(
                    f"cannot return {quantity}: ordered {line.quantity}, already returned {already}"
                )

        if not isinstance(reason, str) or reason not in VALID_REASONS:
            item_errors.append(f"reason must be one of: {', '.join(sorted(VALID_REASONS))}")

        raw_expiry = raw.get("expiry_date")
        if raw_expiry:
            try:
                expiry = parse_iso_date(raw_expiry)
            except ValueError:
                item_errors.append("expiry_date must be YYYY-MM-DD")
            else:
                if expiry >= today:
                    item_errors.append(f"expiry_date {expiry.isoformat()} is not in the past")
        elif reason != RETURN_REASON_EXPIRED:
            item_errors.append(f"an expiry_date is required for reason '{reason}'")

        for key in ("batch_number", "notes"):
            if raw.get(key) is not None and not isinstance(raw.get(key), str):
                item_errors.append(f"{key} must be a string")

        if item_errors:
            label = line.product.sku if line is not None else f"items[{idx}]"
            result.invalid_items.append({"index": idx, "product_id": product_id, "errors": item_errors})
            result.errors.extend(f"{label}: {e}" for e in item_errors)
            continue

        claimed[product_id] = claimed.get(product_id, 0) + quantity
        result.items.append({
            "product_id": product_id,
            "quantity": quantity,
            "reason": reason,
            "expiry_date": expiry,
            "batch_number": raw.get("batch_number"),
            "notes": raw.get("notes"),
        })

    result.ok = not result.errors
    if not result.ok:
        result.items = []
    return result


# =============================================================================
# PROCESSING
# =============================================================================

def process_returns(delivery_id: int, items, *, actor: str | None = None, today=None) -> ReturnResult:
    """
    Record returns against a delivered order and credit its invoice.

    Raises:
        NotFound: delivery missing
        StateConflict: delivery not yet delivered, or the credit would drop
            the invoice total below what has already been paid
        ValidationError: any item invalid (all problems in details)
        InvoiceNotFound: the order has not been invoiced
    """
    delivery = get_delivery(delivery_id)
    require_delivered(delivery)

    validation = validate_returns(delivery_id, items, today=today)
    if not validation.ok:
        raise ValidationError("Return validation failed", validation.to_dict())

    order = delivery.order
    invoice_service.get_invoice_for_order(order.id)

    unit_prices = {line.product_id: line.unit_price_cents for line in order.items}
    store_id = order.store_id

    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(order_id=order.id)).first()
        total = sum(item["quantity"] * unit_prices[item["product_id"]] for item in validation.items)

        paid = invoice_service.paid_cents(invoice.id)
        new_total = invoice_service.compute_invoice_total(
            invoice.subtotal_cents, invoice.discount_cents, invoice.return_amount_cents + total
        )
        if new_total < paid:
            db.session.rollback()
            raise StateConflict(
                f"Return credit of {total} would leave invoice {invoice.invoice_number} "
                f"below the {paid} already paid",
                {
                    "invoice_id": invoice.id,
                    "total_amount_cents": invoice.total_amount_cents,
                    "paid_cents": paid,
                    "remaining_cents": max(0, invoice.total_amount_cents - paid),
                    "credit_cents": total,
                },
            )

        rows = []
        for item in validation.items:
            price = unit_prices[item["product_id"]]
            amount = item["quantity"] * price
            rows.append(Return(
                delivery_id=delivery_id,
                order_id=order.id,
                invoice_id=invoice.id,
                product_id=item["product_id"],
                quantity=item["quantity"],
                unit_price_cents=price,
                amount_cents=amount,
                reason=item["reason"],
                batch_number=item["batch_number"],
                expiry_date=item["expiry_date"],
                notes=item["notes"],
                returned_by=actor,
            ))
        db.session.add_all(rows)
        invoice_service.apply_return_amount(invoice, total)
        db.session.commit()
        return rows, invoice, total

    rows, invoice, total = run_with_retry(_op)
    result = ReturnResult(returns=rows, invoice=invoice, total_return_cents=total)
    ctx = {"delivery_id": delivery_id}

    run_best_effort(
        "store_balance",
        lambda: store_service.adjust_balance(store_id, -total, commit=False),
        warnings=result.warnings,
        context=ctx,
    )

    for item in validation.items:
        restored = run_best_effort(
            "restore_stock",
            lambda it=item: stock_service.apply_stock(
                store_id,
                it["product_id"],
                it["quantity"],
                stock_service.REASON_RESTORE,
                order_id=order.id,
                note=f"return ({it['reason']})",
                actor=actor,
            ),
            warnings=result.warnings,
            context={**ctx, "product_id": item["product_id"]},
        )
        if restored is not None:
            result.restocked.append(item["product_id"])

    return result


def get_returns_for_delivery(delivery_id: int) -> list[Return]:
    get_delivery(delivery_id)
    return (
        db.session.query(Return)
        .filter_by(delivery_id=delivery_id)
        .order_by(Return.id.asc())
        .all()
    )
