# Overview: Service-layer operations for the per-store stock ledger.

"""
Stock Ledger

One StockRecord per (store, product) holding the on-hand quantity. A missing
record is quantity 0; records are created lazily on first write and never
deleted.

INVARIANT: quantity is never negative. The check happens at write time, under
a row lock and the optimistic version counter, not only at validation time.
Two approvals that both passed validation race here; the loser gets
InsufficientStock instead of overselling.

There is no reservation ledger: stock is decremented only when an order is
approved, never when it is created.

REASONS:
    consume  decrement, fails if the result would be negative
    restore  increment, unconditional
    adjust   signed delta, fails if the result would be negative
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import StockRecord, StockMovement, Product, Store, Order
from freshroute.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# REASON CONSTANTS
# =============================================================================

REASON_CONSUME = "consume"
REASON_RESTORE = "restore"
REASON_ADJUST = "adjust"

VALID_REASONS = {REASON_CONSUME, REASON_RESTORE, REASON_ADJUST}

# Event names used by callers and the HTTP surface
REASON_ALIASES = {
    "order_approved": REASON_CONSUME,
    "delivery": REASON_CONSUME,
    "order_cancelled": REASON_RESTORE,
    "return": REASON_RESTORE,
    "manual_adjustment": REASON_ADJUST,
    "wastage": REASON_ADJUST,
}

VALIDATABLE_ORDER_STATUSES = {"draft", "pending"}


@dataclass
class StockValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)
    shortages: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "errors": self.errors, "shortages": self.shortages}


def normalize_reason(reason: str) -> str:
    key = (reason or "").strip().lower()
    key = REASON_ALIASES.get(key, key)
    if key not in VALID_REASONS:
        allowed = sorted(VALID_REASONS | set(REASON_ALIASES))
        raise ValidationError(f"Invalid stock reason '{reason}'", {"allowed": allowed})
    return key


# =============================================================================
# READS
# =============================================================================

def get_stock_level(store_id: int, product_id: int) -> int:
    """Current quantity; 0 when no record exists."""
    qty = (
        db.session.query(StockRecord.quantity)
        .filter_by(store_id=store_id, product_id=product_id)
        .scalar()
    )
    return qty or 0


def get_stock_levels(store_id: int, product_ids) -> dict[int, int]:
    """Quantities for many products at once; missing products map to 0."""
    product_ids = list(product_ids)
    if not product_ids:
        return {}
    rows = (
        db.session.query(StockRecord.product_id, StockRecord.quantity)
        .filter(StockRecord.store_id == store_id, StockRecord.product_id.in_(product_ids))
        .all()
    )
    levels = {pid: 0 for pid in product_ids}
    levels.update({pid: qty for pid, qty in rows})
    return levels


def list_store_stock(store_id: int) -> list[dict]:
    if db.session.get(Store, store_id) is None:
        raise NotFound(f"Store {store_id} not found", {"store_id": store_id})
    records = (
        db.session.query(StockRecord)
        .join(Product, Product.id == StockRecord.product_id)
        .filter(StockRecord.store_id == store_id)
        .order_by(Product.name.asc())
        .all()
    )
    return [r.to_dict() for r in records]


def list_stock_movements(store_id: int, product_id: int | None = None, limit: int = 100) -> list[dict]:
    query = db.session.query(StockMovement).filter_by(store_id=store_id)
    if product_id is not None:
        query = query.filter_by(product_id=product_id)
    rows = query.order_by(StockMovement.id.desc()).limit(limit).all()
    return [r.to_dict() for r in rows]


# =============================================================================
# VALIDATION
# =============================================================================

def validate_availability(order_id: int) -> StockValidationResult:
    """
    Compare each line's required quantity to the store's stock.

    Never mutates state. Only draft/pending orders with items validate.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", {"order_id": order_id})

    if order.status not in VALIDATABLE_ORDER_STATUSES:
        return StockValidationResult(
            ok=False,
            errors=[f"Order {order.order_number} is {order.status}; only draft or pending orders can be validated"],
        )
    if not order.items:
        return StockValidationResult(ok=False, errors=[f"Order {order.order_number} has no items"])

    required: dict[int, int] = {}
    for item in order.items:
        required[item.product_id] = required.get(item.product_id, 0) + item.quantity

    levels = get_stock_levels(order.store_id, required.keys())
    products = {item.product_id: item.product for item in order.items}

    shortages = []
    for product_id, qty in required.items():
        available = levels.get(product_id, 0)
        if available < qty:
            product = products[product_id]
            shortages.append({
                "product_id": product_id,
                "sku": product.sku,
                "product_name": product.name,
                "required": qty,
                "available": available,
            })

    errors = [
        f"{s['sku']}: required {s['required']}, available {s['available']}"
        for s in shortages
    ]
    return StockValidationResult(ok=not shortages, errors=errors, shortages=shortages)


# =============================================================================
# WRITES
# =============================================================================

def _signed_delta(reason: str, quantity: int) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if reason == REASON_ADJUST:
        if quantity == 0:
            raise ValidationError("quantity must be non-zero for adjust")
        return quantity
    if quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {reason}")
    return -quantity if reason == REASON_CONSUME else quantity


def _locked_record(store_id: int, product_id: int) -> StockRecord | None:
    return lock_for_update(
        db.session.query(StockRecord).filter_by(store_id=store_id, product_id=product_id)
    ).first()


def apply_stock(
    store_id: int,
    product_id: int,
    quantity: int,
    reason: str,
    *,
    order_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> StockRecord:
    """
    Apply one stock change and commit it with its audit movement.

    Raises:
        ValidationError: bad reason or quantity
        NotFound: unknown store or product
        InsufficientStock: the result would be negative (record left untouched)
    """
    reason = normalize_reason(reason)
    delta = _signed_delta(reason, quantity)

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    if db.session.get(Store, store_id) is None:
        raise NotFound(f"Store {store_id} not found", {"store_id": store_id})

    def _op() -> StockRecord:
        record = _locked_record(store_id, product_id)
        current = record.quantity if record else 0
        new_qty = current + delta

        if new_qty < 0:
            raise InsufficientStock(
                f"Insufficient stock for {product.sku}: required {-delta}, available {current}",
                [{
                    "product_id": product_id,
                    "sku": product.sku,
                    "product_name": product.name,
                    "required": -delta,
                    "available": current,
                }],
            )

        if record is None:
            record = StockRecord(store_id=store_id, product_id=product_id, quantity=0)
            db.session.add(record)
            try:
                with db.session.begin_nested():
                    db.session.flush()
            except IntegrityError:
                # Another writer created the row first; re-read it under lock.
                record = _locked_record(store_id, product_id)
                new_qty = record.quantity + delta
                if new_qty < 0:
                    raise InsufficientStock(
                        f"Insufficient stock for {product.sku}: required {-delta}, available {record.quantity}",
                        [{
                            "product_id": product_id,
                            "sku": product.sku,
                            "product_name": product.name,
                            "required": -delta,
                            "available": record.quantity,
                        }],
                    )

        record.quantity = new_qty
        record.last_updated_at = utcnow()
        record.last_updated_by = actor

        db.session.add(StockMovement(
            store_id=store_id,
            product_id=product_id,
            reason=reason,
            quantity_delta=delta,
            quantity_after=new_qty,
            order_id=order_id,
            note=note,
            actor=actor,
        ))
        db.session.commit()
        return record

    return run_with_retry(_op)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def compute_reservation_deltas(old_items, new_items) -> dict[int, int]:
    """
    Per-product quantity delta (new - old); zero deltas are omitted.

    Items may be OrderItem rows or dicts with product_id/quantity. Malformed
    dict items raise ValidationError listing every bad entry.
    """
    errors: list[str] = []

    def _totals(label: str, items) -> dict[int, int]:
        totals: dict[int, int] = {}
        if items is not None and not isinstance(items, (list, tuple)):
            errors.append(f"{label} must be a list")
            return totals
        for idx, item in enumerate(items or []):
            if isinstance(item, dict):
                pid, qty = item.get("product_id"), item.get("quantity")
            else:
                pid = getattr(item, "product_id", None)
                qty = getattr(item, "quantity", None)
            if not _is_int(pid):
                errors.append(f"{label}[{idx}].product_id must be an integer")
                continue
            if not _is_int(qty) or qty < 0:
                errors.append(f"{label}[{idx}].quantity must be a non-negative integer")
                continue
            totals[pid] = totals.get(pid, 0) + qty
        return totals

    old_totals = _totals("old_items", old_items)
    new_totals = _totals("new_items", new_items)
    if errors:
        raise ValidationError("Invalid reservation items", {"errors": errors})

    deltas = {}
    for pid in sorted(set(old_totals) | set(new_totals)):
        delta = new_totals.get(pid, 0) - old_totals.get(pid, 0)
        if delta:
            deltas[pid] = delta
    return deltas


def modify_reservation(
    order_id: int,
    old_items,
    new_items,
    store_id: int,
    *,
    actor: str | None = None,
) -> dict[int, int]:
    """
    Apply only the per-product delta between two item sets.

    Reducing a line from 10 to 7 restores exactly 3 units. A positive delta
    consumes. Stops at the first product whose delta would drive stock
    negative and raises InsufficientStock; deltas applied before it stay
    applied. Returns the deltas that were applied.
    """
    applied: dict[int, int] = {}
    for product_id, delta in compute_reservation_deltas(old_items, new_items).items():
        reason = REASON_CONSUME if delta > 0 else REASON_RESTORE
        try:
            apply_stock(
                store_id,
                product_id,
                abs(delta),
                reason,
                order_id=order_id,
                note="order modification",
                actor=actor,
            )
        except InsufficientStock as exc:
            exc.details["applied"] = dict(applied)
            raise
        applied[product_id] = delta
    return applied
