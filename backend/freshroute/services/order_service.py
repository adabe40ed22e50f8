# Overview: Service-layer operations for order intake and item modification.

"""
Order intake and modification.

Items are owned by their order and replaced as a set; a line is never edited
in place. Every item-set change ends with
pricing_service.recalculate_order_totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..validation import parse_order_items
from . import document_service, lifecycle_service, pricing_service, stock_service
from .lifecycle_service import ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING
from .store_service import get_store


@dataclass
class OrderModification:
    order: Order
    stock_deltas: dict[int, int] = field(default_factory=dict)
    totals_changed: bool = False

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "stock_deltas": {str(k): v for k, v in self.stock_deltas.items()},
            "totals_changed": self.totals_changed,
        }


def _load_products(product_ids) -> dict[int, Product]:
    product_ids = set(product_ids)
    products = db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    found = {p.id: p for p in products}
    missing = sorted(product_ids - set(found))
    if missing:
        raise NotFound(f"Products not found: {', '.join(str(m) for m in missing)}", {"product_ids": missing})
    return found


def _build_lines(items: list[dict], *, allow_price_override: bool) -> list[OrderItem]:
    products = _load_products(i["product_id"] for i in items)

    inactive = sorted(p.sku for p in products.values() if not p.is_active)
    if inactive:
        raise ValidationError(f"Inactive products cannot be ordered: {', '.join(inactive)}", {"skus": inactive})

    lines = []
    for item in items:
        product = products[item["product_id"]]
        unit_price = pricing_service.resolve_unit_price(
            product, item.get("unit_price_cents"), allow_override=allow_price_override
        )
        lines.append(OrderItem(
            product_id=product.id,
            quantity=item["quantity"],
            unit_price_cents=unit_price,
            line_total_cents=pricing_service.compute_line_total(item["quantity"], unit_price),
        ))
    return lines


def create_order(
    store_id: int,
    items,
    *,
    discount_cents: int = 0,
    status: str = ORDER_STATUS_DRAFT,
    notes: str | None = None,
    actor: str | None = None,
    allow_price_override: bool = False,
    is_auto_generated: bool = False,
    number_kind: tuple[str, str] = document_service.DOC_ORDER,
) -> Order:
    """
    Create an order in draft or pending.

    Args:
        store_id: Ordering store (must be active)
        items: [{"product_id", "quantity", "unit_price_cents"?}]
        discount_cents: Order-level discount, capped at the subtotal
        status: "draft" or "pending"
        allow_price_override: True for admin-entered orders
    """
    if status not in (ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING):
        raise ValidationError("Orders are created as draft or pending")
    if discount_cents is None or discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")

    store = get_store(store_id)
    if not store.is_active:
        raise ValidationError(f"Store {store.name} is inactive", {"store_id": store_id})

    parsed = parse_order_items(items)
    lines = _build_lines(parsed, allow_price_override=allow_price_override)

    order = Order(
        order_number=document_service.allocate(store_id, number_kind),
        store_id=store_id,
        status=status,
        notes=notes,
        created_by=actor,
        is_auto_generated=is_auto_generated,
    )
    order.items = lines
    db.session.add(order)
    db.session.flush()

    return pricing_service.recalculate_order_totals(order.id, discount_cents)


def modify_order_items(
    order_id: int,
    items,
    *,
    discount_cents: int | None = None,
    allow_price_override: bool = False,
) -> OrderModification:
    """
    Replace the order's item set and recompute totals.

    Only draft/pending orders; anything else raises OrderNotModifiable.
    Stock is untouched because nothing has been consumed yet; the returned
    stock_deltas describe the per-product change between the two sets.
    """
    order = lifecycle_service.get_order_or_404(order_id)
    lifecycle_service.require_modifiable(order)
    if discount_cents is not None and discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")

    parsed = parse_order_items(items)
    lines = _build_lines(parsed, allow_price_override=allow_price_override)

    old_snapshot = [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items]
    old_totals = (order.subtotal_cents, order.discount_cents, order.final_amount_cents)
    old_prices = {i.product_id: i.unit_price_cents for i in order.items}

    deltas = stock_service.compute_reservation_deltas(old_snapshot, parsed)
    new_prices = {line.product_id: line.unit_price_cents for line in lines}

    if not deltas and old_prices == new_prices:
        # Same set: keep the existing rows so ids and snapshots are preserved.
        order = pricing_service.recalculate_order_totals(order.id, discount_cents)
    else:
        order.items.clear()
        db.session.flush()
        order.items.extend(lines)
        db.session.flush()
        order = pricing_service.recalculate_order_totals(order.id, discount_cents)

    new_totals = (order.subtotal_cents, order.discount_cents, order.final_amount_cents)
    return OrderModification(order=order, stock_deltas=deltas, totals_changed=new_totals != old_totals)


def add_item(order_id: int, product_id: int, quantity: int, *, unit_price_cents: int | None = None,
             allow_price_override: bool = False) -> OrderModification:
    """Add a line, or raise the quantity of an existing one."""
    order = lifecycle_service.get_order_or_404(order_id)
    lifecycle_service.require_modifiable(order)

    items = [
        {"product_id": i.product_id, "quantity": i.quantity, "unit_price_cents": i.unit_price_cents}
        for i in order.items
    ]
    for item in items:
        if item["product_id"] == product_id:
            item["quantity"] += quantity
            if unit_price_cents is not None:
                item["unit_price_cents"] = unit_price_cents
            break
    else:
        items.append({"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents})

    return _replace_keeping_snapshots(order, items, allow_price_override)


def remove_item(order_id: int, product_id: int) -> OrderModification:
    order = lifecycle_service.get_order_or_404(order_id)
    lifecycle_service.require_modifiable(order)

    items = [
        {"product_id": i.product_id, "quantity": i.quantity, "unit_price_cents": i.unit_price_cents}
        for i in order.items
        if i.product_id != product_id
    ]
    if len(items) == len(order.items):
        raise NotFound(f"Product {product_id} is not on order {order.order_number}", {"product_id": product_id})
    if not items:
        raise ValidationError("Cannot remove the last item; cancel the order instead")

    return _replace_keeping_snapshots(order, items, allow_price_override=True)


def _replace_keeping_snapshots(order: Order, items: list[dict], allow_price_override: bool) -> OrderModification:
    """
    Existing lines carry their price snapshot through; only new lines (no
    unit_price_cents) are priced from the catalog.
    """
    existing = {i.product_id for i in order.items}
    for item in items:
        if item["product_id"] in existing:
            continue
        if item.get("unit_price_cents") is not None and not allow_price_override:
            raise ValidationError(
                "Price overrides are only allowed on admin-entered orders",
                {"product_id": item["product_id"]},
            )
    return modify_order_items(order.id, items, allow_price_override=True)


def list_orders(*, store_id: int | None = None, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if store_id is not None:
        query = query.filter(Order.store_id == store_id)
    if status is not None:
        lifecycle_service.validate_status(status)
        query = query.filter(Order.status == status)
    return query.order_by(Order.id.desc()).limit(limit).all()
