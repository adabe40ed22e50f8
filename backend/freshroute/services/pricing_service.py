# Overview: Service-layer operations for line pricing and order totals.

"""
Pricing & Totals

All amounts are integer cents.

    line_total = quantity * unit_price
    subtotal   = sum(line_total)
    discount   = min(discount, subtotal)
    final      = subtotal - discount          (never negative)

recalculate_order_totals is the only writer of an order's totals and is
called after every item-set mutation.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Order, Product


@dataclass(frozen=True)
class OrderTotals:
    subtotal_cents: int
    discount_cents: int
    final_amount_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "final_amount_cents": self.final_amount_cents,
        }


def compute_line_total(quantity: int, unit_price_cents: int) -> int:
    return quantity * unit_price_cents


def resolve_unit_price(
    product: Product,
    override_price_cents: int | None = None,
    *,
    allow_override: bool = False,
) -> int:
    """
    Catalog price unless an admin-entered order supplies an override.

    Store-entered orders always pay catalog price; an override on one is
    rejected rather than ignored.
    """
    if override_price_cents is None:
        return product.price_cents
    if not allow_override:
        raise ValidationError(
            "Price overrides are only allowed on admin-entered orders",
            {"product_id": product.id},
        )
    if override_price_cents < 0:
        raise ValidationError("unit_price_cents must be >= 0", {"product_id": product.id})
    return override_price_cents


def calculate_order_totals(items, discount_cents: int = 0) -> OrderTotals:
    """Items are OrderItem rows or dicts with quantity/unit_price_cents."""
    if discount_cents is None:
        discount_cents = 0
    if discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")

    subtotal = 0
    for item in items:
        if isinstance(item, dict):
            subtotal += compute_line_total(item["quantity"], item["unit_price_cents"])
        else:
            subtotal += compute_line_total(item.quantity, item.unit_price_cents)

    discount = min(discount_cents, subtotal)
    return OrderTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        final_amount_cents=max(0, subtotal - discount),
    )


def recalculate_order_totals(order_id: int, discount_cents: int | None = None, *, commit: bool = True) -> Order:
    """
    Re-sum the order's lines and write subtotal/discount/final back.

    discount_cents=None keeps the current discount.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", {"order_id": order_id})

    for item in order.items:
        item.line_total_cents = compute_line_total(item.quantity, item.unit_price_cents)

    discount = order.discount_cents if discount_cents is None else discount_cents
    totals = calculate_order_totals(order.items, discount)

    order.subtotal_cents = totals.subtotal_cents
    order.discount_cents = totals.discount_cents
    order.final_amount_cents = totals.final_amount_cents

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return order
