# Overview: Service-layer operations for automatic replenishment orders.

"""
Replenishment Planner

For every active product whose stock at a store is below min_stock_level:

    suggested = max(2 * min_stock_level - current, min_stock_level)

i.e. refill to at least double the minimum and never suggest less than the
minimum itself. Products with min_stock_level 0 are never flagged.

The planner only creates new draft orders. A store that already has a draft
or pending order containing any of the flagged products is skipped. Two
sweeps running at the same moment can both pass that check; the extra draft
is harmless because drafts need approval before they touch stock or money.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Product
from . import document_service, order_service, stock_service
from .lifecycle_service import MODIFIABLE_STATUSES
from .store_service import get_store, list_stores


AUTO_ORDER_NOTE = "Auto-generated replenishment order"


@dataclass(frozen=True)
class ReplenishmentItem:
    product_id: int
    sku: str
    product_name: str
    current_stock: int
    min_stock_level: int
    suggested_quantity: int
    unit_price_cents: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "current_stock": self.current_stock,
            "min_stock_level": self.min_stock_level,
            "suggested_quantity": self.suggested_quantity,
            "unit_price_cents": self.unit_price_cents,
        }


@dataclass
class ReplenishmentRun:
    orders: list[Order] = field(default_factory=list)
    skipped_store_ids: list[int] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "orders": [o.to_dict() for o in self.orders],
            "created": len(self.orders),
            "skipped_store_ids": self.skipped_store_ids,
            "failures": self.failures,
        }


def suggested_quantity(current: int, min_stock_level: int) -> int:
    return max(2 * min_stock_level - current, min_stock_level)


def check_store_needs(store_id: int) -> list[ReplenishmentItem]:
    get_store(store_id)

    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.min_stock_level > 0)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    levels = stock_service.get_stock_levels(store_id, [p.id for p in products])

    needs = []
    for product in products:
        current = levels.get(product.id, 0)
        if current >= product.min_stock_level:
            continue
        needs.append(ReplenishmentItem(
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            current_stock=current,
            min_stock_level=product.min_stock_level,
            suggested_quantity=suggested_quantity(current, product.min_stock_level),
            unit_price_cents=product.price_cents,
        ))
    return needs


def has_existing_draft(store_id: int, product_ids) -> bool:
    """Any draft/pending order for the store containing one of product_ids."""
    product_ids = list(product_ids)
    if not product_ids:
        return False
    hit = (
        db.session.query(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(
            Order.store_id == store_id,
            Order.status.in_(sorted(MODIFIABLE_STATUSES)),
            OrderItem.product_id.in_(product_ids),
        )
        .first()
    )
    return hit is not None


def generate_order(store_id: int, *, actor: str | None = None) -> Order | None:
    """
    Create a draft replenishment order, or return None when the store needs
    nothing or already has an overlapping open order.
    """
    store = get_store(store_id)
    if not store.is_active:
        raise ValidationError(f"Store {store.name} is inactive", {"store_id": store_id})

    needs = check_store_needs(store_id)
    if not needs:
        return None

    if has_existing_draft(store_id, [n.product_id for n in needs]):
        current_app.logger.info("Store %s already has an open order for low-stock products; skipping", store_id)
        return None

    order = order_service.create_order(
        store_id,
        [{"product_id": n.product_id, "quantity": n.suggested_quantity} for n in needs],
        notes=AUTO_ORDER_NOTE,
        actor=actor,
        is_auto_generated=True,
        number_kind=document_service.DOC_REPLENISHMENT,
    )
    current_app.logger.info(
        "Created replenishment order %s for store %s with %d item(s)", order.order_number, store_id, len(needs)
    )
    return order


def generate_all_orders(*, actor: str | None = None) -> ReplenishmentRun:
    """Every active store independently; one store's failure does not stop the batch."""
    run = ReplenishmentRun()
    store_ids = [s.id for s in list_stores(active_only=True)]

    for store_id in store_ids:
        try:
            order = generate_order(store_id, actor=actor)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Replenishment failed for store %s", store_id)
            run.failures.append({"store_id": store_id, "error": str(exc)})
            continue
        if order is None:
            run.skipped_store_ids.append(store_id)
        else:
            run.orders.append(order)

    return run
