# backend/freshroute/services/products_service.py
"""
Products Service

Central catalog shared by every store. SKUs are normalized to upper case and
must be unique; collisions are reported as DuplicateConstraint before any
write. Products already referenced by order items are deactivated instead of
deleted so historical orders keep their lines.
"""
from __future__ import annotations

from ..errors import DuplicateConstraint, NotFound
from ..extensions import db
from ..models import Product, OrderItem
from ..validation import ProductUpdate, enforce_rules_product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    return product


def list_products(
    *,
    active_only: bool = False,
    category: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    if category:
        base_query = base_query.filter(Product.category == category)
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _ensure_sku_unique(sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise DuplicateConstraint(f"SKU '{sku}' already exists", {"field": "sku", "value": sku})


def create_product(*, patch: dict) -> Product:
    """Create a product from a validated patch dict."""
    enforce_rules_product(patch)
    _ensure_sku_unique(patch["sku"])

    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, update: ProductUpdate) -> Product:
    product = get_product(product_id)

    present = update.present()
    enforce_rules_product(present, existing=product)
    if "sku" in present:
        _ensure_sku_unique(present["sku"], exclude_id=product_id)

    for name, value in present.items():
        setattr(product, name, value)
    db.session.commit()
    return product


def delete_product(product_id: int) -> dict:
    """
    Hard-delete an unreferenced product; deactivate a referenced one.

    Returns {"deleted": bool, "deactivated": bool, "product_id": int}.
    """
    product = get_product(product_id)

    referenced = (
        db.session.query(OrderItem.id)
        .filter(OrderItem.product_id == product_id)
        .first()
        is not None
    )

    if referenced:
        product.is_active = False
        db.session.commit()
        return {"deleted": False, "deactivated": True, "product_id": product_id}

    db.session.delete(product)
    db.session.commit()
    return {"deleted": True, "deactivated": False, "product_id": product_id}
