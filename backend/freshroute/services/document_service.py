# Overview: Service-layer operations for document numbering and document data views.

"""
Document Service

Two concerns:
1. Human-readable numbers (orders, kitchen sheets, delivery notes, invoices)
   from an atomic per-store sequence.
2. Structured views of kitchen sheets and delivery notes for the print/label
   collaborator: items grouped by category and by expiry date. Rendering is
   not done here.
"""

from __future__ import annotations

from collections import OrderedDict

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import DocumentSequence, KitchenSheet, Delivery
from freshroute.time_utils import to_iso_date
from .concurrency import run_with_retry


DOC_ORDER = ("ORDER", "ORD")
DOC_REPLENISHMENT = ("REPLENISHMENT", "REPL")
DOC_KITCHEN_SHEET = ("KITCHEN_SHEET", "KS")
DOC_DELIVERY_NOTE = ("DELIVERY_NOTE", "DN")
DOC_INVOICE = ("INVOICE", "INV")

NO_CATEGORY = "uncategorized"
NO_EXPIRY = "no_expiry"


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a store/type.

    Uses row-level lock on (store_id, document_type) to prevent race conditions.
    Flushes but does not commit; the caller's transaction owns the allocation.
    """
    def _op() -> str:
        if not store_id:
            raise ValidationError("store_id is required")
        if not document_type:
            raise ValidationError("document_type is required")

        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.store_id == store_id,
                DocumentSequence.document_type == document_type,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(store_id=store_id, document_type=document_type)
                .scalar()
            )
            next_num = current - 1
        else:
            seq = DocumentSequence(store_id=store_id, document_type=document_type, next_number=2)
            db.session.add(seq)
            try:
                with db.session.begin_nested():
                    db.session.flush()
                next_num = 1
            except IntegrityError:
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                current = (
                    db.session.query(DocumentSequence.next_number)
                    .filter_by(store_id=store_id, document_type=document_type)
                    .scalar()
                )
                next_num = current - 1

        return f"{prefix}-{store_id:03d}-{next_num:0{pad}d}"

    return run_with_retry(_op)


def allocate(store_id: int, kind: tuple[str, str]) -> str:
    document_type, prefix = kind
    return next_document_number(store_id=store_id, document_type=document_type, prefix=prefix)


# =============================================================================
# GROUPED VIEWS
# =============================================================================

def group_by_category(items: list[dict]) -> "OrderedDict[str, list[dict]]":
    groups: "OrderedDict[str, list[dict]]" = OrderedDict()
    for item in sorted(items, key=lambda i: ((i.get("category") or NO_CATEGORY), i.get("product_name") or "")):
        groups.setdefault(item.get("category") or NO_CATEGORY, []).append(item)
    return groups


def group_by_expiry(items: list[dict]) -> "OrderedDict[str, list[dict]]":
    """Earliest expiry first; items without a date go last."""
    dated = sorted((i for i in items if i.get("expiry_date")), key=lambda i: i["expiry_date"])
    undated = [i for i in items if not i.get("expiry_date")]

    groups: "OrderedDict[str, list[dict]]" = OrderedDict()
    for item in dated:
        groups.setdefault(item["expiry_date"], []).append(item)
    if undated:
        groups[NO_EXPIRY] = undated
    return groups


def preparation_progress(items: list[dict]) -> dict:
    total = len(items)
    prepared = sum(1 for i in items if i.get("prepared"))
    percent = int(round(prepared * 100 / total)) if total else 0
    return {"prepared": prepared, "total": total, "percent": percent}


def kitchen_sheet_view(sheet_id: int) -> dict:
    sheet = db.session.get(KitchenSheet, sheet_id)
    if sheet is None:
        raise NotFound(f"Kitchen sheet {sheet_id} not found", {"kitchen_sheet_id": sheet_id})

    items = [item.to_dict() for item in sheet.items]
    order = sheet.order
    return {
        "kitchen_sheet": sheet.to_dict(include_items=False),
        "order_number": order.order_number,
        "store": {"id": order.store.id, "name": order.store.name, "code": order.store.code},
        "by_category": group_by_category(items),
        "by_expiry": group_by_expiry(items),
        "progress": preparation_progress(items),
    }


def delivery_note_view(delivery_id: int) -> dict:
    """
    Delivery note data. Batch and expiry come from the kitchen sheet when
    one exists; otherwise the order lines are listed without them.
    """
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFound(f"Delivery {delivery_id} not found", {"delivery_id": delivery_id})

    order = delivery.order
    prepared = {}
    if order.kitchen_sheet is not None:
        prepared = {i.product_id: i for i in order.kitchen_sheet.items}

    items = []
    for line in order.items:
        ks_item = prepared.get(line.product_id)
        items.append({
            "product_id": line.product_id,
            "sku": line.product.sku,
            "product_name": line.product.name,
            "category": line.product.category,
            "unit": line.product.unit,
            "quantity": line.quantity,
            "batch_number": ks_item.batch_number if ks_item else None,
            "expiry_date": to_iso_date(ks_item.expiry_date) if ks_item else None,
        })

    return {
        "delivery": delivery.to_dict(),
        "delivery_note": delivery.note.to_dict() if delivery.note else None,
        "order_number": order.order_number,
        "store": {
            "id": order.store.id,
            "name": order.store.name,
            "address": order.store.address,
            "city": order.store.city,
            "zip_code": order.store.zip_code,
        },
        "by_category": group_by_category(items),
        "by_expiry": group_by_expiry(items),
        "temperature_logs": [log.to_dict() for log in delivery.temperature_logs],
    }
