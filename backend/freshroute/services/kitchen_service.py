# Overview: Service-layer operations for kitchen preparation sheets.

from __future__ import annotations

import time

from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, StateConflict, ValidationError
from ..extensions import db
from ..models import BarcodeLabel, KitchenSheet, KitchenSheetItem
from freshroute.time_utils import utcnow, utctoday, parse_iso_date
from . import document_service
from .lifecycle_service import STOCK_COMMITTED_STATUSES, get_order_or_404


SHEET_STATUS_PENDING = "pending"
SHEET_STATUS_COMPLETED = "completed"

LABEL_PREFIX = "PF"
LABEL_TYPES = {"barcode", "qr_code", "both"}


def get_sheet(sheet_id: int) -> KitchenSheet:
    sheet = db.session.get(KitchenSheet, sheet_id)
    if sheet is None:
        raise NotFound(f"Kitchen sheet {sheet_id} not found", {"kitchen_sheet_id": sheet_id})
    return sheet


def generate_kitchen_sheet(order_id: int) -> KitchenSheet:
    """
    Create the kitchen sheet for an approved order.

    Idempotent: an existing sheet is returned unchanged. Flushes only; the
    caller commits.
    """
    order = get_order_or_404(order_id)
    if order.status not in STOCK_COMMITTED_STATUSES:
        raise StateConflict(
            f"Order {order.order_number} is {order.status}; kitchen sheets are generated for approved orders",
            {"order_id": order_id, "status": order.status},
        )

    existing = db.session.query(KitchenSheet).filter_by(order_id=order_id).first()
    if existing is not None:
        return existing

    sheet = KitchenSheet(
        order_id=order_id,
        sheet_number=document_service.allocate(order.store_id, document_service.DOC_KITCHEN_SHEET),
        status=SHEET_STATUS_PENDING,
    )
    sheet.items = [
        KitchenSheetItem(product_id=line.product_id, quantity=line.quantity, prepared=False)
        for line in order.items
    ]
    db.session.add(sheet)
    db.session.flush()
    return sheet


def _complete_if_done(sheet: KitchenSheet) -> None:
    if sheet.items and all(i.prepared for i in sheet.items) and sheet.status != SHEET_STATUS_COMPLETED:
        sheet.status = SHEET_STATUS_COMPLETED
        sheet.completed_at = utcnow()


def mark_items_prepared(sheet_id: int, item_ids: list[int], *, prepared_by: str | None = None) -> KitchenSheet:
    """
    Mark items prepared. The sheet completes once every item is prepared.
    Already-prepared items keep their original stamp.
    """
    sheet = get_sheet(sheet_id)
    if not item_ids:
        raise ValidationError("item_ids must not be empty")

    by_id = {i.id: i for i in sheet.items}
    unknown = sorted(set(item_ids) - set(by_id))
    if unknown:
        raise NotFound(
            f"Items {', '.join(str(u) for u in unknown)} are not on kitchen sheet {sheet.sheet_number}",
            {"item_ids": unknown},
        )

    now = utcnow()
    for item_id in item_ids:
        item = by_id[item_id]
        if item.prepared:
            continue
        item.prepared = True
        item.prepared_at = now
        item.prepared_by = prepared_by

    _complete_if_done(sheet)
    db.session.commit()
    return sheet


def record_batch_info(sheet_id: int, entries: list[dict], *, today=None) -> KitchenSheet:
    """
    Record batch numbers and expiry dates on sheet items.

    entries: [{"item_id", "batch_number"?, "expiry_date"?}]
    Expiry dates in the past are rejected. Errors are aggregated and nothing
    is written unless every entry is valid.
    """
    sheet = get_sheet(sheet_id)
    today = today or utctoday()
    if not isinstance(entries, list) or not entries:
        raise ValidationError("entries must be a non-empty list")

    by_id = {i.id: i for i in sheet.items}
    errors: list[str] = []
    updates = []

    for idx, entry in enumerate(entries):
        item = by_id.get(entry.get("item_id")) if isinstance(entry, dict) else None
        if item is None:
            errors.append(f"entries[{idx}]: item is not on this kitchen sheet")
            continue

        expiry = None
        if entry.get("expiry_date"):
            try:
                expiry = parse_iso_date(entry["expiry_date"])
            except ValueError:
                errors.append(f"entries[{idx}]: expiry_date must be YYYY-MM-DD")
                continue
            if expiry < today:
                errors.append(f"entries[{idx}]: expiry_date {expiry.isoformat()} is in the past")
                continue

        updates.append((item, entry.get("batch_number"), expiry))

    if errors:
        raise ValidationError("Invalid batch information", {"errors": errors})

    for item, batch_number, expiry in updates:
        if batch_number is not None:
            item.batch_number = str(batch_number).strip() or None
        if expiry is not None:
            item.expiry_date = expiry

    db.session.commit()
    return sheet


def complete_kitchen_sheet(sheet_id: int) -> KitchenSheet:
    sheet = get_sheet(sheet_id)
    pending = [i.id for i in sheet.items if not i.prepared]
    if pending:
        raise StateConflict(
            f"Kitchen sheet {sheet.sheet_number} has {len(pending)} unprepared item(s)",
            {"kitchen_sheet_id": sheet_id, "unprepared_item_ids": pending},
        )
    _complete_if_done(sheet)
    db.session.commit()
    return sheet


# =============================================================================
# ITEM LABELS
# =============================================================================

def build_label_code(sku: str, batch_number: str | None = None, timestamp_ms: int | None = None) -> str:
    """PF-{sku}[-{batch}]-{epoch_ms}; the batch segment is omitted when unknown."""
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    batch = f"-{batch_number}" if batch_number else ""
    return f"{LABEL_PREFIX}-{sku}{batch}-{ts}"


def _get_item(sheet_item_id: int) -> KitchenSheetItem:
    item = db.session.get(KitchenSheetItem, sheet_item_id)
    if item is None:
        raise NotFound(f"Kitchen sheet item {sheet_item_id} not found", {"kitchen_sheet_item_id": sheet_item_id})
    return item


def generate_barcode_label(sheet_item_id: int, *, label_type: str = "both", timestamp_ms: int | None = None) -> BarcodeLabel:
    """
    Label for one sheet item.

    Idempotent: an existing label is returned unchanged, so the code printed
    on the first run stays the code of record.
    """
    if not isinstance(label_type, str) or label_type not in LABEL_TYPES:
        raise ValidationError(f"label_type must be one of: {', '.join(sorted(LABEL_TYPES))}")

    item = _get_item(sheet_item_id)
    existing = db.session.query(BarcodeLabel).filter_by(kitchen_sheet_item_id=item.id).first()
    if existing is not None:
        return existing

    code = build_label_code(item.product.sku, item.batch_number, timestamp_ms)
    label = BarcodeLabel(
        kitchen_sheet_item_id=item.id,
        barcode=code,
        qr_code=code,
        label_type=label_type,
        printed=False,
    )
    try:
        with db.session.begin_nested():
            db.session.add(label)
    except IntegrityError:
        # Concurrent generation for the same item won.
        label = db.session.query(BarcodeLabel).filter_by(kitchen_sheet_item_id=item.id).one()
    db.session.commit()
    return label


def generate_sheet_labels(sheet_id: int, item_ids: list[int] | None = None, *, label_type: str = "both") -> list[BarcodeLabel]:
    """Labels for every item on the sheet, or only ``item_ids`` when given."""
    sheet = get_sheet(sheet_id)
    items = sheet.items
    if item_ids:
        by_id = {i.id: i for i in sheet.items}
        unknown = sorted(set(item_ids) - set(by_id))
        if unknown:
            raise NotFound(
                f"Items {', '.join(str(u) for u in unknown)} are not on kitchen sheet {sheet.sheet_number}",
                {"item_ids": unknown},
            )
        items = [by_id[i] for i in item_ids]

    timestamp_ms = int(time.time() * 1000)
    return [generate_barcode_label(item.id, label_type=label_type, timestamp_ms=timestamp_ms) for item in items]


def list_sheet_labels(sheet_id: int) -> dict:
    sheet = get_sheet(sheet_id)
    labels = [item.label for item in sheet.items if item.label is not None]
    printed = sum(1 for label in labels if label.printed)
    return {
        "kitchen_sheet_id": sheet.id,
        "labels": [label.to_dict() for label in labels],
        "count": len(labels),
        "printed": printed,
        "not_printed": len(labels) - printed,
    }


def mark_label_printed(label_id: int) -> BarcodeLabel:
    """First print stamps printed_at; reprints keep it."""
    label = db.session.get(BarcodeLabel, label_id)
    if label is None:
        raise NotFound(f"Barcode label {label_id} not found", {"barcode_label_id": label_id})
    if not label.printed:
        label.printed = True
        label.printed_at = utcnow()
        db.session.commit()
    return label
