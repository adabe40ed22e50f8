# Overview: Service-layer orchestration for order approval and document regeneration.

"""
Order Approval Orchestrator

================================================================================
SEQUENCE
================================================================================

    1. validate order for approval        fatal
    2. validate stock availability        fatal (itemized shortages)
    3. CAS status -> approved             fatal, the single commit point
    ---------------------------------------------------------------------
    4. store balance += final amount      best-effort
    5. consume stock per line             best-effort, per line
    6. kitchen sheet + items              best-effort
    7. delivery + delivery note           best-effort
    8. invoice                            best-effort
    9. approval notification              best-effort

Nothing before step 3 writes. Everything after step 3 commits on its own and
a failure there is logged and reported as a warning; the order stays
approved. Steps 6-8 are idempotent per order, so regenerate_documents can
fill in whatever is missing later.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import InsufficientStock, StateConflict, UpstreamFailure, ValidationError
from ..extensions import db
from ..models import Order
from freshroute.time_utils import utcnow
from . import (
    delivery_service,
    invoice_service,
    kitchen_service,
    notification_service,
    stock_service,
    store_service,
)
from .concurrency import run_best_effort
from .lifecycle_service import (
    MODIFIABLE_STATUSES,
    ORDER_STATUS_APPROVED,
    STOCK_COMMITTED_STATUSES,
    get_order_or_404,
    transition_order,
)


STEP_BALANCE = "store_balance"
STEP_STOCK = "consume_stock"
STEP_KITCHEN_SHEET = "kitchen_sheet"
STEP_DELIVERY = "delivery"
STEP_INVOICE = "invoice"
STEP_NOTIFICATION = "notification"


@dataclass
class ApprovalResult:
    order: Order
    kitchen_sheet: object = None
    delivery: object = None
    invoice: object = None
    notification_sent: bool = False
    stock_consumed: list[int] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        delivery = self.delivery
        return {
            "order": self.order.to_dict(),
            "kitchen_sheet": self.kitchen_sheet.to_dict() if self.kitchen_sheet else None,
            "delivery": delivery.to_dict() if delivery else None,
            "delivery_note": delivery.note.to_dict() if delivery and delivery.note else None,
            "invoice": self.invoice.to_dict() if self.invoice else None,
            "notification_sent": self.notification_sent,
            "stock_consumed": self.stock_consumed,
            "warnings": self.warnings,
        }


def validate_order_for_approval(order: Order) -> list[str]:
    """
    Completeness checks that must pass before approval.

    Raises StateConflict for a wrong status; returns a list of problems
    otherwise (empty means approvable).
    """
    if order.status not in MODIFIABLE_STATUSES:
        raise StateConflict(
            f"Order {order.order_number} is {order.status}; only draft or pending orders can be approved",
            {"order_id": order.id, "status": order.status},
        )

    errors: list[str] = []
    store = order.store
    if store is None:
        errors.append("Order has no store")
    elif not store.is_active:
        errors.append(f"Store {store.name} is inactive")

    if not order.items:
        errors.append("Order has no items")

    for item in order.items:
        if item.quantity <= 0:
            errors.append(f"{item.product.sku}: quantity must be > 0")
        if not item.product.is_active:
            errors.append(f"{item.product.sku}: product is inactive")

    if store is not None and current_app.config.get("ENFORCE_CREDIT_LIMIT", True):
        headroom = store_service.credit_headroom_cents(store)
        if headroom is not None and order.final_amount_cents > headroom:
            errors.append(
                f"Credit limit exceeded: balance {store.current_balance_cents} + order "
                f"{order.final_amount_cents} > limit {store.credit_limit_cents} (cents)"
            )

    return errors


def approve_order(order_id: int, actor: str | None = None) -> ApprovalResult:
    """
    Approve an order and fan out to stock, documents, invoice and notification.

    Raises:
        NotFound: order missing
        StateConflict: not draft/pending, or lost the race to another approver
        ValidationError: incomplete order, inactive store/product, credit limit
        InsufficientStock: stock short for one or more lines
    """
    order = get_order_or_404(order_id)

    # 1. Validate order
    errors = validate_order_for_approval(order)
    if errors:
        raise ValidationError(
            f"Order {order.order_number} cannot be approved",
            {"order_id": order_id, "errors": errors},
        )

    from_status = order.status

    # 2. Validate stock
    availability = stock_service.validate_availability(order_id)
    if not availability.ok:
        raise InsufficientStock(
            f"Insufficient stock to approve order {order.order_number}",
            availability.shortages,
        )

    # 3. Commit point
    order = transition_order(
        order_id,
        ORDER_STATUS_APPROVED,
        expected_from={from_status},
        approved_at=utcnow(),
        approved_by=actor,
    )
    current_app.logger.info("Order %s approved by %s", order.order_number, actor)

    result = ApprovalResult(order=order)
    ctx = {"order_id": order_id}
    store_id = order.store_id
    final_amount = order.final_amount_cents
    lines = [(item.product_id, item.quantity) for item in order.items]

    # 4. Store balance
    run_best_effort(
        STEP_BALANCE,
        lambda: store_service.adjust_balance(store_id, final_amount, commit=False),
        warnings=result.warnings,
        context=ctx,
    )

    # 5. Stock, one line at a time
    for product_id, quantity in lines:
        consumed = run_best_effort(
            STEP_STOCK,
            lambda pid=product_id, qty=quantity: stock_service.apply_stock(
                store_id, pid, qty, stock_service.REASON_CONSUME, order_id=order_id, actor=actor,
            ),
            warnings=result.warnings,
            context={**ctx, "product_id": product_id},
        )
        if consumed is not None:
            result.stock_consumed.append(product_id)

    # 6-8. Documents
    _generate_documents(order_id, result)

    # 9. Notification
    result.notification_sent = bool(run_best_effort(
        STEP_NOTIFICATION,
        lambda: _send_approval_notification(order_id),
        warnings=result.warnings,
        context=ctx,
    ))

    result.order = get_order_or_404(order_id)
    if result.warnings:
        current_app.logger.warning(
            "Order %s approved with %d warning(s)", result.order.order_number, len(result.warnings)
        )
    return result


def _send_approval_notification(order_id: int) -> bool:
    order = get_order_or_404(order_id)
    if not notification_service.notify_order_approved(order):
        raise UpstreamFailure(
            f"Approval notification for order {order.order_number} was not sent",
            {"order_id": order_id},
        )
    return True


def _generate_documents(order_id: int, result: ApprovalResult) -> None:
    ctx = {"order_id": order_id}
    result.kitchen_sheet = run_best_effort(
        STEP_KITCHEN_SHEET,
        lambda: kitchen_service.generate_kitchen_sheet(order_id),
        warnings=result.warnings,
        context=ctx,
    )
    result.delivery = run_best_effort(
        STEP_DELIVERY,
        lambda: delivery_service.generate_delivery(order_id),
        warnings=result.warnings,
        context=ctx,
    )
    result.invoice = run_best_effort(
        STEP_INVOICE,
        lambda: invoice_service.generate_invoice(order_id),
        warnings=result.warnings,
        context=ctx,
    )


def regenerate_documents(order_id: int) -> ApprovalResult:
    """
    Re-run the document steps for an approved order.

    Only missing artifacts are created; existing ones are returned as-is.
    """
    order = get_order_or_404(order_id)
    if order.status not in STOCK_COMMITTED_STATUSES:
        raise StateConflict(
            f"Order {order.order_number} is {order.status}; documents exist only for approved orders",
            {"order_id": order_id, "status": order.status},
        )

    result = ApprovalResult(order=order)
    _generate_documents(order_id, result)
    result.order = get_order_or_404(order_id)
    return result


def find_orders_missing_documents(limit: int = 200) -> list[int]:
    """Approved/completed orders lacking a kitchen sheet, delivery, note or invoice."""
    orders = (
        db.session.query(Order)
        .filter(Order.status.in_(sorted(STOCK_COMMITTED_STATUSES)))
        .order_by(Order.id.asc())
        .limit(limit)
        .all()
    )
    missing = []
    for order in orders:
        delivery = order.delivery
        if order.kitchen_sheet is None or delivery is None or delivery.note is None or order.invoice is None:
            missing.append(order.id)
    return missing
