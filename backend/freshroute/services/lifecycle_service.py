# Overview: Service-layer operations for the order lifecycle state machine.

"""
Order Lifecycle Service

================================================================================
STATE MACHINE
================================================================================

    draft -> pending -> approved -> completed
    draft | pending -> rejected
    draft | pending -> cancelled

    draft/pending:  items may be added, removed or re-priced
    approved:       stock consumed, documents generated; items frozen
    completed, rejected, cancelled: terminal

Status writes are compare-and-swap: UPDATE ... WHERE status IN (expected).
When two callers race on the same order exactly one write matches; the other
sees zero rows updated and gets StateConflict. This is the single fatal
commit point of the approval saga.
================================================================================
"""

from __future__ import annotations
from typing import Literal

from sqlalchemy import update

from ..errors import NotFound, OrderNotModifiable, StateConflict, ValidationError
from ..extensions import db
from ..models import Order
from freshroute.time_utils import utcnow


ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_APPROVED = "approved"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_REJECTED = "rejected"
ORDER_STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_CANCELLED,
}
OrderStatus = Literal["draft", "pending", "approved", "completed", "rejected", "cancelled"]

MODIFIABLE_STATUSES = {ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING}
TERMINAL_STATUSES = {ORDER_STATUS_COMPLETED, ORDER_STATUS_REJECTED, ORDER_STATUS_CANCELLED}
STOCK_COMMITTED_STATUSES = {ORDER_STATUS_APPROVED, ORDER_STATUS_COMPLETED}

TRANSITIONS: dict[str, set[str]] = {
    ORDER_STATUS_DRAFT: {ORDER_STATUS_PENDING, ORDER_STATUS_APPROVED, ORDER_STATUS_REJECTED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PENDING: {ORDER_STATUS_APPROVED, ORDER_STATUS_REJECTED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_APPROVED: {ORDER_STATUS_COMPLETED},
    ORDER_STATUS_COMPLETED: set(),
    ORDER_STATUS_REJECTED: set(),
    ORDER_STATUS_CANCELLED: set(),
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return to_status in TRANSITIONS[from_status]


def sources_for(to_status: str) -> set[str]:
    """Statuses from which to_status is reachable in one step."""
    validate_status(to_status)
    return {src for src, targets in TRANSITIONS.items() if to_status in targets}


def is_modifiable(order: Order) -> bool:
    return order.status in MODIFIABLE_STATUSES


def require_modifiable(order: Order) -> None:
    """Raise OrderNotModifiable unless the order is draft or pending."""
    if not is_modifiable(order):
        raise OrderNotModifiable(
            f"Order {order.order_number} is {order.status}; items can only change while draft or pending",
            {"order_id": order.id, "status": order.status},
        )


def get_order_or_404(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
    return order


def transition_order(
    order_id: int,
    to_status: str,
    *,
    expected_from: set[str] | None = None,
    **values,
) -> Order:
    """
    Guarded compare-and-swap status write, committed immediately.

    Args:
        order_id: Order to move
        to_status: Target status
        expected_from: Statuses the order must currently be in (defaults to
            every legal source of to_status)
        **values: Extra columns stamped in the same write (approved_by, ...)

    Raises:
        NotFound: order does not exist
        StateConflict: the order was not in an expected status at write time
    """
    expected = set(expected_from) if expected_from else sources_for(to_status)
    illegal = {s for s in expected if not can_transition(s, to_status)}
    if illegal:
        raise ValidationError(
            f"Cannot transition to {to_status} from {', '.join(sorted(illegal))}"
        )

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status.in_(sorted(expected)))
        .values(status=to_status, version_id=Order.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount != 1:
        db.session.rollback()
        current = db.session.get(Order, order_id)
        if current is None:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        raise StateConflict(
            f"Order {current.order_number} is {current.status}; cannot move to {to_status}",
            {
                "order_id": order_id,
                "status": current.status,
                "expected": sorted(expected),
                "target": to_status,
            },
        )

    db.session.commit()
    return db.session.get(Order, order_id, populate_existing=True)


# =============================================================================
# EVENTS
# =============================================================================

def submit_order(order_id: int) -> Order:
    """draft -> pending."""
    order = get_order_or_404(order_id)
    if not order.items:
        raise ValidationError(f"Order {order.order_number} has no items")
    return transition_order(order_id, ORDER_STATUS_PENDING, expected_from={ORDER_STATUS_DRAFT})


def reject_order(order_id: int, reason: str, *, actor: str | None = None) -> Order:
    """
    draft/pending -> rejected. No stock change.

    The reason is appended to the order notes as "[REJECTED] reason (by: actor)".
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    order = get_order_or_404(order_id)
    line = f"[REJECTED] {reason} (by: {actor or 'unknown'})"
    notes = f"{order.notes}\n{line}" if order.notes else line

    return transition_order(
        order_id,
        ORDER_STATUS_REJECTED,
        expected_from=MODIFIABLE_STATUSES,
        notes=notes,
        rejected_at=utcnow(),
        rejected_by=actor,
    )


def cancel_order(order_id: int, *, actor: str | None = None) -> Order:
    """draft/pending -> cancelled. Nothing was consumed, so no stock change."""
    get_order_or_404(order_id)
    return transition_order(
        order_id,
        ORDER_STATUS_CANCELLED,
        expected_from=MODIFIABLE_STATUSES,
        cancelled_at=utcnow(),
    )


def complete_order(order_id: int) -> Order:
    """approved -> completed. A generated delivery must already be delivered."""
    order = get_order_or_404(order_id)
    delivery = order.delivery
    if delivery is not None and delivery.status != "delivered":
        raise StateConflict(
            f"Order {order.order_number} delivery is {delivery.status}; deliver it before completing",
            {"order_id": order_id, "delivery_id": delivery.id, "delivery_status": delivery.status},
        )
    return transition_order(
        order_id,
        ORDER_STATUS_COMPLETED,
        expected_from={ORDER_STATUS_APPROVED},
        completed_at=utcnow(),
    )
