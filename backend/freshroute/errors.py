# Overview: Domain error taxonomy shared by services, routes, and CLI commands.

"""
Fulfillment error taxonomy.

Every error carries a human-readable message and a structured `details`
dict. Routes translate them to JSON with a fixed HTTP status per class:

    ValidationError       400  malformed or incomplete input, never retried
    StateConflict         409  not valid in the current lifecycle state
    InsufficientStock     409  itemized shortage list attached
    NotFound              404  referenced entity missing
    DuplicateConstraint   409  e.g. SKU collision
    UpstreamFailure       502  document/notification collaborator failed
"""

from __future__ import annotations

from flask import jsonify


class FulfillmentError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = "fulfillment_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(FulfillmentError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "validation_error"


class StateConflict(FulfillmentError):
    """Operation is not valid for the entity's current lifecycle state."""

    status_code = 409
    code = "state_conflict"


class OrderNotModifiable(StateConflict):
    """Item changes attempted on an order that is no longer draft/pending."""

    code = "order_not_modifiable"


class InsufficientStock(FulfillmentError):
    """
    Stock would go negative.

    `shortages` is a list of dicts with product_id, sku, product_name,
    required and available.
    """

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, message: str, shortages: list[dict] | None = None):
        self.shortages = list(shortages or [])
        super().__init__(message, {"shortages": self.shortages})


class NotFound(FulfillmentError):
    status_code = 404
    code = "not_found"


class InvoiceNotFound(NotFound):
    code = "invoice_not_found"


class DuplicateConstraint(FulfillmentError):
    """409-level uniqueness conflict (e.g., duplicate SKU)."""

    status_code = 409
    code = "duplicate_constraint"


class UpstreamFailure(FulfillmentError):
    """A collaborator (documents, notifications) failed. Never fatal to the caller."""

    status_code = 502
    code = "upstream_failure"


def error_response(exc: FulfillmentError):
    """Flask (body, status) tuple for a domain error."""
    return jsonify(exc.to_dict()), exc.status_code
