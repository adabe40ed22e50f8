from __future__ import annotations

import re
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# 999,999,999 cents; anything larger overflows the integer columns on some backends.
MAX_PRICE_CENTS = 999_999_999

SKU_PATTERN = re.compile(r"^[A-Z0-9_-]+$")
MAX_ORDER_QUANTITY = 1_000_000

_INT_TEXT = re.compile(r"^-?\d+$")


class _Unset:
    """Marker for 'field not supplied' in partial updates (distinct from None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may write, and which a create must supply."""
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


# =============================================================================
# COLUMN COERCION
# =============================================================================

def _to_int(key: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false are never quantities or cents
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str) and _INT_TEXT.match(value.strip()):
        return int(value.strip())
    raise ValidationError(f"{key} must be a plain integer")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
        return value.strip().lower() in ("true", "1")
    if isinstance(value, int):
        return value != 0
    raise ValidationError(f"{key} must be true or false")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _to_text(key: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{key} must be a string")
    return str(value).strip()


_COERCERS = (
    (Boolean, _to_bool),
    (Integer, _to_int),
    (DateTime, _to_datetime),
    ((String, Text), _to_text),
)


def _coerce(column, value: Any) -> Any:
    for coltype, coerce in _COERCERS:
        if isinstance(column.type, coltype):
            return coerce(column.key, value)
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON body into a clean column patch for ``model``.

    Keys must be in the policy allowlist and be real columns. Values are
    coerced by column type; nullability and String(n) lengths are enforced.
    A create (partial=False) must also carry every required_on_create key.
    """
    payload = {} if payload is None else payload
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    columns = {c.key: c for c in model.__mapper__.columns}

    not_allowed = sorted(k for k in payload if k not in policy.writable_fields or k not in columns)
    if not_allowed:
        raise ValidationError(f"Field not allowed: {', '.join(not_allowed)}", {"fields": not_allowed})

    if not partial:
        missing = sorted(k for k in (policy.required_on_create or ()) if k not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

    patch: dict = {}
    for key, raw in payload.items():
        column = columns[key]
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce(column, raw)
        if isinstance(value, str):
            if value == "" and not column.nullable:
                raise ValidationError(f"{key} cannot be blank")
            limit = getattr(column.type, "length", None)
            if limit and len(value) > limit:
                raise ValidationError(f"{key} exceeds max length {limit}")
        patch[key] = value

    return patch


# =============================================================================
# PARTIAL UPDATES
# =============================================================================

class _PartialUpdate:
    """
    Mixin for frozen dataclasses whose fields default to UNSET.

    A field left UNSET is not touched; a field set to None clears the value.
    """

    @classmethod
    def from_patch(cls, patch: dict):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in patch.items() if k in known})

    def present(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def apply_to(self, target) -> list[str]:
        changed = []
        for name, value in self.present().items():
            if getattr(target, name) != value:
                setattr(target, name, value)
                changed.append(name)
        return changed


@dataclass(frozen=True)
class ProductUpdate(_PartialUpdate):
    name: Any = UNSET
    sku: Any = UNSET
    description: Any = UNSET
    price_cents: Any = UNSET
    cost_cents: Any = UNSET
    unit: Any = UNSET
    category: Any = UNSET
    min_stock_level: Any = UNSET
    is_active: Any = UNSET


@dataclass(frozen=True)
class StoreUpdate(_PartialUpdate):
    name: Any = UNSET
    code: Any = UNSET
    email: Any = UNSET
    phone: Any = UNSET
    address: Any = UNSET
    city: Any = UNSET
    state: Any = UNSET
    zip_code: Any = UNSET
    credit_limit_cents: Any = UNSET
    is_active: Any = UNSET


@dataclass(frozen=True)
class DeliveryUpdate(_PartialUpdate):
    driver_id: Any = UNSET
    scheduled_at: Any = UNSET
    proof_of_delivery_url: Any = UNSET
    recipient_name: Any = UNSET
    notes: Any = UNSET


# =============================================================================
# BUSINESS RULES
# =============================================================================

def normalize_sku(raw) -> str:
    return str(raw or "").strip().upper()


def enforce_rules_product(patch: dict, *, existing=None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.

    `existing` is the product being updated (None on create) so cross-field
    rules see the merged values.
    """
    if "sku" in patch and patch["sku"] is not None:
        patch["sku"] = normalize_sku(patch["sku"])
        if not SKU_PATTERN.match(patch["sku"]):
            raise ValidationError("sku may only contain A-Z, 0-9, '-' and '_'")

    if "price_cents" in patch:
        price = patch["price_cents"]
        if price is None:
            raise ValidationError("price_cents is required")
        if not isinstance(price, int):
            raise ValidationError("price_cents must be an integer")
        if price <= 0:
            raise ValidationError("price_cents must be > 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "cost_cents" in patch and patch["cost_cents"] is not None:
        if patch["cost_cents"] < 0:
            raise ValidationError("cost_cents must be >= 0")

    if "min_stock_level" in patch:
        if patch["min_stock_level"] is None or patch["min_stock_level"] < 0:
            raise ValidationError("min_stock_level must be >= 0")

    price = patch.get("price_cents", getattr(existing, "price_cents", None))
    cost = patch.get("cost_cents", getattr(existing, "cost_cents", None))
    if price is not None and cost is not None and cost > price:
        raise ValidationError("cost_cents cannot exceed price_cents")


def enforce_rules_store(patch: dict) -> None:
    if "credit_limit_cents" in patch:
        limit = patch["credit_limit_cents"]
        if limit is None or limit < 0:
            raise ValidationError("credit_limit_cents must be >= 0 (0 means unlimited)")
    if "code" in patch and patch["code"]:
        patch["code"] = patch["code"].upper()


def parse_order_items(raw_items) -> list[dict]:
    """
    Normalize an order item payload.

    Each entry: {"product_id": int, "quantity": int, "unit_price_cents": int?}.
    Errors are aggregated so the caller can report all of them at once.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    errors: list[str] = []
    items: list[dict] = []
    seen: set[int] = set()

    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            errors.append(f"items[{idx}] must be an object")
            continue

        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        unit_price = raw.get("unit_price_cents")

        if not isinstance(product_id, int) or isinstance(product_id, bool):
            errors.append(f"items[{idx}].product_id must be an integer")
            continue
        if product_id in seen:
            errors.append(f"items[{idx}]: product {product_id} appears more than once")
            continue
        seen.add(product_id)

        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            errors.append(f"items[{idx}].quantity must be a positive integer")
            continue
        if quantity > MAX_ORDER_QUANTITY:
            errors.append(f"items[{idx}].quantity cannot exceed {MAX_ORDER_QUANTITY}")
            continue

        if unit_price is not None:
            if not isinstance(unit_price, int) or isinstance(unit_price, bool) or unit_price < 0:
                errors.append(f"items[{idx}].unit_price_cents must be a non-negative integer")
                continue

        items.append({"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price})

    if errors:
        raise ValidationError("Invalid order items", {"errors": errors})

    return items


def require_positive_cents(value, field: str = "amount_cents") -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value
