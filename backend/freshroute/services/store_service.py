# Overview: Service-layer operations for stores and their running balance.

from __future__ import annotations

from ..errors import DuplicateConstraint, NotFound
from ..extensions import db
from ..models import Store
from ..validation import StoreUpdate, enforce_rules_store
from .concurrency import lock_for_update, run_with_retry


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound(f"Store {store_id} not found", {"store_id": store_id})
    return store


def list_stores(*, active_only: bool = False) -> list[Store]:
    query = db.session.query(Store)
    if active_only:
        query = query.filter(Store.is_active.is_(True))
    return query.order_by(Store.name.asc(), Store.id.asc()).all()


def _ensure_code_unique(code: str | None, exclude_id: int | None = None) -> None:
    if not code:
        return
    query = db.session.query(Store.id).filter(Store.code == code)
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first() is not None:
        raise DuplicateConstraint(f"Store code '{code}' already exists", {"field": "code", "value": code})


def create_store(*, patch: dict) -> Store:
    enforce_rules_store(patch)
    _ensure_code_unique(patch.get("code"))

    store = Store(**patch)
    db.session.add(store)
    db.session.commit()
    return store


def update_store(store_id: int, update: StoreUpdate) -> Store:
    """Apply only the fields present on the update; None clears a nullable field."""
    store = get_store(store_id)

    present = update.present()
    enforce_rules_store(present)
    if "code" in present:
        _ensure_code_unique(present["code"], exclude_id=store_id)

    for name, value in present.items():
        setattr(store, name, value)
    db.session.commit()
    return store


def adjust_balance(store_id: int, delta_cents: int, *, commit: bool = True) -> Store:
    """
    Move the store's running balance by delta_cents, floored at 0.

    commit=False leaves the write in the caller's transaction.
    """
    def _op() -> Store:
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if store is None:
            raise NotFound(f"Store {store_id} not found", {"store_id": store_id})
        store.current_balance_cents = max(0, store.current_balance_cents + delta_cents)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return store

    if not commit:
        return _op()
    return run_with_retry(_op)


def credit_headroom_cents(store: Store) -> int | None:
    """Remaining credit, or None when the store has no limit."""
    if not store.credit_limit_cents:
        return None
    return store.credit_limit_cents - store.current_balance_cents
