# Overview: Service-layer helpers for concurrency and step-wise commits.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE = (OperationalError, StaleDataError)


def lock_for_update(query):
    """Row lock for a read-modify-write (a no-op on SQLite)."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call ``func`` until it succeeds or ``attempts`` run out.

    Lock timeouts and optimistic-lock conflicts (version_id mismatch) roll the
    session back and retry with exponential backoff; anything else propagates
    on the first failure. ``func`` must re-read whatever it locks.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.info("Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt, attempts)
            time.sleep(backoff_base * (2 ** (attempt - 1)))


def run_best_effort(step: str, func, *, warnings: list, context: dict | None = None):
    """
    Run one best-effort orchestration step.

    The step's writes are committed on success. On any failure the session is
    rolled back to the last committed step, the failure is logged, and a
    warning entry is appended; the exception does not propagate.
    Returns the step's result, or None when it failed.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Best-effort step '%s' failed %s: %s", step, context or {}, exc, exc_info=True
        )
        entry = {"step": step, "error": str(exc)}
        if context:
            entry.update(context)
        warnings.append(entry)
        return None
