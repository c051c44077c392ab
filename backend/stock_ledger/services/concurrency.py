# Overview: Retry and locking helpers for ledger writes.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking to a query (SELECT ... FOR UPDATE).

    NOTE: SQLite ignores FOR UPDATE; its writer lock serializes instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of ledger work, retrying on lock contention and version conflicts.

    OperationalError covers deadlocks/lock timeouts, StaleDataError covers
    optimistic version_id conflicts on transfers and invoices. The session is
    rolled back before each retry so `func` must be safe to re-run from scratch.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
