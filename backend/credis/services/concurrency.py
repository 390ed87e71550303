# Overview: Row locking and bounded retry for the atomic ledger writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (it locks the whole database
    on write instead), but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts, "database is
    locked") and StaleDataError (optimistic locking conflicts). Anything
    else, including every CredisError, propagates on the first attempt.

    ``func`` must be a complete unit: it writes and commits. The session is
    rolled back before each retry so a half-written unit is never kept.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_WRITE_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.05)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Transient storage error (attempt %d/%d): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

