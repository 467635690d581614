# Overview: Service-layer helpers for concurrency; write locks, compare-and-swap updates and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Transient failures worth another attempt: "database is locked" / deadlocks
# surface as OperationalError, lost version_id races as StaleDataError.
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def begin_write() -> None:
    """
    Open the unit of work holding the database write lock.

    On SQLite this is BEGIN IMMEDIATE: writers queue up front, so every read
    inside the unit sees the rows its writes will land on. Other databases
    get the same guarantee from the guarded UPDATEs in conditional_update.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def conditional_update(stmt) -> bool:
    """
    Run an UPDATE whose WHERE clause carries the precondition.

    True when a row matched. The check and the write are one statement, so
    two callers racing on the same precondition cannot both win.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount > 0


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func(), rolling back and retrying on RETRYABLE_ERRORS with
    exponential backoff. Business errors propagate on the first raise.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %s of %s)", exc.__class__.__name__, attempt, attempts
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
