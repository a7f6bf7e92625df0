# Overview: Service-layer helpers for concurrent writers; row locks and retry on version conflicts.

"""
Products, orders and promotions carry a version_id column. Two requests that
read the same row and both write it make the second flush raise
StaleDataError; the unit of work is then rolled back and replayed from the
top, re-reading the row.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

RETRYABLE_ERRORS = (StaleDataError, OperationalError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on backends that have it. SQLite drops the clause;
    there the version_id check is what serializes writers.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call func() until it succeeds or attempts run out, rolling the session
    back and sleeping backoff_base * 2**n between tries.

    func must do its own reads: nothing loaded before a failed attempt
    survives the rollback. Domain errors are not retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error("Giving up after %s conflicting attempts: %s", attempts, exc)
                raise
            current_app.logger.info("Write conflict on attempt %s, retrying: %s", attempt, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
