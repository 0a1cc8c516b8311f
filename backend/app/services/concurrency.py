# Overview: Atomic read-modify-write helpers; every multi-row mutation runs through here.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class RetryExhaustedError(Exception):
    """Raised when an atomic operation keeps conflicting after the last attempt."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"Operation conflicted with concurrent writes after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error


def lock_for_update(query):
    """
    Mark the rows read by query as part of the operation's read set.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id stamp on
    the row is what detects the conflict at flush time. Other DBs also lock.
    """
    return query.with_for_update()


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    retry_on: tuple = (),
):
    """
    Execute func as one atomic operation, retrying the whole body on conflicts.

    func must do its own reads, its writes, and a single db.session.commit().
    Any exception rolls the session back, so a failed body never leaves a
    partial write pending. OperationalError (locks, deadlocks) and
    StaleDataError (version stamp mismatch) are retried with exponential
    backoff, as are any extra exception types passed in retry_on (e.g.
    IntegrityError for get-or-create races); everything else propagates
    immediately. After the last attempt a RetryExhaustedError is raised.
    """
    if attempts is None:
        attempts = current_app.config.get("ATOMIC_RETRY_ATTEMPTS", 5)
    if backoff_base is None:
        backoff_base = current_app.config.get("ATOMIC_RETRY_BACKOFF", 0.05)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, *retry_on) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Atomic operation conflicted (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            if attempt >= attempts - 1:
                raise RetryExhaustedError(attempts, exc) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise

