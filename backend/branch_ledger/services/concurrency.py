# Overview: Atomic-unit and locking helpers that wrap every ledger write.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB unit of work, rolling back on any failure.

    OperationalError (lock timeouts, deadlocks) and StaleDataError (optimistic
    version conflicts) are re-run up to RETRY_ATTEMPTS times in total; the
    default of 1 leaves retrying to the caller. When the last attempt still
    conflicts, the caller gets a ConflictError.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConflictError("Concurrent update conflict, retry the operation") from exc
            current_app.logger.warning(
                "Concurrent update conflict, retrying (%s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ConflictError("Concurrent update conflict, retry the operation")
