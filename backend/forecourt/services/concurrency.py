# Overview: Row locking, unit-of-work and bounded retry helpers shared by the shift services.

from __future__ import annotations

import time
from functools import wraps
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    on_exhausted: Callable[[Exception], Exception] | None = None,
) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). When attempts run out, on_exhausted maps
    the last failure to the error surfaced to the caller.

    Only use for operations with no external side effects.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if on_exhausted is not None:
                    raise on_exhausted(exc) from exc
                raise
            current_app.logger.warning(
                "Store contention (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise RuntimeError("unreachable")


def transactional(func):
    """
    Roll the session back if the wrapped unit of work raises.

    Unique-index violations and optimistic version mismatches raised by any
    flush inside the unit of work surface as ConflictError.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (IntegrityError, StaleDataError) as exc:
            db.session.rollback()
            raise ConflictError("Concurrent update conflict; reload and retry") from exc
        except Exception:
            db.session.rollback()
            raise
    return wrapper


def flush_or_conflict(message: str, *, entity_id: int | None = None, field: str | None = None) -> None:
    """Flush pending changes, surfacing store conflicts as ConflictError."""
    try:
        db.session.flush()
    except (IntegrityError, StaleDataError) as exc:
        db.session.rollback()
        raise ConflictError(message, entity_id=entity_id, field=field) from exc


def commit_or_conflict(message: str, *, entity_id: int | None = None, field: str | None = None) -> None:
    """
    Commit the unit of work.

    Unique-index violations and optimistic version mismatches both mean a
    concurrent writer got there first; they surface as ConflictError.
    """
    try:
        db.session.commit()
    except (IntegrityError, StaleDataError) as exc:
        db.session.rollback()
        raise ConflictError(message, entity_id=entity_id, field=field) from exc
