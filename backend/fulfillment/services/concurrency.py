# Overview: Persistence boundary for service operations: row locks, retry and error classification.

from __future__ import annotations

import time
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..config import get_settings
from ..errors import FulfillmentError, classify_db_error
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The optimistic version_id columns still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(
    func: Callable[[], Any],
    *,
    operation: str | None = None,
    context: dict[str, Any] | None = None,
    attempts: int | None = None,
    backoff_base: float | None = None,
    retry_on: Callable[[Exception], bool] | None = None,
):
    """
    Execute one service operation (one DB transaction) with retry.

    - FulfillmentError: rolled back and re-raised untouched, never retried
    - OperationalError / StaleDataError: rolled back, retried with exponential
      backoff; func() re-reads state, so the status guards see the winner's write
    - any other SQLAlchemyError: rolled back and retried when retry_on(exc) is
      true (e.g. a generated number lost an insert race), otherwise classified
      once into DbError

    When the retries are exhausted the last failure is classified as well.
    """
    settings = get_settings()
    if attempts is None:
        attempts = settings.db_retry_attempts
    if backoff_base is None:
        backoff_base = settings.db_retry_backoff
    attempts = max(1, attempts)
    operation = operation or getattr(func, "__name__", "operation")
    context = context or {}

    for attempt in range(attempts):
        try:
            return func()
        except FulfillmentError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up on %s after %d attempts %s: %s", operation, attempts, context, exc
                )
                raise classify_db_error(exc, operation, **context) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            if retry_on is not None and retry_on(exc) and attempt < attempts - 1:
                current_app.logger.warning("Retrying %s %s after %s", operation, context, type(exc).__name__)
                continue
            raise classify_db_error(exc, operation, **context) from exc

