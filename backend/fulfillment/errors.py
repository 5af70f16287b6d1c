# Overview: Shared error taxonomy, persistence-error classification and the non-critical step runner.

"""
Fulfillment Error Model

Every failure that leaves the service layer is a FulfillmentError with a stable
`kind`. The HTTP layer maps each kind to exactly one status class; services never
return status codes themselves.

    VALIDATION_FAILED      400  bad or out-of-range input
    AUTH_REQUIRED          401  no acting user on the request
    AUTHORIZATION_FAILED   403  role or ownership check failed
    NOT_FOUND              404
    INVALID_OPERATION      409  illegal state transition
    INSUFFICIENT_STOCK     409  reservation / reduction shortfall
    SERVICE_UNAVAILABLE    503  no eligible payment account, optional lookup down
    DB_ERROR               500  classified persistence failure

Persistence errors are classified ONCE, at the service boundary
(see services/concurrency.run_with_retry), and re-raised as DbError carrying the
operation name and the identifiers involved.
"""

from __future__ import annotations

from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .extensions import db


class FulfillmentError(Exception):
    """Base class for all domain errors raised by the fulfillment services."""

    kind = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind} message={self.message!r}>"


class ValidationFailed(FulfillmentError):
    kind = "VALIDATION_FAILED"
    http_status = 400


class AuthenticationRequired(FulfillmentError):
    kind = "AUTH_REQUIRED"
    http_status = 401


class AuthorizationFailed(FulfillmentError):
    kind = "AUTHORIZATION_FAILED"
    http_status = 403


class NotFound(FulfillmentError):
    kind = "NOT_FOUND"
    http_status = 404


class InvalidOperation(FulfillmentError):
    kind = "INVALID_OPERATION"
    http_status = 409


class InsufficientStock(FulfillmentError):
    kind = "INSUFFICIENT_STOCK"
    http_status = 409


class ServiceUnavailable(FulfillmentError):
    kind = "SERVICE_UNAVAILABLE"
    http_status = 503


class DbError(FulfillmentError):
    kind = "DB_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        code: str = "DB_ERROR",
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        merged = dict(context or {})
        if operation:
            merged["operation"] = operation
        merged["code"] = code
        super().__init__(message, context=merged)
        self.code = code
        self.operation = operation
        if code in ("DB_UNIQUE_VIOLATION", "DB_CONFLICT"):
            self.http_status = 409


# PostgreSQL SQLSTATE codes surfaced through psycopg's `pgcode`
_PG_UNIQUE_VIOLATION = "23505"
_PG_FOREIGN_KEY_VIOLATION = "23503"


def _driver_code(exc: SQLAlchemyError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_unique_violation(exc: Exception, column: str) -> bool:
    """True when exc is a unique violation naming `column` (SQLite text or PostgreSQL detail)."""
    if not isinstance(exc, IntegrityError):
        return False
    text = str(getattr(exc, "orig", exc)).lower()
    unique = _driver_code(exc) == _PG_UNIQUE_VIOLATION or "unique" in text
    return unique and column.lower() in text


def classify_db_error(exc: Exception, operation: str, **identifiers: Any) -> DbError:
    """
    Map a SQLAlchemy failure to a DbError with a stable sub-code.

    - IntegrityError: unique vs. foreign-key violation (PG code or driver text)
    - StaleDataError: optimistic version conflict
    - OperationalError: lock timeout / deadlock / connection failure
    - anything else: generic DB_ERROR
    """
    if isinstance(exc, DbError):
        return exc

    if isinstance(exc, IntegrityError):
        pgcode = _driver_code(exc)
        text = str(getattr(exc, "orig", exc)).lower()
        if pgcode == _PG_UNIQUE_VIOLATION or "unique" in text:
            return DbError(
                "This value already exists",
                code="DB_UNIQUE_VIOLATION",
                operation=operation,
                context=identifiers,
            )
        if pgcode == _PG_FOREIGN_KEY_VIOLATION or "foreign key" in text:
            return DbError(
                "Cannot perform this operation due to data relationships",
                code="DB_FOREIGN_KEY_VIOLATION",
                operation=operation,
                context=identifiers,
            )
        return DbError(
            "Integrity constraint violated",
            code="DB_INTEGRITY_ERROR",
            operation=operation,
            context=identifiers,
        )

    if isinstance(exc, StaleDataError):
        return DbError(
            "Record was modified concurrently",
            code="DB_CONFLICT",
            operation=operation,
            context=identifiers,
        )

    if isinstance(exc, OperationalError):
        return DbError(
            "Database is busy or unreachable",
            code="DB_OPERATIONAL_ERROR",
            operation=operation,
            context=identifiers,
        )

    return DbError(
        str(exc) or "A database error occurred",
        code="DB_ERROR",
        operation=operation,
        context=identifiers,
    )


def run_non_critical(fn: Callable[[], Any], context: dict[str, Any] | str) -> Any:
    """
    Run a side effect whose failure must never abort the enclosing operation.

    Used for history logging, account counter updates, notifications and
    optional account assignment. The step runs inside a SAVEPOINT so a failed
    flush is rolled back on its own and the outer transaction stays usable.

    Returns fn()'s result, or None when it failed.
    """
    if isinstance(context, str):
        context = {"step": context}

    try:
        with db.session.begin_nested():
            return fn()
    except Exception as exc:  # graceful fallback: log and continue
        current_app.logger.warning(
            "Non-critical step failed: %s (%s: %s)",
            context,
            type(exc).__name__,
            exc,
        )
        return None
