# storage.py - Typed classification of storage failures
"""
Driver errors are classified once, here, so routers branch on an
``ErrorKind`` instead of on driver-specific messages.
"""
from enum import Enum
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError


# PostgreSQL SQLSTATE codes
_UNDEFINED_TABLE = "42P01"
_UNDEFINED_COLUMN = "42703"
_UNIQUE_VIOLATION = "23505"

SCHEMA_HINT = (
    "Database schema missing. Apply the migrations in alembic/versions "
    "or start the API once so init_db() can create the tables."
)


class ErrorKind(str, Enum):
    SCHEMA_MISSING = "schema_missing"
    CONFLICT = "conflict"
    OTHER = "other"


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    cause = getattr(orig, "__cause__", None)
    return getattr(cause, "sqlstate", None)


def _is_sqlite_missing_table(exc: DBAPIError) -> bool:
    # sqlite3 reports every schema problem as a generic OperationalError
    name = type(exc.orig).__module__
    return "sqlite" in name and str(exc.orig).startswith("no such table")


def classify(exc: Exception) -> ErrorKind:
    """Map a SQLAlchemy/driver exception to an ErrorKind."""
    if isinstance(exc, IntegrityError):
        return ErrorKind.CONFLICT
    if isinstance(exc, DBAPIError):
        code = _sqlstate(exc)
        if code in (_UNDEFINED_TABLE, _UNDEFINED_COLUMN):
            return ErrorKind.SCHEMA_MISSING
        if code == _UNIQUE_VIOLATION:
            return ErrorKind.CONFLICT
        if code is None and _is_sqlite_missing_table(exc):
            return ErrorKind.SCHEMA_MISSING
    return ErrorKind.OTHER
