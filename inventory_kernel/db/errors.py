"""
Translation of driver-level contention errors into kernel exceptions.

PostgreSQL reports lock waits and deadlocks through SQLSTATE codes; SQLite
reports an exhausted busy timeout as "database is locked".  The ORM reports
a lost version race as StaleDataError.  Callers above the db layer only ever
see ConflictError / LockTimeoutError.
"""

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.exceptions import (
    ConcurrencyError,
    ConflictError,
    LockTimeoutError,
)

PG_LOCK_NOT_AVAILABLE = "55P03"
PG_DEADLOCK_DETECTED = "40P01"
PG_SERIALIZATION_FAILURE = "40001"

_SQLITE_LOCKED_MESSAGES = ("database is locked", "database table is locked")


def _pgcode(exc: DBAPIError) -> str | None:
    return getattr(exc.orig, "pgcode", None)


def translate_db_error(
    exc: BaseException,
    entity_type: str = "InventoryRecord",
    lock_timeout_ms: int = 0,
) -> ConcurrencyError | None:
    """
    Map a database exception to a retryable kernel error.

    Returns None when ``exc`` is not a contention error; the caller then
    re-raises the original exception unchanged.
    """
    if isinstance(exc, StaleDataError):
        return ConflictError(entity_type, None, "row version changed concurrently")

    if not isinstance(exc, DBAPIError):
        return None

    code = _pgcode(exc)
    if code == PG_LOCK_NOT_AVAILABLE:
        return LockTimeoutError(entity_type, lock_timeout_ms)
    if code == PG_DEADLOCK_DETECTED:
        return ConflictError(entity_type, None, "deadlock detected")
    if code == PG_SERIALIZATION_FAILURE:
        return ConflictError(entity_type, None, "serialization failure")

    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if any(fragment in message for fragment in _SQLITE_LOCKED_MESSAGES):
        return LockTimeoutError(entity_type, lock_timeout_ms)

    return None
