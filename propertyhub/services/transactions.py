import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ..config import settings
from ..core.errors import TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERIALIZABLE = "SERIALIZABLE"
READ_COMMITTED = "READ COMMITTED"

_SERIALIZATION_PGCODES = {"40001", "40P01"}
_SQLITE_ISOLATION_LEVELS = {"SERIALIZABLE", "READ UNCOMMITTED"}


def is_serialization_failure(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _SERIALIZATION_PGCODES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return "could not serialize" in message or "deadlock detected" in message or "database is locked" in message


def _execution_options(db: Session, isolation_level: Optional[str]) -> Dict[str, Any]:
    if not isolation_level:
        return {}
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite" and isolation_level not in _SQLITE_ISOLATION_LEVELS:
        return {}
    return {"isolation_level": isolation_level}


def _apply_timeouts(db: Session, max_wait_ms: int, timeout_ms: int) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL lock_timeout = '{int(max_wait_ms)}ms'"))
    db.execute(text(f"SET LOCAL statement_timeout = '{int(timeout_ms)}ms'"))


def run_in_transaction(
    db: Session,
    operation: Callable[[Session], T],
    isolation_level: Optional[str] = SERIALIZABLE,
    max_wait_ms: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    attempts: Optional[int] = None,
) -> T:
    """Run ``operation(db)`` in its own transaction and commit it.

    Serialization failures are retried up to ``attempts`` times and then
    surface as :class:`TransactionConflictError`. Any other error rolls the
    transaction back and propagates.
    """
    max_wait_ms = settings.transaction_max_wait_ms if max_wait_ms is None else max_wait_ms
    timeout_ms = settings.transaction_timeout_ms if timeout_ms is None else timeout_ms
    attempts = max(1, settings.transaction_retry_attempts if attempts is None else attempts)

    for attempt in range(1, attempts + 1):
        # The isolation level can only be chosen when the transaction begins.
        if db.in_transaction():
            db.commit()
        try:
            db.connection(execution_options=_execution_options(db, isolation_level))
            _apply_timeouts(db, max_wait_ms, timeout_ms)
            result = operation(db)
            db.commit()
            return result
        except DBAPIError as exc:
            db.rollback()
            if not is_serialization_failure(exc):
                raise
            logger.warning("Serialization failure (attempt %d/%d): %s", attempt, attempts, exc.orig)
            if attempt == attempts:
                raise TransactionConflictError(str(exc.orig)) from exc
        except Exception:
            db.rollback()
            raise
    raise TransactionConflictError("transaction retries exhausted")  # pragma: no cover
