"""
Row locking and retry helpers for posting operations.

Every public operation that writes movements runs inside run_with_retry:
posting primitives lock the row they serialize on (entity, warehouse stock,
document sequence, document) and a lock conflict or a concurrent first-row
insert rolls the whole attempt back and starts over.
"""
import logging
import time

from sqlalchemy.exc import OperationalError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from backoffice.blueprints.metrics import concurrency_retries_total
from backoffice.utils.settings import get_setting

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, IntegrityError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; file databases take the
    database write lock at BEGIN instead (database.make_engine).
    """
    return query.with_for_update()


def run_with_retry(session, func, *, operation: str = 'operation', attempts: int = None,
                   backoff_base: float = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    func must contain the whole unit of work including the commit, so a
    conflict raised at commit time is retried as well. Retries on
    OperationalError (deadlocks, lock timeouts), IntegrityError (two writers
    creating the same stock or sequence row) and StaleDataError.
    """
    if attempts is None:
        attempts = get_setting('CONCURRENCY_RETRY_ATTEMPTS', 3)
    if backoff_base is None:
        backoff_base = get_setting('CONCURRENCY_RETRY_BACKOFF', 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            if attempt >= attempts - 1:
                logger.error(f"[CONCURRENCY] {operation} failed after {attempts} attempts: {exc}")
                raise
            concurrency_retries_total.labels(operation=operation).inc()
            logger.warning(
                f"[CONCURRENCY] {operation} conflict on attempt {attempt + 1}/{attempts}, retrying: {exc}"
            )
            time.sleep(backoff_base * (2 ** attempt))
