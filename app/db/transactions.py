# app/db/transactions.py
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.core import config
from app.core.exceptions import ConflictError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
TRANSIENT_PGCODES = {"40001", "40P01"}
TRANSIENT_MARKERS = ("could not serialize", "deadlock detected", "database is locked")


def is_transient(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in TRANSIENT_PGCODES:
        return True
    text = str(exc.orig).lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


def run_in_transaction(db: Session, work: Callable[[], T]) -> T:
    """
    Run `work` and commit, retrying on serialization failures and deadlocks.

    `work` must only touch `db` and be safe to re-run from scratch. Domain
    errors and non-transient database errors roll back and propagate.
    """
    attempts = max(1, config.TRANSACTION_RETRY_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            try:
                result = work()
                db.commit()
                return result
            except DBAPIError as exc:
                if is_transient(exc):
                    raise TransientStoreError(str(exc.orig)) from exc
                raise
        except TransientStoreError as exc:
            db.rollback()
            logger.warning(f"Transient store error (attempt {attempt}/{attempts}): {exc}")
        except Exception:
            db.rollback()
            raise

    raise ConflictError(
        "transaction_conflict",
        "The booking could not be completed because of concurrent activity. Please try again.",
    )
