import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from medledger.core.config import settings
from medledger.core.errors import ConcurrentUpdateError, LedgerError, TransientError
from medledger.core.observability import log_event

T = TypeVar("T")


def run_in_transaction(
    db: Session,
    work: Callable[[], T],
    *,
    target_id: str,
    max_attempts: int | None = None,
    backoff_ms: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``work`` and commit, all-or-nothing.

    ``work`` must re-read everything it mutates, because a retry starts from a
    rolled-back session. Version mismatches and unique-index races are retried
    as conflicts, driver-level ``OperationalError`` as transient failures; domain
    errors roll back and propagate on the first attempt.
    """
    attempts = max_attempts or settings.ledger_max_attempts
    backoff = settings.ledger_retry_backoff_ms if backoff_ms is None else backoff_ms

    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except LedgerError:
            db.rollback()
            raise
        except (StaleDataError, IntegrityError, OperationalError) as exc:
            db.rollback()
            last_exc = exc
        except Exception:
            db.rollback()
            raise

        log_event(
            "ledger_write_retry",
            level=logging.WARNING,
            target_id=target_id,
            attempt=attempt,
            max_attempts=attempts,
            error=type(last_exc).__name__,
        )
        if attempt < attempts and backoff:
            sleep(backoff * attempt / 1000)

    if isinstance(last_exc, OperationalError):
        raise TransientError("Storage temporarily unavailable, retry later") from last_exc
    raise ConcurrentUpdateError(target_id, attempts) from last_exc
