"""Single-commit unit of work shared by the ledger services"""

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from facility_ledger.domain.exceptions import ConcurrentModificationError, DomainException
from facility_ledger.infrastructure.database.models import LEDGER_SEQUENCE_CONSTRAINT
from facility_ledger.infrastructure.observability.logging import log_rejection
from facility_ledger.infrastructure.observability.metrics import record_operation, record_rejection


def is_sequence_conflict(error: IntegrityError) -> bool:
    """True when two writers appended the same ledger sequence for one loan"""
    message = str(error.orig)
    # PostgreSQL names the constraint; SQLite names the columns
    return LEDGER_SEQUENCE_CONSTRAINT in message or "loan_transaction.sequence" in message


def _concurrent(db: Session, operation: str, loan_id: Optional[str]) -> ConcurrentModificationError:
    db.rollback()
    error = ConcurrentModificationError(f"Concurrent {operation} collided with another writer")
    record_rejection(operation, error)
    log_rejection(operation, error, loan_id)
    return error


@contextmanager
def unit_of_work(db: Session, operation: str, loan_id: Optional[str] = None) -> Iterator[None]:
    """
    Run the body as one database transaction.

    Commits once on success. On any error the session is rolled back, so ledger
    rows, status changes and audit events land together or not at all.
    Version conflicts and duplicate ledger sequences both mean another writer
    committed first; they surface as ConcurrentModificationError. Other
    integrity violations are re-raised unchanged.
    """
    start_time = time.time()
    try:
        yield
        db.commit()
    except StaleDataError as e:
        raise _concurrent(db, operation, loan_id) from e
    except IntegrityError as e:
        if is_sequence_conflict(e):
            raise _concurrent(db, operation, loan_id) from e
        db.rollback()
        raise
    except DomainException as e:
        db.rollback()
        record_rejection(operation, e)
        log_rejection(operation, e, loan_id)
        raise
    except Exception:
        db.rollback()
        raise

    record_operation(operation, time.time() - start_time)
