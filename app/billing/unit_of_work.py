import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.billing.exceptions import ConcurrencyError, NotFoundError
from app.billing.ledger import BillingLedger
from app.models import Case

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}
RETRYABLE_MESSAGES = ("database is locked", "could not serialize", "deadlock detected")


def is_concurrency_failure(error: DBAPIError) -> bool:
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(orig or error).lower()
    return any(text in message for text in RETRYABLE_MESSAGES)


class BillingUnitOfWork:
    """
    One database transaction around a multi-step billing write.

    Usage:
        with BillingUnitOfWork(db) as uow:
            case = uow.lock_case(case_id)
            uow.ledger.record(case, ...)
            case.fixed_amount = ...

    Leaving the block normally commits; any exception rolls back everything
    written inside it, ledger rows included. Lock and serialization failures
    are re-raised as ConcurrencyError so the caller can retry.
    """

    def __init__(self, db: Session):
        self.db = db
        self.ledger = BillingLedger(db)

    def __enter__(self) -> "BillingUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.db.rollback()
            if isinstance(exc, DBAPIError) and is_concurrency_failure(exc):
                logger.warning(f"Billing transaction conflict, rolled back: {exc.orig}")
                raise ConcurrencyError("The case was modified concurrently; retry the request") from exc
            return False

        try:
            self.db.commit()
        except DBAPIError as error:
            self.db.rollback()
            if is_concurrency_failure(error):
                logger.warning(f"Billing commit conflict, rolled back: {error.orig}")
                raise ConcurrencyError("The case was modified concurrently; retry the request") from error
            raise
        return False

    def lock_case(self, case_id: str, read: bool = False) -> Case:
        """SELECT ... FOR UPDATE (or FOR SHARE with read=True) on the case row."""
        case: Optional[Case] = (
            self.db.query(Case)
            .filter(Case.id == case_id)
            .with_for_update(read=read)
            .first()
        )
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        return case
