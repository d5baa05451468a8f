import pytest
from sqlalchemy.exc import DBAPIError

from app.billing.exceptions import ConcurrencyError, NotFoundError, ValidationError
from app.billing.retry import retry_on_conflict
from app.billing.unit_of_work import BillingUnitOfWork, is_concurrency_failure
from app.cases.schemas import CaseCreate
from app.models import Case
from app.services.case_service import CaseService


class FakeDriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def driver_failure(message, pgcode=None):
    return DBAPIError("UPDATE cases SET title = ?", {}, FakeDriverError(message, pgcode))


def test_serialization_and_lock_failures_are_recognised():
    assert is_concurrency_failure(driver_failure("could not serialize access", "40001"))
    assert is_concurrency_failure(driver_failure("deadlock", "40P01"))
    assert is_concurrency_failure(driver_failure("database is locked"))
    assert not is_concurrency_failure(driver_failure("syntax error at or near", "42601"))


def test_conflict_inside_block_rolls_back_and_becomes_concurrency_error(db, partner):
    with pytest.raises(ConcurrencyError) as info:
        with BillingUnitOfWork(db):
            db.add(Case(firm_id=partner.firm_id, created_by=partner.id, title="Rolled back", case_number="JW-TEST-1"))
            db.flush()
            raise driver_failure("could not serialize access", "40001")
    assert info.value.retryable is True
    assert db.query(Case).count() == 0


def test_domain_errors_pass_through_unchanged(db):
    with pytest.raises(ValidationError):
        with BillingUnitOfWork(db):
            raise ValidationError("bad amount")


def test_lock_case_reports_missing_case(db):
    with pytest.raises(NotFoundError):
        with BillingUnitOfWork(db) as uow:
            uow.lock_case("no-such-case")


def test_block_commits_on_success(db, partner):
    case = CaseService(db).create_case(CaseCreate(title="Committed matter"), partner)
    with BillingUnitOfWork(db) as uow:
        locked = uow.lock_case(case.id)
        locked.title = "Renamed matter"
    db.expire_all()
    assert db.query(Case).filter(Case.id == case.id).one().title == "Renamed matter"


def test_conflicts_are_retried_until_success():
    calls = []

    @retry_on_conflict
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrencyError("conflict")
        return "done"

    assert flaky() == "done"
    assert len(calls) == 3


def test_other_errors_are_not_retried():
    calls = []

    @retry_on_conflict
    def invalid():
        calls.append(1)
        raise ValidationError("final")

    with pytest.raises(ValidationError):
        invalid()
    assert len(calls) == 1


def test_retries_give_up_after_configured_attempts():
    calls = []

    @retry_on_conflict
    def always_conflicting():
        calls.append(1)
        raise ConcurrencyError("conflict")

    with pytest.raises(ConcurrencyError):
        always_conflicting()
    assert len(calls) == 3
