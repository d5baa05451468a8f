import logging
import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy.orm import Session

from app.billing.configuration import (
    amount_event_for, apply_billing_config, build_billing_config, cents_to_currency, current_amount_cents,
)
from app.billing.exceptions import CaseArchivedError, NotFoundError, PermissionDeniedError
from app.billing.periods import utc_today
from app.billing.rates import validate_rate_overrides
from app.billing.unit_of_work import BillingUnitOfWork
from app.cases.schemas import CaseCreate
from app.models import ApprovalStatus, Case, CaseApproval, CaseRateHistory, CaseStatus, TimeEntry, User
from app.services.audit import CASE_ARCHIVED, CASE_SUBMITTED, record_audit
from app.services.permissions import ensure_firm_member, is_financial_role

logger = logging.getLogger(__name__)


class CaseService:
    def __init__(self, db: Session):
        self.db = db

    def generate_case_number(self) -> str:
        """Generate a unique case number."""
        timestamp = datetime.now().strftime("%Y%m%d")
        unique_id = str(uuid.uuid4())[:8].upper()
        return f"CASE-{timestamp}-{unique_id}"

    def create_case(self, case_data: CaseCreate, current_user: User) -> Case:
        """
        Create a case with its billing configuration.

        Partners and business owners open cases directly as Active. Cases
        opened by associates or paralegals start in PendingApproval with a
        Pending approval record. Fixed and retainer cases get an opening
        ledger row with the initial amount.
        """
        config = build_billing_config(
            case_data.billing_type,
            fixed_amount=case_data.fixed_amount,
            retainer_amount=case_data.retainer_amount,
            retainer_period=case_data.retainer_period,
            retainer_auto_renew=case_data.retainer_auto_renew,
            retainer_rollover=case_data.retainer_rollover,
            started_on=utc_today(),
        )
        custom_rates = validate_rate_overrides(case_data.custom_rates)
        needs_approval = not is_financial_role(current_user)

        with BillingUnitOfWork(self.db) as uow:
            db_case = Case(
                case_number=self.generate_case_number(),
                title=case_data.title,
                firm_id=current_user.firm_id,
                client_id=case_data.client_id,
                status=CaseStatus.PENDING_APPROVAL if needs_approval else CaseStatus.ACTIVE,
                created_by=current_user.id,
                custom_rates=custom_rates or None,
            )
            apply_billing_config(db_case, config)
            self.db.add(db_case)
            self.db.flush()

            amount = current_amount_cents(config)
            if amount is not None:
                uow.ledger.record(
                    db_case,
                    amount_event_for(config.billing_type),
                    cents_to_currency(amount),
                    current_user.id,
                    previous_amount=None,
                    notes="Initial billing amount",
                )

            if needs_approval:
                self.db.add(CaseApproval(
                    case_id=db_case.id,
                    firm_id=db_case.firm_id,
                    submitted_by=current_user.id,
                    status=ApprovalStatus.PENDING,
                    revision_count=0,
                ))
                record_audit(self.db, db_case.id, current_user.id, CASE_SUBMITTED,
                             field_name="status", new_value=ApprovalStatus.PENDING.value)

        self.db.refresh(db_case)
        logger.info(
            f"Case {db_case.case_number} created by {current_user.id} "
            f"({db_case.billing_type.value}, {db_case.status.value})"
        )
        return db_case

    def get_case(self, case_id: str, user: User) -> Case:
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        ensure_firm_member(user, case.firm_id)
        return case

    def list_time_entries(self, case_id: str, user: User) -> List[TimeEntry]:
        case = self.get_case(case_id, user)
        return (
            self.db.query(TimeEntry)
            .filter(TimeEntry.case_id == case.id)
            .order_by(TimeEntry.work_date.desc(), TimeEntry.created_at.desc())
            .all()
        )

    def list_rate_history(self, case_id: str, user: User) -> List[CaseRateHistory]:
        case = self.get_case(case_id, user)
        return (
            self.db.query(CaseRateHistory)
            .filter(CaseRateHistory.case_id == case.id)
            .order_by(CaseRateHistory.changed_at.desc(), CaseRateHistory.id.desc())
            .all()
        )

    def archive_case(self, case_id: str, user: User) -> Case:
        """Archiving freezes the billing configuration and stops time logging."""
        with BillingUnitOfWork(self.db) as uow:
            case = uow.lock_case(case_id)
            ensure_firm_member(user, case.firm_id)
            if not is_financial_role(user):
                raise PermissionDeniedError("Only partners and business owners can archive cases")
            if case.status == CaseStatus.ARCHIVED:
                raise CaseArchivedError(f"Case {case.case_number} is already archived")

            previous_status = case.status
            case.status = CaseStatus.ARCHIVED
            case.archived_at = datetime.now(timezone.utc)
            record_audit(self.db, case.id, user.id, CASE_ARCHIVED, field_name="status",
                         old_value=previous_status.value, new_value=CaseStatus.ARCHIVED.value)

        self.db.refresh(case)
        logger.info(f"Case {case.case_number} archived by {user.id}")
        return case
