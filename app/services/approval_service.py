import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.billing.exceptions import CaseArchivedError, NotFoundError, PermissionDeniedError, ValidationError
from app.billing.unit_of_work import BillingUnitOfWork
from app.config import REJECTION_REASON_MAX_LENGTH, REJECTION_REASON_MIN_LENGTH
from app.models import ApprovalStatus, Case, CaseApproval, CaseStatus, User
from app.services.audit import CASE_APPROVED, CASE_REJECTED, CASE_RESUBMITTED, CASE_SUBMITTED, record_audit
from app.services.permissions import ensure_firm_member, is_financial_role

logger = logging.getLogger(__name__)


def clean_rejection_reason(reason: str) -> str:
    reason = (reason or "").strip()
    if len(reason) < REJECTION_REASON_MIN_LENGTH:
        raise ValidationError(
            f"Rejection reason must be at least {REJECTION_REASON_MIN_LENGTH} characters"
        )
    return reason[:REJECTION_REASON_MAX_LENGTH]


class ApprovalService:
    """
    Approval workflow for cases opened by associates and paralegals.

    Pending -> Approved is terminal. Pending -> Rejected can go back to
    Pending through resubmission, which bumps revision_count.
    """

    def __init__(self, db: Session):
        self.db = db

    def _ensure_reviewer(self, reviewer: User) -> None:
        if not is_financial_role(reviewer):
            raise PermissionDeniedError("Only partners and business owners can review cases")

    def _lock_approval(self, **criteria) -> Optional[CaseApproval]:
        return self.db.query(CaseApproval).filter_by(**criteria).with_for_update().first()

    def _lock_for_review(self, uow: BillingUnitOfWork, approval_id: str, reviewer: User) -> Tuple[Case, CaseApproval]:
        """Lock the case row, then the approval row; submit_for_approval locks in the same order."""
        found = (
            self.db.query(CaseApproval.case_id, CaseApproval.firm_id)
            .filter(CaseApproval.id == approval_id)
            .first()
        )
        if found is None:
            raise NotFoundError(f"No pending approval {approval_id}")
        ensure_firm_member(reviewer, found.firm_id)

        case = uow.lock_case(found.case_id)
        approval = self._lock_approval(id=approval_id)
        if approval is None or approval.status != ApprovalStatus.PENDING:
            raise NotFoundError(f"No pending approval {approval_id}")
        return case, approval

    def submit_for_approval(self, case_id: str, submitted_by: User) -> CaseApproval:
        with BillingUnitOfWork(self.db) as uow:
            case = uow.lock_case(case_id)
            ensure_firm_member(submitted_by, case.firm_id)
            if case.status == CaseStatus.ARCHIVED:
                raise CaseArchivedError(f"Case {case.case_number} is archived")

            approval = self._lock_approval(case_id=case.id)

            if approval is None:
                if case.created_by != submitted_by.id and not is_financial_role(submitted_by):
                    raise PermissionDeniedError("Only the case creator or a reviewer can submit this case")
                approval = CaseApproval(
                    case_id=case.id,
                    firm_id=case.firm_id,
                    submitted_by=submitted_by.id,
                    status=ApprovalStatus.PENDING,
                    revision_count=0,
                )
                self.db.add(approval)
                action = CASE_SUBMITTED
                old_status = None
            elif approval.status == ApprovalStatus.PENDING:
                raise ValidationError("Case is already pending approval")
            elif approval.status == ApprovalStatus.APPROVED:
                raise ValidationError("Case is already approved")
            else:
                if approval.submitted_by != submitted_by.id:
                    raise PermissionDeniedError("Only the original submitter can resubmit this case")
                approval.status = ApprovalStatus.PENDING
                approval.revision_count = (approval.revision_count or 0) + 1
                approval.submitted_at = datetime.now(timezone.utc)
                approval.reviewed_by = None
                approval.reviewed_at = None
                approval.rejection_reason = None
                action = CASE_RESUBMITTED
                old_status = ApprovalStatus.REJECTED.value

            case.status = CaseStatus.PENDING_APPROVAL
            record_audit(self.db, case.id, submitted_by.id, action, field_name="status",
                         old_value=old_status, new_value=ApprovalStatus.PENDING.value)

        self.db.refresh(approval)
        logger.info(
            f"Case {case_id} {action.lower()} by {submitted_by.id} (revision {approval.revision_count})"
        )
        return approval

    def approve(self, approval_id: str, reviewer: User) -> CaseApproval:
        self._ensure_reviewer(reviewer)
        with BillingUnitOfWork(self.db) as uow:
            case, approval = self._lock_for_review(uow, approval_id, reviewer)

            approval.status = ApprovalStatus.APPROVED
            approval.reviewed_by = reviewer.id
            approval.reviewed_at = datetime.now(timezone.utc)
            case.status = CaseStatus.ACTIVE
            record_audit(self.db, case.id, reviewer.id, CASE_APPROVED, field_name="status",
                         old_value=ApprovalStatus.PENDING.value, new_value=ApprovalStatus.APPROVED.value)

        self.db.refresh(approval)
        logger.info(f"Case {approval.case_id} approved by {reviewer.id}")
        return approval

    def reject(self, approval_id: str, reviewer: User, reason: str) -> CaseApproval:
        self._ensure_reviewer(reviewer)
        reason = clean_rejection_reason(reason)
        with BillingUnitOfWork(self.db) as uow:
            case, approval = self._lock_for_review(uow, approval_id, reviewer)

            approval.status = ApprovalStatus.REJECTED
            approval.reviewed_by = reviewer.id
            approval.reviewed_at = datetime.now(timezone.utc)
            approval.rejection_reason = reason
            case.status = CaseStatus.PENDING_APPROVAL
            record_audit(self.db, case.id, reviewer.id, CASE_REJECTED, field_name="status",
                         old_value=ApprovalStatus.PENDING.value, new_value=ApprovalStatus.REJECTED.value)

        self.db.refresh(approval)
        logger.info(f"Case {approval.case_id} rejected by {reviewer.id}")
        return approval

    def pending_queue(self, reviewer: User) -> List[CaseApproval]:
        """Pending approvals of the reviewer's firm, oldest submission first."""
        self._ensure_reviewer(reviewer)
        return (
            self.db.query(CaseApproval)
            .filter(
                CaseApproval.firm_id == reviewer.firm_id,
                CaseApproval.status == ApprovalStatus.PENDING,
            )
            .order_by(CaseApproval.submitted_at.asc(), CaseApproval.id.asc())
            .all()
        )
