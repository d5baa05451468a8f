from typing import Optional

from sqlalchemy.orm import Session

from app.models import CaseAuditLog

CASE_SUBMITTED = "CASE_SUBMITTED"
CASE_APPROVED = "CASE_APPROVED"
CASE_REJECTED = "CASE_REJECTED"
CASE_RESUBMITTED = "CASE_RESUBMITTED"
CASE_ARCHIVED = "CASE_ARCHIVED"


def record_audit(
    db: Session,
    case_id: str,
    user_id: str,
    action: str,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
) -> CaseAuditLog:
    entry = CaseAuditLog(
        case_id=case_id,
        user_id=user_id,
        action=action,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
    )
    db.add(entry)
    return entry
