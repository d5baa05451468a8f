from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.models import User
from app.approvals.schemas import ApprovalResponse, RejectRequest
from app.auth.dependencies import get_current_user
from app.billing.retry import retry_on_conflict
from app.services.approval_service import ApprovalService

router = APIRouter(prefix="/approvals", tags=["Approvals"])

@router.get("/pending", response_model=List[ApprovalResponse])
async def list_pending_approvals(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pending approvals of the current user's firm, oldest first."""
    return ApprovalService(db).pending_queue(current_user)

@router.post("/cases/{case_id}/submit", response_model=ApprovalResponse)
def submit_case(
    case_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Submit a case for approval, or resubmit it after a rejection."""
    return retry_on_conflict(ApprovalService(db).submit_for_approval)(case_id, current_user)

@router.post("/{approval_id}/approve", response_model=ApprovalResponse)
def approve_case(
    approval_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retry_on_conflict(ApprovalService(db).approve)(approval_id, current_user)

@router.post("/{approval_id}/reject", response_model=ApprovalResponse)
def reject_case(
    approval_id: str,
    rejection: RejectRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retry_on_conflict(ApprovalService(db).reject)(approval_id, current_user, rejection.reason)
