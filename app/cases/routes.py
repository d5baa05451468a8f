from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from app.database import get_db
from app.models import User
from app.cases.schemas import (
    CaseCreate, BillingConfigUpdate, CaseResponse,
    TimeEntryCreate, TimeEntryResponse, RateHistoryResponse
)
from app.auth.dependencies import get_current_user
from app.billing.retry import retry_on_conflict
from app.services.case_service import CaseService
from app.services.billing_service import BillingService

router = APIRouter(prefix="/cases", tags=["Cases"])

# =====================================================
# CASE OPERATIONS
# =====================================================

@router.post("/", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
def create_case(
    case_data: CaseCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a case. Associates and paralegals create it pending partner approval."""
    return retry_on_conflict(CaseService(db).create_case)(case_data, current_user)

@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return CaseService(db).get_case(case_id, current_user)

@router.post("/{case_id}/archive", response_model=CaseResponse)
def archive_case(
    case_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Archive a case; its billing configuration is frozen from then on."""
    return retry_on_conflict(CaseService(db).archive_case)(case_id, current_user)

# =====================================================
# BILLING CONFIGURATION
# =====================================================

@router.patch("/{case_id}/billing", response_model=CaseResponse)
def update_billing_config(
    case_id: str,
    patch: BillingConfigUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change billing type, amounts, retainer settings or custom rates."""
    return retry_on_conflict(BillingService(db).update_billing_config)(case_id, patch, current_user)

@router.get("/{case_id}/rate-history", response_model=List[RateHistoryResponse])
async def get_rate_history(
    case_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return CaseService(db).list_rate_history(case_id, current_user)

# =====================================================
# TIME ENTRIES
# =====================================================

@router.post("/{case_id}/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def log_time_entry(
    case_id: str,
    entry_data: TimeEntryCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Log time as the current user; the hourly rate is resolved and fixed now."""
    return retry_on_conflict(BillingService(db).log_time_entry)(case_id, entry_data, current_user)

@router.get("/{case_id}/time-entries", response_model=List[TimeEntryResponse])
async def list_time_entries(
    case_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return CaseService(db).list_time_entries(case_id, current_user)
