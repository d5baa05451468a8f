from dataclasses import asdict
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date, datetime

from app.database import get_db
from app.models import User
from app.billing.schemas import (
    CaseFinancialsResponse, BillingHistoryResponse,
    RetainerUsageResponse, RetainerUsageHistoryResponse,
    InvoiceCreate, InvoiceAction, InvoiceResponse
)
from app.auth.dependencies import get_current_user
from app.billing.retry import retry_on_conflict
from app.config import RETAINER_HISTORY_LIMIT
from app.services.billing_service import BillingService
from app.services.invoice_service import InvoiceService

router = APIRouter(tags=["Billing"])

# =====================================================
# FINANCIAL READS (partners and business owners)
# =====================================================

@router.get("/cases/{case_id}/financials", response_model=CaseFinancialsResponse)
async def get_case_financials(
    case_id: str,
    as_of: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    financials = BillingService(db).get_case_financials(case_id, current_user, as_of=as_of)
    return CaseFinancialsResponse(case_id=case_id, **asdict(financials))

@router.get("/cases/{case_id}/billing-history", response_model=BillingHistoryResponse)
async def get_billing_history(
    case_id: str,
    since: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Ledger events newest first; unreadable rows are listed under anomalies."""
    history = BillingService(db).billing_history(case_id, current_user, since=since)
    return {"case_id": case_id, "events": history.events, "anomalies": history.anomalies}

@router.get("/cases/{case_id}/retainer-usage", response_model=RetainerUsageResponse)
async def get_retainer_usage(
    case_id: str,
    as_of: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return BillingService(db).retainer_usage(case_id, current_user, as_of=as_of)

@router.get("/cases/{case_id}/retainer-usage/history", response_model=RetainerUsageHistoryResponse)
async def get_retainer_usage_history(
    case_id: str,
    limit: int = Query(RETAINER_HISTORY_LIMIT, ge=1, le=120),
    as_of: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    periods = BillingService(db).retainer_usage_history(case_id, current_user, limit=limit, as_of=as_of)
    return {"case_id": case_id, "periods": periods}

# =====================================================
# INVOICES
# =====================================================

@router.post("/cases/{case_id}/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(
    case_id: str,
    invoice_data: InvoiceCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return retry_on_conflict(InvoiceService(db).create_invoice)(
        case_id, invoice_data.amount_eur, current_user, notes=invoice_data.notes
    )

@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: str,
    action: Optional[InvoiceAction] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notes = action.notes if action else None
    return retry_on_conflict(InvoiceService(db).cancel_invoice)(invoice_id, current_user, notes=notes)

@router.post("/invoices/{invoice_id}/pay", response_model=InvoiceResponse)
def mark_invoice_paid(
    invoice_id: str,
    action: Optional[InvoiceAction] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notes = action.notes if action else None
    return retry_on_conflict(InvoiceService(db).mark_invoice_paid)(invoice_id, current_user, notes=notes)
