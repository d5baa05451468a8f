from dataclasses import asdict
from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.models import User
from app.firms.schemas import DefaultRatesUpdate, FirmResponse, FirmKpisResponse
from app.auth.dependencies import require_partner_or_owner
from app.billing.retry import retry_on_conflict
from app.services.firm_service import FirmService

router = APIRouter(prefix="/firms", tags=["Firms"])

@router.put("/{firm_id}/default-rates", response_model=FirmResponse)
def update_default_rates(
    firm_id: str,
    rates_update: DefaultRatesUpdate,
    current_user: User = Depends(require_partner_or_owner()),
    db: Session = Depends(get_db)
):
    """Replace the firm's default hourly rates; logged time keeps its original rate."""
    return retry_on_conflict(FirmService(db).update_default_rates)(firm_id, rates_update.default_rates, current_user)

@router.get("/{firm_id}/financial-kpis", response_model=FirmKpisResponse)
async def get_financial_kpis(
    firm_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    current_user: User = Depends(require_partner_or_owner()),
    db: Session = Depends(get_db)
):
    """Revenue, utilisation, realisation and per-case profitability over a date range (default: last 30 days)."""
    kpis = FirmService(db).financial_kpis(firm_id, current_user, date_from=date_from, date_to=date_to)
    return FirmKpisResponse(firm_id=firm_id, **asdict(kpis))
