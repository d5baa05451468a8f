from pydantic import BaseModel
from typing import Dict, Any, List, Optional
from datetime import date, datetime
from decimal import Decimal
from app.models import BillingType, UserRole

class DefaultRatesUpdate(BaseModel):
    default_rates: Dict[str, Any]  # {"partner": "450.00", "associate": "300.00", "paralegal": "150.00"}

class FirmResponse(BaseModel):
    id: str
    name: str
    default_rates: Dict[str, str]
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# =====================================================
# FINANCIAL KPIS
# =====================================================

class RevenueByBillingTypeResponse(BaseModel):
    hourly: Decimal
    fixed: Decimal
    retainer: Decimal

class RoleUtilizationResponse(BaseModel):
    role: UserRole
    billable_hours: Decimal
    total_hours: Decimal
    utilization_percent: Optional[Decimal] = None

class CaseProfitabilityResponse(BaseModel):
    case_id: str
    case_number: str
    title: str
    billing_type: BillingType
    billed_value: Decimal
    projected_value: Decimal
    profitability: Optional[Decimal] = None
    profitability_status: Optional[str] = None

class FirmKpisResponse(BaseModel):
    firm_id: str
    date_from: date
    date_to: date
    case_count: int
    total_revenue: Decimal
    revenue_by_billing_type: RevenueByBillingTypeResponse
    billable_hours: Decimal
    non_billable_hours: Decimal
    utilization_percent: Optional[Decimal] = None
    utilization_by_role: List[RoleUtilizationResponse]
    worked_value: Decimal
    invoiced_value: Decimal
    realization_percent: Optional[Decimal] = None
    effective_hourly_rate: Optional[Decimal] = None
    retainer_cases: int
    retainer_utilization_average: Optional[Decimal] = None
    case_profitability: List[CaseProfitabilityResponse]
