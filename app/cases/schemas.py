from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, date
from decimal import Decimal
from app.models import BillingType, CaseStatus, RateTier, RetainerPeriod
from app.approvals.schemas import ApprovalResponse

# Request schemas
class BillingFields(BaseModel):
    # Amounts are integer cents; consistency with billing_type is checked by the billing engine
    fixed_amount: Optional[int] = None
    retainer_amount: Optional[int] = None
    retainer_period: Optional[RetainerPeriod] = None
    retainer_auto_renew: Optional[bool] = None
    retainer_rollover: Optional[bool] = None
    custom_rates: Optional[Dict[str, Any]] = None  # partial {"partner": "500.00"}

class CaseCreate(BillingFields):
    title: str = Field(..., min_length=1, max_length=255)
    client_id: Optional[str] = None
    billing_type: BillingType = BillingType.HOURLY

class BillingConfigUpdate(BillingFields):
    billing_type: Optional[BillingType] = None
    notes: Optional[str] = Field(None, max_length=2000)

class TimeEntryCreate(BaseModel):
    hours: Decimal
    billable: bool = True
    work_date: Optional[date] = None
    description: Optional[str] = None

# Response schemas
class CaseResponse(BaseModel):
    id: str
    case_number: str
    title: str
    firm_id: str
    client_id: Optional[str] = None
    status: CaseStatus
    created_by: str
    billing_type: BillingType
    custom_rates: Optional[Dict[str, str]] = None
    fixed_amount: Optional[int] = None
    retainer_amount: Optional[int] = None
    retainer_period: Optional[RetainerPeriod] = None
    retainer_auto_renew: Optional[bool] = None
    retainer_rollover: Optional[bool] = None
    retainer_started_on: Optional[date] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    approval: Optional[ApprovalResponse] = None

    class Config:
        from_attributes = True

class TimeEntryResponse(BaseModel):
    id: str
    case_id: str
    user_id: str
    hours: Decimal
    hourly_rate: Decimal
    billable: bool
    work_date: date
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class RateHistoryResponse(BaseModel):
    id: int
    case_id: str
    rate_type: RateTier
    old_rate: Decimal
    new_rate: Decimal
    changed_by: str
    changed_at: datetime

    class Config:
        from_attributes = True
