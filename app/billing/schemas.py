from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
from app.models import BillingEventType, BillingType, InvoiceStatus

class CaseFinancialsResponse(BaseModel):
    case_id: str
    billing_type: BillingType
    billed_value: Decimal
    projected_value: Decimal
    profitability: Optional[Decimal] = None
    profitability_status: Optional[str] = None
    billable_entries: int
    billable_hours: Decimal

    # Retainer only
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    rollover_value: Optional[Decimal] = None
    available_value: Optional[Decimal] = None
    remaining_value: Optional[Decimal] = None
    utilization_percent: Optional[Decimal] = None
    retainer_state: Optional[str] = None

class LedgerEventResponse(BaseModel):
    id: int
    event_type: BillingEventType
    billing_type: BillingType
    amount: Decimal
    previous_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    invoice_id: Optional[str] = None
    created_by: str
    created_at: datetime

    class Config:
        from_attributes = True

class LedgerAnomalyResponse(BaseModel):
    entry_id: int
    reason: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class BillingHistoryResponse(BaseModel):
    case_id: str
    events: List[LedgerEventResponse]
    anomalies: List[LedgerAnomalyResponse]

class RetainerUsageResponse(BaseModel):
    period_start: date
    period_end: date
    retainer_state: str
    available_value: Decimal
    partner_rate: Decimal
    hours_used: Decimal
    hours_included: Decimal
    remaining_hours: Decimal
    utilization_percent: Optional[Decimal] = None

    class Config:
        from_attributes = True

class RetainerUsageHistoryResponse(BaseModel):
    case_id: str
    periods: List[RetainerUsageResponse]

class InvoiceCreate(BaseModel):
    amount_eur: Decimal
    notes: Optional[str] = Field(None, max_length=2000)

class InvoiceAction(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)

class InvoiceResponse(BaseModel):
    id: str
    invoice_number: str
    case_id: str
    amount_eur: Decimal
    status: InvoiceStatus
    issued_by: str
    issued_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
