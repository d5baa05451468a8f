"""
Firm-level financial KPIs.

A roll-up of the per-case calculator over a date range: revenue split by
billing model, billable utilisation overall and by role, realisation of
worked value into invoices, and a per-case profitability list. Like the
calculator, everything here is a pure function of its inputs.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from app.billing.calculator import (
    ZERO, compute_case_financials, entry_value, percent, quantize_money, retainer_periods,
)
from app.billing.configuration import BillingConfig, FixedBilling, HourlyBilling, RetainerBilling
from app.billing.exceptions import ValidationError
from app.billing.ledger import LedgerEvent
from app.billing.periods import as_date
from app.config import MIN_PROFITABILITY_ENTRIES
from app.models import BillingEventType, BillingType, UserRole

DEFAULT_RANGE_DAYS = 30


@dataclass(frozen=True)
class CaseSnapshot:
    case_id: str
    case_number: str
    title: str
    config: BillingConfig
    time_entries: Sequence
    ledger_events: Sequence[LedgerEvent] = ()


@dataclass(frozen=True)
class RevenueByBillingType:
    hourly: Decimal
    fixed: Decimal
    retainer: Decimal


@dataclass(frozen=True)
class RoleUtilization:
    role: UserRole
    billable_hours: Decimal
    total_hours: Decimal
    utilization_percent: Optional[Decimal]


@dataclass(frozen=True)
class CaseProfitability:
    case_id: str
    case_number: str
    title: str
    billing_type: BillingType
    billed_value: Decimal
    projected_value: Decimal
    profitability: Optional[Decimal]
    profitability_status: Optional[str]


@dataclass(frozen=True)
class FirmKpis:
    date_from: date
    date_to: date
    case_count: int
    total_revenue: Decimal
    revenue_by_billing_type: RevenueByBillingType
    billable_hours: Decimal
    non_billable_hours: Decimal
    utilization_percent: Optional[Decimal]
    utilization_by_role: List[RoleUtilization] = field(default_factory=list)
    worked_value: Decimal = ZERO
    invoiced_value: Decimal = ZERO
    realization_percent: Optional[Decimal] = None
    effective_hourly_rate: Optional[Decimal] = None
    retainer_cases: int = 0
    retainer_utilization_average: Optional[Decimal] = None
    case_profitability: List[CaseProfitability] = field(default_factory=list)


def _hours(entry) -> Decimal:
    return Decimal(str(entry.hours))


def _in_range(entries: Sequence, date_from: date, date_to: date) -> List:
    return [entry for entry in entries if date_from <= entry.work_date <= date_to]


def _invoiced(events: Sequence[LedgerEvent], date_from: date, date_to: date) -> Decimal:
    """Invoices raised in the range, less invoices cancelled in the range."""
    total = Decimal("0")
    for event in events:
        if not date_from <= as_date(event.created_at) <= date_to:
            continue
        if event.event_type == BillingEventType.INVOICE_CREATED:
            total += event.amount
        elif event.event_type == BillingEventType.INVOICE_CANCELLED:
            total -= event.amount
    return total


def _retainer_revenue(snapshot: CaseSnapshot, date_from: date, date_to: date) -> Decimal:
    total = Decimal("0")
    for period in retainer_periods(snapshot.config, snapshot.time_entries, snapshot.ledger_events, as_of=date_to):
        if period.period_end < date_from:
            break
        total += period.allowance
    return total


def _profitability_order(row: CaseProfitability):
    # most profitable first; hourly cases have no profitability and go last
    if row.profitability is None:
        return (1, -row.billed_value)
    return (0, -row.profitability)


def compute_firm_kpis(
    cases: Sequence[CaseSnapshot],
    user_roles: Mapping[str, UserRole],
    date_from: date,
    date_to: date,
    min_entries: int = MIN_PROFITABILITY_ENTRIES,
) -> FirmKpis:
    """
    Roll the firm's cases up over [date_from, date_to].

    Hourly revenue is the value of billable time in the range. Fixed fees
    count in full for every Fixed case in scope. Retainer revenue is the
    allowance of every retainer period overlapping the range. Per-case
    profitability uses each case's whole history as of `date_to`.
    """
    if date_from > date_to:
        raise ValidationError("date_from must not be after date_to")

    revenue = {BillingType.HOURLY: Decimal("0"), BillingType.FIXED: Decimal("0"), BillingType.RETAINER: Decimal("0")}
    billable = Decimal("0")
    non_billable = Decimal("0")
    worked = Decimal("0")
    invoiced = Decimal("0")
    by_role: Dict[UserRole, List[Decimal]] = {}
    retainer_utilization = []
    rows = []

    for snapshot in cases:
        entries = _in_range(snapshot.time_entries, date_from, date_to)
        for entry in entries:
            hours = _hours(entry)
            role_totals = by_role.setdefault(user_roles[entry.user_id], [Decimal("0"), Decimal("0")])
            role_totals[1] += hours
            if entry.billable:
                billable += hours
                worked += entry_value(entry)
                role_totals[0] += hours
            else:
                non_billable += hours

        config = snapshot.config
        if isinstance(config, HourlyBilling):
            revenue[BillingType.HOURLY] += sum((entry_value(e) for e in entries if e.billable), Decimal("0"))
        elif isinstance(config, FixedBilling):
            revenue[BillingType.FIXED] += config.amount
        elif isinstance(config, RetainerBilling):
            revenue[BillingType.RETAINER] += _retainer_revenue(snapshot, date_from, date_to)

        invoiced += _invoiced(snapshot.ledger_events, date_from, date_to)

        financials = compute_case_financials(
            config, snapshot.time_entries, snapshot.ledger_events, as_of=date_to, min_entries=min_entries
        )
        if isinstance(config, RetainerBilling) and financials.utilization_percent is not None:
            retainer_utilization.append(financials.utilization_percent)
        rows.append(CaseProfitability(
            case_id=snapshot.case_id,
            case_number=snapshot.case_number,
            title=snapshot.title,
            billing_type=financials.billing_type,
            billed_value=financials.billed_value,
            projected_value=financials.projected_value,
            profitability=financials.profitability,
            profitability_status=financials.profitability_status,
        ))

    total_revenue = quantize_money(sum(revenue.values(), Decimal("0")))
    utilization_by_role = [
        RoleUtilization(
            role=role,
            billable_hours=quantize_money(totals[0]),
            total_hours=quantize_money(totals[1]),
            utilization_percent=percent(totals[0], totals[1]),
        )
        for role, totals in sorted(by_role.items(), key=lambda item: item[0].value)
    ]

    return FirmKpis(
        date_from=date_from,
        date_to=date_to,
        case_count=len(cases),
        total_revenue=total_revenue,
        revenue_by_billing_type=RevenueByBillingType(
            hourly=quantize_money(revenue[BillingType.HOURLY]),
            fixed=quantize_money(revenue[BillingType.FIXED]),
            retainer=quantize_money(revenue[BillingType.RETAINER]),
        ),
        billable_hours=quantize_money(billable),
        non_billable_hours=quantize_money(non_billable),
        utilization_percent=percent(billable, billable + non_billable),
        utilization_by_role=utilization_by_role,
        worked_value=quantize_money(worked),
        invoiced_value=quantize_money(invoiced),
        realization_percent=percent(invoiced, worked),
        effective_hourly_rate=quantize_money(total_revenue / billable) if billable > 0 else None,
        retainer_cases=sum(1 for snapshot in cases if isinstance(snapshot.config, RetainerBilling)),
        retainer_utilization_average=(
            quantize_money(sum(retainer_utilization) / len(retainer_utilization)) if retainer_utilization else None
        ),
        case_profitability=sorted(rows, key=_profitability_order),
    )
