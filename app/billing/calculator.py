"""
Billing model calculator.

Everything here is a pure function of its arguments: the billing
configuration, the case's time entries and its ledger events. Callers pass
`as_of` explicitly when they need a reproducible result.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from app.billing.configuration import BillingConfig, FixedBilling, HourlyBilling, RetainerBilling
from app.billing.exceptions import ConfigurationError, ValidationError
from app.billing.ledger import LedgerEvent, amount_in_force
from app.billing.periods import as_date, end_of_day, period_bounds, previous_period_bounds, utc_today
from app.config import MIN_PROFITABILITY_ENTRIES
from app.models import BillingEventType, BillingType

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

INSUFFICIENT_DATA = "insufficient_data"
PROFITABLE = "profitable"
BREAK_EVEN = "break_even"
OVERRUN = "overrun"

RETAINER_ACTIVE = "active"
RETAINER_EXPIRED = "expired"
RETAINER_NOT_STARTED = "not_started"


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def entry_value(entry) -> Decimal:
    """hours x hourly_rate of one time entry, unrounded."""
    return Decimal(str(entry.hours)) * Decimal(str(entry.hourly_rate))


def billable_entries(time_entries: Iterable, start: Optional[date] = None, end: Optional[date] = None) -> List:
    selected = []
    for entry in time_entries:
        if not entry.billable:
            continue
        if start is not None and entry.work_date < start:
            continue
        if end is not None and entry.work_date > end:
            continue
        selected.append(entry)
    return selected


def projected_value(entries: Iterable) -> Decimal:
    return quantize_money(sum((entry_value(entry) for entry in entries), Decimal("0")))


def billable_hours(entries: Iterable) -> Decimal:
    return quantize_money(sum((Decimal(str(entry.hours)) for entry in entries), Decimal("0")))


def profitability_status(profitability: Decimal, entry_count: int, min_entries: int) -> str:
    if entry_count < min_entries:
        return INSUFFICIENT_DATA
    if profitability > 0:
        return PROFITABLE
    if profitability == 0:
        return BREAK_EVEN
    return OVERRUN


def percent(part: Decimal, whole: Decimal) -> Optional[Decimal]:
    if whole <= 0:
        return None
    return quantize_money(part / whole * 100)


@dataclass(frozen=True)
class CaseFinancials:
    billing_type: BillingType
    billed_value: Decimal
    projected_value: Decimal
    profitability: Optional[Decimal]
    profitability_status: Optional[str]
    billable_entries: int
    billable_hours: Decimal
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    rollover_value: Optional[Decimal] = None
    available_value: Optional[Decimal] = None
    remaining_value: Optional[Decimal] = None
    utilization_percent: Optional[Decimal] = None
    retainer_state: Optional[str] = None


@dataclass(frozen=True)
class RetainerPeriodValue:
    period_start: date
    period_end: date
    state: str
    allowance: Decimal
    rollover: Decimal
    available: Decimal
    projected: Decimal
    hours_used: Decimal
    entries: int


def _today(as_of: Optional[Union[date, datetime]]) -> date:
    if as_of is None:
        return utc_today()
    return as_date(as_of)


def _first_period(config: RetainerBilling):
    return period_bounds(config.period, config.started_on)


def _retainer_period_value(
    config: RetainerBilling,
    time_entries: Sequence,
    ledger_entries: Sequence[LedgerEvent],
    reference: date,
    allowance: Decimal,
) -> RetainerPeriodValue:
    start, end = period_bounds(config.period, reference)
    first_start, first_end = _first_period(config)
    if start < first_start:
        return RetainerPeriodValue(
            period_start=start, period_end=end, state=RETAINER_NOT_STARTED,
            allowance=ZERO, rollover=ZERO, available=ZERO,
            projected=ZERO, hours_used=ZERO, entries=0,
        )

    # work logged before the retainer started is not drawn against it
    entries = billable_entries(time_entries, max(start, config.started_on), end)
    projected = projected_value(entries)
    hours = billable_hours(entries)

    if not config.auto_renew and start > first_end:
        return RetainerPeriodValue(
            period_start=start, period_end=end, state=RETAINER_EXPIRED,
            allowance=ZERO, rollover=ZERO, available=ZERO,
            projected=projected, hours_used=hours, entries=len(entries),
        )

    rollover = ZERO
    if config.rollover:
        prev_start, prev_end = previous_period_bounds(config.period, reference)
        if prev_start >= first_start:
            prior_allowance = amount_in_force(
                ledger_entries, BillingEventType.RETAINER_AMOUNT_CHANGED, end_of_day(prev_end)
            )
            if prior_allowance is not None:
                prior_projected = projected_value(
                    billable_entries(time_entries, max(prev_start, config.started_on), prev_end)
                )
                rollover = max(ZERO, quantize_money(prior_allowance - prior_projected))

    return RetainerPeriodValue(
        period_start=start, period_end=end, state=RETAINER_ACTIVE,
        allowance=allowance, rollover=rollover, available=quantize_money(allowance + rollover),
        projected=projected, hours_used=hours, entries=len(entries),
    )


def compute_case_financials(
    config: BillingConfig,
    time_entries: Sequence,
    ledger_entries: Sequence[LedgerEvent] = (),
    as_of: Optional[Union[date, datetime]] = None,
    min_entries: int = MIN_PROFITABILITY_ENTRIES,
) -> CaseFinancials:
    time_entries = list(time_entries)
    ledger_entries = list(ledger_entries)

    if isinstance(config, HourlyBilling):
        entries = billable_entries(time_entries)
        value = projected_value(entries)
        return CaseFinancials(
            billing_type=BillingType.HOURLY,
            billed_value=value,
            projected_value=value,
            profitability=None,
            profitability_status=None,
            billable_entries=len(entries),
            billable_hours=billable_hours(entries),
        )

    if isinstance(config, FixedBilling):
        entries = billable_entries(time_entries)
        billed = config.amount
        projected = projected_value(entries)
        profitability = quantize_money(billed - projected)
        return CaseFinancials(
            billing_type=BillingType.FIXED,
            billed_value=billed,
            projected_value=projected,
            profitability=profitability,
            profitability_status=profitability_status(profitability, len(entries), min_entries),
            billable_entries=len(entries),
            billable_hours=billable_hours(entries),
        )

    if isinstance(config, RetainerBilling):
        current = _retainer_period_value(
            config, time_entries, ledger_entries, _today(as_of), config.amount
        )
        inactive = current.state != RETAINER_ACTIVE
        profitability = None if inactive else quantize_money(current.available - current.projected)
        return CaseFinancials(
            billing_type=BillingType.RETAINER,
            billed_value=current.allowance,
            projected_value=current.projected,
            profitability=profitability,
            profitability_status=None if inactive else profitability_status(
                profitability, current.entries, min_entries
            ),
            billable_entries=current.entries,
            billable_hours=current.hours_used,
            period_start=current.period_start,
            period_end=current.period_end,
            rollover_value=current.rollover,
            available_value=current.available,
            remaining_value=max(ZERO, quantize_money(current.available - current.projected)),
            utilization_percent=percent(current.projected, current.available),
            retainer_state=current.state,
        )

    raise ValidationError(f"Unsupported billing configuration: {config!r}")


# =====================================================
# RETAINER USAGE (HOURS)
# =====================================================

@dataclass(frozen=True)
class RetainerUsage:
    period_start: date
    period_end: date
    retainer_state: str
    available_value: Decimal
    partner_rate: Decimal
    hours_used: Decimal
    hours_included: Decimal
    remaining_hours: Decimal
    utilization_percent: Optional[Decimal]


def _usage(period: RetainerPeriodValue, partner_rate: Decimal) -> RetainerUsage:
    hours_included = quantize_money(period.available / partner_rate)
    return RetainerUsage(
        period_start=period.period_start,
        period_end=period.period_end,
        retainer_state=period.state,
        available_value=period.available,
        partner_rate=quantize_money(partner_rate),
        hours_used=period.hours_used,
        hours_included=hours_included,
        remaining_hours=max(ZERO, quantize_money(hours_included - period.hours_used)),
        utilization_percent=percent(period.hours_used, hours_included),
    )


def _require_retainer(config: BillingConfig) -> RetainerBilling:
    if not isinstance(config, RetainerBilling):
        raise ValidationError("Retainer usage is only available for retainer billing")
    return config


def _require_rate(partner_rate) -> Decimal:
    rate = Decimal(str(partner_rate))
    if rate <= 0:
        raise ConfigurationError("Effective rate must be greater than zero")
    return rate


def compute_retainer_usage(
    config: BillingConfig,
    time_entries: Sequence,
    ledger_entries: Sequence[LedgerEvent],
    partner_rate,
    as_of: Optional[Union[date, datetime]] = None,
) -> RetainerUsage:
    """Hours used against the hours the current period's retainer buys at the partner rate."""
    config = _require_retainer(config)
    rate = _require_rate(partner_rate)
    period = _retainer_period_value(
        config, list(time_entries), list(ledger_entries), _today(as_of), config.amount
    )
    return _usage(period, rate)


def retainer_periods(
    config: RetainerBilling,
    time_entries: Sequence,
    ledger_entries: Sequence[LedgerEvent],
    as_of: Optional[Union[date, datetime]] = None,
) -> Iterator[RetainerPeriodValue]:
    """
    Walk the retainer's periods backwards from the one containing `as_of`,
    newest first, stopping before the period the retainer started in. Each
    period is valued at the allowance the ledger shows in force at its end,
    falling back to the current amount.
    """
    time_entries = list(time_entries)
    ledger_entries = list(ledger_entries)
    first_start, _ = _first_period(config)
    reference = _today(as_of)

    while True:
        start, end = period_bounds(config.period, reference)
        if start < first_start:
            return
        in_force = amount_in_force(
            ledger_entries, BillingEventType.RETAINER_AMOUNT_CHANGED, end_of_day(end)
        )
        allowance = in_force if in_force is not None else config.amount
        yield _retainer_period_value(config, time_entries, ledger_entries, reference, allowance)
        reference = start - timedelta(days=1)


def retainer_usage_history(
    config: BillingConfig,
    time_entries: Sequence,
    ledger_entries: Sequence[LedgerEvent],
    partner_rate,
    as_of: Optional[Union[date, datetime]] = None,
    limit: int = 12,
) -> List[RetainerUsage]:
    """Usage of the most recent `limit` periods, newest first."""
    config = _require_retainer(config)
    rate = _require_rate(partner_rate)
    if limit < 1:
        raise ValidationError("limit must be at least 1")

    periods = retainer_periods(config, time_entries, ledger_entries, as_of=as_of)
    return [_usage(period, rate) for period in islice(periods, limit)]
