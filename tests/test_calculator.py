from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.billing.calculator import (
    compute_case_financials, compute_retainer_usage, retainer_usage_history,
)
from app.billing.configuration import FixedBilling, HourlyBilling, RetainerBilling
from app.billing.exceptions import ConfigurationError, ValidationError
from app.billing.ledger import LedgerEvent
from app.models import BillingEventType, BillingType, RetainerPeriod


def entry(hours, rate, work_date=date(2026, 3, 10), billable=True):
    return SimpleNamespace(
        hours=Decimal(str(hours)), hourly_rate=Decimal(str(rate)), billable=billable, work_date=work_date
    )


def retainer_event(amount, created_at, previous=None, event_id=1):
    return LedgerEvent(
        id=event_id,
        case_id="case-1",
        event_type=BillingEventType.RETAINER_AMOUNT_CHANGED,
        billing_type=BillingType.RETAINER,
        amount=Decimal(amount),
        previous_amount=Decimal(previous) if previous is not None else None,
        created_by="user-1",
        created_at=created_at,
    )


def monthly_retainer(auto_renew=True, rollover=False, started_on=date(2026, 1, 1), amount_cents=500_000):
    return RetainerBilling(
        amount_cents=amount_cents,
        period=RetainerPeriod.MONTHLY,
        auto_renew=auto_renew,
        rollover=rollover,
        started_on=started_on,
    )


# =====================================================
# HOURLY AND FIXED
# =====================================================

def test_hourly_billed_equals_projected_over_billable_entries():
    entries = [entry(2, 450), entry("1.5", 300), entry(3, 450, billable=False)]
    result = compute_case_financials(HourlyBilling(), entries, [])
    assert result.billed_value == Decimal("1350.00")
    assert result.projected_value == Decimal("1350.00")
    assert result.profitability is None
    assert result.billable_entries == 2
    assert result.billable_hours == Decimal("3.50")


def test_fixed_profitability_uses_currency_units():
    # 2,200,000 cents is 22,000.00; 63h at 450 is 28,350.00
    result = compute_case_financials(FixedBilling(amount_cents=2_200_000), [entry(63, 450)], [])
    assert result.billed_value == Decimal("22000.00")
    assert result.projected_value == Decimal("28350.00")
    assert result.profitability == Decimal("-6350.00")
    assert result.profitability_status == "overrun"


def test_fixed_without_entries_reports_full_amount_as_insufficient_data():
    result = compute_case_financials(FixedBilling(amount_cents=2_200_000), [], [])
    assert result.projected_value == Decimal("0.00")
    assert result.profitability == Decimal("22000.00")
    assert result.profitability_status == "insufficient_data"


def test_fixed_minimum_entry_count_is_configurable():
    entries = [entry(1, 450), entry(1, 450)]
    config = FixedBilling(amount_cents=90_000)
    assert compute_case_financials(config, entries, [], min_entries=3).profitability_status == "insufficient_data"
    assert compute_case_financials(config, entries, [], min_entries=2).profitability_status == "break_even"


def test_financials_are_idempotent():
    entries = [entry(2, 450), entry("0.75", 300)]
    ledger = [retainer_event("5000", datetime(2026, 1, 1, tzinfo=timezone.utc))]
    config = monthly_retainer(rollover=True)
    first = compute_case_financials(config, entries, ledger, as_of=date(2026, 3, 15))
    second = compute_case_financials(config, entries, ledger, as_of=date(2026, 3, 15))
    assert first == second


# =====================================================
# RETAINER
# =====================================================

def test_retainer_counts_only_current_period_entries():
    entries = [entry(4, 450, date(2026, 3, 2)), entry(10, 450, date(2026, 2, 20))]
    result = compute_case_financials(monthly_retainer(), entries, [], as_of=date(2026, 3, 15))
    assert result.period_start == date(2026, 3, 1)
    assert result.period_end == date(2026, 3, 31)
    assert result.billed_value == Decimal("5000.00")
    assert result.projected_value == Decimal("1800.00")
    assert result.remaining_value == Decimal("3200.00")
    assert result.utilization_percent == Decimal("36.00")
    assert result.rollover_value == Decimal("0.00")
    assert result.retainer_state == "active"


def test_retainer_rollover_adds_unused_prior_allowance():
    ledger = [retainer_event("5000", datetime(2026, 1, 1, 9, tzinfo=timezone.utc))]
    entries = [entry(2, 450, date(2026, 2, 10))]
    result = compute_case_financials(monthly_retainer(rollover=True), entries, ledger, as_of=date(2026, 3, 15))
    assert result.rollover_value == Decimal("4100.00")
    assert result.available_value == Decimal("9100.00")
    assert result.profitability == Decimal("9100.00")


def test_retainer_rollover_is_floored_at_zero():
    ledger = [retainer_event("5000", datetime(2026, 1, 1, 9, tzinfo=timezone.utc))]
    entries = [entry(20, 450, date(2026, 2, 10))]
    result = compute_case_financials(monthly_retainer(rollover=True), entries, ledger, as_of=date(2026, 3, 15))
    assert result.rollover_value == Decimal("0.00")
    assert result.available_value == Decimal("5000.00")


def test_retainer_rollover_uses_amount_in_force_at_prior_period_end():
    ledger = [
        retainer_event("3000", datetime(2026, 1, 1, 9, tzinfo=timezone.utc), event_id=1),
        retainer_event("5000", datetime(2026, 3, 5, 9, tzinfo=timezone.utc), previous="3000", event_id=2),
    ]
    result = compute_case_financials(monthly_retainer(rollover=True), [], ledger, as_of=date(2026, 3, 15))
    assert result.rollover_value == Decimal("3000.00")


def test_retainer_rollover_without_ledger_history_rolls_nothing():
    result = compute_case_financials(monthly_retainer(rollover=True), [], [], as_of=date(2026, 3, 15))
    assert result.rollover_value == Decimal("0.00")


def test_non_renewing_retainer_expires_after_first_period():
    config = monthly_retainer(auto_renew=False, started_on=date(2026, 1, 10))
    active = compute_case_financials(config, [], [], as_of=date(2026, 1, 20))
    assert active.retainer_state == "active"
    assert active.billed_value == Decimal("5000.00")

    expired = compute_case_financials(config, [], [], as_of=date(2026, 3, 1))
    assert expired.retainer_state == "expired"
    assert expired.billed_value == Decimal("0.00")
    assert expired.available_value == Decimal("0.00")
    assert expired.profitability is None
    assert expired.utilization_percent is None


# =====================================================
# RETAINER USAGE
# =====================================================

def test_retainer_usage_converts_allowance_to_hours():
    entries = [entry(4, 500, date(2026, 3, 3))]
    usage = compute_retainer_usage(monthly_retainer(), entries, [], Decimal("500"), as_of=date(2026, 3, 20))
    assert usage.hours_included == Decimal("10.00")
    assert usage.hours_used == Decimal("4.00")
    assert usage.remaining_hours == Decimal("6.00")
    assert usage.utilization_percent == Decimal("40.00")


def test_retainer_usage_can_exceed_full_utilization():
    entries = [entry(12, 500, date(2026, 3, 3))]
    usage = compute_retainer_usage(monthly_retainer(), entries, [], Decimal("500"), as_of=date(2026, 3, 20))
    assert usage.remaining_hours == Decimal("0.00")
    assert usage.utilization_percent == Decimal("120.00")


def test_retainer_usage_rejects_non_positive_rate():
    with pytest.raises(ConfigurationError):
        compute_retainer_usage(monthly_retainer(), [], [], Decimal("0"), as_of=date(2026, 3, 20))


def test_retainer_usage_requires_retainer_billing():
    with pytest.raises(ValidationError):
        compute_retainer_usage(HourlyBilling(), [], [], Decimal("450"), as_of=date(2026, 3, 20))


def test_usage_history_stops_at_retainer_start():
    config = monthly_retainer(started_on=date(2026, 1, 15))
    history = retainer_usage_history(config, [], [], Decimal("500"), as_of=date(2026, 4, 10), limit=12)
    assert [period.period_start for period in history] == [
        date(2026, 4, 1), date(2026, 3, 1), date(2026, 2, 1), date(2026, 1, 1),
    ]
    limited = retainer_usage_history(config, [], [], Decimal("500"), as_of=date(2026, 4, 10), limit=2)
    assert len(limited) == 2


def test_usage_history_uses_ledger_allowance_for_past_periods():
    ledger = [
        retainer_event("5000", datetime(2026, 1, 1, 9, tzinfo=timezone.utc), event_id=1),
        retainer_event("8000", datetime(2026, 3, 5, 9, tzinfo=timezone.utc), previous="5000", event_id=2),
    ]
    config = monthly_retainer(amount_cents=800_000)
    history = retainer_usage_history(config, [], ledger, Decimal("500"), as_of=date(2026, 3, 10), limit=3)
    assert [period.hours_included for period in history] == [
        Decimal("16.00"), Decimal("10.00"), Decimal("10.00"),
    ]


# =====================================================
# RETAINER START DATE
# =====================================================

def test_work_before_retainer_start_is_not_drawn_against_it():
    config = monthly_retainer(started_on=date(2026, 3, 20))
    entries = [entry(10, 450, date(2026, 3, 2)), entry(2, 450, date(2026, 3, 21))]
    result = compute_case_financials(config, entries, [], as_of=date(2026, 3, 25))
    assert result.projected_value == Decimal("900.00")
    assert result.remaining_value == Decimal("4100.00")
    assert result.billable_entries == 1


def test_rollover_ignores_work_before_retainer_start():
    ledger = [retainer_event("5000", datetime(2026, 2, 20, 9, tzinfo=timezone.utc))]
    config = monthly_retainer(rollover=True, started_on=date(2026, 2, 20))
    entries = [entry(10, 450, date(2026, 2, 3))]
    result = compute_case_financials(config, entries, ledger, as_of=date(2026, 3, 10))
    assert result.rollover_value == Decimal("5000.00")


def test_period_before_retainer_start_bills_nothing():
    config = monthly_retainer(started_on=date(2026, 3, 1))
    result = compute_case_financials(config, [entry(3, 450, date(2026, 2, 27))], [], as_of=date(2026, 2, 28))
    assert result.retainer_state == "not_started"
    assert result.billed_value == Decimal("0.00")
    assert result.available_value == Decimal("0.00")
    assert result.projected_value == Decimal("0.00")
    assert result.profitability is None
    assert result.profitability_status is None
    assert retainer_usage_history(config, [], [], Decimal("500"), as_of=date(2026, 2, 28)) == []
