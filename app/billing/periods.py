"""Calendar period arithmetic for retainer cycles."""
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple

from app.models import RetainerPeriod

PERIOD_MONTHS = {
    RetainerPeriod.MONTHLY: 1,
    RetainerPeriod.QUARTERLY: 3,
    RetainerPeriod.ANNUALLY: 12,
}


def _add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def period_bounds(period: RetainerPeriod, reference: date) -> Tuple[date, date]:
    """
    Inclusive (start, end) of the calendar period containing `reference`.

    Monthly periods are calendar months, quarterly periods start in January,
    April, July and October, annual periods are calendar years.
    """
    months = PERIOD_MONTHS[RetainerPeriod(period)]
    start_month = ((reference.month - 1) // months) * months + 1
    start = date(reference.year, start_month, 1)
    end = _add_months(start, months) - timedelta(days=1)
    return start, end


def previous_period_bounds(period: RetainerPeriod, reference: date) -> Tuple[date, date]:
    start, _ = period_bounds(period, reference)
    return period_bounds(period, start - timedelta(days=1))


def utc_today() -> date:
    """Calendar date in UTC; every period and start date is computed on this clock."""
    return datetime.now(timezone.utc).date()


def end_of_day(day: date) -> datetime:
    """Last instant of a UTC calendar day, used to look up ledger amounts in force."""
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def as_date(value) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value
