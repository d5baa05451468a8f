"""
Billing configuration as a tagged variant.

A case row stores its billing settings as loose nullable columns; these
dataclasses are the only shapes the engine works with. Hourly carries no
amount, Fixed carries one, Retainer carries the amount plus its cycle
settings. Anything else is rejected with ValidationError.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from app.billing.exceptions import ValidationError
from app.billing.periods import utc_today
from app.models import BillingEventType, BillingType, Case, RetainerPeriod

CENTS = Decimal("100")
MONEY_QUANT = Decimal("0.01")

FIXED_FIELDS = ("fixed_amount",)
RETAINER_FIELDS = ("retainer_amount", "retainer_period", "retainer_auto_renew", "retainer_rollover")
AMOUNT_FIELDS = FIXED_FIELDS + RETAINER_FIELDS


def cents_to_currency(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(int(cents)) / CENTS).quantize(MONEY_QUANT)


@dataclass(frozen=True)
class HourlyBilling:
    billing_type = BillingType.HOURLY


@dataclass(frozen=True)
class FixedBilling:
    amount_cents: int

    billing_type = BillingType.FIXED

    @property
    def amount(self) -> Decimal:
        return cents_to_currency(self.amount_cents)


@dataclass(frozen=True)
class RetainerBilling:
    amount_cents: int
    period: RetainerPeriod
    auto_renew: bool
    rollover: bool
    started_on: date

    billing_type = BillingType.RETAINER

    @property
    def amount(self) -> Decimal:
        return cents_to_currency(self.amount_cents)


BillingConfig = Union[HourlyBilling, FixedBilling, RetainerBilling]

AMOUNT_EVENTS = {
    BillingType.FIXED: BillingEventType.FIXED_AMOUNT_CHANGED,
    BillingType.RETAINER: BillingEventType.RETAINER_AMOUNT_CHANGED,
}


def amount_event_for(billing_type: BillingType) -> BillingEventType:
    try:
        return AMOUNT_EVENTS[billing_type]
    except KeyError:
        raise ValidationError(f"{billing_type.value} billing has no billing amount")


def _amount_cents(value: Any, field: str, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in cents")
    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{field} must be a {qualifier} amount")
    return value


def _flag(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} is required for retainer billing")
    return value


def build_billing_config(
    billing_type: Union[BillingType, str],
    fixed_amount: Any = None,
    retainer_amount: Any = None,
    retainer_period: Any = None,
    retainer_auto_renew: Any = None,
    retainer_rollover: Any = None,
    started_on: Optional[date] = None,
    allow_zero_amount: bool = False,
) -> BillingConfig:
    """Validate a flat field set and return the matching variant."""
    try:
        billing_type = BillingType(billing_type)
    except ValueError:
        raise ValidationError(f"Unknown billing type: {billing_type!r}")

    fields = {
        "fixed_amount": fixed_amount,
        "retainer_amount": retainer_amount,
        "retainer_period": retainer_period,
        "retainer_auto_renew": retainer_auto_renew,
        "retainer_rollover": retainer_rollover,
    }
    allowed = {
        BillingType.HOURLY: (),
        BillingType.FIXED: FIXED_FIELDS,
        BillingType.RETAINER: RETAINER_FIELDS,
    }[billing_type]
    stray = [name for name, value in fields.items() if value is not None and name not in allowed]
    if stray:
        raise ValidationError(
            f"{', '.join(stray)} not allowed for {billing_type.value} billing"
        )

    if billing_type == BillingType.HOURLY:
        return HourlyBilling()

    if billing_type == BillingType.FIXED:
        if fixed_amount is None:
            raise ValidationError("fixed_amount is required for fixed billing")
        return FixedBilling(amount_cents=_amount_cents(fixed_amount, "fixed_amount"))

    if retainer_amount is None:
        raise ValidationError("retainer_amount is required for retainer billing")
    if retainer_period is None:
        raise ValidationError("retainer_period is required for retainer billing")
    try:
        period = RetainerPeriod(retainer_period)
    except ValueError:
        raise ValidationError(f"Unknown retainer period: {retainer_period!r}")
    return RetainerBilling(
        amount_cents=_amount_cents(retainer_amount, "retainer_amount", allow_zero=allow_zero_amount),
        period=period,
        auto_renew=_flag(retainer_auto_renew, "retainer_auto_renew"),
        rollover=_flag(retainer_rollover, "retainer_rollover"),
        started_on=started_on or utc_today(),
    )


def billing_config_from_case(case: Case) -> BillingConfig:
    """Read the persisted columns back into a variant; inconsistent rows raise."""
    return build_billing_config(
        case.billing_type,
        fixed_amount=case.fixed_amount,
        retainer_amount=case.retainer_amount,
        retainer_period=case.retainer_period,
        retainer_auto_renew=case.retainer_auto_renew,
        retainer_rollover=case.retainer_rollover,
        started_on=case.retainer_started_on,
        allow_zero_amount=True,
    )


def config_fields(config: BillingConfig) -> Dict[str, Any]:
    """Flat column values for a variant, with the other variants' fields cleared."""
    values = {name: None for name in AMOUNT_FIELDS}
    values["retainer_started_on"] = None
    values["billing_type"] = config.billing_type
    if isinstance(config, FixedBilling):
        values["fixed_amount"] = config.amount_cents
    elif isinstance(config, RetainerBilling):
        values.update(
            retainer_amount=config.amount_cents,
            retainer_period=config.period,
            retainer_auto_renew=config.auto_renew,
            retainer_rollover=config.rollover,
            retainer_started_on=config.started_on,
        )
    return values


def apply_billing_config(case: Case, config: BillingConfig) -> None:
    for name, value in config_fields(config).items():
        setattr(case, name, value)


def validate_billing_amount(billing_type: BillingType, value: Any) -> int:
    """A new amount for an existing case: never negative, and never zero for Fixed."""
    if billing_type == BillingType.FIXED:
        return _amount_cents(value, "fixed_amount")
    if billing_type == BillingType.RETAINER:
        return _amount_cents(value, "retainer_amount", allow_zero=True)
    raise ValidationError(f"{BillingType(billing_type).value} billing has no billing amount")


def current_amount_cents(config: BillingConfig) -> Optional[int]:
    if isinstance(config, (FixedBilling, RetainerBilling)):
        return config.amount_cents
    return None
