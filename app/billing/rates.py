"""
Hourly rate resolution.

Rates live in two JSON mappings keyed by rate tier: the firm's complete
defaults and a case's partial overrides. A rate is resolved once, when a time
entry is created, and stored on the entry.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Union

from app.billing.exceptions import ConfigurationError, ValidationError
from app.models import RateTier, UserRole

RATE_QUANT = Decimal("0.01")

ROLE_RATE_TIERS = {
    UserRole.PARTNER: RateTier.PARTNER,
    UserRole.BUSINESS_OWNER: RateTier.PARTNER,
    UserRole.ASSOCIATE: RateTier.ASSOCIATE,
    UserRole.PARALEGAL: RateTier.PARALEGAL,
}


def rate_tier_for(role: Union[UserRole, RateTier, str]) -> RateTier:
    """Map a biller role (or a tier name) to the rate tier it bills at."""
    if isinstance(role, RateTier):
        return role
    if isinstance(role, UserRole):
        return ROLE_RATE_TIERS[role]
    try:
        return ROLE_RATE_TIERS[UserRole(role)]
    except ValueError:
        pass
    try:
        return RateTier(role)
    except ValueError:
        raise ValidationError(f"Unknown billing role: {role!r}")


def _parse_rate(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate.quantize(RATE_QUANT)


def resolve_rate(
    firm_defaults: Optional[Mapping[str, Any]],
    case_custom_rates: Optional[Mapping[str, Any]],
    role: Union[UserRole, RateTier, str],
) -> Decimal:
    tier = rate_tier_for(role).value

    if case_custom_rates and case_custom_rates.get(tier) is not None:
        override = _parse_rate(case_custom_rates[tier])
        if override is None:
            raise ValidationError(f"Malformed custom {tier} rate: {case_custom_rates[tier]!r}")
        return override

    default = _parse_rate((firm_defaults or {}).get(tier))
    if default is None:
        raise ConfigurationError(f"Firm has no usable default {tier} rate")
    return default


def validate_rate_overrides(overrides: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Normalize a partial override mapping; unknown tiers and bad values are rejected."""
    if overrides is None:
        return {}
    if not isinstance(overrides, Mapping):
        raise ValidationError("Custom rates must be a mapping of rate tier to rate")

    normalized = {}
    for key, value in overrides.items():
        try:
            tier = RateTier(key)
        except ValueError:
            raise ValidationError(f"Unknown rate tier in custom rates: {key!r}")
        if value is None:
            continue
        rate = _parse_rate(value)
        if rate is None:
            raise ValidationError(f"Custom {tier.value} rate must be a positive amount")
        normalized[tier.value] = str(rate)
    return normalized


def validate_default_rates(rates: Mapping[str, Any]) -> Dict[str, str]:
    """Firm defaults must cover every tier."""
    normalized = validate_rate_overrides(rates)
    missing = [tier.value for tier in RateTier if tier.value not in normalized]
    if missing:
        raise ValidationError(f"Default rates missing for: {', '.join(missing)}")
    return normalized


def effective_rates(firm_defaults: Mapping[str, Any], case_custom_rates: Optional[Mapping[str, Any]]) -> Dict[RateTier, Decimal]:
    return {tier: resolve_rate(firm_defaults, case_custom_rates, tier) for tier in RateTier}
