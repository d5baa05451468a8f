from app.billing.exceptions import PermissionDeniedError
from app.models import User, UserRole

FINANCIAL_ROLES = (UserRole.PARTNER, UserRole.BUSINESS_OWNER)


def is_financial_role(user: User) -> bool:
    return user.role in FINANCIAL_ROLES


def ensure_firm_member(user: User, firm_id: str) -> None:
    if user.firm_id != firm_id:
        raise PermissionDeniedError("Cannot access records from a different firm")


def ensure_financial_access(user: User, firm_id: str) -> None:
    """Partners and business owners of the owning firm only."""
    ensure_firm_member(user, firm_id)
    if not is_financial_role(user):
        raise PermissionDeniedError("Only partners and business owners can access firm financials")
