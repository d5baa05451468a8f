import logging
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from app.billing.configuration import billing_config_from_case
from app.billing.exceptions import NotFoundError
from app.billing.kpis import DEFAULT_RANGE_DAYS, CaseSnapshot, FirmKpis, compute_firm_kpis
from app.billing.ledger import BillingLedger
from app.billing.periods import utc_today
from app.billing.rates import validate_default_rates
from app.billing.unit_of_work import BillingUnitOfWork
from app.config import MIN_PROFITABILITY_ENTRIES
from app.models import Case, CaseStatus, Firm, User
from app.services.permissions import ensure_financial_access

logger = logging.getLogger(__name__)


class FirmService:
    def __init__(self, db: Session):
        self.db = db

    def _get_firm(self, firm_id: str, lock: bool = False) -> Firm:
        query = self.db.query(Firm).filter(Firm.id == firm_id)
        if lock:
            query = query.with_for_update()
        firm = query.first()
        if firm is None:
            raise NotFoundError(f"Firm {firm_id} not found")
        return firm

    def update_default_rates(self, firm_id: str, rates: Mapping[str, Any], actor: User) -> Firm:
        """Replace the firm's default rates. Existing time entries keep the rate they were logged at."""
        normalized = validate_default_rates(rates)

        with BillingUnitOfWork(self.db):
            firm = self._get_firm(firm_id, lock=True)
            ensure_financial_access(actor, firm.id)
            previous = firm.default_rates
            firm.default_rates = normalized

        self.db.refresh(firm)
        logger.info(f"Default rates of firm {firm_id} changed by {actor.id}: {previous} -> {normalized}")
        return firm

    def financial_kpis(
        self,
        firm_id: str,
        actor: User,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> FirmKpis:
        """
        Firm-wide KPIs over a date range, defaulting to the last 30 days.

        Archived cases are left out of the roll-up.
        """
        firm = self._get_firm(firm_id)
        ensure_financial_access(actor, firm.id)
        date_to = date_to or utc_today()
        date_from = date_from or date_to - timedelta(days=DEFAULT_RANGE_DAYS)

        cases = (
            self.db.query(Case)
            .filter(Case.firm_id == firm.id, Case.status != CaseStatus.ARCHIVED)
            .order_by(Case.created_at.asc())
            .all()
        )
        ledger = BillingLedger(self.db)
        snapshots = [
            CaseSnapshot(
                case_id=case.id,
                case_number=case.case_number,
                title=case.title,
                config=billing_config_from_case(case),
                time_entries=case.time_entries,
                ledger_events=ledger.history(case.id).events,
            )
            for case in cases
        ]
        billers = {entry.user_id for case in cases for entry in case.time_entries}
        user_roles = {
            user.id: user.role
            for user in self.db.query(User).filter(User.id.in_(billers)).all()
        }

        kpis = compute_firm_kpis(
            snapshots, user_roles, date_from, date_to, min_entries=MIN_PROFITABILITY_ENTRIES
        )
        logger.info(
            f"Financial KPIs for firm {firm_id} {date_from}..{date_to}: "
            f"{kpis.case_count} cases, revenue {kpis.total_revenue}"
        )
        return kpis
