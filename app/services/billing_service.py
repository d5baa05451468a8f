import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from app.billing.calculator import (
    CaseFinancials, RetainerUsage, compute_case_financials, compute_retainer_usage, retainer_usage_history,
)
from app.billing.configuration import (
    AMOUNT_FIELDS, BillingConfig, amount_event_for, apply_billing_config, billing_config_from_case,
    build_billing_config, cents_to_currency, current_amount_cents, validate_billing_amount,
)
from app.billing.exceptions import CaseArchivedError, CaseNotApprovedError, NotFoundError, ValidationError
from app.billing.ledger import BillingLedger, LedgerHistory
from app.billing.periods import utc_today
from app.billing.rates import effective_rates, resolve_rate, validate_rate_overrides
from app.billing.unit_of_work import BillingUnitOfWork
from app.cases.schemas import BillingConfigUpdate, TimeEntryCreate
from app.config import MIN_PROFITABILITY_ENTRIES, RETAINER_HISTORY_LIMIT
from app.models import (
    ApprovalStatus, BillingType, Case, CaseApproval, CaseRateHistory, CaseStatus, RateTier, TimeEntry, User,
)
from app.services.permissions import ensure_financial_access, ensure_firm_member

logger = logging.getLogger(__name__)

HOURS_STEP = Decimal("0.25")
MAX_HOURS = Decimal("999.75")


def quantize_hours(hours: Union[Decimal, float, int, str]) -> Decimal:
    """Round to the nearest quarter hour, halves rounding up."""
    try:
        value = Decimal(str(hours))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"hours must be a number, got {hours!r}")
    if not value.is_finite():
        raise ValidationError(f"hours must be a number, got {hours!r}")
    quarters = (value / HOURS_STEP).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    rounded = (quarters * HOURS_STEP).quantize(Decimal("0.01"))
    if rounded <= 0:
        raise ValidationError("hours must be greater than zero after rounding to a quarter hour")
    if rounded > MAX_HOURS:
        raise ValidationError(f"hours cannot exceed {MAX_HOURS}")
    return rounded


def can_log_billable_time(case: Case, approval: Optional[CaseApproval]) -> bool:
    """Approved cases, and legacy Active cases that never had an approval record."""
    if approval is not None:
        return approval.status == ApprovalStatus.APPROVED
    return case.status == CaseStatus.ACTIVE


class BillingService:
    def __init__(self, db: Session):
        self.db = db

    # =====================================================
    # BILLING CONFIGURATION
    # =====================================================

    def _locked_case(self, uow: BillingUnitOfWork, case_id: str, actor: User) -> Case:
        case = uow.lock_case(case_id)
        ensure_firm_member(actor, case.firm_id)
        if case.status == CaseStatus.ARCHIVED:
            raise CaseArchivedError(f"Case {case.case_number} is archived; its billing is frozen")
        return case

    def _record_amount_change(
        self, uow: BillingUnitOfWork, case: Case, new_cents: int, actor: User, notes: Optional[str]
    ) -> None:
        field = "fixed_amount" if case.billing_type == BillingType.FIXED else "retainer_amount"
        previous = getattr(case, field)
        uow.ledger.record(
            case,
            amount_event_for(case.billing_type),
            cents_to_currency(new_cents),
            actor.id,
            previous_amount=cents_to_currency(previous),
            notes=notes,
        )
        setattr(case, field, new_cents)

    def change_billing_amount(
        self, case_id: str, new_amount: int, actor: User, notes: Optional[str] = None
    ) -> Case:
        """
        Change the fixed fee or retainer amount of a case.

        The ledger row is written before the case is updated, in the same
        transaction, with the case row locked. Every accepted call writes
        exactly one row, even when the amount does not change.
        """
        with BillingUnitOfWork(self.db) as uow:
            case = self._locked_case(uow, case_id, actor)
            new_cents = validate_billing_amount(case.billing_type, new_amount)
            self._record_amount_change(uow, case, new_cents, actor, notes)

        self.db.refresh(case)
        return case

    def update_billing_config(self, case_id: str, patch: BillingConfigUpdate, actor: User) -> Case:
        """
        Apply a partial billing configuration change.

        Within the same billing type only the supplied fields change. Switching
        type requires the complete field set of the new type; the old amount is
        closed out in the ledger and the new amount opened, in that order.
        Replacing custom rates writes one rate history row per tier whose
        effective rate changed.
        """
        update_data = patch.dict(exclude_unset=True)
        notes = update_data.pop("notes", None)
        rates_supplied = "custom_rates" in update_data
        new_rates = update_data.pop("custom_rates", None)
        requested_type = update_data.pop("billing_type", None)

        with BillingUnitOfWork(self.db) as uow:
            case = self._locked_case(uow, case_id, actor)
            current = billing_config_from_case(case)
            target_type = BillingType(requested_type) if requested_type else case.billing_type

            if target_type == case.billing_type:
                if update_data:
                    self._update_same_type(uow, case, update_data, actor, notes)
            else:
                self._switch_type(uow, case, current, target_type, update_data, actor, notes)

            if rates_supplied:
                self._replace_custom_rates(case, new_rates, actor)

        self.db.refresh(case)
        logger.info(f"Billing configuration of case {case.case_number} updated by {actor.id}")
        return case

    def _update_same_type(
        self, uow: BillingUnitOfWork, case: Case, update_data: dict, actor: User, notes: Optional[str]
    ) -> None:
        merged = {name: getattr(case, name) for name in AMOUNT_FIELDS}
        merged.update(update_data)
        config = build_billing_config(
            case.billing_type,
            started_on=case.retainer_started_on,
            allow_zero_amount=True,
            **merged,
        )

        amount_field = {BillingType.FIXED: "fixed_amount", BillingType.RETAINER: "retainer_amount"}.get(case.billing_type)
        if amount_field and amount_field in update_data:
            self._record_amount_change(uow, case, current_amount_cents(config), actor, notes)
        apply_billing_config(case, config)

    def _switch_type(
        self, uow: BillingUnitOfWork, case: Case, current: BillingConfig,
        target_type: BillingType, update_data: dict, actor: User, notes: Optional[str],
    ) -> None:
        config = build_billing_config(
            target_type, started_on=utc_today(), allow_zero_amount=True, **update_data
        )

        previous_cents = current_amount_cents(current)
        if previous_cents is not None:
            uow.ledger.record(
                case,
                amount_event_for(case.billing_type),
                Decimal("0"),
                actor.id,
                previous_amount=cents_to_currency(previous_cents),
                notes=notes or f"Billing type changed to {target_type.value}",
            )

        apply_billing_config(case, config)

        new_cents = current_amount_cents(config)
        if new_cents is not None:
            uow.ledger.record(
                case,
                amount_event_for(target_type),
                cents_to_currency(new_cents),
                actor.id,
                previous_amount=None,
                notes=notes or f"Billing type changed from {current.billing_type.value}",
            )
        logger.info(
            f"Case {case.case_number} switched from {current.billing_type.value} to {target_type.value}"
        )

    def _replace_custom_rates(self, case: Case, new_rates, actor: User) -> None:
        normalized = validate_rate_overrides(new_rates)
        defaults = case.firm.default_rates
        before = effective_rates(defaults, case.custom_rates)
        after = effective_rates(defaults, normalized)

        for tier in RateTier:
            if before[tier] != after[tier]:
                self.db.add(CaseRateHistory(
                    case_id=case.id,
                    firm_id=case.firm_id,
                    rate_type=tier,
                    old_rate=before[tier],
                    new_rate=after[tier],
                    changed_by=actor.id,
                ))
                logger.info(f"Case {case.case_number} {tier.value} rate {before[tier]} -> {after[tier]}")
        case.custom_rates = normalized or None

    # =====================================================
    # TIME ENTRIES
    # =====================================================

    def log_time_entry(self, case_id: str, entry_data: TimeEntryCreate, biller: User) -> TimeEntry:
        hours = quantize_hours(entry_data.hours)

        with BillingUnitOfWork(self.db) as uow:
            case = uow.lock_case(case_id, read=True)
            ensure_firm_member(biller, case.firm_id)
            if case.status == CaseStatus.ARCHIVED:
                raise CaseArchivedError(f"Case {case.case_number} is archived; time cannot be logged")

            if entry_data.billable:
                approval = self.db.query(CaseApproval).filter(CaseApproval.case_id == case.id).first()
                if not can_log_billable_time(case, approval):
                    logger.warning(f"Billable time refused on unapproved case {case.case_number}")
                    raise CaseNotApprovedError(
                        f"Case {case.case_number} must be approved before billable time is logged"
                    )

            rate = resolve_rate(case.firm.default_rates, case.custom_rates, biller.role)
            entry = TimeEntry(
                case_id=case.id,
                user_id=biller.id,
                hours=hours,
                hourly_rate=rate,
                billable=entry_data.billable,
                work_date=entry_data.work_date or utc_today(),
                description=entry_data.description,
            )
            self.db.add(entry)

        self.db.refresh(entry)
        logger.info(f"Logged {hours}h at {rate} on case {case_id} by {biller.id}")
        return entry

    # =====================================================
    # FINANCIAL READS
    # =====================================================

    def _financial_case(self, case_id: str, user: User) -> Case:
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        ensure_financial_access(user, case.firm_id)
        return case

    def get_case_financials(
        self, case_id: str, user: User, as_of: Optional[Union[date, datetime]] = None
    ) -> CaseFinancials:
        case = self._financial_case(case_id, user)
        ledger = BillingLedger(self.db).history(case.id)
        return compute_case_financials(
            billing_config_from_case(case),
            case.time_entries,
            ledger.events,
            as_of=as_of,
            min_entries=MIN_PROFITABILITY_ENTRIES,
        )

    def billing_history(self, case_id: str, user: User, since: Optional[datetime] = None) -> LedgerHistory:
        case = self._financial_case(case_id, user)
        return BillingLedger(self.db).history(case.id, since=since)

    def _partner_rate(self, case: Case) -> Decimal:
        return resolve_rate(case.firm.default_rates, case.custom_rates, RateTier.PARTNER)

    def retainer_usage(
        self, case_id: str, user: User, as_of: Optional[Union[date, datetime]] = None
    ) -> RetainerUsage:
        case = self._financial_case(case_id, user)
        ledger = BillingLedger(self.db).history(case.id)
        return compute_retainer_usage(
            billing_config_from_case(case), case.time_entries, ledger.events, self._partner_rate(case), as_of=as_of
        )

    def retainer_usage_history(
        self, case_id: str, user: User, limit: int = RETAINER_HISTORY_LIMIT,
        as_of: Optional[Union[date, datetime]] = None,
    ) -> List[RetainerUsage]:
        case = self._financial_case(case_id, user)
        ledger = BillingLedger(self.db).history(case.id)
        return retainer_usage_history(
            billing_config_from_case(case), case.time_entries, ledger.events, self._partner_rate(case),
            as_of=as_of, limit=limit,
        )
