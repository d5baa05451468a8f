"""
Append-only billing ledger.

Rows are written through BillingLedger.record inside the caller's
transaction and never updated or deleted. Reads go through raw string
columns so one corrupt row is reported as an anomaly instead of breaking
the whole history.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from sqlalchemy import String, cast
from sqlalchemy.orm import Session

from app.billing.exceptions import CaseArchivedError, ValidationError
from app.models import BillingEventType, BillingType, Case, CaseBillingHistory, CaseStatus

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")

# Amount events are only meaningful for their own billing type; invoice
# events may be recorded under any billing type.
EVENT_BILLING_TYPES = {
    BillingEventType.FIXED_AMOUNT_CHANGED: {BillingType.FIXED},
    BillingEventType.RETAINER_AMOUNT_CHANGED: {BillingType.RETAINER},
    BillingEventType.INVOICE_CREATED: set(BillingType),
    BillingEventType.INVOICE_CANCELLED: set(BillingType),
    BillingEventType.INVOICE_PAID: set(BillingType),
}


@dataclass(frozen=True)
class LedgerEvent:
    id: int
    case_id: str
    event_type: BillingEventType
    billing_type: BillingType
    amount: Decimal
    previous_amount: Optional[Decimal]
    created_by: str
    created_at: datetime
    notes: Optional[str] = None
    invoice_id: Optional[str] = None


@dataclass(frozen=True)
class LedgerAnomaly:
    entry_id: int
    reason: str
    created_at: Optional[datetime] = None


@dataclass
class LedgerHistory:
    events: List[LedgerEvent] = field(default_factory=list)
    anomalies: List[LedgerAnomaly] = field(default_factory=list)


def check_event_consistency(event_type: BillingEventType, billing_type: BillingType) -> None:
    if billing_type not in EVENT_BILLING_TYPES[event_type]:
        raise ValidationError(
            f"{event_type.value} cannot be recorded for a {billing_type.value} case"
        )


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _money(value: Union[Decimal, int, str]) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT)


def amount_in_force(
    events: Iterable[LedgerEvent],
    event_type: BillingEventType,
    at: datetime,
) -> Optional[Decimal]:
    """
    Amount of the given kind in force at `at`, from ledger events alone.

    The latest event at or before `at` wins. With none, the amount before the
    first later change is that change's previous amount. With no events of the
    kind at all there is nothing to reconstruct and None is returned.
    """
    at = _utc(at)
    relevant = sorted(
        (event for event in events if event.event_type == event_type),
        key=lambda event: (_utc(event.created_at), event.id),
    )
    before = [event for event in relevant if _utc(event.created_at) <= at]
    if before:
        return before[-1].amount
    if relevant:
        return relevant[0].previous_amount
    return None


def _parse_amount(raw: Optional[str], required: bool):
    if raw is None:
        if required:
            raise ValueError("amount is missing")
        return None
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"amount {raw!r} is not numeric")
    if not amount.is_finite():
        raise ValueError(f"amount {raw!r} is not numeric")
    if amount < 0:
        raise ValueError(f"amount {raw!r} is negative")
    return amount.quantize(MONEY_QUANT)


def parse_ledger_row(row) -> Union[LedgerEvent, LedgerAnomaly]:
    """Turn one raw ledger row into an event, or an anomaly describing what is wrong with it."""
    created_at = _utc(row.created_at)
    try:
        try:
            event_type = BillingEventType[row.event_type]
        except KeyError:
            raise ValueError(f"unknown event type {row.event_type!r}")
        try:
            billing_type = BillingType[row.billing_type]
        except KeyError:
            raise ValueError(f"unknown billing type {row.billing_type!r}")
        if billing_type not in EVENT_BILLING_TYPES[event_type]:
            raise ValueError(
                f"{event_type.value} recorded against a {billing_type.value} billing snapshot"
            )
        amount = _parse_amount(row.amount_eur, required=True)
        previous_amount = _parse_amount(row.previous_amount_eur, required=False)
    except ValueError as error:
        return LedgerAnomaly(entry_id=row.id, reason=str(error), created_at=created_at)

    return LedgerEvent(
        id=row.id,
        case_id=row.case_id,
        event_type=event_type,
        billing_type=billing_type,
        amount=amount,
        previous_amount=previous_amount,
        created_by=row.created_by,
        created_at=created_at,
        notes=row.notes,
        invoice_id=row.invoice_id,
    )


class BillingLedger:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        case: Case,
        event_type: BillingEventType,
        amount: Union[Decimal, int, str],
        actor_id: str,
        previous_amount: Optional[Union[Decimal, int, str]] = None,
        notes: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> CaseBillingHistory:
        """Append one event in the caller's transaction. Nothing is committed here."""
        if case.status == CaseStatus.ARCHIVED:
            raise CaseArchivedError(f"Case {case.case_number} is archived; its billing is frozen")
        check_event_consistency(event_type, case.billing_type)

        amount = _money(amount)
        if amount < 0:
            raise ValidationError("Ledger amounts cannot be negative")
        if previous_amount is not None:
            previous_amount = _money(previous_amount)

        entry = CaseBillingHistory(
            case_id=case.id,
            firm_id=case.firm_id,
            event_type=event_type,
            billing_type=case.billing_type,
            amount_eur=amount,
            previous_amount_eur=previous_amount,
            notes=notes,
            invoice_id=invoice_id,
            created_by=actor_id,
        )
        self.db.add(entry)
        self.db.flush()
        logger.info(
            f"Ledger {event_type.value} on case {case.id}: {previous_amount} -> {amount} by {actor_id}"
        )
        return entry

    def history(self, case_id: str, since: Optional[datetime] = None) -> LedgerHistory:
        query = self.db.query(
            CaseBillingHistory.id,
            CaseBillingHistory.case_id,
            cast(CaseBillingHistory.event_type, String).label("event_type"),
            cast(CaseBillingHistory.billing_type, String).label("billing_type"),
            cast(CaseBillingHistory.amount_eur, String).label("amount_eur"),
            cast(CaseBillingHistory.previous_amount_eur, String).label("previous_amount_eur"),
            CaseBillingHistory.notes,
            CaseBillingHistory.invoice_id,
            CaseBillingHistory.created_by,
            CaseBillingHistory.created_at,
        ).filter(CaseBillingHistory.case_id == case_id)

        if since is not None:
            query = query.filter(CaseBillingHistory.created_at >= _utc(since))

        rows = query.order_by(
            CaseBillingHistory.created_at.desc(), CaseBillingHistory.id.desc()
        ).all()

        history = LedgerHistory()
        for row in rows:
            parsed = parse_ledger_row(row)
            if isinstance(parsed, LedgerAnomaly):
                logger.warning(f"Ledger anomaly on case {case_id}, entry {parsed.entry_id}: {parsed.reason}")
                history.anomalies.append(parsed)
            else:
                history.events.append(parsed)
        return history

    def amount_as_of(self, case_id: str, event_type: BillingEventType, at: datetime) -> Optional[Decimal]:
        if event_type not in (BillingEventType.FIXED_AMOUNT_CHANGED, BillingEventType.RETAINER_AMOUNT_CHANGED):
            raise ValidationError(f"{event_type.value} does not carry a billing amount")
        return amount_in_force(self.history(case_id).events, event_type, at)
