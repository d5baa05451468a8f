import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from app.billing.exceptions import NotFoundError, ValidationError
from app.billing.unit_of_work import BillingUnitOfWork
from app.models import BillingEventType, Invoice, InvoiceStatus, User
from app.services.permissions import ensure_financial_access

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")


class InvoiceService:
    """Invoice lifecycle; every status change is mirrored by a ledger row in the same transaction."""

    def __init__(self, db: Session):
        self.db = db

    def generate_invoice_number(self) -> str:
        timestamp = datetime.now().strftime("%Y%m%d")
        unique_id = str(uuid.uuid4())[:8].upper()
        return f"INV-{timestamp}-{unique_id}"

    def create_invoice(self, case_id: str, amount_eur, actor: User, notes: Optional[str] = None) -> Invoice:
        try:
            amount = Decimal(str(amount_eur)).quantize(MONEY_QUANT)
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invoice amount must be numeric, got {amount_eur!r}")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Invoice amount must be positive")

        with BillingUnitOfWork(self.db) as uow:
            case = uow.lock_case(case_id)
            ensure_financial_access(actor, case.firm_id)

            invoice = Invoice(
                invoice_number=self.generate_invoice_number(),
                case_id=case.id,
                amount_eur=amount,
                status=InvoiceStatus.ISSUED,
                issued_by=actor.id,
            )
            self.db.add(invoice)
            self.db.flush()
            uow.ledger.record(
                case, BillingEventType.INVOICE_CREATED, amount, actor.id,
                notes=notes, invoice_id=invoice.id,
            )

        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} issued on case {case_id} for {amount}")
        return invoice

    def _transition(
        self, invoice_id: str, actor: User, status: InvoiceStatus, event_type: BillingEventType,
        notes: Optional[str],
    ) -> Invoice:
        with BillingUnitOfWork(self.db) as uow:
            invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            case = uow.lock_case(invoice.case_id)
            ensure_financial_access(actor, case.firm_id)
            self.db.refresh(invoice, with_for_update=True)
            if invoice.status != InvoiceStatus.ISSUED:
                raise ValidationError(
                    f"Invoice {invoice.invoice_number} is {invoice.status.value}; only issued invoices can change"
                )

            uow.ledger.record(
                case, event_type, invoice.amount_eur, actor.id,
                notes=notes, invoice_id=invoice.id,
            )
            invoice.status = status
            now = datetime.now(timezone.utc)
            if status == InvoiceStatus.PAID:
                invoice.paid_at = now
            else:
                invoice.cancelled_at = now

        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} marked {status.value} by {actor.id}")
        return invoice

    def cancel_invoice(self, invoice_id: str, actor: User, notes: Optional[str] = None) -> Invoice:
        return self._transition(invoice_id, actor, InvoiceStatus.CANCELLED, BillingEventType.INVOICE_CANCELLED, notes)

    def mark_invoice_paid(self, invoice_id: str, actor: User, notes: Optional[str] = None) -> Invoice:
        return self._transition(invoice_id, actor, InvoiceStatus.PAID, BillingEventType.INVOICE_PAID, notes)
