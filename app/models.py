from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Enum, Date, DECIMAL, JSON, BigInteger
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
from datetime import datetime, timezone
import enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# =====================================================
# ENUMS
# =====================================================

class UserRole(str, enum.Enum):
    PARTNER = "partner"
    ASSOCIATE = "associate"
    PARALEGAL = "paralegal"
    BUSINESS_OWNER = "business_owner"

class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"

class RateTier(str, enum.Enum):
    PARTNER = "partner"
    ASSOCIATE = "associate"
    PARALEGAL = "paralegal"

class CaseStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    CLOSED = "closed"
    ARCHIVED = "archived"

class BillingType(str, enum.Enum):
    HOURLY = "hourly"
    FIXED = "fixed"
    RETAINER = "retainer"

class RetainerPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class BillingEventType(str, enum.Enum):
    INVOICE_CREATED = "invoice_created"
    INVOICE_CANCELLED = "invoice_cancelled"
    INVOICE_PAID = "invoice_paid"
    FIXED_AMOUNT_CHANGED = "fixed_amount_changed"
    RETAINER_AMOUNT_CHANGED = "retainer_amount_changed"

class InvoiceStatus(str, enum.Enum):
    ISSUED = "issued"
    PAID = "paid"
    CANCELLED = "cancelled"

# =====================================================
# FIRMS & USERS
# =====================================================

class Firm(Base):
    __tablename__ = "firms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    default_rates = Column(JSON, nullable=False)  # {"partner": "450.00", "associate": ..., "paralegal": ...}
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("User", back_populates="firm")
    cases = relationship("Case", back_populates="firm")

class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    firm_id = Column(String(36), ForeignKey("firms.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(Enum(UserRole), nullable=False, index=True)
    status = Column(Enum(UserStatus), default=UserStatus.ACTIVE, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    firm = relationship("Firm", back_populates="users")
    time_entries = relationship("TimeEntry", back_populates="user")

# =====================================================
# CASES & BILLING CONFIGURATION
# =====================================================

class Case(Base):
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    case_number = Column(String(50), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    firm_id = Column(String(36), ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String(36), index=True)  # owned by the client registry
    status = Column(Enum(CaseStatus), nullable=False, default=CaseStatus.PENDING_APPROVAL, index=True)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)

    # Billing configuration
    billing_type = Column(Enum(BillingType), nullable=False, default=BillingType.HOURLY)
    custom_rates = Column(JSON)  # partial {"partner": "500.00"}
    fixed_amount = Column(BigInteger)  # cents
    retainer_amount = Column(BigInteger)  # cents
    retainer_period = Column(Enum(RetainerPeriod))
    retainer_auto_renew = Column(Boolean)
    retainer_rollover = Column(Boolean)
    retainer_started_on = Column(Date)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    archived_at = Column(DateTime(timezone=True))

    # Relationships
    firm = relationship("Firm", back_populates="cases")
    creator = relationship("User", foreign_keys=[created_by])
    approval = relationship("CaseApproval", back_populates="case", uselist=False)
    time_entries = relationship("TimeEntry", back_populates="case")
    rate_history = relationship("CaseRateHistory", back_populates="case", order_by="CaseRateHistory.id.desc()")
    invoices = relationship("Invoice", back_populates="case")

class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    hours = Column(DECIMAL(5, 2), nullable=False)
    hourly_rate = Column(DECIMAL(10, 2), nullable=False)  # resolved once, never recomputed
    billable = Column(Boolean, nullable=False, default=True)
    work_date = Column(Date, nullable=False, index=True)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    case = relationship("Case", back_populates="time_entries")
    user = relationship("User", back_populates="time_entries")

class CaseRateHistory(Base):
    __tablename__ = "case_rate_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    firm_id = Column(String(36), ForeignKey("firms.id"), nullable=False)
    rate_type = Column(Enum(RateTier), nullable=False)
    old_rate = Column(DECIMAL(10, 2), nullable=False)
    new_rate = Column(DECIMAL(10, 2), nullable=False)
    changed_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    case = relationship("Case", back_populates="rate_history")

# =====================================================
# APPROVAL WORKFLOW
# =====================================================

class CaseApproval(Base):
    __tablename__ = "case_approvals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, unique=True)
    firm_id = Column(String(36), ForeignKey("firms.id"), nullable=False, index=True)
    submitted_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    status = Column(Enum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING, index=True)
    reviewed_by = Column(String(36), ForeignKey("users.id"))
    reviewed_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    revision_count = Column(Integer, nullable=False, default=0)

    # Relationships
    case = relationship("Case", back_populates="approval")
    submitter = relationship("User", foreign_keys=[submitted_by])
    reviewer = relationship("User", foreign_keys=[reviewed_by])

class CaseAuditLog(Base):
    __tablename__ = "case_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    action = Column(String(50), nullable=False)
    field_name = Column(String(50))
    old_value = Column(Text)
    new_value = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

# =====================================================
# LEDGER & INVOICES
# =====================================================

class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    amount_eur = Column(DECIMAL(15, 2), nullable=False)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.ISSUED, index=True)
    issued_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    # Relationships
    case = relationship("Case", back_populates="invoices")

class CaseBillingHistory(Base):
    """Append-only billing ledger. Rows are never updated or deleted."""
    __tablename__ = "case_billing_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    firm_id = Column(String(36), ForeignKey("firms.id"), nullable=False)
    event_type = Column(Enum(BillingEventType), nullable=False, index=True)
    billing_type = Column(Enum(BillingType), nullable=False)  # snapshot at event time
    amount_eur = Column(DECIMAL(15, 2), nullable=False)
    previous_amount_eur = Column(DECIMAL(15, 2))
    notes = Column(Text)
    invoice_id = Column(String(36), ForeignKey("invoices.id"))
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)
