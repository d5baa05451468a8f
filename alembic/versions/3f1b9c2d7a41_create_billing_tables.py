"""Create firm, case billing, approval and ledger tables

Revision ID: 3f1b9c2d7a41
Revises:
Create Date: 2026-10-18 09:12:44.204318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1b9c2d7a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("PARTNER", "ASSOCIATE", "PARALEGAL", "BUSINESS_OWNER", name="userrole")
user_status = sa.Enum("ACTIVE", "INACTIVE", "PENDING", name="userstatus")
rate_tier = sa.Enum("PARTNER", "ASSOCIATE", "PARALEGAL", name="ratetier")
case_status = sa.Enum("PENDING_APPROVAL", "ACTIVE", "ON_HOLD", "CLOSED", "ARCHIVED", name="casestatus")
billing_type = sa.Enum("HOURLY", "FIXED", "RETAINER", name="billingtype")
# second reference to the same type; created with the cases table
billing_type_snapshot = postgresql.ENUM("HOURLY", "FIXED", "RETAINER", name="billingtype", create_type=False)
retainer_period = sa.Enum("MONTHLY", "QUARTERLY", "ANNUALLY", name="retainerperiod")
approval_status = sa.Enum("PENDING", "APPROVED", "REJECTED", name="approvalstatus")
billing_event_type = sa.Enum(
    "INVOICE_CREATED", "INVOICE_CANCELLED", "INVOICE_PAID", "FIXED_AMOUNT_CHANGED", "RETAINER_AMOUNT_CHANGED",
    name="billingeventtype",
)
invoice_status = sa.Enum("ISSUED", "PAID", "CANCELLED", name="invoicestatus")


def upgrade():
    op.create_table(
        "firms",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("default_rates", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("firm_id", sa.String(length=36), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("status", user_status),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_users_firm_id", "users", ["firm_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_status", "users", ["status"])

    op.create_table(
        "cases",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("case_number", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("firm_id", sa.String(length=36), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("client_id", sa.String(length=36)),
        sa.Column("status", case_status, nullable=False),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("billing_type", billing_type, nullable=False),
        sa.Column("custom_rates", sa.JSON()),
        sa.Column("fixed_amount", sa.BigInteger()),
        sa.Column("retainer_amount", sa.BigInteger()),
        sa.Column("retainer_period", retainer_period),
        sa.Column("retainer_auto_renew", sa.Boolean()),
        sa.Column("retainer_rollover", sa.Boolean()),
        sa.Column("retainer_started_on", sa.Date()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_cases_case_number", "cases", ["case_number"], unique=True)
    op.create_index("ix_cases_firm_id", "cases", ["firm_id"])
    op.create_index("ix_cases_client_id", "cases", ["client_id"])
    op.create_index("ix_cases_status", "cases", ["status"])

    op.create_table(
        "time_entries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("hours", sa.DECIMAL(5, 2), nullable=False),
        sa.Column("hourly_rate", sa.DECIMAL(10, 2), nullable=False),
        sa.Column("billable", sa.Boolean(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_time_entries_case_id", "time_entries", ["case_id"])
    op.create_index("ix_time_entries_user_id", "time_entries", ["user_id"])
    op.create_index("ix_time_entries_work_date", "time_entries", ["work_date"])

    op.create_table(
        "case_rate_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("firm_id", sa.String(length=36), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("rate_type", rate_tier, nullable=False),
        sa.Column("old_rate", sa.DECIMAL(10, 2), nullable=False),
        sa.Column("new_rate", sa.DECIMAL(10, 2), nullable=False),
        sa.Column("changed_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_case_rate_history_case_id", "case_rate_history", ["case_id"])

    op.create_table(
        "case_approvals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False, unique=True),
        sa.Column("firm_id", sa.String(length=36), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("submitted_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", approval_status, nullable=False),
        sa.Column("reviewed_by", sa.String(length=36), sa.ForeignKey("users.id")),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("revision_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_case_approvals_firm_id", "case_approvals", ["firm_id"])
    op.create_index("ix_case_approvals_submitted_at", "case_approvals", ["submitted_at"])
    op.create_index("ix_case_approvals_status", "case_approvals", ["status"])

    op.create_table(
        "case_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("field_name", sa.String(length=50)),
        sa.Column("old_value", sa.Text()),
        sa.Column("new_value", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_case_audit_log_case_id", "case_audit_log", ["case_id"])
    op.create_index("ix_case_audit_log_created_at", "case_audit_log", ["created_at"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_number", sa.String(length=50), nullable=False),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("amount_eur", sa.DECIMAL(15, 2), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("issued_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_case_id", "invoices", ["case_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "case_billing_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("firm_id", sa.String(length=36), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("event_type", billing_event_type, nullable=False),
        sa.Column("billing_type", billing_type_snapshot, nullable=False),
        sa.Column("amount_eur", sa.DECIMAL(15, 2), nullable=False),
        sa.Column("previous_amount_eur", sa.DECIMAL(15, 2)),
        sa.Column("notes", sa.Text()),
        sa.Column("invoice_id", sa.String(length=36), sa.ForeignKey("invoices.id")),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_case_billing_history_case_id", "case_billing_history", ["case_id"])
    op.create_index("ix_case_billing_history_event_type", "case_billing_history", ["event_type"])
    op.create_index("ix_case_billing_history_created_at", "case_billing_history", ["created_at"])


def downgrade():
    op.drop_table("case_billing_history")
    op.drop_table("invoices")
    op.drop_table("case_audit_log")
    op.drop_table("case_approvals")
    op.drop_table("case_rate_history")
    op.drop_table("time_entries")
    op.drop_table("cases")
    op.drop_table("users")
    op.drop_table("firms")

    bind = op.get_bind()
    for enum_type in (
        invoice_status, billing_event_type, approval_status, retainer_period,
        billing_type, case_status, rate_tier, user_status, user_role,
    ):
        enum_type.drop(bind, checkfirst=True)
