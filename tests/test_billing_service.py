from decimal import Decimal

import pytest

from app.billing.exceptions import (
    CaseArchivedError, CaseNotApprovedError, ConfigurationError, PermissionDeniedError, ValidationError,
)
from app.billing.periods import utc_today
from app.cases.schemas import BillingConfigUpdate, CaseCreate, TimeEntryCreate
from app.models import (
    BillingEventType, BillingType, Case, CaseApproval, CaseBillingHistory, CaseRateHistory, RateTier,
    RetainerPeriod, UserRole,
)
from app.services.approval_service import ApprovalService
from app.services.billing_service import BillingService, quantize_hours
from app.services.case_service import CaseService
from app.services.firm_service import FirmService


def create_case(db, user, **billing):
    return CaseService(db).create_case(CaseCreate(title="Harbor lease dispute", **billing), user)


def fixed_case(db, user, amount=2_200_000):
    return create_case(db, user, billing_type=BillingType.FIXED, fixed_amount=amount)


def retainer_case(db, user, amount=500_000):
    return create_case(
        db, user,
        billing_type=BillingType.RETAINER,
        retainer_amount=amount,
        retainer_period=RetainerPeriod.MONTHLY,
        retainer_auto_renew=True,
        retainer_rollover=False,
    )


def log(db, case, user, hours, billable=True):
    return BillingService(db).log_time_entry(
        case.id, TimeEntryCreate(hours=Decimal(str(hours)), billable=billable), user
    )


def ledger_rows(db, case):
    return (
        db.query(CaseBillingHistory)
        .filter(CaseBillingHistory.case_id == case.id)
        .order_by(CaseBillingHistory.id)
        .all()
    )


# =====================================================
# CASE CREATION
# =====================================================

def test_fixed_amount_zero_is_rejected_at_creation(db, partner):
    with pytest.raises(ValidationError):
        fixed_case(db, partner, amount=0)
    assert db.query(Case).count() == 0


def test_inconsistent_billing_fields_are_rejected(db, partner):
    with pytest.raises(ValidationError):
        create_case(db, partner, billing_type=BillingType.HOURLY, fixed_amount=100_000)
    with pytest.raises(ValidationError):
        create_case(db, partner, billing_type=BillingType.RETAINER, retainer_amount=100_000)
    assert db.query(Case).count() == 0


def test_fixed_case_opens_ledger_with_initial_amount(db, partner):
    case = fixed_case(db, partner)
    rows = ledger_rows(db, case)
    assert case.case_number.startswith("CASE-")
    assert len(rows) == 1
    assert rows[0].event_type == BillingEventType.FIXED_AMOUNT_CHANGED
    assert rows[0].amount_eur == Decimal("22000.00")
    assert rows[0].previous_amount_eur is None


# =====================================================
# HOURLY SCENARIO AND FINANCIALS
# =====================================================

def test_hourly_case_scenario(db, partner, associate):
    case = create_case(db, partner)
    log(db, case, partner, 2)
    log(db, case, associate, "1.5")
    log(db, case, associate, 4, billable=False)

    service = BillingService(db)
    financials = service.get_case_financials(case.id, partner)
    assert financials.billing_type == BillingType.HOURLY
    assert financials.billed_value == Decimal("1350.00")
    assert financials.projected_value == Decimal("1350.00")
    assert financials.profitability is None
    assert service.billing_history(case.id, partner).events == []


def test_fixed_case_overrun(db, partner):
    case = fixed_case(db, partner)
    for _ in range(7):
        log(db, case, partner, 9)
    financials = BillingService(db).get_case_financials(case.id, partner)
    assert financials.billed_value == Decimal("22000.00")
    assert financials.projected_value == Decimal("28350.00")
    assert financials.profitability == Decimal("-6350.00")
    assert financials.profitability_status == "overrun"


def test_financials_restricted_to_partners_and_owners(db, partner, associate, business_owner, outside_partner):
    case = fixed_case(db, partner)
    service = BillingService(db)
    assert service.get_case_financials(case.id, business_owner).billed_value == Decimal("22000.00")
    with pytest.raises(PermissionDeniedError):
        service.get_case_financials(case.id, associate)
    with pytest.raises(PermissionDeniedError):
        service.get_case_financials(case.id, outside_partner)


def test_retainer_usage_uses_partner_tier_rate(db, partner):
    case = retainer_case(db, partner, amount=450_000)
    log(db, case, partner, 4)
    usage = BillingService(db).retainer_usage(case.id, partner)
    assert usage.partner_rate == Decimal("450.00")
    assert usage.hours_included == Decimal("10.00")
    assert usage.hours_used == Decimal("4.00")
    history = BillingService(db).retainer_usage_history(case.id, partner, limit=6)
    assert len(history) == 1


# =====================================================
# CHANGE BILLING AMOUNT
# =====================================================

def test_change_billing_amount_writes_ledger_then_updates_case(db, partner):
    case = fixed_case(db, partner)
    BillingService(db).change_billing_amount(case.id, 2_500_000, partner, notes="Scope extended to appeal")
    db.refresh(case)
    rows = ledger_rows(db, case)
    assert case.fixed_amount == 2_500_000
    assert len(rows) == 2
    assert rows[-1].previous_amount_eur == Decimal("22000.00")
    assert rows[-1].amount_eur == Decimal("25000.00")
    assert rows[-1].notes == "Scope extended to appeal"
    assert BillingService(db).get_case_financials(case.id, partner).billed_value == Decimal("25000.00")


def test_unchanged_amount_still_writes_one_row(db, partner):
    case = fixed_case(db, partner)
    BillingService(db).change_billing_amount(case.id, 2_200_000, partner)
    assert len(ledger_rows(db, case)) == 2


def test_invalid_amounts_write_nothing(db, partner):
    fixed = fixed_case(db, partner)
    retainer = retainer_case(db, partner)
    hourly = create_case(db, partner)
    service = BillingService(db)

    with pytest.raises(ValidationError):
        service.change_billing_amount(fixed.id, 0, partner)
    with pytest.raises(ValidationError):
        service.change_billing_amount(retainer.id, -100, partner)
    with pytest.raises(ValidationError):
        service.change_billing_amount(hourly.id, 100_000, partner)

    db.refresh(fixed)
    assert fixed.fixed_amount == 2_200_000
    assert len(ledger_rows(db, fixed)) == 1
    assert len(ledger_rows(db, retainer)) == 1


def test_retainer_amount_may_drop_to_zero(db, partner):
    case = retainer_case(db, partner)
    BillingService(db).change_billing_amount(case.id, 0, partner)
    db.refresh(case)
    assert case.retainer_amount == 0
    assert ledger_rows(db, case)[-1].amount_eur == Decimal("0.00")


def test_billing_changes_allowed_while_pending(db, associate):
    case = fixed_case(db, associate)
    BillingService(db).change_billing_amount(case.id, 1_800_000, associate)
    db.refresh(case)
    assert case.fixed_amount == 1_800_000


# =====================================================
# BILLING CONFIGURATION UPDATES
# =====================================================

def test_switching_billing_type_closes_and_opens_ledger_amounts(db, partner):
    case = fixed_case(db, partner)
    patch = BillingConfigUpdate(
        billing_type=BillingType.RETAINER,
        retainer_amount=600_000,
        retainer_period=RetainerPeriod.QUARTERLY,
        retainer_auto_renew=True,
        retainer_rollover=True,
    )
    BillingService(db).update_billing_config(case.id, patch, partner)
    db.refresh(case)

    assert case.billing_type == BillingType.RETAINER
    assert case.fixed_amount is None
    assert case.retainer_amount == 600_000
    assert case.retainer_started_on == utc_today()
    closing, opening = ledger_rows(db, case)[-2:]
    assert closing.event_type == BillingEventType.FIXED_AMOUNT_CHANGED
    assert closing.billing_type == BillingType.FIXED
    assert closing.amount_eur == Decimal("0.00")
    assert closing.previous_amount_eur == Decimal("22000.00")
    assert opening.event_type == BillingEventType.RETAINER_AMOUNT_CHANGED
    assert opening.amount_eur == Decimal("6000.00")
    assert opening.previous_amount_eur is None


def test_same_type_update_only_touches_supplied_fields(db, partner):
    case = retainer_case(db, partner)
    BillingService(db).update_billing_config(case.id, BillingConfigUpdate(retainer_rollover=True), partner)
    db.refresh(case)
    assert case.retainer_rollover is True
    assert case.retainer_amount == 500_000
    assert len(ledger_rows(db, case)) == 1


def test_fields_of_another_billing_type_are_rejected(db, partner):
    case = fixed_case(db, partner)
    with pytest.raises(ValidationError):
        BillingService(db).update_billing_config(case.id, BillingConfigUpdate(retainer_amount=100_000), partner)
    with pytest.raises(ValidationError):
        BillingService(db).update_billing_config(
            case.id, BillingConfigUpdate(billing_type=BillingType.RETAINER, retainer_amount=100_000), partner
        )
    db.refresh(case)
    assert case.billing_type == BillingType.FIXED
    assert len(ledger_rows(db, case)) == 1


def test_custom_rate_change_records_effective_rate_history(db, partner):
    case = create_case(db, partner)
    BillingService(db).update_billing_config(
        case.id, BillingConfigUpdate(custom_rates={"partner": "500", "associate": "300"}), partner
    )
    rows = db.query(CaseRateHistory).filter(CaseRateHistory.case_id == case.id).all()
    assert len(rows) == 1
    assert rows[0].rate_type == RateTier.PARTNER
    assert rows[0].old_rate == Decimal("450.00")
    assert rows[0].new_rate == Decimal("500.00")
    assert rows[0].changed_by == partner.id


def test_unknown_rate_tier_is_rejected(db, partner):
    case = create_case(db, partner)
    with pytest.raises(ValidationError):
        BillingService(db).update_billing_config(
            case.id, BillingConfigUpdate(custom_rates={"counsel": "700"}), partner
        )


# =====================================================
# TIME ENTRIES
# =====================================================

def test_billable_time_requires_approval(db, associate, partner):
    case = create_case(db, associate)
    with pytest.raises(CaseNotApprovedError):
        log(db, case, associate, 2)

    research = log(db, case, associate, 1, billable=False)
    assert research.billable is False

    approval = db.query(CaseApproval).filter(CaseApproval.case_id == case.id).one()
    ApprovalService(db).approve(approval.id, partner)
    entry = log(db, case, associate, 2)
    assert entry.hourly_rate == Decimal("300.00")


def test_rejected_case_refuses_billable_time(db, associate, partner):
    case = create_case(db, associate)
    approval = db.query(CaseApproval).filter(CaseApproval.case_id == case.id).one()
    ApprovalService(db).reject(approval.id, partner, "Client identity has not been verified")
    with pytest.raises(CaseNotApprovedError):
        log(db, case, associate, 1)


def test_logged_rate_is_immutable(db, partner):
    case = create_case(db, partner)
    first = log(db, case, partner, 1)

    FirmService(db).update_default_rates(
        partner.firm_id, {"partner": "500", "associate": "320", "paralegal": "160"}, partner
    )
    second = log(db, case, partner, 1)
    BillingService(db).update_billing_config(case.id, BillingConfigUpdate(custom_rates={"partner": "550"}), partner)
    third = log(db, case, partner, 1)

    db.refresh(first)
    assert first.hourly_rate == Decimal("450.00")
    assert second.hourly_rate == Decimal("500.00")
    assert third.hourly_rate == Decimal("550.00")


def test_hours_are_rounded_to_quarter_hours():
    assert quantize_hours("1.1") == Decimal("1.00")
    assert quantize_hours("1.125") == Decimal("1.25")
    assert quantize_hours("0.2") == Decimal("0.25")
    with pytest.raises(ValidationError):
        quantize_hours("0.1")
    with pytest.raises(ValidationError):
        quantize_hours("1000")


def test_time_from_another_firm_is_refused(db, partner, outside_partner):
    case = create_case(db, partner)
    with pytest.raises(PermissionDeniedError):
        log(db, case, outside_partner, 1)


def test_missing_firm_default_rate_is_configuration_error(db, make_firm, make_user):
    firm = make_firm(rates={"partner": "450.00", "associate": "300.00"})
    owner = make_user(firm, UserRole.PARTNER, "Ruth Vance")
    paralegal = make_user(firm, UserRole.PARALEGAL, "Theo Marsh")
    case = create_case(db, owner)
    with pytest.raises(ConfigurationError):
        log(db, case, paralegal, 1)


# =====================================================
# ARCHIVED CASES
# =====================================================

def test_archived_case_freezes_billing(db, partner):
    case = fixed_case(db, partner)
    log(db, case, partner, 2)
    CaseService(db).archive_case(case.id, partner)

    with pytest.raises(CaseArchivedError):
        BillingService(db).change_billing_amount(case.id, 2_500_000, partner)
    with pytest.raises(CaseArchivedError):
        log(db, case, partner, 1, billable=False)

    db.refresh(case)
    assert case.fixed_amount == 2_200_000
    assert len(ledger_rows(db, case)) == 1
    assert BillingService(db).get_case_financials(case.id, partner).projected_value == Decimal("900.00")


def test_only_reviewers_archive(db, partner, associate):
    case = create_case(db, partner)
    with pytest.raises(PermissionDeniedError):
        CaseService(db).archive_case(case.id, associate)
