from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.errors import AuthorizationError, ConflictError, StateError, ValidationError
from app.core.permissions import Role
from app.models.loan_approval import LoanApprovalRecord
from app.schemas.loan import DisbursementRequest, LoanApplicationUpdate
from app.schemas.settings import PermissionSettings, PermissionSettingsUpdate
from app.services import approval_workflow, authorization_codes, disbursement, notifications
from app.services import loan_applications as application_service
from app.services import settings as settings_service
from conftest import make_application, make_borrower

STRICT = PermissionSettings(override_limit=Decimal("50000"))
OVERRIDE = PermissionSettings(override_limit=Decimal("50000"), allow_loan_officer_manager_override=True)


async def _set_permissions(db, admin, **values) -> None:
    await settings_service.update_permission_settings(db, admin, PermissionSettingsUpdate(**values))


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------


def test_both_stages_required_by_default() -> None:
    required, waived = approval_workflow.required_stages({}, STRICT, Decimal("10000"))

    assert required == ("loan_officer", "manager")
    assert waived == ()


@pytest.mark.parametrize(
    ("amount", "manager_required"),
    [(Decimal("40000"), False), (Decimal("50000"), False), (Decimal("60000"), True)],
)
def test_override_waives_manager_up_to_limit(amount, manager_required) -> None:
    required, _ = approval_workflow.required_stages({}, OVERRIDE, amount)

    assert ("manager" in required) is manager_required


def test_recorded_stage_is_never_waived() -> None:
    settings = PermissionSettings(bypass_manager_approval=True)

    required, waived = approval_workflow.required_stages({"manager": "approved"}, settings, Decimal("1"))

    assert "manager" in required
    assert waived == ()


def test_evaluate_statuses() -> None:
    amount = Decimal("10000")

    assert approval_workflow.evaluate({}, STRICT, amount).status == "pending"
    assert approval_workflow.evaluate({"loan_officer": "approved"}, STRICT, amount).status == "under_review"
    assert (
        approval_workflow.evaluate({"loan_officer": "approved", "manager": "approved"}, STRICT, amount).status
        == "approved"
    )
    assert approval_workflow.evaluate({"loan_officer": "rejected"}, STRICT, amount).status == "rejected"
    assert (
        approval_workflow.evaluate({"loan_officer": "approved", "manager": "rejected"}, STRICT, amount).status
        == "rejected"
    )


def test_loan_officer_may_act_for_manager_only_under_override() -> None:
    approval_workflow.authorize_stage(Role.LOAN_OFFICER, "manager", OVERRIDE, Decimal("40000"))

    with pytest.raises(AuthorizationError):
        approval_workflow.authorize_stage(Role.LOAN_OFFICER, "manager", OVERRIDE, Decimal("60000"))
    with pytest.raises(AuthorizationError):
        approval_workflow.authorize_stage(Role.LOAN_OFFICER, "manager", STRICT, Decimal("40000"))


@pytest.mark.parametrize("role", [Role.CASHIER, Role.BORROWER, Role.AUDITOR])
def test_non_reviewers_cannot_record_any_stage(role) -> None:
    for stage in approval_workflow.STAGE_ORDER:
        with pytest.raises(AuthorizationError):
            approval_workflow.authorize_stage(role, stage, STRICT, Decimal("1000"))


# ---------------------------------------------------------------------------
# Recording decisions
# ---------------------------------------------------------------------------


async def test_two_stage_approval(db, loan_officer, manager, published) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, requested_amount=Decimal("40000"))

    first = await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="approved"
    )
    assert first.application_status == "under_review"
    assert first.required_stages == ("loan_officer", "manager")

    second = await approval_workflow.record_decision(
        db,
        manager,
        application.id,
        approval_stage="manager",
        decision="approved",
        notes="Looks good",
    )
    await db.refresh(application)

    assert second.application_status == "approved"
    assert application.status == "approved"
    assert application.approved_amount == Decimal("40000.00")
    assert application.reviewed_by == "Mina Manager"
    assert application.review_date == datetime.now(timezone.utc).date()
    assert second.record.decided_by == "Mina Manager"
    assert second.record.decider_role == "manager"
    events = [event for event, _ in published]
    assert events.count(notifications.APPROVAL_RECORDED) == 2
    assert notifications.APPLICATION_APPROVED in events


async def test_override_approves_small_loan_on_officer_decision(db, admin, loan_officer) -> None:
    await _set_permissions(db, admin, allow_loan_officer_manager_override=True, override_limit=Decimal("50000"))
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, requested_amount=Decimal("40000"))

    outcome = await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="approved"
    )

    assert outcome.application_status == "approved"
    assert outcome.required_stages == ("loan_officer",)


async def test_override_does_not_cover_large_loan(db, admin, loan_officer) -> None:
    await _set_permissions(db, admin, allow_loan_officer_manager_override=True, override_limit=Decimal("50000"))
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, requested_amount=Decimal("60000"))

    outcome = await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="approved"
    )

    assert outcome.application_status == "under_review"
    with pytest.raises(AuthorizationError):
        await approval_workflow.record_decision(
            db, loan_officer, application.id, approval_stage="manager", decision="approved"
        )


async def test_bypass_loan_officer_lets_manager_approve_alone(db, admin, manager) -> None:
    await _set_permissions(db, admin, bypass_loan_officer_approval=True)
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    outcome = await approval_workflow.record_decision(
        db, manager, application.id, approval_stage="manager", decision="approved"
    )

    assert outcome.application_status == "approved"


async def test_bypass_manager_lets_officer_approve_alone(db, admin, loan_officer) -> None:
    await _set_permissions(db, admin, bypass_manager_approval=True)
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, requested_amount=Decimal("200000"))

    outcome = await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="approved"
    )

    assert outcome.application_status == "approved"


async def test_duplicate_stage_is_a_conflict(db, loan_officer) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)
    application_id = application.id
    await approval_workflow.record_decision(
        db, loan_officer, application_id, approval_stage="loan_officer", decision="approved"
    )

    with pytest.raises(ConflictError):
        await approval_workflow.record_decision(
            db, loan_officer, application_id, approval_stage="loan_officer", decision="rejected"
        )

    records = (
        await db.execute(select(LoanApprovalRecord).where(LoanApprovalRecord.application_id == application_id))
    ).scalars().all()
    assert len(records) == 1


async def test_rejection_is_terminal(db, loan_officer, manager, published) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    outcome = await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="rejected"
    )
    assert outcome.application_status == "rejected"
    assert notifications.APPLICATION_REJECTED in [event for event, _ in published]

    with pytest.raises(StateError):
        await approval_workflow.record_decision(
            db, manager, application.id, approval_stage="manager", decision="approved"
        )
    await db.refresh(application)
    assert application.status == "rejected"


async def test_manager_rejection_after_officer_approval(db, loan_officer, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)
    await approval_workflow.record_decision(
        db, loan_officer, application.id, approval_stage="loan_officer", decision="approved"
    )

    outcome = await approval_workflow.record_decision(
        db, manager, application.id, approval_stage="manager", decision="rejected"
    )
    await db.refresh(application)

    assert outcome.application_status == "rejected"
    assert application.approved_amount is None


async def test_cashier_stage_is_rejected_as_input(db, admin) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    with pytest.raises(ValidationError):
        await approval_workflow.record_decision(
            db, admin, application.id, approval_stage="cashier", decision="approved"
        )


async def test_wrong_role_for_stage(db, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)
    application_id = application.id

    with pytest.raises(AuthorizationError):
        await approval_workflow.record_decision(
            db, cashier, application_id, approval_stage="loan_officer", decision="approved"
        )
    with pytest.raises(AuthorizationError):
        await approval_workflow.record_decision(
            db, loan_officer, application_id, approval_stage="manager", decision="approved"
        )
    await db.refresh(application)
    assert application.status == "pending"


async def test_admin_may_record_either_stage(db, admin) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    await approval_workflow.record_decision(
        db, admin, application.id, approval_stage="loan_officer", decision="approved"
    )
    outcome = await approval_workflow.record_decision(
        db, admin, application.id, approval_stage="manager", decision="approved"
    )

    assert outcome.application_status == "approved"
    records = await approval_workflow.list_approvals(db, application.id)
    assert [record.approval_stage for record in records] == ["loan_officer", "manager"]


async def test_officer_override_cannot_be_inflated_after_approval(db, admin, loan_officer, manager, cashier) -> None:
    await _set_permissions(db, admin, allow_loan_officer_manager_override=True, override_limit=Decimal("50000"))
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, requested_amount=Decimal("40000"))
    application_id = application.id

    outcome = await approval_workflow.record_decision(
        db, loan_officer, application_id, approval_stage="loan_officer", decision="approved"
    )
    assert outcome.application_status == "approved"

    with pytest.raises(StateError):
        await application_service.update_application(
            db,
            loan_officer,
            application_id,
            LoanApplicationUpdate(approved_amount=Decimal("900000"), interest_rate=Decimal("12"), term_months=12),
        )
    await application_service.update_application(
        db, loan_officer, application_id, LoanApplicationUpdate(interest_rate=Decimal("12"), term_months=12)
    )
    issued = await authorization_codes.issue_code(db, manager, application_id)
    loan = await disbursement.disburse(
        db, cashier, application_id, DisbursementRequest(authorization_code=issued.code)
    )

    assert loan.principal_amount == Decimal("40000")
    assert loan.principal_amount <= Decimal("50000")
