from decimal import Decimal

import pytest

from app.core.errors import AuthorizationError, StateError, ValidationError
from app.schemas.loan import LoanApplicationCreate, LoanApplicationUpdate
from app.services import loan_applications as application_service
from conftest import make_application, make_borrower


def _create_payload(borrower_id, **overrides) -> LoanApplicationCreate:
    values = {
        "borrower_id": borrower_id,
        "loan_type": "personal",
        "requested_amount": Decimal("40000"),
        "purpose": "Inventory",
    }
    values.update(overrides)
    return LoanApplicationCreate(**values)


async def test_create_application_runs_assessment(db, borrower_actor) -> None:
    borrower = await make_borrower(db)

    application = await application_service.create_application(
        db, borrower_actor, _create_payload(borrower.id, collateral_value=Decimal("40000"))
    )

    assert application.status == "pending"
    assert application.credit_score == 700
    assert application.eligibility_status == "eligible"
    assert application.risk_tier == "low"
    assert application.recommendation
    assert application.interest_type == "compound"
    assert application.grace_period_days == 5
    assert application.penalty_rate == Decimal("0.5")
    assert application.approved_amount is None


async def test_create_application_keeps_explicit_terms(db, borrower_actor) -> None:
    borrower = await make_borrower(db)

    application = await application_service.create_application(
        db,
        borrower_actor,
        _create_payload(borrower.id, interest_type="simple", grace_period_days=0, credit_score=610),
    )

    assert application.interest_type == "simple"
    assert application.grace_period_days == 0
    assert application.credit_score == 610
    assert application.eligibility_status == "manual_review"


@pytest.mark.parametrize(
    ("borrower_overrides", "error"),
    [
        ({"kyc_status": "pending"}, StateError),
        ({"kyc_status": "rejected"}, StateError),
        ({"status": "blacklisted"}, StateError),
        ({"monthly_income": Decimal("0"), "monthly_expenses": Decimal("0")}, ValidationError),
    ],
)
async def test_create_application_preconditions(db, borrower_actor, borrower_overrides, error) -> None:
    borrower = await make_borrower(db, **borrower_overrides)

    with pytest.raises(error):
        await application_service.create_application(db, borrower_actor, _create_payload(borrower.id))


async def test_request_above_available_credit_is_refused(db, borrower_actor) -> None:
    borrower = await make_borrower(db)

    with pytest.raises(ValidationError) as exc_info:
        await application_service.create_application(
            db, borrower_actor, _create_payload(borrower.id, requested_amount=Decimal("60000"))
        )
    assert exc_info.value.details["available_credit"] == "50000.00"


async def test_review_moves_to_under_review_and_sets_terms(db, loan_officer) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    updated = await application_service.update_application(
        db,
        loan_officer,
        application.id,
        LoanApplicationUpdate(status="under_review", interest_rate=Decimal("12"), term_months=12),
    )

    assert updated.status == "under_review"
    assert updated.interest_rate == Decimal("12")
    assert updated.term_months == 12
    assert updated.reviewed_by == "Omar Officer"
    assert updated.review_date is not None


async def test_manual_update_cannot_approve_or_disburse(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)
    application_id = application.id

    for target in ("approved", "disbursed"):
        with pytest.raises(StateError):
            await application_service.update_application(
                db, manager, application_id, LoanApplicationUpdate(status=target)
            )


async def test_rejected_application_terms_are_locked(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, status="rejected")

    with pytest.raises(StateError):
        await application_service.update_application(
            db, manager, application.id, LoanApplicationUpdate(term_months=6)
        )


async def test_approved_application_accepts_term_updates(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(
        db, borrower, status="approved", approved_amount=Decimal("40000"), interest_rate=Decimal("10")
    )

    updated = await application_service.update_application(
        db, manager, application.id, LoanApplicationUpdate(term_months=18)
    )

    assert updated.term_months == 18
    assert updated.status == "approved"


async def test_invalid_terms_are_rejected(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    with pytest.raises(ValidationError):
        await application_service.update_application(
            db, manager, application.id, LoanApplicationUpdate(term_months=0, interest_rate=Decimal("-1"))
        )


async def test_update_requires_reviewer_role(db, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower)

    with pytest.raises(AuthorizationError):
        await application_service.update_application(
            db, cashier, application.id, LoanApplicationUpdate(status="under_review")
        )


async def test_list_applications_filters(db) -> None:
    first = await make_borrower(db)
    second = await make_borrower(db, email="other@example.com")
    await make_application(db, first)
    await make_application(db, first, status="approved")
    await make_application(db, second)

    pending, pending_total = await application_service.list_applications(
        db, limit=10, offset=0, statuses=["pending"]
    )
    mine, mine_total = await application_service.list_applications(db, limit=10, offset=0, borrower_id=first.id)
    page, total = await application_service.list_applications(db, limit=1, offset=0)

    assert pending_total == 2
    assert {item.status for item in pending} == {"pending"}
    assert mine_total == 2
    assert {item.borrower_id for item in mine} == {first.id}
    assert total == 3
    assert len(page) == 1


async def test_approved_amount_cannot_exceed_request(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, status="under_review")

    with pytest.raises(ValidationError):
        await application_service.update_application(
            db, manager, application.id, LoanApplicationUpdate(approved_amount=Decimal("40000.01"))
        )


async def test_approved_amount_below_request_is_accepted_before_approval(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, status="under_review")

    updated = await application_service.update_application(
        db, manager, application.id, LoanApplicationUpdate(approved_amount=Decimal("35000"))
    )

    assert updated.approved_amount == Decimal("35000")


async def test_approved_amount_is_fixed_once_approved(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(
        db, borrower, status="approved", approved_amount=Decimal("40000"), interest_rate=Decimal("10")
    )
    application_id = application.id

    with pytest.raises(StateError):
        await application_service.update_application(
            db, manager, application_id, LoanApplicationUpdate(approved_amount=Decimal("30000"))
        )
    unchanged = await application_service.update_application(
        db, manager, application_id, LoanApplicationUpdate(approved_amount=Decimal("40000"), term_months=12)
    )

    assert unchanged.approved_amount == Decimal("40000")
    assert unchanged.term_months == 12
