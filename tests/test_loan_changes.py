from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from app.schemas.loan import (
    ChangeRequestDecision,
    LoanRestructureCreate,
    LoanTransferCreate,
    PaymentCreate,
)
from app.services import loan_changes, loan_schedules, notifications, repayments
from conftest import make_borrower, make_disbursed_loan


def _approve(effective_date: date | None = None) -> ChangeRequestDecision:
    return ChangeRequestDecision(decision="approved", effective_date=effective_date)


async def test_restructure_request_previews_new_terms(db, manager, cashier, loan_officer, published) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    restructure = await loan_changes.request_restructure(
        db,
        loan_officer,
        loan.id,
        LoanRestructureCreate(new_term_months=24, reason="Lower installments", effective_date=date(2024, 2, 1)),
    )

    assert restructure.status == "pending"
    assert restructure.requested_by == "Omar Officer"
    assert restructure.restructured_principal == Decimal("100000.00")
    assert restructure.new_interest_rate == Decimal("12")
    assert restructure.new_interest_type == "compound"
    assert restructure.new_monthly_payment == Decimal("4707.35")
    assert restructure.new_total_amount == Decimal("112976.40")
    # Nothing changes on the loan until the request is approved.
    assert loan.term_months == 12
    assert loan.monthly_payment == Decimal("8884.88")
    assert notifications.LOAN_RESTRUCTURE_REQUESTED in [event for event, _ in published]


async def test_approved_restructure_replaces_loan_terms(db, manager, cashier, loan_officer, published) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    restructure = await loan_changes.request_restructure(
        db, loan_officer, loan.id, LoanRestructureCreate(new_term_months=24, reason="Lower installments")
    )

    decided = await loan_changes.decide_restructure(
        db, manager, loan.id, restructure.id, _approve(date(2024, 2, 1))
    )

    assert decided.status == "approved"
    assert decided.approved_by == "Mina Manager"
    assert decided.effective_date == date(2024, 2, 1)
    assert decided.previous_terms["monthly_payment"] == "8884.88"
    assert decided.previous_terms["total_amount"] == "106618.56"
    assert loan.term_months == 24
    assert loan.monthly_payment == Decimal("4707.35")
    assert loan.total_amount == Decimal("112976.40")
    assert loan.outstanding_balance == Decimal("112976.40")
    assert loan.restructured_date == date(2024, 2, 1)
    assert loan.next_due_date == date(2024, 3, 1)
    assert notifications.LOAN_RESTRUCTURED in [event for event, _ in published]

    schedule = loan_schedules.build_schedule(loan)
    assert len(schedule.entries) == 24
    assert schedule.entries[0].due_date == date(2024, 3, 1)


async def test_restructure_amortizes_only_the_principal_still_owed(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    await repayments.record_payment(
        db, cashier, loan.id, PaymentCreate(amount=Decimal("8884.88"), payment_date=date(2024, 2, 15))
    )
    # First installment: 1000.00 interest, 7884.88 principal.
    assert loan_schedules.remaining_principal(loan) == Decimal("92115.12")
    assert loan_schedules.remaining_installments(loan) == 11

    restructure = await loan_changes.request_restructure(
        db,
        loan_officer,
        loan.id,
        LoanRestructureCreate(new_term_months=8, new_interest_rate=Decimal("0"), reason="Hardship relief"),
    )
    await loan_changes.decide_restructure(db, manager, loan.id, restructure.id, _approve(date(2024, 2, 20)))

    assert loan.principal_amount == Decimal("92115.12")
    assert loan.monthly_payment == Decimal("11514.39")
    assert loan.outstanding_balance == Decimal("92115.12")
    assert loan.next_due_date == date(2024, 3, 20)


async def test_restructure_term_defaults_to_remaining_installments(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    restructure = await loan_changes.request_restructure(
        db,
        loan_officer,
        loan.id,
        LoanRestructureCreate(new_interest_rate=Decimal("6"), reason="Rate review", restructure_type="refinance"),
    )

    assert restructure.restructure_type == "refinance"
    assert restructure.new_term_months == 12
    assert restructure.new_interest_rate == Decimal("6")


async def test_restructure_needs_a_change(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    with pytest.raises(ValidationError):
        await loan_changes.request_restructure(db, loan_officer, loan.id, LoanRestructureCreate(reason="No-op"))


async def test_only_one_pending_restructure_per_loan(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    loan_id = loan.id
    await loan_changes.request_restructure(
        db, loan_officer, loan_id, LoanRestructureCreate(new_term_months=24, reason="First")
    )

    with pytest.raises(ConflictError):
        await loan_changes.request_restructure(
            db, loan_officer, loan_id, LoanRestructureCreate(new_term_months=18, reason="Second")
        )

    assert len(await loan_changes.list_restructures(db, loan_id)) == 1


async def test_rejected_restructure_leaves_loan_untouched(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    restructure = await loan_changes.request_restructure(
        db, loan_officer, loan.id, LoanRestructureCreate(new_term_months=24, reason="Lower installments")
    )

    decided = await loan_changes.decide_restructure(
        db,
        manager,
        loan.id,
        restructure.id,
        ChangeRequestDecision(decision="rejected", notes="Income does not support it"),
    )

    assert decided.status == "rejected"
    assert decided.previous_terms is None
    assert "Income does not support it" in decided.notes
    assert loan.term_months == 12
    assert loan.restructured_date is None

    with pytest.raises(StateError):
        await loan_changes.decide_restructure(db, manager, loan.id, restructure.id, _approve())


async def test_requester_cannot_approve_own_restructure(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    restructure = await loan_changes.request_restructure(
        db, manager, loan.id, LoanRestructureCreate(new_term_months=24, reason="Lower installments")
    )
    loan_id, restructure_id = loan.id, restructure.id

    with pytest.raises(AuthorizationError):
        await loan_changes.decide_restructure(db, manager, loan_id, restructure_id, _approve())

    restructures = await loan_changes.list_restructures(db, loan_id)
    assert restructures[0].status == "pending"


async def test_restructure_roles(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    with pytest.raises(AuthorizationError):
        await loan_changes.request_restructure(
            db, cashier, loan.id, LoanRestructureCreate(new_term_months=24, reason="Lower installments")
        )
    restructure = await loan_changes.request_restructure(
        db, manager, loan.id, LoanRestructureCreate(new_term_months=24, reason="Lower installments")
    )
    with pytest.raises(AuthorizationError):
        await loan_changes.decide_restructure(db, loan_officer, loan.id, restructure.id, _approve())


async def test_completed_loan_cannot_be_restructured(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    await repayments.record_payment(
        db, cashier, loan.id, PaymentCreate(amount=Decimal("200000"), payment_date=date(2024, 2, 15))
    )

    with pytest.raises(StateError):
        await loan_changes.request_restructure(
            db, loan_officer, loan.id, LoanRestructureCreate(new_term_months=24, reason="Too late")
        )


async def test_decision_on_unknown_restructure(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    with pytest.raises(NotFoundError):
        await loan_changes.decide_restructure(db, manager, loan.id, uuid4(), _approve())


async def test_approved_transfer_moves_loan(db, manager, cashier, loan_officer, published) -> None:
    borrower = await make_borrower(db)
    successor = await make_borrower(db, first_name="Bo", email="bo@example.com", phone="+15550002")
    loan = await make_disbursed_loan(db, borrower, manager, cashier)

    transfer = await loan_changes.request_transfer(
        db, loan_officer, loan.id, LoanTransferCreate(to_borrower_id=successor.id, reason="Business sold")
    )
    assert transfer.from_borrower_id == borrower.id
    assert loan.borrower_id == borrower.id

    decided = await loan_changes.decide_transfer(
        db, manager, loan.id, transfer.id, _approve(date(2024, 3, 1))
    )

    assert decided.status == "approved"
    assert decided.effective_date == date(2024, 3, 1)
    assert loan.borrower_id == successor.id
    transferred = [payload for event, payload in published if event == notifications.LOAN_TRANSFERRED]
    assert transferred[0]["to_borrower_id"] == str(successor.id)


async def test_transfer_requires_eligible_recipient(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    unverified = await make_borrower(db, email="un@example.com", kyc_status="pending")
    inactive = await make_borrower(db, email="in@example.com", status="inactive")
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    loan_id, borrower_id, unverified_id, inactive_id = loan.id, borrower.id, unverified.id, inactive.id

    with pytest.raises(ValidationError):
        await loan_changes.request_transfer(
            db, loan_officer, loan_id, LoanTransferCreate(to_borrower_id=borrower_id, reason="Same")
        )
    with pytest.raises(StateError):
        await loan_changes.request_transfer(
            db, loan_officer, loan_id, LoanTransferCreate(to_borrower_id=unverified_id, reason="Unverified")
        )
    with pytest.raises(StateError):
        await loan_changes.request_transfer(
            db, loan_officer, loan_id, LoanTransferCreate(to_borrower_id=inactive_id, reason="Inactive")
        )
    with pytest.raises(NotFoundError):
        await loan_changes.request_transfer(
            db, loan_officer, loan_id, LoanTransferCreate(to_borrower_id=uuid4(), reason="Unknown")
        )

    assert await loan_changes.list_transfers(db, loan_id) == []


async def test_transfer_rechecks_recipient_on_approval(db, manager, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    successor = await make_borrower(db, email="bo@example.com")
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    transfer = await loan_changes.request_transfer(
        db, loan_officer, loan.id, LoanTransferCreate(to_borrower_id=successor.id, reason="Business sold")
    )
    loan_id, transfer_id, borrower_id = loan.id, transfer.id, borrower.id

    successor.status = "blacklisted"
    await db.commit()

    with pytest.raises(StateError):
        await loan_changes.decide_transfer(db, manager, loan_id, transfer_id, _approve())

    await db.refresh(loan)
    assert loan.borrower_id == borrower_id
    transfers = await loan_changes.list_transfers(db, loan_id)
    assert transfers[0].status == "pending"


async def test_requester_cannot_approve_own_transfer(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    successor = await make_borrower(db, email="bo@example.com")
    loan = await make_disbursed_loan(db, borrower, manager, cashier)
    transfer = await loan_changes.request_transfer(
        db, manager, loan.id, LoanTransferCreate(to_borrower_id=successor.id, reason="Business sold")
    )

    with pytest.raises(AuthorizationError):
        await loan_changes.decide_transfer(db, manager, loan.id, transfer.id, _approve())
