from dataclasses import asdict
from datetime import date, datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.loan import (
    ChangeRequestDecision,
    LoanClosureCreate,
    LoanClosureDTO,
    LoanDTO,
    LoanRestructureCreate,
    LoanRestructureDTO,
    LoanScheduleResponse,
    LoanTransferCreate,
    LoanTransferDTO,
    PaymentCreate,
    PaymentDTO,
    PaymentReminderRequest,
    PaymentReminderResponse,
    PayoffQuoteResponse,
    PenaltyResponse,
)
from app.services import disbursement, loan_changes, loan_closures, loan_schedules, repayments

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("/{loan_id}", response_model=LoanDTO, summary="Get a loan")
async def get_loan(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanDTO:
    loan = await disbursement.get_loan(db, loan_id)
    return LoanDTO.model_validate(loan)


@router.get("/{loan_id}/schedule", response_model=LoanScheduleResponse, summary="Amortization schedule")
async def get_schedule(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanScheduleResponse:
    loan = await disbursement.get_loan(db, loan_id)
    return loan_schedules.build_schedule(loan)


@router.get("/{loan_id}/penalty", response_model=PenaltyResponse, summary="Late penalty as of a date")
async def get_penalty(
    loan_id: UUID,
    as_of: date | None = Query(default=None),
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PenaltyResponse:
    loan = await disbursement.get_loan(db, loan_id)
    as_of = as_of or datetime.now(timezone.utc).date()
    result = repayments.penalty_for_loan(loan, as_of=as_of)
    return PenaltyResponse(
        loan_id=loan.id,
        as_of=as_of,
        due_date=loan.next_due_date,
        days_late=result.days_late,
        grace_period_days=result.grace_period_days,
        outstanding_balance=loan.outstanding_balance,
        penalty=result.penalty,
    )


@router.post(
    "/{loan_id}/payments",
    response_model=PaymentDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Record a repayment",
)
async def record_payment(
    loan_id: UUID,
    payload: PaymentCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PaymentDTO:
    payment = await repayments.record_payment(db, actor, loan_id, payload)
    return PaymentDTO.model_validate(payment)


@router.get("/{loan_id}/payments", response_model=list[PaymentDTO], summary="List repayments")
async def list_payments(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[PaymentDTO]:
    payments = await repayments.list_payments(db, loan_id)
    return [PaymentDTO.model_validate(payment) for payment in payments]


@router.post(
    "/{loan_id}/reminders",
    response_model=PaymentReminderResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a payment reminder to the borrower",
)
async def send_payment_reminder(
    loan_id: UUID,
    payload: PaymentReminderRequest,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PaymentReminderResponse:
    reminder = await repayments.send_payment_reminder(
        db, actor, loan_id, months_due=payload.months_due, as_of=payload.as_of
    )
    return PaymentReminderResponse(**asdict(reminder))


@router.post(
    "/{loan_id}/restructures",
    response_model=LoanRestructureDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Request a restructure",
)
async def request_restructure(
    loan_id: UUID,
    payload: LoanRestructureCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanRestructureDTO:
    restructure = await loan_changes.request_restructure(db, actor, loan_id, payload)
    return LoanRestructureDTO.model_validate(restructure)


@router.get("/{loan_id}/restructures", response_model=list[LoanRestructureDTO], summary="List restructures")
async def list_restructures(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LoanRestructureDTO]:
    restructures = await loan_changes.list_restructures(db, loan_id)
    return [LoanRestructureDTO.model_validate(item) for item in restructures]


@router.post(
    "/{loan_id}/restructures/{restructure_id}/decision",
    response_model=LoanRestructureDTO,
    summary="Approve or reject a restructure",
)
async def decide_restructure(
    loan_id: UUID,
    restructure_id: UUID,
    payload: ChangeRequestDecision,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanRestructureDTO:
    restructure = await loan_changes.decide_restructure(db, actor, loan_id, restructure_id, payload)
    return LoanRestructureDTO.model_validate(restructure)


@router.post(
    "/{loan_id}/transfers",
    response_model=LoanTransferDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Request a transfer to another borrower",
)
async def request_transfer(
    loan_id: UUID,
    payload: LoanTransferCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanTransferDTO:
    transfer = await loan_changes.request_transfer(db, actor, loan_id, payload)
    return LoanTransferDTO.model_validate(transfer)


@router.get("/{loan_id}/transfers", response_model=list[LoanTransferDTO], summary="List transfers")
async def list_transfers(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LoanTransferDTO]:
    transfers = await loan_changes.list_transfers(db, loan_id)
    return [LoanTransferDTO.model_validate(item) for item in transfers]


@router.post(
    "/{loan_id}/transfers/{transfer_id}/decision",
    response_model=LoanTransferDTO,
    summary="Approve or reject a transfer",
)
async def decide_transfer(
    loan_id: UUID,
    transfer_id: UUID,
    payload: ChangeRequestDecision,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanTransferDTO:
    transfer = await loan_changes.decide_transfer(db, actor, loan_id, transfer_id, payload)
    return LoanTransferDTO.model_validate(transfer)


@router.get("/{loan_id}/payoff", response_model=PayoffQuoteResponse, summary="Amount needed to close the loan")
async def get_payoff(
    loan_id: UUID,
    as_of: date | None = Query(default=None),
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PayoffQuoteResponse:
    loan = await disbursement.get_loan(db, loan_id)
    as_of = as_of or datetime.now(timezone.utc).date()
    quote = loan_closures.payoff_quote(loan, as_of=as_of)
    return PayoffQuoteResponse(
        loan_id=loan.id,
        as_of=as_of,
        outstanding_balance=quote.outstanding_balance,
        penalty=quote.penalty,
        days_late=quote.days_late,
        payoff_amount=quote.payoff_amount,
    )


@router.post(
    "/{loan_id}/closure",
    response_model=LoanClosureDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Close a loan and issue its certificate",
)
async def close_loan(
    loan_id: UUID,
    payload: LoanClosureCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanClosureDTO:
    closure = await loan_closures.close_loan(db, actor, loan_id, payload)
    return LoanClosureDTO.model_validate(closure)


@router.get("/{loan_id}/closure", response_model=LoanClosureDTO, summary="Get a loan's closure certificate")
async def get_closure(
    loan_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanClosureDTO:
    closure = await loan_closures.get_closure(db, loan_id)
    return LoanClosureDTO.model_validate(closure)
