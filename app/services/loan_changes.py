"""Restructures and transfers of disbursed loans.

Both are two-step change requests: staff file a request, and a manager or admin
other than the requester approves or rejects it. The loan itself only changes
when a request is approved.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from app.core.permissions import Action, require_role
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.models.loan_restructure import LoanRestructure
from app.models.loan_transfer import LoanTransfer
from app.schemas.loan import ChangeRequestDecision, LoanRestructureCreate, LoanTransferCreate
from app.services import notifications
from app.services import borrowers as borrower_service
from app.services.amortization import amortize
from app.services.audit import model_snapshot, record_audit_log, serialize_for_audit
from app.services.disbursement import get_loan
from app.services.loan_schedules import remaining_installments, remaining_principal

logger = logging.getLogger(__name__)

LOAN_SNAPSHOT_EXCLUDE = {"created_at", "updated_at"}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _require_active(loan: Loan, action: str) -> None:
    if loan.status != "active":
        raise StateError(f"Only active loans can be {action}", details={"status": loan.status})


def _check_decidable(request: LoanRestructure | LoanTransfer, actor: deps.ActorContext) -> None:
    if request.status != "pending":
        raise StateError("Request has already been decided", details={"status": request.status})
    if request.requested_by_id and request.requested_by_id == actor.actor_id:
        raise AuthorizationError("Requests cannot be decided by the staff member who filed them")


def _append_notes(existing: str | None, extra: str | None) -> str | None:
    if not extra:
        return existing
    return f"{existing}\n{extra}" if existing else extra


def _loan_terms(loan: Loan) -> dict[str, Any]:
    return serialize_for_audit(
        {
            "principal_amount": loan.principal_amount,
            "interest_rate": loan.interest_rate,
            "term_months": loan.term_months,
            "interest_type": loan.interest_type,
            "monthly_payment": loan.monthly_payment,
            "total_amount": loan.total_amount,
            "outstanding_balance": loan.outstanding_balance,
            "next_due_date": loan.next_due_date,
            "restructured_date": loan.restructured_date,
        }
    )


async def _ensure_no_pending(db: AsyncSession, model, loan_id: UUID) -> None:
    stmt = select(model.id).where(model.loan_id == loan_id, model.status == "pending")
    if (await db.execute(stmt)).first() is not None:
        raise ConflictError("Loan already has a pending request of this kind", details={"loan_id": str(loan_id)})


async def _get_request(db: AsyncSession, model, loan_id: UUID, request_id: UUID, *, for_update: bool = False):
    stmt = select(model).where(model.id == request_id, model.loan_id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    request = (await db.execute(stmt)).scalar_one_or_none()
    if not request:
        raise NotFoundError(
            "Change request not found",
            details={"loan_id": str(loan_id), "request_id": str(request_id)},
        )
    return request


async def _refresh_scores(db: AsyncSession, actor: deps.ActorContext, *borrower_ids: UUID) -> None:
    for borrower_id in borrower_ids:
        try:
            await borrower_service.refresh_credit_score(db, borrower_id, actor=actor)
        except SQLAlchemyError:
            logger.exception("Credit score refresh failed borrower_id=%s", borrower_id)


# Restructures


async def list_restructures(db: AsyncSession, loan_id: UUID) -> list[LoanRestructure]:
    await get_loan(db, loan_id)
    stmt = (
        select(LoanRestructure)
        .where(LoanRestructure.loan_id == loan_id)
        .order_by(LoanRestructure.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def request_restructure(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    payload: LoanRestructureCreate,
) -> LoanRestructure:
    """File new terms for the principal still owed.

    Terms left out keep their current value; the term defaults to the number of
    installments not yet paid. The stored payment figures are a preview and are
    recomputed when the request is approved.
    """
    require_role(actor.role, Action.LOAN_CHANGE_REQUEST)
    if payload.new_term_months is None and payload.new_interest_rate is None and payload.new_interest_type is None:
        raise ValidationError("A restructure needs a new term, interest rate or interest type")
    try:
        loan = await get_loan(db, loan_id, for_update=True)
        _require_active(loan, "restructured")
        await _ensure_no_pending(db, LoanRestructure, loan.id)

        preview = amortize(
            remaining_principal(loan),
            payload.new_interest_rate if payload.new_interest_rate is not None else loan.interest_rate,
            payload.new_term_months or remaining_installments(loan),
            payload.new_interest_type or loan.interest_type,
            disbursement_date=payload.effective_date or _today(),
        )
        restructure = LoanRestructure(
            loan_id=loan.id,
            restructure_type=payload.restructure_type,
            new_term_months=preview.term_months,
            new_interest_rate=preview.annual_rate_percent,
            new_interest_type=preview.interest_type,
            restructured_principal=preview.principal,
            new_monthly_payment=preview.monthly_payment,
            new_total_amount=preview.total_amount,
            reason=payload.reason,
            status="pending",
            requested_by=actor.label,
            requested_by_id=actor.actor_id,
            effective_date=payload.effective_date,
            notes=payload.notes,
        )
        db.add(restructure)
        await db.flush()
        record_audit_log(
            db,
            actor,
            action="loan.restructure_requested",
            resource_type="loan",
            resource_id=loan.id,
            new_value=model_snapshot(restructure, exclude={"created_at"}),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan restructure requested loan_id=%s restructure_id=%s term=%s rate=%s",
        loan_id,
        restructure.id,
        restructure.new_term_months,
        restructure.new_interest_rate,
    )
    await notifications.publish(
        notifications.LOAN_RESTRUCTURE_REQUESTED,
        {
            "loan_id": str(loan_id),
            "restructure_id": str(restructure.id),
            "restructure_type": restructure.restructure_type,
            "target_role": "manager",
        },
    )
    return restructure


async def decide_restructure(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    restructure_id: UUID,
    payload: ChangeRequestDecision,
    *,
    now: datetime | None = None,
) -> LoanRestructure:
    """Approve or reject a pending restructure.

    Approval re-amortizes the principal owed at decision time from the effective
    date and replaces the loan's terms; the replaced terms are kept on the request.
    """
    require_role(actor.role, Action.LOAN_CHANGE_APPROVE)
    now = now or datetime.now(timezone.utc)
    try:
        restructure = await _get_request(db, LoanRestructure, loan_id, restructure_id, for_update=True)
        _check_decidable(restructure, actor)
        loan = await get_loan(db, loan_id, for_update=True)
        before = model_snapshot(loan, exclude=LOAN_SNAPSHOT_EXCLUDE)

        if payload.decision == "approved":
            _require_active(loan, "restructured")
            effective_date = payload.effective_date or restructure.effective_date or now.date()
            terms = amortize(
                remaining_principal(loan),
                restructure.new_interest_rate,
                int(restructure.new_term_months),
                restructure.new_interest_type,
                disbursement_date=effective_date,
            )
            restructure.previous_terms = _loan_terms(loan)
            restructure.restructured_principal = terms.principal
            restructure.new_monthly_payment = terms.monthly_payment
            restructure.new_total_amount = terms.total_amount
            restructure.effective_date = effective_date

            loan.principal_amount = terms.principal
            loan.interest_rate = terms.annual_rate_percent
            loan.term_months = terms.term_months
            loan.interest_type = terms.interest_type
            loan.monthly_payment = terms.monthly_payment
            loan.total_amount = terms.total_amount
            loan.outstanding_balance = terms.total_amount
            loan.next_due_date = terms.next_due_date
            loan.restructured_date = effective_date

        restructure.status = payload.decision
        restructure.approved_by = actor.label
        restructure.decided_at = now
        restructure.notes = _append_notes(restructure.notes, payload.notes)
        await db.flush()
        record_audit_log(
            db,
            actor,
            action=f"loan.restructure_{payload.decision}",
            resource_type="loan",
            resource_id=loan.id,
            old_value=before,
            new_value=model_snapshot(loan, exclude=LOAN_SNAPSHOT_EXCLUDE),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan restructure decided loan_id=%s restructure_id=%s decision=%s",
        loan_id,
        restructure_id,
        restructure.status,
    )
    if restructure.status == "approved":
        await notifications.publish(
            notifications.LOAN_RESTRUCTURED,
            {
                "loan_id": str(loan.id),
                "restructure_id": str(restructure.id),
                "borrower_id": str(loan.borrower_id),
                "monthly_payment": str(loan.monthly_payment),
                "next_due_date": loan.next_due_date.isoformat() if loan.next_due_date else None,
            },
        )
        await _refresh_scores(db, actor, loan.borrower_id)
    return restructure


# Transfers


async def _eligible_recipient(db: AsyncSession, borrower_id: UUID) -> Borrower:
    borrower = await borrower_service.get_borrower(db, borrower_id)
    if borrower.status != "active":
        raise StateError(
            "Receiving borrower is not active",
            details={"borrower_id": str(borrower_id), "status": borrower.status},
        )
    if borrower.kyc_status != "verified":
        raise StateError(
            "Receiving borrower has not completed identity verification",
            details={"borrower_id": str(borrower_id), "kyc_status": borrower.kyc_status},
        )
    return borrower


async def list_transfers(db: AsyncSession, loan_id: UUID) -> list[LoanTransfer]:
    await get_loan(db, loan_id)
    stmt = select(LoanTransfer).where(LoanTransfer.loan_id == loan_id).order_by(LoanTransfer.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def request_transfer(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    payload: LoanTransferCreate,
) -> LoanTransfer:
    require_role(actor.role, Action.LOAN_CHANGE_REQUEST)
    try:
        loan = await get_loan(db, loan_id, for_update=True)
        _require_active(loan, "transferred")
        if payload.to_borrower_id == loan.borrower_id:
            raise ValidationError("Loan already belongs to this borrower")
        await _eligible_recipient(db, payload.to_borrower_id)
        await _ensure_no_pending(db, LoanTransfer, loan.id)

        transfer = LoanTransfer(
            loan_id=loan.id,
            from_borrower_id=loan.borrower_id,
            to_borrower_id=payload.to_borrower_id,
            reason=payload.reason,
            status="pending",
            requested_by=actor.label,
            requested_by_id=actor.actor_id,
            effective_date=payload.effective_date,
            notes=payload.notes,
        )
        db.add(transfer)
        await db.flush()
        record_audit_log(
            db,
            actor,
            action="loan.transfer_requested",
            resource_type="loan",
            resource_id=loan.id,
            new_value=model_snapshot(transfer, exclude={"created_at"}),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan transfer requested loan_id=%s transfer_id=%s to_borrower_id=%s",
        loan_id,
        transfer.id,
        transfer.to_borrower_id,
    )
    await notifications.publish(
        notifications.LOAN_TRANSFER_REQUESTED,
        {"loan_id": str(loan_id), "transfer_id": str(transfer.id), "target_role": "manager"},
    )
    return transfer


async def decide_transfer(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    transfer_id: UUID,
    payload: ChangeRequestDecision,
    *,
    now: datetime | None = None,
) -> LoanTransfer:
    require_role(actor.role, Action.LOAN_CHANGE_APPROVE)
    now = now or datetime.now(timezone.utc)
    try:
        transfer = await _get_request(db, LoanTransfer, loan_id, transfer_id, for_update=True)
        _check_decidable(transfer, actor)
        loan = await get_loan(db, loan_id, for_update=True)
        before = model_snapshot(loan, exclude=LOAN_SNAPSHOT_EXCLUDE)

        if payload.decision == "approved":
            _require_active(loan, "transferred")
            if loan.borrower_id != transfer.from_borrower_id:
                raise StateError(
                    "Loan has changed hands since the transfer was requested",
                    details={"borrower_id": str(loan.borrower_id)},
                )
            await _eligible_recipient(db, transfer.to_borrower_id)
            loan.borrower_id = transfer.to_borrower_id
            transfer.effective_date = payload.effective_date or transfer.effective_date or now.date()

        transfer.status = payload.decision
        transfer.approved_by = actor.label
        transfer.decided_at = now
        transfer.notes = _append_notes(transfer.notes, payload.notes)
        await db.flush()
        record_audit_log(
            db,
            actor,
            action=f"loan.transfer_{payload.decision}",
            resource_type="loan",
            resource_id=loan.id,
            old_value=before,
            new_value=model_snapshot(loan, exclude=LOAN_SNAPSHOT_EXCLUDE),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan transfer decided loan_id=%s transfer_id=%s decision=%s",
        loan_id,
        transfer_id,
        transfer.status,
    )
    if transfer.status == "approved":
        await notifications.publish(
            notifications.LOAN_TRANSFERRED,
            {
                "loan_id": str(loan_id),
                "transfer_id": str(transfer.id),
                "from_borrower_id": str(transfer.from_borrower_id),
                "to_borrower_id": str(transfer.to_borrower_id),
            },
        )
        await _refresh_scores(db, actor, transfer.from_borrower_id, transfer.to_borrower_id)
    return transfer
