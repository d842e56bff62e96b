"""Loan closure and closure certificates.

Closing settles whatever is still owed, outstanding balance plus any late
penalty, in the same transaction that issues the certificate.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from app.core.permissions import Action, require_role
from app.models.loan import Loan
from app.models.loan_closure import LoanClosure
from app.models.payment import Payment
from app.schemas.loan import LoanClosureCreate
from app.services import notifications
from app.services import borrowers as borrower_service
from app.services.audit import model_snapshot, record_audit_log
from app.services.disbursement import get_loan
from app.services.repayments import generate_receipt_number, penalty_for_loan

logger = logging.getLogger(__name__)

CLOSABLE_STATUSES = {"active", "completed", "defaulted"}
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PayoffQuote:
    outstanding_balance: Decimal
    penalty: Decimal
    days_late: int
    grace_period_days: int

    @property
    def payoff_amount(self) -> Decimal:
        return self.outstanding_balance + self.penalty


def generate_certificate_number(closed_on: date) -> str:
    return f"CC-{closed_on.strftime('%Y%m%d')}-{secrets.token_hex(4).upper()}"


def payoff_quote(loan: Loan, *, as_of: date) -> PayoffQuote:
    outstanding = Decimal(loan.outstanding_balance)
    if outstanding <= 0:
        return PayoffQuote(ZERO, ZERO, 0, int(loan.grace_period_days or 0))
    penalty = penalty_for_loan(loan, as_of=as_of)
    return PayoffQuote(outstanding, penalty.penalty, penalty.days_late, penalty.grace_period_days)


async def get_closure(db: AsyncSession, loan_id: UUID) -> LoanClosure:
    stmt = select(LoanClosure).where(LoanClosure.loan_id == loan_id)
    closure = (await db.execute(stmt)).scalar_one_or_none()
    if not closure:
        raise NotFoundError("Loan closure not found", details={"loan_id": str(loan_id)})
    return closure


async def close_loan(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    payload: LoanClosureCreate,
    *,
    now: datetime | None = None,
) -> LoanClosure:
    require_role(actor.role, Action.LOAN_CLOSE)
    now = now or datetime.now(timezone.utc)
    closed_on = payload.closed_date or now.date()
    try:
        loan = await get_loan(db, loan_id, for_update=True)
        if loan.status not in CLOSABLE_STATUSES:
            raise StateError("Loan cannot be closed", details={"status": loan.status})

        quote = payoff_quote(loan, as_of=closed_on)
        settlement = Decimal(payload.settlement_amount) if payload.settlement_amount is not None else ZERO
        if settlement < quote.payoff_amount:
            raise ValidationError(
                "Settlement does not cover the payoff amount",
                details={
                    "outstanding_balance": str(quote.outstanding_balance),
                    "penalty": str(quote.penalty),
                    "payoff_amount": str(quote.payoff_amount),
                    "settlement_amount": str(settlement),
                },
            )

        before = model_snapshot(loan, exclude={"created_at", "updated_at"})
        settlement_payment = None
        if quote.outstanding_balance > 0:
            settlement_payment = Payment(
                loan_id=loan.id,
                amount=quote.outstanding_balance,
                payment_date=closed_on,
                due_date=loan.next_due_date or closed_on,
                status="late" if quote.days_late > quote.grace_period_days else "paid",
                late_fee=quote.penalty,
                received_by=actor.label,
                receipt_number=payload.receipt_number or generate_receipt_number(),
            )
            db.add(settlement_payment)
            await db.flush()

        closure = LoanClosure(
            loan_id=loan.id,
            borrower_id=loan.borrower_id,
            closed_date=closed_on,
            closed_at=now,
            closed_by=actor.label,
            certificate_number=generate_certificate_number(closed_on),
            outstanding_at_closure=quote.outstanding_balance,
            penalty_at_closure=quote.penalty,
            settlement_amount=settlement,
            settlement_payment_id=settlement_payment.id if settlement_payment else None,
            remarks=payload.remarks,
        )
        db.add(closure)

        loan.status = "closed"
        loan.outstanding_balance = ZERO
        loan.next_due_date = None
        loan.closed_date = closed_on
        loan.closure_certificate_number = closure.certificate_number
        await db.flush()

        record_audit_log(
            db,
            actor,
            action="loan.closed",
            resource_type="loan",
            resource_id=loan.id,
            old_value=before,
            new_value=model_snapshot(loan, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            "Loan is already closed or the receipt number is taken",
            details={"loan_id": str(loan_id)},
        ) from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan closed loan_id=%s certificate=%s settlement=%s",
        loan_id,
        closure.certificate_number,
        closure.settlement_amount,
    )
    await notifications.publish(
        notifications.LOAN_CLOSED,
        {
            "loan_id": str(loan_id),
            "borrower_id": str(closure.borrower_id),
            "certificate_number": closure.certificate_number,
            "settlement_amount": str(closure.settlement_amount),
        },
    )
    try:
        await borrower_service.refresh_credit_score(db, closure.borrower_id, actor=actor)
    except SQLAlchemyError:
        logger.exception("Credit score refresh failed after closure loan_id=%s", loan_id)
    return closure
