from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import ConflictError, StateError
from app.core.permissions import Action, require_role
from app.models.loan import Loan
from app.models.payment import Payment
from app.schemas.loan import PaymentCreate
from app.services import notifications
from app.services import borrowers as borrower_service
from app.services.amortization import PenaltyResult, add_months, calculate_penalty
from app.services.audit import model_snapshot, record_audit_log
from app.services.disbursement import get_loan

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def generate_receipt_number() -> str:
    return f"PR-{_today().strftime('%Y%m%d')}-{secrets.token_hex(4).upper()}"


def penalty_for_loan(loan: Loan, *, as_of: date, due_date: date | None = None) -> PenaltyResult:
    return calculate_penalty(
        outstanding_balance=loan.outstanding_balance,
        penalty_rate=loan.penalty_rate,
        penalty_flat=loan.penalty_flat,
        grace_period_days=loan.grace_period_days,
        due_date=due_date or loan.next_due_date,
        as_of=as_of,
    )


async def list_payments(db: AsyncSession, loan_id: UUID) -> list[Payment]:
    await get_loan(db, loan_id)
    stmt = select(Payment).where(Payment.loan_id == loan_id).order_by(Payment.payment_date.asc())
    return list((await db.execute(stmt)).scalars().all())


async def record_payment(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    payload: PaymentCreate,
) -> Payment:
    require_role(actor.role, Action.PAYMENT_RECORD)
    payment_date = payload.payment_date or _today()
    try:
        loan = await get_loan(db, loan_id, for_update=True)
        if loan.status != "active":
            raise StateError("Payments can only be recorded against active loans", details={"status": loan.status})
        due_date = payload.due_date or loan.next_due_date or payment_date

        penalty = penalty_for_loan(loan, as_of=payment_date, due_date=due_date)
        late_fee = payload.late_fee if payload.late_fee is not None else penalty.penalty
        status = "late" if penalty.days_late > penalty.grace_period_days else "paid"

        before = model_snapshot(loan, exclude={"created_at", "updated_at"})
        payment = Payment(
            loan_id=loan.id,
            amount=payload.amount,
            payment_date=payment_date,
            due_date=due_date,
            status=status,
            late_fee=Decimal(late_fee).quantize(TWOPLACES, rounding=ROUND_HALF_UP),
            received_by=payload.received_by or actor.label,
            receipt_number=payload.receipt_number or generate_receipt_number(),
        )
        db.add(payment)

        outstanding = max(Decimal(loan.outstanding_balance) - Decimal(payload.amount), Decimal("0"))
        loan.outstanding_balance = outstanding.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
        if outstanding == 0:
            loan.status = "completed"
        else:
            loan.next_due_date = add_months(due_date, 1)
        await db.flush()

        record_audit_log(
            db,
            actor,
            action="loan.payment_recorded",
            resource_type="loan",
            resource_id=loan.id,
            old_value=before,
            new_value=model_snapshot(loan, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Receipt number has already been used", details={"loan_id": str(loan_id)}) from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Payment recorded loan_id=%s amount=%s status=%s outstanding=%s",
        loan_id,
        payment.amount,
        payment.status,
        loan.outstanding_balance,
    )
    event_payload = {
        "loan_id": str(loan.id),
        "payment_id": str(payment.id),
        "amount": str(payment.amount),
        "status": payment.status,
        "outstanding_balance": str(loan.outstanding_balance),
    }
    await notifications.publish(notifications.PAYMENT_RECORDED, event_payload)
    if loan.status == "completed":
        await notifications.publish(notifications.LOAN_COMPLETED, event_payload)
    try:
        await borrower_service.refresh_credit_score(db, loan.borrower_id, actor=actor)
    except SQLAlchemyError:
        logger.exception("Credit score refresh failed after payment loan_id=%s", loan_id)
    return payment


@dataclass(frozen=True)
class PaymentReminder:
    loan_id: UUID
    borrower_id: UUID
    due_date: date | None
    days_overdue: int
    penalty: Decimal
    message: str


def reminder_message(*, due_date: date | None, days_overdue: int, months_due: int | None = None) -> str:
    if days_overdue <= 0:
        if due_date is None:
            return "Your loan has no payment due."
        return f"Your next loan payment is due on {due_date.isoformat()}."
    if months_due:
        overdue_by = f"{months_due} month(s)"
    else:
        overdue_by = f"{days_overdue} day(s)"
    return f"Your loan payment is overdue by {overdue_by}. Please settle the outstanding amount to avoid further penalties."


async def send_payment_reminder(
    db: AsyncSession,
    actor: deps.ActorContext,
    loan_id: UUID,
    *,
    months_due: int | None = None,
    as_of: date | None = None,
) -> PaymentReminder:
    """Notify the borrower about an upcoming or overdue installment."""
    require_role(actor.role, Action.PAYMENT_REMIND)
    as_of = as_of or _today()
    loan = await get_loan(db, loan_id)
    if loan.status != "active":
        raise StateError("Reminders are only sent for active loans", details={"status": loan.status})

    due_date = loan.next_due_date
    days_overdue = max((as_of - due_date).days, 0) if due_date else 0
    penalty = penalty_for_loan(loan, as_of=as_of)
    reminder = PaymentReminder(
        loan_id=loan.id,
        borrower_id=loan.borrower_id,
        due_date=due_date,
        days_overdue=days_overdue,
        penalty=penalty.penalty,
        message=reminder_message(due_date=due_date, days_overdue=days_overdue, months_due=months_due),
    )
    logger.info(
        "Payment reminder sent loan_id=%s borrower_id=%s days_overdue=%s by=%s",
        loan.id,
        loan.borrower_id,
        days_overdue,
        actor.actor_id,
    )
    await notifications.publish(
        notifications.PAYMENT_REMINDER,
        {
            "loan_id": str(loan.id),
            "borrower_id": str(loan.borrower_id),
            "target_role": "borrower",
            "due_date": due_date.isoformat() if due_date else None,
            "days_overdue": days_overdue,
            "penalty": str(penalty.penalty),
            "message": reminder.message,
        },
    )
    return reminder
