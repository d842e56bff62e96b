"""Turns an approved application into a Loan.

Code redemption, amortization, the Loan insert and the status change share one
transaction: if any step fails, everything rolls back and the application stays
approved with its authorization code unused.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import ConflictError, LendingError, NotFoundError, StateError, ValidationError
from app.core.permissions import Action, require_role
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.schemas.loan import DisbursementRequest
from app.services import authorization_codes, notifications
from app.services import borrowers as borrower_service
from app.services.amortization import amortize
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)


def generate_receipt_number(prefix: str = "DR") -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"{prefix}-{stamp}-{secrets.token_hex(4).upper()}"


def _check_matches(field: str, supplied, expected) -> None:
    if supplied is None:
        return
    if Decimal(str(supplied)) != Decimal(str(expected)):
        raise ValidationError(
            f"{field} does not match the approved application",
            details={"field": field, "supplied": str(supplied), "approved": str(expected)},
        )


def _check_preconditions(application: LoanApplication, payload: DisbursementRequest) -> None:
    if application.status != "approved":
        raise StateError(
            "Only approved applications can be disbursed",
            details={"status": application.status},
        )
    if application.approved_amount is None or Decimal(application.approved_amount) <= 0:
        raise ValidationError("Application has no approved amount")
    if Decimal(application.approved_amount) > Decimal(application.requested_amount):
        raise StateError(
            "Approved amount exceeds the amount that went through approval",
            details={
                "approved_amount": str(application.approved_amount),
                "requested_amount": str(application.requested_amount),
            },
        )
    if application.term_months is None or int(application.term_months) <= 0:
        raise ValidationError("Application has no loan term")
    if payload.borrower_id is not None and payload.borrower_id != application.borrower_id:
        raise ValidationError("borrower_id does not match the application")
    _check_matches("principal_amount", payload.principal_amount, application.approved_amount)
    _check_matches("interest_rate", payload.interest_rate, application.interest_rate or 0)
    _check_matches("term_months", payload.term_months, application.term_months)


async def get_loan(db: AsyncSession, loan_id: UUID, *, for_update: bool = False) -> Loan:
    stmt = select(Loan).where(Loan.id == loan_id)
    if for_update:
        stmt = stmt.with_for_update()
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if not loan:
        raise NotFoundError("Loan not found", details={"loan_id": str(loan_id)})
    return loan


async def disburse(
    db: AsyncSession,
    actor: deps.ActorContext,
    application_id: UUID,
    payload: DisbursementRequest,
    *,
    now: datetime | None = None,
) -> Loan:
    require_role(actor.role, Action.LOAN_DISBURSE)
    now = now or datetime.now(timezone.utc)
    disbursed_date: date = payload.disbursed_date or now.date()

    try:
        stmt = select(LoanApplication).where(LoanApplication.id == application_id).with_for_update()
        application = (await db.execute(stmt)).scalar_one_or_none()
        if not application:
            raise NotFoundError("Loan application not found", details={"application_id": str(application_id)})
        _check_preconditions(application, payload)

        code = await authorization_codes.redeem(db, application_id, payload.authorization_code, now=now)

        interest_type = payload.interest_type or application.interest_type
        terms = amortize(
            application.approved_amount,
            application.interest_rate or 0,
            int(application.term_months),
            interest_type,
            disbursement_date=disbursed_date,
        )
        loan = Loan(
            application_id=application.id,
            borrower_id=application.borrower_id,
            loan_type=application.loan_type,
            principal_amount=terms.principal,
            interest_rate=terms.annual_rate_percent,
            term_months=terms.term_months,
            interest_type=terms.interest_type,
            grace_period_days=(
                payload.grace_period_days
                if payload.grace_period_days is not None
                else application.grace_period_days
            ),
            penalty_rate=payload.penalty_rate if payload.penalty_rate is not None else application.penalty_rate,
            penalty_flat=payload.penalty_flat if payload.penalty_flat is not None else application.penalty_flat,
            monthly_payment=terms.monthly_payment,
            total_amount=terms.total_amount,
            outstanding_balance=terms.total_amount,
            next_due_date=terms.next_due_date,
            disbursed_date=disbursed_date,
            disbursed_by=actor.label,
            disbursement_method=payload.disbursement_method,
            reference_number=payload.reference_number,
            receipt_number=payload.receipt_number or generate_receipt_number(),
            disbursement_meta={
                "authorization_code_generation": code.generation,
                "disbursed_by_id": actor.actor_id,
                "disbursed_by_role": actor.role.value,
            },
            status="active",
        )
        db.add(loan)
        await db.flush()

        application.status = "disbursed"
        record_audit_log(
            db,
            actor,
            action="loan.disbursed",
            resource_type="loan",
            resource_id=loan.id,
            new_value=model_snapshot(loan, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            "Loan already exists for this application or receipt number is taken",
            details={"application_id": str(application_id)},
        ) from exc
    except LendingError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("Disbursement failed application_id=%s", application_id)
        raise

    logger.info(
        "Loan disbursed loan_id=%s application_id=%s principal=%s",
        loan.id,
        application_id,
        loan.principal_amount,
    )
    await notifications.publish(
        notifications.LOAN_DISBURSED,
        {
            "loan_id": str(loan.id),
            "application_id": str(application_id),
            "borrower_id": str(loan.borrower_id),
            "principal_amount": str(loan.principal_amount),
            "receipt_number": loan.receipt_number,
        },
    )
    try:
        await borrower_service.refresh_credit_score(db, loan.borrower_id, actor=actor)
    except SQLAlchemyError:
        logger.exception("Credit score refresh failed after disbursement loan_id=%s", loan.id)
    return loan
