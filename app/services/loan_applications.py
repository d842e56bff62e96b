from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import NotFoundError, StateError, ValidationError
from app.core.permissions import Action, require_role
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.schemas.loan import LoanApplicationCreate, LoanApplicationStatus, LoanApplicationUpdate
from app.services import borrowers as borrower_service
from app.services import scoring
from app.services.amortization import INTEREST_TYPES
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

# "approved" is only reachable through the approval workflow, "disbursed" only through disbursement.
MANUAL_STATUS_TRANSITIONS = {
    LoanApplicationStatus.PENDING.value: {
        LoanApplicationStatus.UNDER_REVIEW.value,
        LoanApplicationStatus.REJECTED.value,
    },
    LoanApplicationStatus.UNDER_REVIEW.value: {LoanApplicationStatus.REJECTED.value},
}
TERMS_LOCKED_STATUSES = {LoanApplicationStatus.DISBURSED.value, LoanApplicationStatus.REJECTED.value}
# The approved amount is what the approvers signed off on.
AMOUNT_LOCKED_STATUSES = TERMS_LOCKED_STATUSES | {LoanApplicationStatus.APPROVED.value}
TERM_FIELDS = (
    "approved_amount",
    "interest_rate",
    "term_months",
    "interest_type",
    "grace_period_days",
    "penalty_rate",
    "penalty_flat",
)


def _validate_status_transition(current_status: str, next_status: str) -> None:
    if next_status == current_status:
        return
    if next_status not in MANUAL_STATUS_TRANSITIONS.get(current_status, set()):
        raise StateError(
            f"Cannot move application from {current_status} to {next_status}",
            details={"from": current_status, "to": next_status},
        )


def _validate_terms(data: dict) -> None:
    errors: list[str] = []
    if data.get("approved_amount") is not None and Decimal(data["approved_amount"]) <= 0:
        errors.append("approved_amount must be > 0")
    if data.get("interest_rate") is not None and Decimal(data["interest_rate"]) < 0:
        errors.append("interest_rate must be >= 0")
    if data.get("term_months") is not None and int(data["term_months"]) <= 0:
        errors.append("term_months must be > 0")
    if data.get("interest_type") is not None and data["interest_type"] not in INTEREST_TYPES:
        errors.append(f"interest_type must be one of {', '.join(INTEREST_TYPES)}")
    if data.get("grace_period_days") is not None and int(data["grace_period_days"]) < 0:
        errors.append("grace_period_days must be >= 0")
    for field in ("penalty_rate", "penalty_flat"):
        if data.get(field) is not None and Decimal(data[field]) < 0:
            errors.append(f"{field} must be >= 0")
    if errors:
        raise ValidationError("; ".join(errors), details={"errors": errors})


def _check_approved_amount(application: LoanApplication, approved_amount) -> None:
    if approved_amount is None:
        return
    if application.status in AMOUNT_LOCKED_STATUSES and Decimal(approved_amount) != Decimal(
        application.approved_amount or 0
    ):
        raise StateError(
            f"Approved amount cannot be changed once the application is {application.status}",
            details={"status": application.status},
        )
    if Decimal(approved_amount) > Decimal(application.requested_amount):
        raise ValidationError(
            "approved_amount cannot exceed requested_amount",
            details={
                "approved_amount": str(approved_amount),
                "requested_amount": str(application.requested_amount),
            },
        )


async def get_application(
    db: AsyncSession, application_id: UUID, *, for_update: bool = False
) -> LoanApplication:
    stmt = select(LoanApplication).where(LoanApplication.id == application_id)
    if for_update:
        stmt = stmt.with_for_update()
    application = (await db.execute(stmt)).scalar_one_or_none()
    if not application:
        raise NotFoundError("Loan application not found", details={"application_id": str(application_id)})
    return application


async def list_applications(
    db: AsyncSession,
    *,
    limit: int,
    offset: int,
    statuses: list[str] | None = None,
    borrower_id: UUID | None = None,
) -> tuple[list[LoanApplication], int]:
    conditions = []
    if statuses:
        conditions.append(LoanApplication.status.in_(statuses))
    if borrower_id is not None:
        conditions.append(LoanApplication.borrower_id == borrower_id)

    total = (await db.execute(select(func.count(LoanApplication.id)).where(*conditions))).scalar_one()
    stmt = (
        select(LoanApplication)
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return items, int(total or 0)


async def create_application(
    db: AsyncSession,
    actor: deps.ActorContext,
    payload: LoanApplicationCreate,
    *,
    application_date: date | None = None,
) -> LoanApplication:
    borrower = await borrower_service.get_borrower(db, payload.borrower_id)
    if borrower.status != "active":
        raise StateError("Borrower is not active", details={"status": borrower.status})
    if borrower.kyc_status != "verified":
        raise StateError(
            "Borrower identity verification is not complete",
            details={"kyc_status": borrower.kyc_status},
        )
    monthly_income = Decimal(borrower.monthly_income or 0)
    if monthly_income <= 0:
        raise ValidationError("Borrower has no recorded monthly income")

    limit = await borrower_service.compute_lending_limit(db, borrower.id)
    if payload.requested_amount > limit.available_credit:
        raise ValidationError(
            "Requested amount exceeds available credit",
            details={
                "requested_amount": str(payload.requested_amount),
                "available_credit": str(limit.available_credit),
            },
        )

    credit_score = payload.credit_score or borrower.credit_score
    assessment = scoring.assess_eligibility(
        credit_score=credit_score,
        requested_amount=payload.requested_amount,
        monthly_income=monthly_income,
        outstanding_balance=limit.outstanding_balance,
        collateral_value=payload.collateral_value,
    )

    data = payload.model_dump(exclude={"credit_score"})
    _validate_terms(data)
    application = LoanApplication(
        **{key: value for key, value in data.items() if value is not None},
        status=LoanApplicationStatus.PENDING.value,
        application_date=application_date or datetime.now(timezone.utc).date(),
        credit_score=credit_score,
        eligibility_status=assessment.eligibility_status,
        eligibility_score=assessment.eligibility_score,
        risk_tier=assessment.risk_tier,
        income_ratio=assessment.income_ratio,
        debt_to_income=assessment.debt_to_income,
        recommendation=assessment.recommendation,
    )
    if payload.interest_type is None:
        application.interest_type = "compound"
    if payload.grace_period_days is None:
        application.grace_period_days = settings.default_grace_period_days
    if payload.penalty_rate is None:
        application.penalty_rate = settings.default_penalty_rate
    if payload.penalty_flat is None:
        application.penalty_flat = settings.default_penalty_flat

    try:
        db.add(application)
        await db.flush()
        record_audit_log(
            db,
            actor,
            action="loan_application.created",
            resource_type="loan_application",
            resource_id=application.id,
            new_value=model_snapshot(application, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Loan application created id=%s borrower_id=%s eligibility=%s",
        application.id,
        borrower.id,
        assessment.eligibility_status,
    )
    return application


async def update_application(
    db: AsyncSession,
    actor: deps.ActorContext,
    application_id: UUID,
    payload: LoanApplicationUpdate,
) -> LoanApplication:
    require_role(actor.role, Action.APPLICATION_REVIEW)
    data = payload.model_dump(exclude_unset=True)
    try:
        application = await get_application(db, application_id, for_update=True)
        before = model_snapshot(application, exclude={"created_at", "updated_at"})

        next_status = data.pop("status", None)
        if next_status is not None:
            _validate_status_transition(application.status, next_status)

        term_updates = {field: data[field] for field in TERM_FIELDS if data.get(field) is not None}
        if term_updates and application.status in TERMS_LOCKED_STATUSES:
            raise StateError(
                f"Terms cannot be changed once the application is {application.status}",
                details={"status": application.status},
            )
        _check_approved_amount(application, term_updates.get("approved_amount"))
        _validate_terms(term_updates)

        for field, value in term_updates.items():
            setattr(application, field, value)
        if next_status is not None:
            application.status = next_status
        if data.get("reviewed_by") is not None:
            application.reviewed_by = data["reviewed_by"]
        if data.get("review_date") is not None:
            application.review_date = data["review_date"]
        elif next_status is not None or term_updates:
            application.review_date = application.review_date or datetime.now(timezone.utc).date()
            application.reviewed_by = application.reviewed_by or actor.label

        record_audit_log(
            db,
            actor,
            action="loan_application.updated",
            resource_type="loan_application",
            resource_id=application.id,
            old_value=before,
            new_value=model_snapshot(application, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return application
