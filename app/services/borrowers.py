from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import NotFoundError, StateError, ValidationError
from app.core.permissions import Action, require_role
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.models.payment import Payment
from app.schemas.borrower import BorrowerCreate, BorrowerUpdate
from app.services import scoring
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

INQUIRY_WINDOW_DAYS = 183
BORROWER_STATUS_TRANSITIONS = {
    "active": {"inactive", "blacklisted"},
    "inactive": {"active", "blacklisted"},
    "blacklisted": {"active"},
}
# Fields a borrower may edit themselves; KYC, score and status stay staff-managed.
SELF_SERVICE_FIELDS = {
    "first_name",
    "last_name",
    "email",
    "phone",
    "date_of_birth",
    "address",
    "employment",
    "monthly_income",
    "monthly_expenses",
    "existing_debts",
}
REQUIRED_FIELDS = {
    "first_name",
    "last_name",
    "email",
    "phone",
    "monthly_income",
    "monthly_expenses",
    "existing_debts",
}


def _today() -> date:
    return datetime.now(timezone.utc).date()


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def get_borrower(db: AsyncSession, borrower_id: UUID, *, for_update: bool = False) -> Borrower:
    stmt = select(Borrower).where(Borrower.id == borrower_id)
    if for_update:
        stmt = stmt.with_for_update()
    borrower = (await db.execute(stmt)).scalar_one_or_none()
    if not borrower:
        raise NotFoundError("Borrower not found", details={"borrower_id": str(borrower_id)})
    return borrower


async def create_borrower(db: AsyncSession, actor: deps.ActorContext, payload: BorrowerCreate) -> Borrower:
    data = payload.model_dump()
    data["registration_date"] = data.get("registration_date") or _today()
    borrower = Borrower(**data)
    db.add(borrower)
    await db.flush()
    record_audit_log(
        db,
        actor,
        action="borrower.created",
        resource_type="borrower",
        resource_id=borrower.id,
        new_value=model_snapshot(borrower, exclude={"created_at", "updated_at"}),
    )
    await _commit(db)
    return borrower


async def update_borrower(
    db: AsyncSession,
    actor: deps.ActorContext,
    borrower_id: UUID,
    payload: BorrowerUpdate,
) -> Borrower:
    borrower = await get_borrower(db, borrower_id)
    data = payload.model_dump(exclude_unset=True)
    unknown = set(data) - SELF_SERVICE_FIELDS
    if unknown:
        raise ValidationError("Fields are not editable", details={"fields": sorted(unknown)})
    before = model_snapshot(borrower, exclude={"created_at", "updated_at"})
    for field, value in data.items():
        if value is None and field in REQUIRED_FIELDS:
            raise ValidationError(f"{field} cannot be empty", details={"field": field})
        setattr(borrower, field, value)
    record_audit_log(
        db,
        actor,
        action="borrower.updated",
        resource_type="borrower",
        resource_id=borrower.id,
        old_value=before,
        new_value=model_snapshot(borrower, exclude={"created_at", "updated_at"}),
    )
    await _commit(db)
    return borrower


async def review_kyc(
    db: AsyncSession,
    actor: deps.ActorContext,
    borrower_id: UUID,
    *,
    decision: str,
    notes: str | None = None,
) -> Borrower:
    require_role(actor.role, Action.KYC_REVIEW)
    if decision not in {"verified", "rejected"}:
        raise ValidationError("KYC decision must be verified or rejected", details={"decision": decision})
    borrower = await get_borrower(db, borrower_id, for_update=True)
    if borrower.kyc_status == decision:
        raise StateError(f"KYC is already {decision}", details={"kyc_status": borrower.kyc_status})
    old_status = borrower.kyc_status
    borrower.kyc_status = decision
    borrower.kyc_reviewed_by = actor.label
    borrower.kyc_reviewed_at = datetime.now(timezone.utc)
    record_audit_log(
        db,
        actor,
        action=f"borrower.kyc_{decision}",
        resource_type="borrower",
        resource_id=borrower.id,
        old_value={"kyc_status": old_status},
        new_value={"kyc_status": decision, "notes": notes},
    )
    await _commit(db)
    return borrower


async def change_status(
    db: AsyncSession,
    actor: deps.ActorContext,
    borrower_id: UUID,
    *,
    status: str,
    reason: str | None = None,
) -> Borrower:
    require_role(actor.role, Action.BORROWER_STATUS_MANAGE)
    borrower = await get_borrower(db, borrower_id, for_update=True)
    allowed = BORROWER_STATUS_TRANSITIONS.get(borrower.status, set())
    if status not in allowed:
        raise StateError(
            f"Cannot move borrower from {borrower.status} to {status}",
            details={"from": borrower.status, "to": status},
        )
    old_status = borrower.status
    borrower.status = status
    record_audit_log(
        db,
        actor,
        action="borrower.status_changed",
        resource_type="borrower",
        resource_id=borrower.id,
        old_value={"status": old_status},
        new_value={"status": status, "reason": reason},
    )
    await _commit(db)
    return borrower


def _months_between(start: date, end: date) -> int:
    return max((end - start).days // 30, 0)


async def load_loan_book(db: AsyncSession, borrower_id: UUID) -> list[Loan]:
    stmt = select(Loan).where(Loan.borrower_id == borrower_id)
    return list((await db.execute(stmt)).scalars().all())


def outstanding_balance(loans: list[Loan]) -> Decimal:
    return sum(
        (Decimal(loan.outstanding_balance) for loan in loans if loan.status in {"active", "defaulted"}),
        Decimal("0"),
    )


async def build_credit_profile(
    db: AsyncSession,
    borrower: Borrower,
    *,
    as_of: date | None = None,
) -> scoring.CreditProfile:
    as_of = as_of or _today()
    loans = await load_loan_book(db, borrower.id)

    payment_stmt = (
        select(Payment.payment_date, Payment.due_date, Payment.status)
        .join(Loan, Payment.loan_id == Loan.id)
        .where(Loan.borrower_id == borrower.id)
    )
    payments = (await db.execute(payment_stmt)).all()
    on_time = 0
    late_days: list[int] = []
    for payment_date, due_date, status in payments:
        days_late = (payment_date - due_date).days
        if status == "late" or days_late > 0:
            late_days.append(max(days_late, 0))
        else:
            on_time += 1

    inquiry_stmt = select(func.count(LoanApplication.id)).where(
        LoanApplication.borrower_id == borrower.id,
        LoanApplication.application_date >= as_of - timedelta(days=INQUIRY_WINDOW_DAYS),
    )
    recent_inquiries = int((await db.execute(inquiry_stmt)).scalar_one() or 0)

    return scoring.CreditProfile(
        monthly_income=Decimal(borrower.monthly_income or 0),
        monthly_expenses=Decimal(borrower.monthly_expenses or 0),
        existing_debts=Decimal(borrower.existing_debts or 0),
        on_time_payments=on_time,
        late_payments=len(late_days),
        account_age_months=_months_between(borrower.registration_date, as_of),
        recent_inquiries=recent_inquiries,
        average_days_late=(sum(late_days) / len(late_days)) if late_days else 0.0,
        defaulted_loans=sum(1 for loan in loans if loan.status == "defaulted"),
        total_principal_borrowed=sum((Decimal(loan.principal_amount) for loan in loans), Decimal("0")),
        outstanding_balance=outstanding_balance(loans),
    )


async def compute_credit_score(db: AsyncSession, borrower_id: UUID) -> scoring.CreditScoreResult:
    borrower = await get_borrower(db, borrower_id)
    profile = await build_credit_profile(db, borrower)
    return scoring.compute_credit_score(profile)


async def refresh_credit_score(
    db: AsyncSession,
    borrower_id: UUID,
    *,
    actor: deps.ActorContext | None = None,
) -> scoring.CreditScoreResult:
    """Recompute and persist the borrower's score."""
    borrower = await get_borrower(db, borrower_id, for_update=True)
    profile = await build_credit_profile(db, borrower)
    result = scoring.compute_credit_score(profile)
    if borrower.credit_score != result.score:
        old_score = borrower.credit_score
        borrower.credit_score = result.score
        record_audit_log(
            db,
            actor,
            action="borrower.credit_score_refreshed",
            resource_type="borrower",
            resource_id=borrower.id,
            old_value={"credit_score": old_score},
            new_value={"credit_score": result.score},
        )
    await _commit(db)
    logger.info("Credit score refreshed borrower_id=%s score=%s", borrower_id, result.score)
    return result


async def compute_lending_limit(db: AsyncSession, borrower_id: UUID) -> scoring.LendingLimit:
    borrower = await get_borrower(db, borrower_id)
    loans = await load_loan_book(db, borrower.id)
    return scoring.compute_lending_limit(
        monthly_income=Decimal(borrower.monthly_income or 0),
        monthly_expenses=Decimal(borrower.monthly_expenses or 0),
        completed_loans=sum(1 for loan in loans if loan.status in {"completed", "closed"}),
        outstanding_balance=outstanding_balance(loans),
    )


async def list_borrower_loans(db: AsyncSession, borrower_id: UUID) -> list[Loan]:
    await get_borrower(db, borrower_id)
    stmt = select(Loan).where(Loan.borrower_id == borrower_id).order_by(Loan.disbursed_date.desc())
    return list((await db.execute(stmt)).scalars().all())


async def list_borrower_payments(db: AsyncSession, borrower_id: UUID) -> list[Payment]:
    """Payments on every loan the borrower currently holds, newest first."""
    await get_borrower(db, borrower_id)
    stmt = (
        select(Payment)
        .join(Loan, Payment.loan_id == Loan.id)
        .where(Loan.borrower_id == borrower_id)
        .order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())
