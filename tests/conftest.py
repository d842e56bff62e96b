"""Global test fixtures.

Provides:
- Environment variable defaults (must be set before any app import)
- An in-memory SQLite database per test with the full schema
- Actor contexts for each staff role
- Factories for borrowers, applications and disbursed loans
- An httpx client wired to the test database
- A capture of published notifications instead of a live Redis
"""

from __future__ import annotations

import os

# Environment defaults, set before importing the app, which validates Settings on import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date
from decimal import Decimal
from typing import Any

import httpx
import pytest
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.api import deps
from app.core.permissions import Role
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.authorization_code import AuthorizationCode
from app.models.borrower import Borrower
from app.models.loan_application import LoanApplication
from app.schemas.loan import DisbursementRequest
from app.services import approval_workflow, authorization_codes, disbursement, notifications

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App plumbing
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    original = app.state.limiter
    app.state.limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
    yield
    app.state.limiter = original


@pytest.fixture(autouse=True)
def published(monkeypatch) -> list[tuple[str, dict[str, Any]]]:
    """Collect notifications rather than publishing them to Redis."""
    events: list[tuple[str, dict[str, Any]]] = []

    async def _capture(event: str, payload: dict[str, Any]) -> None:
        events.append((event, payload))

    monkeypatch.setattr(notifications, "publish", _capture)
    return events


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def actor_headers(role: Role | str, actor_id: str = "staff-1", name: str | None = None) -> dict[str, str]:
    role_value = role.value if isinstance(role, Role) else role
    headers = {"X-Actor-ID": actor_id, "X-Actor-Role": role_value}
    if name:
        headers["X-Actor-Name"] = name
    return headers


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


def make_actor(role: Role, actor_id: str | None = None, name: str | None = None) -> deps.ActorContext:
    actor_id = actor_id or f"{role.value}-1"
    return deps.ActorContext(actor_id=actor_id, role=role, name=name or actor_id)


@pytest.fixture
def admin() -> deps.ActorContext:
    return make_actor(Role.ADMIN)


@pytest.fixture
def manager() -> deps.ActorContext:
    return make_actor(Role.MANAGER, name="Mina Manager")


@pytest.fixture
def loan_officer() -> deps.ActorContext:
    return make_actor(Role.LOAN_OFFICER, name="Omar Officer")


@pytest.fixture
def cashier() -> deps.ActorContext:
    return make_actor(Role.CASHIER, name="Cass Cashier")


@pytest.fixture
def borrower_actor() -> deps.ActorContext:
    return make_actor(Role.BORROWER)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


async def make_borrower(db: AsyncSession, **overrides) -> Borrower:
    values = {
        "first_name": "Ada",
        "last_name": "Borrower",
        "email": "ada@example.com",
        "phone": "+15550001",
        "monthly_income": Decimal("50000"),
        "monthly_expenses": Decimal("10000"),
        "existing_debts": Decimal("0"),
        "kyc_status": "verified",
        "status": "active",
        "credit_score": 700,
        "registration_date": date(2020, 1, 1),
    }
    values.update(overrides)
    borrower = Borrower(**values)
    db.add(borrower)
    await db.commit()
    return borrower


async def make_application(db: AsyncSession, borrower: Borrower, **overrides) -> LoanApplication:
    values = {
        "borrower_id": borrower.id,
        "loan_type": "personal",
        "requested_amount": Decimal("40000"),
        "purpose": "Working capital",
        "status": "pending",
        "application_date": date.today(),
        "credit_score": borrower.credit_score,
        "interest_type": "compound",
        "grace_period_days": 5,
        "penalty_rate": Decimal("0.5"),
        "penalty_flat": Decimal("0"),
    }
    values.update(overrides)
    application = LoanApplication(**values)
    db.add(application)
    await db.commit()
    return application


async def make_approved_application(db: AsyncSession, borrower: Borrower, **overrides) -> LoanApplication:
    values = {
        "status": "approved",
        "requested_amount": Decimal("100000"),
        "approved_amount": Decimal("100000"),
        "interest_rate": Decimal("12"),
        "term_months": 12,
        "reviewed_by": "Mina Manager",
        "review_date": date.today(),
    }
    values.update(overrides)
    return await make_application(db, borrower, **values)


async def approve_fully(db: AsyncSession, application: LoanApplication, officer, manager_actor) -> None:
    await approval_workflow.record_decision(
        db, officer, application.id, approval_stage="loan_officer", decision="approved"
    )
    await approval_workflow.record_decision(
        db, manager_actor, application.id, approval_stage="manager", decision="approved"
    )


async def make_disbursed_loan(
    db: AsyncSession,
    borrower: Borrower,
    manager_actor,
    cashier_actor,
    *,
    disbursed_date: date = date(2024, 1, 15),
    **application_overrides,
):
    application = await make_approved_application(db, borrower, **application_overrides)
    issued = await authorization_codes.issue_code(db, manager_actor, application.id)
    return await disbursement.disburse(
        db,
        cashier_actor,
        application.id,
        DisbursementRequest(authorization_code=issued.code, disbursed_date=disbursed_date),
    )


async def latest_code(db: AsyncSession, application_id) -> AuthorizationCode:
    record = await authorization_codes.get_latest_code(db, application_id)
    await db.refresh(record)
    return record
