from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.core.errors import (
    AuthorizationCodeAlreadyUsed,
    AuthorizationCodeExpired,
    AuthorizationCodeMismatch,
    AuthorizationCodeNotFound,
    AuthorizationError,
    StateError,
)
from app.models.audit_log import AuditLog
from app.models.authorization_code import AuthorizationCode
from app.services import authorization_codes
from conftest import latest_code, make_application, make_approved_application, make_borrower


def test_generated_codes_use_unambiguous_alphabet() -> None:
    code = authorization_codes.generate_code(12)

    assert len(code) == 12
    assert set(code) <= set(authorization_codes.CODE_ALPHABET)
    assert not set("01IO") & set(authorization_codes.CODE_ALPHABET)


def test_hash_ignores_case_and_surrounding_whitespace() -> None:
    assert authorization_codes.hash_code(" abcd2345 ") == authorization_codes.hash_code("ABCD2345")


async def test_issue_code_stores_only_the_hash(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)

    issued = await authorization_codes.issue_code(db, manager, application.id)

    record = await latest_code(db, application.id)
    assert issued.generation == 1
    assert record.code_hash == authorization_codes.hash_code(issued.code)
    assert record.code_hash != issued.code
    assert record.created_by == manager.actor_id
    assert record.created_role == "manager"
    assert record.used_at is None
    assert record.expires_at - record.created_at == timedelta(minutes=10)


async def test_issue_code_requires_manager_or_admin(db, cashier, loan_officer) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)

    for actor in (cashier, loan_officer):
        with pytest.raises(AuthorizationError):
            await authorization_codes.issue_code(db, actor, application.id)


async def test_issue_code_requires_approved_application(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_application(db, borrower, status="under_review")

    with pytest.raises(StateError):
        await authorization_codes.issue_code(db, manager, application.id)

    count = (await db.execute(select(func.count(AuthorizationCode.id)))).scalar_one()
    assert count == 0


async def test_reissue_supersedes_previous_code(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    application_id = application.id

    first = await authorization_codes.issue_code(db, manager, application_id)
    second = await authorization_codes.issue_code(db, manager, application_id)

    assert second.generation == 2
    records = (
        await db.execute(
            select(AuthorizationCode)
            .where(AuthorizationCode.application_id == application_id)
            .order_by(AuthorizationCode.generation)
        )
    ).scalars().all()
    assert records[0].superseded_at is not None
    assert records[1].superseded_at is None

    with pytest.raises(AuthorizationCodeMismatch):
        await authorization_codes.consume_code(db, cashier, application_id, first.code)
    record = await authorization_codes.consume_code(db, cashier, application_id, second.code)
    assert record.generation == 2


async def test_consume_is_single_use(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    issued = await authorization_codes.issue_code(db, manager, application.id)

    record = await authorization_codes.consume_code(db, cashier, application.id, issued.code.lower())
    assert record.used_at is not None

    with pytest.raises(AuthorizationCodeAlreadyUsed):
        await authorization_codes.consume_code(db, cashier, application.id, issued.code)


async def test_consume_after_use_with_wrong_code_reports_not_found(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    issued = await authorization_codes.issue_code(db, manager, application.id)
    await authorization_codes.consume_code(db, cashier, application.id, issued.code)

    with pytest.raises(AuthorizationCodeNotFound):
        await authorization_codes.consume_code(db, cashier, application.id, "WRONGCODE")


async def test_consume_without_any_code(db, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)

    with pytest.raises(AuthorizationCodeNotFound):
        await authorization_codes.consume_code(db, cashier, application.id, "ABCDEFGH")


async def test_expired_code_is_rejected_and_stays_unused(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    application_id = application.id
    issued_at = datetime.now(timezone.utc) - timedelta(minutes=30)
    issued = await authorization_codes.issue_code(db, manager, application_id, now=issued_at)

    with pytest.raises(AuthorizationCodeExpired):
        await authorization_codes.consume_code(db, cashier, application_id, issued.code)

    record = await latest_code(db, application_id)
    assert record.used_at is None


async def test_code_is_valid_until_expiry(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    issued_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    issued = await authorization_codes.issue_code(db, manager, application.id, now=issued_at)

    record = await authorization_codes.consume_code(
        db, cashier, application.id, issued.code, now=issued_at + timedelta(minutes=10)
    )
    assert record.used_at == issued_at + timedelta(minutes=10)


async def test_only_disbursing_roles_may_consume(db, manager, loan_officer) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    issued = await authorization_codes.issue_code(db, manager, application.id)

    for actor in (manager, loan_officer):
        with pytest.raises(AuthorizationError):
            await authorization_codes.consume_code(db, actor, application.id, issued.code)


async def test_claim_succeeds_exactly_once(db, manager) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    await authorization_codes.issue_code(db, manager, application.id)
    record = await latest_code(db, application.id)
    now = datetime.now(timezone.utc)

    assert await authorization_codes._claim(db, record.id, now) is True
    assert await authorization_codes._claim(db, record.id, now) is False


async def test_issue_and_consume_are_audited(db, manager, cashier) -> None:
    borrower = await make_borrower(db)
    application = await make_approved_application(db, borrower)
    issued = await authorization_codes.issue_code(db, manager, application.id)
    await authorization_codes.consume_code(db, cashier, application.id, issued.code)

    actions = (
        await db.execute(
            select(AuditLog.action)
            .where(AuditLog.resource_id == str(application.id))
            .order_by(AuditLog.created_at)
        )
    ).scalars().all()
    assert actions == ["authorization_code.issued", "authorization_code.consumed"]
