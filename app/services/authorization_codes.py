"""Single-use disbursement authorization codes.

Every issuance gets the next ``generation`` number for its application and marks
older unused codes as superseded, so only the newest code can ever be redeemed.
Redemption is a conditional UPDATE and succeeds for exactly one caller.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import (
    AuthorizationCodeAlreadyUsed,
    AuthorizationCodeExpired,
    AuthorizationCodeMismatch,
    AuthorizationCodeNotFound,
    ConflictError,
    NotFoundError,
    StateError,
)
from app.core.permissions import Action, require_role
from app.core.settings import settings
from app.models.authorization_code import AuthorizationCode
from app.models.loan_application import LoanApplication
from app.services.audit import record_audit_log

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass(frozen=True)
class IssuedCode:
    application_id: UUID
    code: str
    generation: int
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(length: int | None = None) -> str:
    size = length or settings.auth_code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(size))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def hash_code(code: str) -> str:
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()


def _matches(code_hash: str, code: str) -> bool:
    return hmac.compare_digest(code_hash, hash_code(code))


async def _get_application(db: AsyncSession, application_id: UUID) -> LoanApplication:
    stmt = select(LoanApplication).where(LoanApplication.id == application_id).with_for_update()
    application = (await db.execute(stmt)).scalar_one_or_none()
    if not application:
        raise NotFoundError("Loan application not found", details={"application_id": str(application_id)})
    return application


async def get_latest_code(db: AsyncSession, application_id: UUID) -> AuthorizationCode | None:
    stmt = (
        select(AuthorizationCode)
        .where(AuthorizationCode.application_id == application_id)
        .order_by(AuthorizationCode.generation.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def issue_code(
    db: AsyncSession,
    actor: deps.ActorContext,
    application_id: UUID,
    *,
    now: datetime | None = None,
) -> IssuedCode:
    role = require_role(actor.role, Action.AUTH_CODE_ISSUE)
    now = now or _utcnow()
    try:
        application = await _get_application(db, application_id)
        if application.status != "approved":
            raise StateError(
                "Authorization codes can only be issued for approved applications",
                details={"status": application.status},
            )

        await db.execute(
            update(AuthorizationCode)
            .where(
                AuthorizationCode.application_id == application_id,
                AuthorizationCode.used_at.is_(None),
                AuthorizationCode.superseded_at.is_(None),
            )
            .values(superseded_at=now)
        )
        current = await db.execute(
            select(func.coalesce(func.max(AuthorizationCode.generation), 0)).where(
                AuthorizationCode.application_id == application_id
            )
        )
        generation = int(current.scalar_one()) + 1

        code = generate_code()
        record = AuthorizationCode(
            application_id=application_id,
            generation=generation,
            code_hash=hash_code(code),
            created_by=actor.actor_id,
            created_role=role.value,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.auth_code_ttl_minutes),
        )
        db.add(record)
        record_audit_log(
            db,
            actor,
            action="authorization_code.issued",
            resource_type="loan_application",
            resource_id=application_id,
            new_value={"generation": generation, "expires_at": record.expires_at},
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Another authorization code was issued concurrently") from exc
    except Exception:
        await db.rollback()
        raise

    logger.info("Authorization code issued application_id=%s generation=%s", application_id, generation)
    return IssuedCode(
        application_id=application_id,
        code=code,
        generation=generation,
        expires_at=record.expires_at,
    )


async def _claim(db: AsyncSession, code_id: UUID, now: datetime) -> bool:
    """Atomically mark the code used; False when someone else got there first."""
    result = await db.execute(
        update(AuthorizationCode)
        .where(
            AuthorizationCode.id == code_id,
            AuthorizationCode.used_at.is_(None),
            AuthorizationCode.superseded_at.is_(None),
        )
        .values(used_at=now)
        .returning(AuthorizationCode.id)
    )
    return result.scalar_one_or_none() is not None


async def redeem(
    db: AsyncSession,
    application_id: UUID,
    code: str,
    *,
    now: datetime | None = None,
) -> AuthorizationCode:
    """Check and claim ``code`` inside the caller's transaction without committing."""
    now = now or _utcnow()
    latest = await get_latest_code(db, application_id)
    if latest is None:
        raise AuthorizationCodeNotFound(
            "No authorization code has been issued for this application",
            details={"application_id": str(application_id)},
        )

    matches = _matches(latest.code_hash, code)
    if latest.used_at is not None:
        if matches:
            raise AuthorizationCodeAlreadyUsed(
                "Authorization code has already been used",
                details={"application_id": str(application_id)},
            )
        raise AuthorizationCodeNotFound(
            "No unused authorization code exists for this application",
            details={"application_id": str(application_id)},
        )
    if not matches:
        raise AuthorizationCodeMismatch(
            "Authorization code does not match the active code",
            details={"application_id": str(application_id)},
        )
    if now > latest.expires_at:
        raise AuthorizationCodeExpired(
            "Authorization code has expired",
            details={"application_id": str(application_id), "expires_at": latest.expires_at.isoformat()},
        )
    if not await _claim(db, latest.id, now):
        raise AuthorizationCodeAlreadyUsed(
            "Authorization code has already been used",
            details={"application_id": str(application_id)},
        )
    return latest


async def consume_code(
    db: AsyncSession,
    actor: deps.ActorContext,
    application_id: UUID,
    code: str,
    *,
    now: datetime | None = None,
) -> AuthorizationCode:
    require_role(actor.role, Action.LOAN_DISBURSE)
    try:
        record = await redeem(db, application_id, code, now=now)
        record_audit_log(
            db,
            actor,
            action="authorization_code.consumed",
            resource_type="loan_application",
            resource_id=application_id,
            new_value={"generation": record.generation},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return record
