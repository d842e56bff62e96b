"""Multi-stage approval state machine for loan applications.

Stages run in a fixed order (loan officer, then manager). Which of them are
required is decided per evaluation from one frozen ``PermissionSettings``
snapshot; a rejection at any recorded stage is terminal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from app.core.permissions import Role
from app.models.loan_application import LoanApplication
from app.models.loan_approval import LoanApprovalRecord
from app.schemas.settings import PermissionSettings
from app.services import notifications
from app.services import settings as settings_service
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

LOAN_OFFICER_STAGE = "loan_officer"
MANAGER_STAGE = "manager"
STAGE_ORDER = (LOAN_OFFICER_STAGE, MANAGER_STAGE)
DECISIONS = ("approved", "rejected")
CLOSED_STATUSES = {"approved", "rejected", "disbursed"}

STAGE_ROLES = {
    LOAN_OFFICER_STAGE: frozenset({Role.LOAN_OFFICER, Role.ADMIN}),
    MANAGER_STAGE: frozenset({Role.MANAGER, Role.ADMIN}),
}


@dataclass(frozen=True)
class WorkflowEvaluation:
    status: str
    required_stages: tuple[str, ...]
    waived_stages: tuple[str, ...]


@dataclass(frozen=True)
class ApprovalOutcome:
    record: LoanApprovalRecord
    application_status: str
    required_stages: tuple[str, ...]


def override_applies(settings: PermissionSettings, requested_amount) -> bool:
    if not settings.allow_loan_officer_manager_override:
        return False
    return Decimal(str(requested_amount)) <= settings.override_limit


def required_stages(
    decisions: Mapping[str, str],
    settings: PermissionSettings,
    requested_amount,
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split the stages into (required, waived). A stage with a record is always required."""
    waived: list[str] = []
    if settings.bypass_loan_officer_approval and LOAN_OFFICER_STAGE not in decisions:
        waived.append(LOAN_OFFICER_STAGE)
    if MANAGER_STAGE not in decisions and (
        settings.bypass_manager_approval or override_applies(settings, requested_amount)
    ):
        waived.append(MANAGER_STAGE)
    required = tuple(stage for stage in STAGE_ORDER if stage not in waived)
    return required, tuple(waived)


def evaluate(
    decisions: Mapping[str, str],
    settings: PermissionSettings,
    requested_amount,
    current_status: str = "pending",
) -> WorkflowEvaluation:
    required, waived = required_stages(decisions, settings, requested_amount)
    if any(decision == "rejected" for decision in decisions.values()):
        status = "rejected"
    elif decisions and all(decisions.get(stage) == "approved" for stage in required):
        status = "approved"
    elif decisions:
        status = "under_review"
    else:
        status = current_status
    return WorkflowEvaluation(status=status, required_stages=required, waived_stages=waived)


def authorize_stage(role: Role, stage: str, settings: PermissionSettings, requested_amount) -> None:
    if role in STAGE_ROLES[stage]:
        return
    if stage == MANAGER_STAGE and role == Role.LOAN_OFFICER and override_applies(settings, requested_amount):
        return
    raise AuthorizationError(
        f"Role {role.value} may not record the {stage} stage",
        details={"role": role.value, "stage": stage},
    )


def _validate_decision_input(stage: str, decision: str) -> None:
    if stage == "cashier":
        raise ValidationError(
            "cashier is not an approval stage; cashiers act through disbursement",
            details={"approval_stage": stage},
        )
    if stage not in STAGE_ORDER:
        raise ValidationError(f"Unknown approval stage: {stage}", details={"approval_stage": stage})
    if decision not in DECISIONS:
        raise ValidationError(f"Unknown decision: {decision}", details={"decision": decision})


async def list_approvals(db: AsyncSession, application_id: UUID) -> list[LoanApprovalRecord]:
    stmt = (
        select(LoanApprovalRecord)
        .where(LoanApprovalRecord.application_id == application_id)
        .order_by(LoanApprovalRecord.decided_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def record_decision(
    db: AsyncSession,
    actor: deps.ActorContext,
    application_id: UUID,
    *,
    approval_stage: str,
    decision: str,
    decided_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ApprovalOutcome:
    _validate_decision_input(approval_stage, decision)
    now = now or datetime.now(timezone.utc)

    try:
        snapshot = await settings_service.get_permission_snapshot(db)
        stmt = select(LoanApplication).where(LoanApplication.id == application_id).with_for_update()
        application = (await db.execute(stmt)).scalar_one_or_none()
        if not application:
            raise NotFoundError("Loan application not found", details={"application_id": str(application_id)})
        if application.status in CLOSED_STATUSES:
            raise StateError(
                f"Application is already {application.status}",
                details={"status": application.status},
            )

        authorize_stage(actor.role, approval_stage, snapshot, application.requested_amount)

        existing = await list_approvals(db, application_id)
        if any(record.approval_stage == approval_stage for record in existing):
            raise ConflictError(
                f"A decision for the {approval_stage} stage has already been recorded",
                details={"approval_stage": approval_stage},
            )

        record = LoanApprovalRecord(
            application_id=application_id,
            approval_stage=approval_stage,
            decision=decision,
            decided_by=decided_by or actor.label,
            decided_by_id=actor.actor_id,
            decider_role=actor.role.value,
            notes=notes,
            decided_at=now,
        )
        db.add(record)
        await db.flush()

        decisions = {item.approval_stage: item.decision for item in existing}
        decisions[approval_stage] = decision
        evaluation = evaluate(decisions, snapshot, application.requested_amount, application.status)

        before = model_snapshot(application, exclude={"created_at", "updated_at"})
        previous_status = application.status
        application.status = evaluation.status
        if evaluation.status in {"approved", "rejected"}:
            application.reviewed_by = decided_by or actor.label
            application.review_date = now.date()
        if evaluation.status == "approved" and application.approved_amount is None:
            application.approved_amount = application.requested_amount

        record_audit_log(
            db,
            actor,
            action=f"loan_application.{approval_stage}_{decision}",
            resource_type="loan_application",
            resource_id=application_id,
            old_value=before,
            new_value=model_snapshot(application, exclude={"created_at", "updated_at"}),
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"A decision for the {approval_stage} stage has already been recorded",
            details={"approval_stage": approval_stage},
        ) from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Approval recorded application_id=%s stage=%s decision=%s status=%s->%s",
        application_id,
        approval_stage,
        decision,
        previous_status,
        evaluation.status,
    )
    payload = {
        "application_id": str(application_id),
        "approval_stage": approval_stage,
        "decision": decision,
        "status": evaluation.status,
    }
    await notifications.publish(notifications.APPROVAL_RECORDED, payload)
    if evaluation.status != previous_status and evaluation.status == "approved":
        await notifications.publish(notifications.APPLICATION_APPROVED, payload)
    elif evaluation.status != previous_status and evaluation.status == "rejected":
        await notifications.publish(notifications.APPLICATION_REJECTED, payload)

    return ApprovalOutcome(
        record=record,
        application_status=evaluation.status,
        required_stages=evaluation.required_stages,
    )
