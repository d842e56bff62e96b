from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import Action, require_role
from app.core.settings import settings as app_settings
from app.models.permission_settings import PERMISSION_SETTINGS_ID, PermissionSettingsRecord
from app.schemas.settings import PermissionSettings, PermissionSettingsUpdate
from app.services.audit import model_snapshot, record_audit_log


def default_permission_settings() -> PermissionSettings:
    return PermissionSettings(
        override_limit=app_settings.approval_override_limit,
        allow_loan_officer_manager_override=app_settings.allow_loan_officer_manager_override,
        bypass_manager_approval=app_settings.bypass_manager_approval,
        bypass_loan_officer_approval=app_settings.bypass_loan_officer_approval,
    )


async def get_permission_settings_record(
    db: AsyncSession, create_if_missing: bool = True
) -> PermissionSettingsRecord:
    stmt = select(PermissionSettingsRecord).where(PermissionSettingsRecord.id == PERMISSION_SETTINGS_ID)
    result = await db.execute(stmt)
    record = result.scalar_one_or_none()
    if record:
        return record

    if not create_if_missing:
        raise ValueError("Permission settings not found")

    defaults = default_permission_settings()
    record = PermissionSettingsRecord(
        id=PERMISSION_SETTINGS_ID,
        override_limit=defaults.override_limit,
        allow_loan_officer_manager_override=defaults.allow_loan_officer_manager_override,
        bypass_manager_approval=defaults.bypass_manager_approval,
        bypass_loan_officer_approval=defaults.bypass_loan_officer_approval,
    )
    db.add(record)
    await db.flush()
    return record


async def get_permission_snapshot(db: AsyncSession) -> PermissionSettings:
    """Read the settings row once and freeze it for a single evaluation."""
    record = await get_permission_settings_record(db, create_if_missing=True)
    return PermissionSettings.model_validate(record)


async def update_permission_settings(
    db: AsyncSession,
    actor: deps.ActorContext,
    payload: PermissionSettingsUpdate,
) -> PermissionSettingsRecord:
    require_role(actor.role, Action.SETTINGS_MANAGE)
    record = await get_permission_settings_record(db, create_if_missing=True)
    old_snapshot = model_snapshot(record, exclude={"created_at", "updated_at"})
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in data.items():
        setattr(record, field, value)
    record.updated_by = actor.actor_id
    record_audit_log(
        db,
        actor,
        action="permission_settings.updated",
        resource_type="permission_settings",
        resource_id=PERMISSION_SETTINGS_ID,
        old_value=old_snapshot,
        new_value=model_snapshot(record, exclude={"created_at", "updated_at"}),
    )
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return record
