from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.settings import PermissionSettingsResponse, PermissionSettingsUpdate
from app.services import settings as settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/permissions", response_model=PermissionSettingsResponse, summary="Get approval permission settings")
async def get_permission_settings(
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PermissionSettingsResponse:
    record = await settings_service.get_permission_settings_record(db, create_if_missing=True)
    await db.commit()
    return PermissionSettingsResponse.model_validate(record)


@router.put("/permissions", response_model=PermissionSettingsResponse, summary="Update approval permission settings")
async def update_permission_settings(
    payload: PermissionSettingsUpdate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PermissionSettingsResponse:
    record = await settings_service.update_permission_settings(db, actor, payload)
    return PermissionSettingsResponse.model_validate(record)
