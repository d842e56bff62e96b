from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PermissionSettings(BaseModel):
    """Immutable approval-override configuration handed to each workflow evaluation."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    override_limit: Decimal = Field(default=Decimal("0"), ge=0)
    allow_loan_officer_manager_override: bool = False
    bypass_manager_approval: bool = False
    bypass_loan_officer_approval: bool = False


class PermissionSettingsResponse(PermissionSettings):
    model_config = ConfigDict(frozen=True, from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    updated_by: str | None = None
    updated_at: datetime | None = None


class PermissionSettingsUpdate(BaseModel):
    override_limit: Decimal | None = Field(default=None, ge=0)
    allow_loan_officer_manager_override: bool | None = None
    bypass_manager_approval: bool | None = None
    bypass_loan_officer_approval: bool | None = None
