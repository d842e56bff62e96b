from sqlalchemy import Boolean, Column, Integer, Numeric, String, func

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


PERMISSION_SETTINGS_ID = 1


class PermissionSettingsRecord(Base):
    """Single-row table holding the approval override configuration."""

    __tablename__ = "permission_settings"
    __allow_unmapped__ = True

    id = Column(Integer, primary_key=True, default=PERMISSION_SETTINGS_ID)
    override_limit = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    allow_loan_officer_manager_override = Column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    bypass_manager_approval = Column(Boolean, nullable=False, default=False, server_default="false")
    bypass_loan_officer_approval = Column(Boolean, nullable=False, default=False, server_default="false")
    updated_by = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )
