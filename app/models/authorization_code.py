import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


class AuthorizationCode(Base):
    __tablename__ = "authorization_codes"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("application_id", "generation", name="uq_authorization_code_generation"),
        Index("ix_authorization_codes_app_active", "application_id", "used_at", "superseded_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(
        Uuid,
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    generation = Column(Integer, nullable=False)
    code_hash = Column(String(64), nullable=False)
    created_by = Column(String(100), nullable=False)
    created_role = Column(String(20), nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at = Column(UTCDateTime(), nullable=False)
    used_at = Column(UTCDateTime(), nullable=True)
    superseded_at = Column(UTCDateTime(), nullable=True)
