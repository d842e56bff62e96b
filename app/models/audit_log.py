import uuid

from sqlalchemy import JSON, Column, String, Text, Uuid, func

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_id = Column(String(100), nullable=True, index=True)
    actor_role = Column(String(20), nullable=True)
    action = Column(String(255), nullable=False)
    resource_type = Column(String(255), nullable=False)
    resource_id = Column(String(255), nullable=False, index=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changes = Column(JSON, nullable=True)
    summary = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
