import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


APPROVAL_STAGES = ("loan_officer", "manager", "cashier")
APPROVAL_DECISIONS = ("approved", "rejected")


class LoanApprovalRecord(Base):
    __tablename__ = "loan_approval_records"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("application_id", "approval_stage", name="uq_loan_approval_stage"),
        CheckConstraint(
            "approval_stage IN ('loan_officer', 'manager', 'cashier')",
            name="ck_loan_approval_stage",
        ),
        CheckConstraint(
            "decision IN ('approved', 'rejected')",
            name="ck_loan_approval_decision",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(
        Uuid,
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approval_stage = Column(String(20), nullable=False)
    decision = Column(String(20), nullable=False)
    decided_by = Column(String(100), nullable=False)
    decided_by_id = Column(String(50), nullable=True)
    decider_role = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    decided_at = Column(UTCDateTime(), nullable=False, default=utc_now)
