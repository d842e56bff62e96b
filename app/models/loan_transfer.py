import uuid

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, String, Text, Uuid, func

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


class LoanTransfer(Base):
    __tablename__ = "loan_transfers"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_loan_transfer_status",
        ),
        CheckConstraint("from_borrower_id <> to_borrower_id", name="ck_loan_transfer_distinct_borrowers"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id = Column(Uuid, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    from_borrower_id = Column(Uuid, ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False)
    to_borrower_id = Column(Uuid, ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    requested_by = Column(String(100), nullable=False)
    requested_by_id = Column(String(50), nullable=True)
    approved_by = Column(String(100), nullable=True)
    decided_at = Column(UTCDateTime(), nullable=True)
    effective_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
