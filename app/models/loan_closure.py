import uuid

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Numeric, String, Text, Uuid

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


class LoanClosure(Base):
    __tablename__ = "loan_closures"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("outstanding_at_closure >= 0", name="ck_loan_closure_outstanding_nonneg"),
        CheckConstraint("penalty_at_closure >= 0", name="ck_loan_closure_penalty_nonneg"),
        CheckConstraint("settlement_amount >= 0", name="ck_loan_closure_settlement_nonneg"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id = Column(Uuid, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, unique=True)
    borrower_id = Column(Uuid, ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False, index=True)
    closed_date = Column(Date, nullable=False)
    closed_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    closed_by = Column(String(100), nullable=False)
    certificate_number = Column(String(50), nullable=False, unique=True)
    outstanding_at_closure = Column(Numeric(14, 2), nullable=False)
    penalty_at_closure = Column(Numeric(14, 2), nullable=False)
    settlement_amount = Column(Numeric(14, 2), nullable=False)
    settlement_payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=True)
