import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


RESTRUCTURE_TYPES = ("restructure", "refinance")
CHANGE_REQUEST_STATUSES = ("pending", "approved", "rejected")


class LoanRestructure(Base):
    __tablename__ = "loan_restructures"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "restructure_type IN ('restructure', 'refinance')",
            name="ck_loan_restructure_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_loan_restructure_status",
        ),
        CheckConstraint("new_term_months > 0", name="ck_loan_restructure_term_positive"),
        CheckConstraint("new_interest_rate >= 0", name="ck_loan_restructure_rate_nonneg"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id = Column(Uuid, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    restructure_type = Column(String(20), nullable=False, default="restructure")
    new_term_months = Column(Integer, nullable=False)
    new_interest_rate = Column(Numeric(6, 2), nullable=False)
    new_interest_type = Column(String(10), nullable=False)
    restructured_principal = Column(Numeric(14, 2), nullable=False)
    new_monthly_payment = Column(Numeric(14, 2), nullable=False)
    new_total_amount = Column(Numeric(14, 2), nullable=False)
    previous_terms = Column(JSON, nullable=True)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    requested_by = Column(String(100), nullable=False)
    requested_by_id = Column(String(50), nullable=True)
    approved_by = Column(String(100), nullable=True)
    decided_at = Column(UTCDateTime(), nullable=True)
    effective_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
