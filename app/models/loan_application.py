import uuid

from sqlalchemy import (
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


APPLICATION_STATUSES = ("pending", "under_review", "approved", "rejected", "disbursed")


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_loan_app_requested_positive"),
        CheckConstraint("approved_amount IS NULL OR approved_amount > 0", name="ck_loan_app_approved_positive"),
        CheckConstraint("interest_rate IS NULL OR interest_rate >= 0", name="ck_loan_app_rate_nonneg"),
        CheckConstraint("term_months IS NULL OR term_months > 0", name="ck_loan_app_term_positive"),
        CheckConstraint("grace_period_days >= 0", name="ck_loan_app_grace_nonneg"),
        CheckConstraint("penalty_rate >= 0", name="ck_loan_app_penalty_rate_nonneg"),
        CheckConstraint("penalty_flat >= 0", name="ck_loan_app_penalty_flat_nonneg"),
        CheckConstraint(
            "status IN ('pending', 'under_review', 'approved', 'rejected', 'disbursed')",
            name="ck_loan_app_status",
        ),
        CheckConstraint(
            "interest_type IN ('simple', 'compound')",
            name="ck_loan_app_interest_type",
        ),
        CheckConstraint(
            "risk_tier IS NULL OR risk_tier IN ('low', 'medium', 'high')",
            name="ck_loan_app_risk_tier",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    borrower_id = Column(Uuid, ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False, index=True)
    loan_type = Column(String(50), nullable=False)
    requested_amount = Column(Numeric(14, 2), nullable=False)
    purpose = Column(Text, nullable=False)
    collateral_type = Column(String(100), nullable=True)
    collateral_value = Column(Numeric(14, 2), nullable=True)
    guarantor_name = Column(String(200), nullable=True)
    guarantor_phone = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    application_date = Column(Date, nullable=False)
    credit_score = Column(Integer, nullable=False)

    eligibility_status = Column(String(20), nullable=True)
    eligibility_score = Column(Integer, nullable=True)
    risk_tier = Column(String(10), nullable=True)
    income_ratio = Column(Numeric(10, 2), nullable=True)
    debt_to_income = Column(Numeric(10, 2), nullable=True)
    recommendation = Column(Text, nullable=True)

    reviewed_by = Column(String(100), nullable=True)
    review_date = Column(Date, nullable=True)
    approved_amount = Column(Numeric(14, 2), nullable=True)
    interest_rate = Column(Numeric(6, 2), nullable=True)
    term_months = Column(Integer, nullable=True)

    interest_type = Column(String(10), nullable=False, default="compound")
    grace_period_days = Column(Integer, nullable=False, default=5)
    penalty_rate = Column(Numeric(6, 2), nullable=False, default=0)
    penalty_flat = Column(Numeric(14, 2), nullable=False, default=0)

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )
