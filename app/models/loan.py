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
    Uuid,
    func,
)

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


LOAN_STATUSES = ("active", "completed", "defaulted", "closed")


class Loan(Base):
    __tablename__ = "loans"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("principal_amount > 0", name="ck_loan_principal_positive"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_rate_nonneg"),
        CheckConstraint("term_months > 0", name="ck_loan_term_positive"),
        CheckConstraint("outstanding_balance >= 0", name="ck_loan_outstanding_nonneg"),
        CheckConstraint(
            "status IN ('active', 'completed', 'defaulted', 'closed')",
            name="ck_loan_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id = Column(
        Uuid,
        ForeignKey("loan_applications.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    borrower_id = Column(Uuid, ForeignKey("borrowers.id", ondelete="RESTRICT"), nullable=False, index=True)
    loan_type = Column(String(50), nullable=False)
    principal_amount = Column(Numeric(14, 2), nullable=False)
    interest_rate = Column(Numeric(6, 2), nullable=False)
    term_months = Column(Integer, nullable=False)
    interest_type = Column(String(10), nullable=False, default="compound")
    grace_period_days = Column(Integer, nullable=False, default=5)
    penalty_rate = Column(Numeric(6, 2), nullable=False, default=0)
    penalty_flat = Column(Numeric(14, 2), nullable=False, default=0)
    monthly_payment = Column(Numeric(14, 2), nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
    outstanding_balance = Column(Numeric(14, 2), nullable=False)
    next_due_date = Column(Date, nullable=True)
    disbursed_date = Column(Date, nullable=False)
    disbursed_by = Column(String(100), nullable=False)
    disbursement_method = Column(String(50), nullable=False)
    reference_number = Column(String(100), nullable=True)
    receipt_number = Column(String(100), nullable=False, unique=True)
    disbursement_meta = Column(JSON, nullable=True)
    restructured_date = Column(Date, nullable=True)
    closed_date = Column(Date, nullable=True)
    closure_certificate_number = Column(String(50), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )
