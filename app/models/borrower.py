import uuid

from sqlalchemy import CheckConstraint, Column, Date, Integer, Numeric, String, Uuid, func

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


KYC_STATUSES = ("pending", "submitted", "verified", "rejected")
BORROWER_STATUSES = ("active", "inactive", "blacklisted")


class Borrower(Base):
    __tablename__ = "borrowers"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("monthly_income >= 0", name="ck_borrower_income_nonneg"),
        CheckConstraint("monthly_expenses >= 0", name="ck_borrower_expenses_nonneg"),
        CheckConstraint("existing_debts >= 0", name="ck_borrower_debts_nonneg"),
        CheckConstraint("credit_score BETWEEN 300 AND 850", name="ck_borrower_credit_score_range"),
        CheckConstraint(
            "kyc_status IN ('pending', 'submitted', 'verified', 'rejected')",
            name="ck_borrower_kyc_status",
        ),
        CheckConstraint(
            "status IN ('active', 'inactive', 'blacklisted')",
            name="ck_borrower_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(150), nullable=False, index=True)
    phone = Column(String(50), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    address = Column(String(255), nullable=True)
    employment = Column(String(255), nullable=True)
    monthly_income = Column(Numeric(14, 2), nullable=False, default=0)
    monthly_expenses = Column(Numeric(14, 2), nullable=False, default=0)
    existing_debts = Column(Numeric(14, 2), nullable=False, default=0)
    kyc_status = Column(String(20), nullable=False, default="pending")
    kyc_reviewed_by = Column(String(100), nullable=True)
    kyc_reviewed_at = Column(UTCDateTime(), nullable=True)
    credit_score = Column(Integer, nullable=False, default=650)
    status = Column(String(20), nullable=False, default="active", index=True)
    registration_date = Column(Date, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
