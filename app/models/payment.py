import uuid

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Numeric, String, Uuid, func

from app.db.base import Base, utc_now
from app.models.types import UTCDateTime


PAYMENT_STATUSES = ("paid", "late", "pending")


class Payment(Base):
    __tablename__ = "payments"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint("late_fee >= 0", name="ck_payment_late_fee_nonneg"),
        CheckConstraint("status IN ('paid', 'late', 'pending')", name="ck_payment_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    loan_id = Column(Uuid, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="paid")
    late_fee = Column(Numeric(14, 2), nullable=False, default=0)
    received_by = Column(String(100), nullable=False)
    receipt_number = Column(String(100), nullable=False, unique=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, server_default=func.now())
