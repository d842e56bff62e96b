from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class KycStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"


class BorrowerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLACKLISTED = "blacklisted"


class BorrowerBase(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=150)
    phone: str = Field(min_length=3, max_length=50)
    date_of_birth: date | None = None
    address: str | None = Field(default=None, max_length=255)
    employment: str | None = Field(default=None, max_length=255)
    monthly_income: Decimal = Field(default=Decimal("0"), ge=0)
    monthly_expenses: Decimal = Field(default=Decimal("0"), ge=0)
    existing_debts: Decimal = Field(default=Decimal("0"), ge=0)


class BorrowerCreate(BorrowerBase):
    registration_date: date | None = None


class BorrowerUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, min_length=3, max_length=150)
    phone: str | None = Field(default=None, min_length=3, max_length=50)
    date_of_birth: date | None = None
    address: str | None = Field(default=None, max_length=255)
    employment: str | None = Field(default=None, max_length=255)
    monthly_income: Decimal | None = Field(default=None, ge=0)
    monthly_expenses: Decimal | None = Field(default=None, ge=0)
    existing_debts: Decimal | None = Field(default=None, ge=0)


class BorrowerDTO(BorrowerBase):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    kyc_status: KycStatus
    kyc_reviewed_by: str | None = None
    kyc_reviewed_at: datetime | None = None
    credit_score: int
    status: BorrowerStatus
    registration_date: date
    created_at: datetime | None = None
    updated_at: datetime | None = None


class KycReviewRequest(BaseModel):
    decision: Literal["verified", "rejected"]
    notes: str | None = None


class BorrowerStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: BorrowerStatus
    reason: str | None = None


class CreditFactorsDTO(BaseModel):
    payment_history: float
    credit_utilization: float
    credit_age: float
    total_debt: float
    recent_inquiries: float


class CreditScoreResponse(BaseModel):
    borrower_id: UUID
    score: int
    factors: CreditFactorsDTO
    persisted: bool = False


class CreditLimitResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    borrower_id: UUID
    monthly_income: Decimal
    disposable_income: Decimal
    income_multiplier: Decimal
    completed_loans: int
    cap_by_income: Decimal
    cap_by_disposable: Decimal
    max_credit: Decimal
    outstanding_balance: Decimal
    available_credit: Decimal
