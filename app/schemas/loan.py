from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class InterestType(str, Enum):
    SIMPLE = "simple"
    COMPOUND = "compound"


class LoanApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"


class ApprovalStage(str, Enum):
    LOAN_OFFICER = "loan_officer"
    MANAGER = "manager"
    CASHIER = "cashier"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CLOSED = "closed"


class PaymentStatus(str, Enum):
    PAID = "paid"
    LATE = "late"
    PENDING = "pending"


class LoanApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    borrower_id: UUID
    loan_type: str = Field(min_length=1, max_length=50)
    requested_amount: Decimal = Field(gt=0)
    purpose: str = Field(min_length=1)
    credit_score: int | None = Field(default=None, ge=300, le=850)
    collateral_type: str | None = Field(default=None, max_length=100)
    collateral_value: Decimal | None = Field(default=None, ge=0)
    guarantor_name: str | None = Field(default=None, max_length=200)
    guarantor_phone: str | None = Field(default=None, max_length=50)
    interest_type: InterestType | None = None
    grace_period_days: int | None = Field(default=None, ge=0)
    penalty_rate: Decimal | None = Field(default=None, ge=0)
    penalty_flat: Decimal | None = Field(default=None, ge=0)


class LoanApplicationUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LoanApplicationStatus | None = None
    approved_amount: Decimal | None = None
    interest_rate: Decimal | None = None
    term_months: int | None = None
    reviewed_by: str | None = Field(default=None, max_length=100)
    review_date: date | None = None
    interest_type: InterestType | None = None
    grace_period_days: int | None = None
    penalty_rate: Decimal | None = None
    penalty_flat: Decimal | None = None


class LoanApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    borrower_id: UUID
    loan_type: str
    requested_amount: Decimal
    purpose: str
    collateral_type: str | None = None
    collateral_value: Decimal | None = None
    guarantor_name: str | None = None
    guarantor_phone: str | None = None
    status: LoanApplicationStatus
    application_date: date
    credit_score: int
    eligibility_status: str | None = None
    eligibility_score: int | None = None
    risk_tier: str | None = None
    income_ratio: Decimal | None = None
    debt_to_income: Decimal | None = None
    recommendation: str | None = None
    reviewed_by: str | None = None
    review_date: date | None = None
    approved_amount: Decimal | None = None
    interest_rate: Decimal | None = None
    term_months: int | None = None
    interest_type: InterestType
    grace_period_days: int
    penalty_rate: Decimal
    penalty_flat: Decimal
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationDTO]
    total: int


class ApprovalDecisionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    approval_stage: ApprovalStage
    decision: ApprovalDecision
    decided_by: str | None = Field(default=None, max_length=100)
    notes: str | None = None


class ApprovalRecordDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    approval_stage: ApprovalStage
    decision: ApprovalDecision
    decided_by: str
    decided_by_id: str | None = None
    decider_role: str
    notes: str | None = None
    decided_at: datetime


class ApprovalOutcomeDTO(BaseModel):
    record: ApprovalRecordDTO
    application_status: LoanApplicationStatus
    required_stages: list[ApprovalStage]


class AuthorizationCodeIssued(BaseModel):
    application_id: UUID
    code: str
    generation: int
    expires_at: datetime


class AuthorizationCodeConsumeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class AuthorizationCodeConsumed(BaseModel):
    ok: bool = True
    application_id: UUID
    used_at: datetime


class DisbursementRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    authorization_code: str = Field(min_length=1, max_length=64)
    borrower_id: UUID | None = None
    principal_amount: Decimal | None = None
    interest_rate: Decimal | None = None
    term_months: int | None = None
    interest_type: InterestType | None = None
    grace_period_days: int | None = Field(default=None, ge=0)
    penalty_rate: Decimal | None = Field(default=None, ge=0)
    penalty_flat: Decimal | None = Field(default=None, ge=0)
    disbursement_method: str = Field(default="bank_transfer", min_length=1, max_length=50)
    reference_number: str | None = Field(default=None, max_length=100)
    receipt_number: str | None = Field(default=None, min_length=1, max_length=100)
    disbursed_date: date | None = None


class LoanDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    application_id: UUID
    borrower_id: UUID
    loan_type: str
    principal_amount: Decimal
    interest_rate: Decimal
    term_months: int
    interest_type: InterestType
    grace_period_days: int
    penalty_rate: Decimal
    penalty_flat: Decimal
    monthly_payment: Decimal
    total_amount: Decimal
    outstanding_balance: Decimal
    next_due_date: date | None = None
    disbursed_date: date
    disbursed_by: str
    disbursement_method: str
    reference_number: str | None = None
    receipt_number: str
    disbursement_meta: dict | None = None
    restructured_date: date | None = None
    closed_date: date | None = None
    closure_certificate_number: str | None = None
    status: LoanStatus
    created_at: datetime | None = None


class LoanScheduleEntry(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    period: int
    due_date: date
    payment: Decimal
    principal: Decimal
    interest: Decimal
    remaining_balance: Decimal


class LoanScheduleResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True, json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID | None = None
    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int
    interest_type: InterestType
    monthly_payment: Decimal
    total_amount: Decimal
    total_interest: Decimal
    entries: list[LoanScheduleEntry]


class PenaltyResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID
    as_of: date
    due_date: date | None
    days_late: int
    grace_period_days: int
    outstanding_balance: Decimal
    penalty: Decimal


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_date: date | None = None
    due_date: date | None = None
    late_fee: Decimal | None = Field(default=None, ge=0)
    received_by: str | None = Field(default=None, max_length=100)
    receipt_number: str | None = Field(default=None, min_length=1, max_length=100)


class PaymentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_id: UUID
    amount: Decimal
    payment_date: date
    due_date: date
    status: PaymentStatus
    late_fee: Decimal
    received_by: str
    receipt_number: str
    created_at: datetime | None = None


class ChangeRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RestructureType(str, Enum):
    RESTRUCTURE = "restructure"
    REFINANCE = "refinance"


class ChangeRequestDecision(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    decision: ApprovalDecision
    effective_date: date | None = None
    notes: str | None = None


class LoanRestructureCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    restructure_type: RestructureType = RestructureType.RESTRUCTURE
    new_term_months: int | None = Field(default=None, gt=0)
    new_interest_rate: Decimal | None = Field(default=None, ge=0)
    new_interest_type: InterestType | None = None
    reason: str = Field(min_length=1)
    effective_date: date | None = None
    notes: str | None = None


class LoanRestructureDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_id: UUID
    restructure_type: RestructureType
    new_term_months: int
    new_interest_rate: Decimal
    new_interest_type: InterestType
    restructured_principal: Decimal
    new_monthly_payment: Decimal
    new_total_amount: Decimal
    previous_terms: dict | None = None
    reason: str
    status: ChangeRequestStatus
    requested_by: str
    approved_by: str | None = None
    decided_at: datetime | None = None
    effective_date: date | None = None
    notes: str | None = None
    created_at: datetime | None = None


class LoanTransferCreate(BaseModel):
    to_borrower_id: UUID
    reason: str = Field(min_length=1)
    effective_date: date | None = None
    notes: str | None = None


class LoanTransferDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_id: UUID
    from_borrower_id: UUID
    to_borrower_id: UUID
    reason: str
    status: ChangeRequestStatus
    requested_by: str
    approved_by: str | None = None
    decided_at: datetime | None = None
    effective_date: date | None = None
    notes: str | None = None
    created_at: datetime | None = None


class LoanClosureCreate(BaseModel):
    settlement_amount: Decimal | None = Field(default=None, ge=0)
    closed_date: date | None = None
    receipt_number: str | None = Field(default=None, min_length=1, max_length=100)
    remarks: str | None = None


class LoanClosureDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_id: UUID
    borrower_id: UUID
    closed_date: date
    closed_at: datetime
    closed_by: str
    certificate_number: str
    outstanding_at_closure: Decimal
    penalty_at_closure: Decimal
    settlement_amount: Decimal
    settlement_payment_id: UUID | None = None
    remarks: str | None = None


class PaymentReminderRequest(BaseModel):
    months_due: int | None = Field(default=None, gt=0)
    as_of: date | None = None


class PaymentReminderResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID
    borrower_id: UUID
    due_date: date | None
    days_overdue: int
    penalty: Decimal
    message: str


class PayoffQuoteResponse(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    loan_id: UUID
    as_of: date
    outstanding_balance: Decimal
    penalty: Decimal
    days_late: int
    payoff_amount: Decimal
