from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from app.core.settings import settings

MIN_SCORE = 300
MAX_SCORE = 850
NEUTRAL_PAYMENT_HISTORY = 50.0

FACTOR_WEIGHTS = {
    "payment_history": 0.35,
    "credit_utilization": 0.30,
    "credit_age": 0.15,
    "total_debt": 0.10,
    "recent_inquiries": 0.10,
}

TWOPLACES = Decimal("0.01")


@dataclass(frozen=True)
class CreditProfile:
    monthly_income: Decimal
    monthly_expenses: Decimal
    existing_debts: Decimal
    on_time_payments: int = 0
    late_payments: int = 0
    account_age_months: int = 0
    recent_inquiries: int = 0
    average_days_late: float = 0.0
    defaulted_loans: int = 0
    total_principal_borrowed: Decimal = Decimal("0")
    outstanding_balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class CreditFactors:
    payment_history: float
    credit_utilization: float
    credit_age: float
    total_debt: float
    recent_inquiries: float

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_WEIGHTS}


@dataclass(frozen=True)
class CreditScoreResult:
    score: int
    factors: CreditFactors
    weighted_total: float = field(default=0.0)


@dataclass(frozen=True)
class LendingLimit:
    monthly_income: Decimal
    disposable_income: Decimal
    income_multiplier: Decimal
    completed_loans: int
    cap_by_income: Decimal
    cap_by_disposable: Decimal
    max_credit: Decimal
    outstanding_balance: Decimal
    available_credit: Decimal


@dataclass(frozen=True)
class EligibilityAssessment:
    eligibility_score: int
    eligibility_status: str
    risk_tier: str
    income_ratio: Decimal
    debt_to_income: Decimal
    recommendation: str


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _round(value: float) -> float:
    return round(value, 2)


def payment_history_score(profile: CreditProfile) -> float:
    total = profile.on_time_payments + profile.late_payments
    if total <= 0:
        return NEUTRAL_PAYMENT_HISTORY
    score = profile.on_time_payments / total * 100
    score -= min(max(profile.average_days_late, 0.0) * 0.5, 30.0)
    score -= min(profile.defaulted_loans * 20, 40)
    return _clamp(score)


def credit_utilization_score(profile: CreditProfile) -> float:
    if profile.total_principal_borrowed > 0:
        ratio = float(profile.outstanding_balance / profile.total_principal_borrowed)
    elif profile.monthly_income > 0:
        ratio = float(profile.monthly_expenses / profile.monthly_income)
    else:
        return 0.0
    return _clamp(100 - ratio * 100)


def credit_age_score(profile: CreditProfile) -> float:
    return _clamp(max(profile.account_age_months, 0) / 120 * 100)


def total_debt_score(profile: CreditProfile) -> float:
    annual_income = profile.monthly_income * 12
    if annual_income <= 0:
        return 0.0
    ratio = float(profile.existing_debts / annual_income)
    return _clamp(100 - ratio * 80)


def recent_inquiries_score(profile: CreditProfile) -> float:
    return _clamp(100 - max(profile.recent_inquiries, 0) * 10)


def compute_credit_score(profile: CreditProfile) -> CreditScoreResult:
    """Weighted five-factor score mapped onto [300, 850].

    Pure and side-effect free; callers decide whether the result is persisted.
    """
    factors = CreditFactors(
        payment_history=_round(payment_history_score(profile)),
        credit_utilization=_round(credit_utilization_score(profile)),
        credit_age=_round(credit_age_score(profile)),
        total_debt=_round(total_debt_score(profile)),
        recent_inquiries=_round(recent_inquiries_score(profile)),
    )
    weighted = sum(getattr(factors, name) * weight for name, weight in FACTOR_WEIGHTS.items())
    span = (MAX_SCORE - MIN_SCORE) / 100
    score = round(MIN_SCORE + weighted * span)
    score = int(max(MIN_SCORE, min(MAX_SCORE, score)))
    return CreditScoreResult(score=score, factors=factors, weighted_total=_round(weighted))


def compute_lending_limit(
    *,
    monthly_income: Decimal,
    monthly_expenses: Decimal,
    completed_loans: int,
    outstanding_balance: Decimal,
) -> LendingLimit:
    base = settings.credit_base_income_multiplier
    step = settings.credit_step_multiplier
    ceiling = settings.credit_max_income_multiplier
    multiplier = min(max(base + step * completed_loans, base), ceiling)

    income = max(monthly_income, Decimal("0"))
    disposable = max(income - monthly_expenses, Decimal("0"))
    cap_by_income = (income * multiplier).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    cap_by_disposable = (disposable * settings.credit_disposable_multiplier).quantize(
        TWOPLACES, rounding=ROUND_HALF_UP
    )
    max_credit = min(cap_by_income, cap_by_disposable)
    available = max(max_credit - outstanding_balance, Decimal("0")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    return LendingLimit(
        monthly_income=income,
        disposable_income=disposable,
        income_multiplier=multiplier,
        completed_loans=completed_loans,
        cap_by_income=cap_by_income,
        cap_by_disposable=cap_by_disposable,
        max_credit=max_credit,
        outstanding_balance=outstanding_balance,
        available_credit=available,
    )


def _recommendation(status: str, risk_tier: str, debt_to_income: float) -> str:
    if status == "eligible":
        return f"Eligible for standard terms ({risk_tier} risk)."
    if status == "ineligible":
        if debt_to_income > 0.7:
            return "Debt-to-income ratio exceeds 70%; decline or request additional collateral."
        return "Credit score below 580; decline or require a guarantor."
    return f"Manual review required ({risk_tier} risk); verify income and collateral."


def assess_eligibility(
    *,
    credit_score: int,
    requested_amount: Decimal,
    monthly_income: Decimal,
    outstanding_balance: Decimal,
    collateral_value: Decimal | None = None,
) -> EligibilityAssessment:
    annual_income = monthly_income * 12
    if annual_income > 0:
        income_ratio = float(requested_amount / annual_income)
        debt_to_income = float(outstanding_balance / annual_income)
    else:
        income_ratio = 1.0
        debt_to_income = 1.0

    credit_norm = _clamp((credit_score - MIN_SCORE) / (MAX_SCORE - MIN_SCORE), 0.0, 1.0)
    income_component = _clamp(1 - income_ratio, 0.0, 1.0)
    dti_component = _clamp(1 - debt_to_income, 0.0, 1.0)
    if collateral_value and requested_amount > 0:
        collateral_component = _clamp(float(collateral_value / requested_amount), 0.0, 1.0)
    else:
        collateral_component = 0.2

    eligibility_score = round(
        (credit_norm * 0.5 + income_component * 0.2 + dti_component * 0.2 + collateral_component * 0.1) * 100
    )
    if eligibility_score >= 75 and debt_to_income <= 0.5:
        risk_tier = "low"
    elif eligibility_score >= 55:
        risk_tier = "medium"
    else:
        risk_tier = "high"

    if credit_score >= 650 and debt_to_income <= 0.5:
        status = "eligible"
    elif credit_score < 580 or debt_to_income > 0.7:
        status = "ineligible"
    else:
        status = "manual_review"

    return EligibilityAssessment(
        eligibility_score=int(eligibility_score),
        eligibility_status=status,
        risk_tier=risk_tier,
        income_ratio=Decimal(str(round(income_ratio, 2))),
        debt_to_income=Decimal(str(round(debt_to_income, 2))),
        recommendation=_recommendation(status, risk_tier, debt_to_income),
    )
