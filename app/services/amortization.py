from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from app.core.errors import ValidationError

TWOPLACES = Decimal("0.01")
INTEREST_TYPES = ("simple", "compound")


@dataclass(frozen=True)
class AmortizationResult:
    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int
    interest_type: str
    monthly_payment: Decimal
    total_amount: Decimal
    total_interest: Decimal
    next_due_date: date | None = None


@dataclass(frozen=True)
class PenaltyResult:
    days_late: int
    grace_period_days: int
    penalty: Decimal


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / Decimal("1200")


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by calendar months, clamping to the last day of a short month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def validate_terms(principal, annual_rate_percent, term_months, interest_type: str) -> None:
    errors: list[str] = []
    if principal is None or _as_decimal(principal) <= 0:
        errors.append("principal must be > 0")
    if annual_rate_percent is None or _as_decimal(annual_rate_percent) < 0:
        errors.append("interest rate must be >= 0")
    if term_months is None or int(term_months) <= 0:
        errors.append("term_months must be > 0")
    if interest_type not in INTEREST_TYPES:
        errors.append(f"interest_type must be one of {', '.join(INTEREST_TYPES)}")
    if errors:
        raise ValidationError("; ".join(errors), details={"errors": errors})


def compound_monthly_payment(principal: Decimal, annual_rate_percent: Decimal, term_months: int) -> Decimal:
    rate = monthly_rate(annual_rate_percent)
    if rate == 0:
        return _money(principal / Decimal(term_months))
    factor = (Decimal("1") + rate) ** term_months
    payment = principal * rate * factor / (factor - Decimal("1"))
    return _money(payment)


def amortize(
    principal,
    annual_rate_percent,
    term_months: int,
    interest_type: str = "compound",
    *,
    disbursement_date: date | None = None,
) -> AmortizationResult:
    validate_terms(principal, annual_rate_percent, term_months, interest_type)
    principal = _as_decimal(principal)
    annual_rate = _as_decimal(annual_rate_percent)
    term_months = int(term_months)

    if interest_type == "simple":
        years = Decimal(term_months) / Decimal("12")
        total_amount = _money(principal * (Decimal("1") + annual_rate / Decimal("100") * years))
        monthly_payment = _money(total_amount / Decimal(term_months))
    else:
        monthly_payment = compound_monthly_payment(principal, annual_rate, term_months)
        total_amount = _money(monthly_payment * term_months)

    return AmortizationResult(
        principal=principal,
        annual_rate_percent=annual_rate,
        term_months=term_months,
        interest_type=interest_type,
        monthly_payment=monthly_payment,
        total_amount=total_amount,
        total_interest=_money(total_amount - principal),
        next_due_date=add_months(disbursement_date, 1) if disbursement_date else None,
    )


def calculate_penalty(
    *,
    outstanding_balance,
    penalty_rate,
    penalty_flat,
    grace_period_days: int,
    due_date: date | None,
    as_of: date,
) -> PenaltyResult:
    grace = max(int(grace_period_days or 0), 0)
    if due_date is None:
        return PenaltyResult(days_late=0, grace_period_days=grace, penalty=Decimal("0.00"))

    days_late = max((as_of - due_date).days, 0)
    if days_late <= grace:
        return PenaltyResult(days_late=days_late, grace_period_days=grace, penalty=Decimal("0.00"))

    rate = _as_decimal(penalty_rate or 0)
    flat = _as_decimal(penalty_flat or 0)
    by_rate = _as_decimal(outstanding_balance or 0) * rate / Decimal("100")
    if rate > 0 and flat > 0:
        penalty = max(by_rate, flat)
    elif rate > 0:
        penalty = by_rate
    elif flat > 0:
        penalty = flat
    else:
        penalty = Decimal("0")
    return PenaltyResult(days_late=days_late, grace_period_days=grace, penalty=_money(penalty))
