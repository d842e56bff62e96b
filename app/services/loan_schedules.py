from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from app.models.loan import Loan
from app.schemas.loan import LoanScheduleEntry, LoanScheduleResponse
from app.services.amortization import add_months, amortize, monthly_rate


TWOPLACES = Decimal("0.01")


def _q(value: Decimal) -> Decimal:
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def build_schedule(loan: Loan) -> LoanScheduleResponse:
    return build_schedule_from_terms(
        loan_id=loan.id,
        principal=loan.principal_amount,
        annual_rate=loan.interest_rate,
        term_months=int(loan.term_months),
        interest_type=loan.interest_type,
        start_date=loan.restructured_date or loan.disbursed_date,
    )


def _unpaid_shares(loan: Loan) -> list[tuple[LoanScheduleEntry, Decimal]]:
    """Schedule entries not yet fully paid, each with the unpaid fraction of its payment.

    Payments are applied to the schedule in installment order.
    """
    paid = Decimal(loan.total_amount) - Decimal(loan.outstanding_balance)
    unpaid: list[tuple[LoanScheduleEntry, Decimal]] = []
    for entry in build_schedule(loan).entries:
        if paid >= entry.payment:
            paid -= entry.payment
            continue
        share = (entry.payment - paid) / entry.payment if entry.payment else Decimal("1")
        unpaid.append((entry, share))
        paid = Decimal("0")
    return unpaid


def remaining_principal(loan: Loan) -> Decimal:
    return _q(sum((entry.principal * share for entry, share in _unpaid_shares(loan)), Decimal("0")))


def remaining_installments(loan: Loan) -> int:
    return len(_unpaid_shares(loan))


def build_schedule_from_terms(
    *,
    principal,
    annual_rate,
    term_months: int,
    interest_type: str,
    start_date: date,
    loan_id=None,
) -> LoanScheduleResponse:
    result = amortize(principal, annual_rate, term_months, interest_type)
    balance = result.principal
    entries: list[LoanScheduleEntry] = []

    if result.interest_type == "compound":
        monthly_payment = result.monthly_payment
        rate = monthly_rate(result.annual_rate_percent)
        for period in range(1, term_months + 1):
            interest = _q(balance * rate)
            principal_payment = _q(monthly_payment - interest)
            if period == term_months:
                principal_payment = balance
                monthly_payment = _q(principal_payment + interest)
            balance = _q(balance - principal_payment)
            entries.append(
                LoanScheduleEntry(
                    period=period,
                    due_date=add_months(start_date, period),
                    payment=monthly_payment,
                    principal=principal_payment,
                    interest=interest,
                    remaining_balance=balance,
                )
            )
    else:
        # Flat interest is spread evenly; the last period absorbs rounding.
        interest_share = _q(result.total_interest / Decimal(term_months))
        interest_remaining = result.total_interest
        for period in range(1, term_months + 1):
            if period == term_months:
                interest = interest_remaining
                principal_payment = balance
            else:
                interest = interest_share
                principal_payment = _q(result.monthly_payment - interest)
            payment = _q(principal_payment + interest)
            interest_remaining = _q(interest_remaining - interest)
            balance = _q(balance - principal_payment)
            entries.append(
                LoanScheduleEntry(
                    period=period,
                    due_date=add_months(start_date, period),
                    payment=payment,
                    principal=principal_payment,
                    interest=interest,
                    remaining_balance=balance,
                )
            )

    return LoanScheduleResponse(
        loan_id=loan_id,
        principal=result.principal,
        annual_rate_percent=result.annual_rate_percent,
        term_months=result.term_months,
        interest_type=result.interest_type,
        monthly_payment=result.monthly_payment,
        total_amount=result.total_amount,
        total_interest=result.total_interest,
        entries=entries,
    )
