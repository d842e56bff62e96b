from datetime import date
from decimal import Decimal

from app.services.loan_schedules import build_schedule_from_terms


def test_compound_schedule_pays_down_to_zero() -> None:
    schedule = build_schedule_from_terms(
        principal=Decimal("100000"),
        annual_rate=Decimal("12"),
        term_months=12,
        interest_type="compound",
        start_date=date(2024, 1, 31),
    )

    assert len(schedule.entries) == 12
    first = schedule.entries[0]
    assert first.due_date == date(2024, 2, 29)
    assert first.interest == Decimal("1000.00")
    assert first.principal == Decimal("7884.88")
    assert first.payment == Decimal("8884.88")
    assert schedule.entries[-1].remaining_balance == Decimal("0.00")
    assert sum(entry.principal for entry in schedule.entries) == Decimal("100000.00")


def test_compound_schedule_matches_headline_figures() -> None:
    schedule = build_schedule_from_terms(
        principal=Decimal("100000"),
        annual_rate=Decimal("12"),
        term_months=12,
        interest_type="compound",
        start_date=date(2024, 1, 15),
    )

    assert schedule.monthly_payment == Decimal("8884.88")
    assert schedule.total_amount == Decimal("106618.56")
    assert [entry.period for entry in schedule.entries] == list(range(1, 13))
    assert schedule.entries[11].due_date == date(2025, 1, 15)


def test_simple_schedule_spreads_interest_evenly() -> None:
    schedule = build_schedule_from_terms(
        principal=Decimal("100000"),
        annual_rate=Decimal("12"),
        term_months=12,
        interest_type="simple",
        start_date=date(2024, 1, 15),
    )

    assert all(entry.interest == Decimal("1000.00") for entry in schedule.entries)
    assert schedule.entries[0].payment == Decimal("9333.33")
    assert schedule.entries[-1].remaining_balance == Decimal("0.00")
    assert sum(entry.payment for entry in schedule.entries) == Decimal("112000.00")


def test_zero_rate_schedule_has_no_interest() -> None:
    schedule = build_schedule_from_terms(
        principal=Decimal("1200"),
        annual_rate=Decimal("0"),
        term_months=12,
        interest_type="compound",
        start_date=date(2024, 1, 1),
    )

    assert all(entry.interest == Decimal("0.00") for entry in schedule.entries)
    assert all(entry.payment == Decimal("100.00") for entry in schedule.entries)
    assert schedule.entries[-1].remaining_balance == Decimal("0.00")
