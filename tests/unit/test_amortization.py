"""Unit tests for amortization math"""

import pytest
from datetime import date
from decimal import Decimal
from repayment_engine.domain.amortization import (
    calculate_failed_payment_charges,
    calculate_payment_amount,
    calculate_total_interest,
    compute_period,
)
from repayment_engine.domain.exceptions import ValidationError
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.models import ScheduledPayment, PaymentStatus


def test_compute_period_reference_example():
    """Test 1200.00 @ 29% monthly with a 200.00 payment"""
    split = compute_period(Decimal("1200.00"), Decimal("29"), PaymentFrequency.MONTHLY, Decimal("200.00"))

    assert split.interest == Decimal("29.00")
    assert split.principal == Decimal("171.00")
    assert split.new_balance == Decimal("1029.00")
    assert split.interest + split.principal == Decimal("200.00")


def test_compute_period_rounds_half_up():
    """Test 1134.00 monthly interest of 27.405 rounds up to 27.41"""
    split = compute_period(Decimal("1134.00"), Decimal("29"), PaymentFrequency.MONTHLY, Decimal("200.00"))

    assert split.interest == Decimal("27.41")
    assert split.principal == Decimal("172.59")


def test_compute_period_payment_below_interest():
    """Test principal never goes negative when the payment misses the interest"""
    split = compute_period(Decimal("1000.00"), Decimal("29"), PaymentFrequency.MONTHLY, Decimal("10.00"))

    assert split.interest == Decimal("24.17")
    assert split.principal == Decimal("0.00")
    assert split.new_balance == Decimal("1000.00")


def test_compute_period_clamps_balance_at_zero():
    split = compute_period(Decimal("50.00"), Decimal("29"), PaymentFrequency.BI_WEEKLY, Decimal("200.00"))

    assert split.new_balance == Decimal("0.00")


def test_compute_period_uses_cadence_rate():
    """Test bi-weekly interest uses 26 periods per year"""
    split = compute_period(Decimal("1300.00"), Decimal("26"), PaymentFrequency.BI_WEEKLY, Decimal("100.00"))

    assert split.interest == Decimal("13.00")


def test_calculate_payment_amount_annuity():
    amount = calculate_payment_amount(Decimal("500.00"), Decimal("29"), PaymentFrequency.MONTHLY, 3)

    assert amount == Decimal("174.79")


def test_calculate_payment_amount_zero_rate():
    assert calculate_payment_amount(Decimal("1200.00"), Decimal("0"), PaymentFrequency.MONTHLY, 4) == Decimal("300.00")


@pytest.mark.parametrize(
    "principal,rate,periods",
    [("0", "29", 3), ("-5", "29", 3), ("500", "-1", 3), ("500", "29", 0)],
)
def test_calculate_payment_amount_rejects_bad_input(principal, rate, periods):
    with pytest.raises(ValidationError):
        calculate_payment_amount(Decimal(principal), Decimal(rate), PaymentFrequency.MONTHLY, periods)


def _failed(interest: str) -> ScheduledPayment:
    return ScheduledPayment(
        loan_id=None,
        payment_number=1,
        due_date=date(2025, 3, 3),
        amount=Decimal("200.00"),
        interest=Decimal(interest),
        principal=Decimal("200.00") - Decimal(interest),
        remaining_balance=Decimal("0.00"),
        status=PaymentStatus.FAILED,
    )


def test_calculate_total_interest():
    assert calculate_total_interest([_failed("24.87"), _failed("20.64")]) == Decimal("45.51")
    assert calculate_total_interest([]) == Decimal("0.00")


def test_calculate_failed_payment_charges():
    """Test fees and missed interest are totalled per failed payment"""
    charges = calculate_failed_payment_charges([_failed("24.87"), _failed("20.64")], Decimal("55.00"))

    assert charges.failed_payment_count == 2
    assert charges.total_fees == Decimal("110.00")
    assert charges.total_interest == Decimal("45.51")
    assert charges.total_amount == Decimal("155.51")
