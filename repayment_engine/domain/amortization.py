"""Amortization math: per-period interest/principal split and payment sizing"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from repayment_engine.domain.exceptions import ValidationError
from repayment_engine.domain.frequency import PaymentFrequency, payments_per_year
from repayment_engine.domain.models import PeriodSplit
from repayment_engine.utils.money import ZERO, round2, to_decimal


def periodic_rate(annual_rate_percent, frequency: PaymentFrequency) -> Decimal:
    """Annual percentage rate converted to the rate of one payment period"""
    return to_decimal(annual_rate_percent) / Decimal(100) / payments_per_year(frequency)


def period_interest(balance, annual_rate_percent, frequency: PaymentFrequency) -> Decimal:
    """Interest accrued on ``balance`` over one period, rounded to cents"""
    balance = to_decimal(balance)
    rate = to_decimal(annual_rate_percent)
    return round2(balance * rate / (Decimal(100) * payments_per_year(frequency)))


def compute_period(balance, annual_rate_percent, frequency: PaymentFrequency, payment_amount) -> PeriodSplit:
    """
    Split one payment into interest and principal.

    Every intermediate value is rounded to cents (half-up) so long schedules
    do not drift away from what the ledger actually posts.

    When the payment does not cover the period's interest, principal is zero
    and the balance does not move; callers must treat that as non-convergent.

    Example:
        balance=1200.00, rate=29, monthly, payment=200
        → interest 29.00, principal 171.00, new balance 1029.00
    """
    balance = round2(balance)
    interest = period_interest(balance, annual_rate_percent, frequency)
    principal = round2(max(ZERO, to_decimal(payment_amount) - interest))
    new_balance = max(ZERO, round2(balance - principal))
    return PeriodSplit(interest=interest, principal=principal, new_balance=new_balance)


def calculate_payment_amount(principal, annual_rate_percent, frequency: PaymentFrequency, number_of_payments: int) -> Decimal:
    """
    Level payment that amortizes ``principal`` over ``number_of_payments`` periods.

    Uses the annuity formula P·r·(1+r)^n / ((1+r)^n − 1); a zero rate
    degenerates to an even split.

    Raises:
        ValidationError: On non-positive principal or period count, or a negative rate
    """
    principal = to_decimal(principal)
    rate_percent = to_decimal(annual_rate_percent)

    if principal <= 0:
        raise ValidationError("Principal amount must be greater than 0")
    if rate_percent < 0:
        raise ValidationError("Interest rate cannot be negative")
    if number_of_payments <= 0:
        raise ValidationError("Number of payments must be greater than 0")

    rate = periodic_rate(rate_percent, frequency)
    if rate == 0:
        return round2(principal / number_of_payments)

    growth = (1 + rate) ** number_of_payments
    return round2(principal * rate * growth / (growth - 1))


def calculate_total_interest(entries: Iterable) -> Decimal:
    """Sum of the interest portions of breakdown entries or scheduled payments"""
    return round2(sum((to_decimal(entry.interest) for entry in entries), ZERO))


@dataclass(frozen=True)
class FailedPaymentCharges:
    total_fees: Decimal
    total_interest: Decimal
    total_amount: Decimal
    failed_payment_count: int


def calculate_failed_payment_charges(failed_payments: Iterable, fee_per_failure) -> FailedPaymentCharges:
    """Fees plus missed interest owed for a set of failed payments"""
    failed_payments = list(failed_payments)
    fee = to_decimal(fee_per_failure)
    total_fees = round2(fee * len(failed_payments))
    total_interest = calculate_total_interest(failed_payments)
    return FailedPaymentCharges(
        total_fees=total_fees,
        total_interest=total_interest,
        total_amount=round2(total_fees + total_interest),
        failed_payment_count=len(failed_payments),
    )
