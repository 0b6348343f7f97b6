"""Schedule recalculation: drive the amortization calculator across periods"""

import warnings
from datetime import date
from typing import Optional

from repayment_engine.domain.amortization import compute_period
from repayment_engine.domain.exceptions import NonConvergenceWarning, ValidationError
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.domain.models import Breakdown, BreakdownEntry
from repayment_engine.utils.date_utils import HolidayCalendar, add_periods
from repayment_engine.utils.money import ZERO, round2, to_decimal


def recalculate(
    *,
    starting_balance,
    payment_amount,
    frequency: PaymentFrequency,
    annual_rate_percent,
    first_payment_date: date,
    max_periods: int,
    first_period: int = 0,
    calendar: Optional[HolidayCalendar] = None,
    final_payoff: bool = False,
) -> Breakdown:
    """
    Project the future payments that amortize ``starting_balance``.

    Requirements:
    - One entry per period starting at period ``first_period`` of the cadence
      anchored on ``first_payment_date``
    - Due dates derived from the anchor and period index, then moved to the
      next business day
    - The terminating entry pays exactly the remaining balance plus its
      interest, so the schedule never overshoots zero
    - At most ``max_periods`` entries; with ``final_payoff`` the last of them
      absorbs whatever balance is left

    Args:
        starting_balance: Principal to amortize
        payment_amount: Contracted payment per period
        frequency: Payment cadence
        annual_rate_percent: Annual interest rate, e.g. 29 for 29%
        first_payment_date: Unadjusted anchor date of the cadence
        max_periods: Hard cap on generated entries
        first_period: Cadence period of the first entry (0 = the anchor's own period)
        calendar: Business-day calendar (default: weekends + statutory holidays)
        final_payoff: Force the last capped entry to clear the balance

    Returns:
        Breakdown with ``converged=False`` when the cap was reached first

    Example:
        1200.00 @ 29% monthly, payment 200.00 from 2025-02-03
        → 7 entries, 171.00 of principal first, final payment 112.64
    """
    payment_amount = round2(payment_amount)
    annual_rate_percent = to_decimal(annual_rate_percent)

    if payment_amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    if annual_rate_percent < 0:
        raise ValidationError("Interest rate cannot be negative")
    if max_periods < 1:
        raise ValidationError("max_periods must be at least 1")

    balance = round2(starting_balance)
    if balance <= 0:
        return Breakdown()

    calendar = calendar or HolidayCalendar()
    entries = []

    for index in range(max_periods):
        due_date = calendar.next_business_day(add_periods(first_payment_date, frequency, first_period + index))
        split = compute_period(balance, annual_rate_percent, frequency, payment_amount)
        last_allowed = final_payoff and index == max_periods - 1

        if split.principal >= balance or last_allowed:
            entries.append(
                BreakdownEntry(
                    payment_number=index + 1,
                    due_date=due_date,
                    amount=round2(split.interest + balance),
                    interest=split.interest,
                    principal=balance,
                    remaining_balance=ZERO,
                )
            )
            balance = ZERO
            break

        entries.append(
            BreakdownEntry(
                payment_number=index + 1,
                due_date=due_date,
                amount=payment_amount,
                interest=split.interest,
                principal=split.principal,
                remaining_balance=split.new_balance,
            )
        )
        balance = split.new_balance

    converged = balance == 0
    if not converged:
        warnings.warn(
            NonConvergenceWarning(
                f"Balance {balance} left after {max_periods} periods at payment {payment_amount}"
            ),
            stacklevel=2,
        )

    return Breakdown(entries=entries, converged=converged)
