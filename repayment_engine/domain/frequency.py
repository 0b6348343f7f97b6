"""Supported payment cadences and their period lengths"""

import re
from enum import Enum
from typing import Dict, Optional

from repayment_engine.domain.exceptions import ValidationError


class PaymentFrequency(str, Enum):
    """Payment cadence of a loan schedule"""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    TWICE_MONTHLY = "twice-monthly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value) -> "PaymentFrequency":
        """
        Normalize a caller-supplied frequency string.

        Accepts canonical values and common aliases ("biweekly", "fortnightly",
        "semi-monthly", "mensuel", ...). Anything else is rejected so that no
        schedule is ever computed against a guessed cadence.

        Raises:
            ValidationError: If the value does not name a supported frequency
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Unsupported payment frequency: {value!r}")

        canonical = _canonicalize(value)
        for frequency, aliases in _ALIASES.items():
            if canonical == frequency.value or canonical in aliases:
                return frequency

        raise ValidationError(f"Unsupported payment frequency: {value!r}")


# Periods per year, day-step (None = step by calendar month)
_PERIODS: Dict[PaymentFrequency, tuple] = {
    PaymentFrequency.WEEKLY: (52, 7),
    PaymentFrequency.BI_WEEKLY: (26, 14),
    PaymentFrequency.TWICE_MONTHLY: (24, 15),
    PaymentFrequency.MONTHLY: (12, None),
}

_ALIASES: Dict[PaymentFrequency, frozenset] = {
    PaymentFrequency.WEEKLY: frozenset(
        {"week", "once-a-week", "one-week", "1w", "hebdomadaire", "every-week", "per-week"}
    ),
    PaymentFrequency.BI_WEEKLY: frozenset(
        {"biweekly", "every-two-weeks", "two-weeks", "fortnightly", "14-days", "every-14-days", "2w"}
    ),
    PaymentFrequency.TWICE_MONTHLY: frozenset(
        {
            "twice-per-month",
            "two-times-per-month",
            "2-times-per-month",
            "2x-per-month",
            "2x-month",
            "semi-monthly",
            "semimonthly",
            "twice-month",
        }
    ),
    PaymentFrequency.MONTHLY: frozenset({"month", "once-a-month", "1m", "mensuel", "per-month"}),
}


def _canonicalize(value: str) -> str:
    return re.sub(r"-+", "-", re.sub(r"[_\s]+", "-", value.strip().lower()))


def payments_per_year(frequency: PaymentFrequency) -> int:
    """Number of payment periods in one year"""
    return _PERIODS[frequency][0]


def day_step(frequency: PaymentFrequency) -> Optional[int]:
    """Fixed day step between payments, or None for calendar-month cadences"""
    return _PERIODS[frequency][1]
