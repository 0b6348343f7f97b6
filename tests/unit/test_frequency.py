"""Unit tests for payment frequency parsing"""

import pytest
from repayment_engine.domain.exceptions import ValidationError
from repayment_engine.domain.frequency import PaymentFrequency, day_step, payments_per_year


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("monthly", PaymentFrequency.MONTHLY),
        ("Mensuel", PaymentFrequency.MONTHLY),
        ("biweekly", PaymentFrequency.BI_WEEKLY),
        ("Every two weeks", PaymentFrequency.BI_WEEKLY),
        ("fortnightly", PaymentFrequency.BI_WEEKLY),
        ("semi_monthly", PaymentFrequency.TWICE_MONTHLY),
        ("twice-monthly", PaymentFrequency.TWICE_MONTHLY),
        ("  WEEKLY ", PaymentFrequency.WEEKLY),
    ],
)
def test_parse_accepts_aliases(raw, expected):
    """Test free-text cadences normalize to the canonical enum"""
    assert PaymentFrequency.parse(raw) is expected


@pytest.mark.parametrize("raw", ["quarterly", "", "   ", None, 12])
def test_parse_rejects_unknown_values(raw):
    """Test unknown cadences are rejected instead of defaulted"""
    with pytest.raises(ValidationError):
        PaymentFrequency.parse(raw)


def test_parse_passes_enum_through():
    assert PaymentFrequency.parse(PaymentFrequency.WEEKLY) is PaymentFrequency.WEEKLY


def test_period_table():
    """Test periods per year and day steps"""
    assert [payments_per_year(f) for f in PaymentFrequency] == [52, 26, 24, 12]
    assert day_step(PaymentFrequency.WEEKLY) == 7
    assert day_step(PaymentFrequency.BI_WEEKLY) == 14
    assert day_step(PaymentFrequency.TWICE_MONTHLY) == 15
    assert day_step(PaymentFrequency.MONTHLY) is None
