"""Unit tests for due-date stepping and the business-day calendar"""

from datetime import date
from repayment_engine.domain.frequency import PaymentFrequency
from repayment_engine.utils.date_utils import HolidayCalendar, add_periods, canadian_holidays


def test_easter_relative_holidays_move_each_year():
    assert date(2024, 3, 29) in canadian_holidays(2024)  # Good Friday
    assert date(2024, 4, 1) in canadian_holidays(2024)  # Easter Monday
    assert date(2026, 4, 3) in canadian_holidays(2026)
    assert date(2026, 4, 6) in canadian_holidays(2026)


def test_canadian_holidays_2025():
    """Test floating holidays land on the right Mondays"""
    holidays = canadian_holidays(2025)

    assert date(2025, 4, 18) in holidays  # Good Friday
    assert date(2025, 4, 21) in holidays  # Easter Monday
    assert date(2025, 5, 19) in holidays  # Victoria Day
    assert date(2025, 9, 1) in holidays  # Labour Day
    assert date(2025, 10, 13) in holidays  # Thanksgiving
    assert date(2025, 12, 26) in holidays


def test_next_business_day_skips_weekends_and_holidays():
    calendar = HolidayCalendar()

    assert calendar.next_business_day(date(2025, 2, 3)) == date(2025, 2, 3)  # Monday
    assert calendar.next_business_day(date(2025, 5, 3)) == date(2025, 5, 5)  # Saturday
    assert calendar.next_business_day(date(2025, 12, 25)) == date(2025, 12, 29)
    assert calendar.next_business_day(date(2025, 7, 1)) == date(2025, 7, 2)


def test_extra_holidays():
    """Test operator-configured closures are honoured"""
    calendar = HolidayCalendar(extra_holidays=[date(2025, 3, 3)])

    assert not calendar.is_business_day(date(2025, 3, 3))
    assert calendar.next_business_day(date(2025, 3, 3)) == date(2025, 3, 4)


def test_add_periods_weekly_and_bi_weekly():
    anchor = date(2025, 3, 7)

    assert add_periods(anchor, PaymentFrequency.WEEKLY, 2) == date(2025, 3, 21)
    assert add_periods(anchor, PaymentFrequency.BI_WEEKLY, 3) == date(2025, 4, 18)


def test_add_periods_monthly_clamps_to_month_end():
    anchor = date(2025, 1, 31)

    assert add_periods(anchor, PaymentFrequency.MONTHLY, 1) == date(2025, 2, 28)
    assert add_periods(anchor, PaymentFrequency.MONTHLY, 2) == date(2025, 3, 31)
    assert add_periods(anchor, PaymentFrequency.MONTHLY, 13) == date(2026, 2, 28)


def test_add_periods_twice_monthly_alternates_15th_and_month_end():
    """Test semi-monthly dates start with the half-month containing the anchor"""
    first_half = date(2025, 1, 15)
    second_half = date(2025, 1, 20)

    assert [add_periods(first_half, PaymentFrequency.TWICE_MONTHLY, i) for i in range(4)] == [
        date(2025, 1, 15),
        date(2025, 1, 31),
        date(2025, 2, 15),
        date(2025, 2, 28),
    ]
    assert add_periods(second_half, PaymentFrequency.TWICE_MONTHLY, 0) == date(2025, 1, 31)
    assert add_periods(second_half, PaymentFrequency.TWICE_MONTHLY, 1) == date(2025, 2, 15)
