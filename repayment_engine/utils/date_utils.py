"""Date manipulation utilities: period stepping and business-day calendar"""

from datetime import date, timedelta
from typing import Dict, FrozenSet, Iterable, List

from dateutil.easter import easter
from dateutil.relativedelta import relativedelta, MO

from repayment_engine.domain.frequency import PaymentFrequency, day_step


def canadian_holidays(year: int) -> List[date]:
    """Statutory holidays and common observances used by the payment rails"""
    easter_sunday = easter(year)

    return [
        date(year, 1, 1),  # New Year's Day
        easter_sunday - timedelta(days=2),  # Good Friday
        easter_sunday + timedelta(days=1),  # Easter Monday
        date(year, 5, 24) + relativedelta(weekday=MO(-1)),  # Victoria Day
        date(year, 7, 1),  # Canada Day
        date(year, 9, 1) + relativedelta(weekday=MO(+1)),  # Labour Day
        date(year, 10, 1) + relativedelta(weekday=MO(+2)),  # Thanksgiving
        date(year, 11, 11),  # Remembrance Day
        date(year, 12, 25),  # Christmas
        date(year, 12, 26),  # Boxing Day
    ]


class HolidayCalendar:
    """Weekends plus a fixed holiday calendar; everything else is a business day"""

    def __init__(self, extra_holidays: Iterable[date] = ()):
        self.extra_holidays = frozenset(extra_holidays)
        self._by_year: Dict[int, FrozenSet[date]] = {}

    def holidays(self, year: int) -> FrozenSet[date]:
        if year not in self._by_year:
            self._by_year[year] = frozenset(canadian_holidays(year))
        return self._by_year[year]

    def is_business_day(self, day: date) -> bool:
        if day.weekday() >= 5:
            return False
        return day not in self.holidays(day.year) and day not in self.extra_holidays

    def next_business_day(self, day: date) -> date:
        """Return ``day`` itself when it is a business day, else the next one"""
        while not self.is_business_day(day):
            day += timedelta(days=1)
        return day


def add_periods(anchor: date, frequency: PaymentFrequency, periods: int) -> date:
    """
    Due date ``periods`` steps after ``anchor`` (unadjusted for business days).

    Monthly cadence keeps the anchor's day of month (clamped to month end).
    Twice-monthly alternates the 15th and the last day of the month, starting
    with the half-month that contains the anchor.
    """
    if frequency is PaymentFrequency.MONTHLY:
        return anchor + relativedelta(months=periods)

    if frequency is PaymentFrequency.TWICE_MONTHLY:
        slot = periods + (0 if anchor.day <= 15 else 1)
        month_start = anchor.replace(day=1) + relativedelta(months=slot // 2)
        if slot % 2 == 0:
            return month_start.replace(day=15)
        return month_start + relativedelta(day=31)

    return anchor + timedelta(days=periods * day_step(frequency))
