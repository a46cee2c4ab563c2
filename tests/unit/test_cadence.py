"""Unit tests for cadence matching and date helpers"""

import pytest
from datetime import date, timedelta
from contract_engine.domain.cadence import months_between
from contract_engine.utils.date_utils import add_days, calendar_month_difference


def test_months_between_next_month_ignores_day_of_month():
    """Test consecutive calendar months count as one month whatever the days"""
    assert months_between(date(2024, 1, 5), date(2024, 2, 4)) == 1
    assert months_between(date(2024, 1, 31), date(2024, 2, 28)) == 1
    assert months_between(date(2024, 1, 1), date(2024, 2, 29)) == 1


def test_months_between_across_year_boundary():
    """Test month difference spans years"""
    assert months_between(date(2023, 12, 15), date(2024, 1, 10)) == 1
    assert months_between(date(2023, 3, 1), date(2024, 3, 1)) == 12


def test_months_between_same_month_within_tolerance():
    """Test payments a few days apart in one month are a same-month recurrence"""
    assert months_between(date(2024, 1, 5), date(2024, 1, 10)) == 0
    assert months_between(date(2024, 1, 5), date(2024, 1, 5)) == 0


def test_months_between_same_month_beyond_tolerance():
    """Test payments far apart in one month are not periodic"""
    assert months_between(date(2024, 1, 1), date(2024, 1, 20)) is None


def test_months_between_reversed_dates():
    """Test a second date before the first is not periodic"""
    assert months_between(date(2024, 3, 1), date(2024, 1, 1)) is None


def test_months_between_custom_tolerance():
    """Test day tolerance is configurable"""
    assert months_between(date(2024, 1, 1), date(2024, 1, 10), day_tolerance=10) == 0
    assert months_between(date(2024, 1, 1), date(2024, 1, 10), day_tolerance=3) is None


def test_months_between_never_negative():
    """Test result is None or a non-negative month count for any date pair"""
    start = date(2023, 11, 20)
    dates = [start + timedelta(days=offset) for offset in range(0, 120, 7)]

    for first in dates:
        for second in dates:
            months = months_between(first, second)
            assert months is None or months >= 0


@pytest.mark.parametrize(
    "start,end,expected",
    [
        (date(2024, 1, 31), date(2024, 2, 1), 1),
        (date(2024, 5, 1), date(2024, 5, 31), 0),
        (date(2022, 12, 1), date(2024, 2, 1), 14),
        (date(2024, 3, 1), date(2023, 3, 1), -12),
    ],
)
def test_calendar_month_difference(start, end, expected):
    """Test calendar month difference ignores days"""
    assert calendar_month_difference(start, end) == expected


def test_add_days_crosses_month():
    """Test day arithmetic across month ends"""
    assert add_days(date(2024, 1, 31), 30) == date(2024, 3, 1)
    assert add_days(date(2024, 1, 1), 60) == date(2024, 3, 1)
