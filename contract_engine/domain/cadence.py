"""Cadence matching - decides whether two payment dates are a recurring interval apart"""

from datetime import date
from typing import Optional

from contract_engine.utils.date_utils import calendar_month_difference

DAY_TOLERANCE = 5


def months_between(date1: date, date2: date, day_tolerance: int = DAY_TOLERANCE) -> Optional[int]:
    """
    Months separating two payments, or None when they are not periodic.

    Callers pass the dates in chronological order.

    - date2 in a later calendar month: the calendar month difference,
      whatever the days of month (Jan 31 -> Feb 28 is 1 month)
    - same calendar month, at most day_tolerance days apart: 0
    - anything else (same month but far apart, or date2 before date1): None
    """
    total_months = calendar_month_difference(date1, date2)

    if total_months > 0:
        return total_months

    day_diff = abs((date2 - date1).days)
    if total_months == 0 and day_diff <= day_tolerance:
        return 0

    return None
