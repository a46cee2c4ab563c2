"""Date manipulation utilities"""

from datetime import date, timedelta


def calendar_month_difference(start: date, end: date) -> int:
    """Whole calendar months from start to end, ignoring the day of month"""
    return (end.year - start.year) * 12 + end.month - start.month


def add_days(from_date: date, days: int) -> date:
    """Add calendar days to a date"""
    return from_date + timedelta(days=days)
