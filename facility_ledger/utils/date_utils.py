"""Date manipulation utilities"""

from datetime import date, timedelta
from typing import Callable

Clock = Callable[[], date]


def today() -> date:
    """Default clock"""
    return date.today()


def days_between(start: date, end: date) -> int:
    """Whole days from start to end, negative when end precedes start"""
    return (end - start).days


def add_days(from_date: date, days: int) -> date:
    return from_date + timedelta(days=days)
