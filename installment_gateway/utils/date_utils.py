"""Date manipulation utilities"""

from calendar import monthrange
from datetime import date
from typing import Tuple


def last_day_of_month(year: int, month: int) -> int:
    """Number of days in the given month"""
    return monthrange(year, month)[1]


def add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    """Shift a (year, month) pair by a number of months, crossing year boundaries"""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, reducing the day to the month's last day when it does not exist"""
    return date(year, month, min(day, last_day_of_month(year, month)))


def format_dmy(value: date | None) -> str:
    """Format a date as DD/MM/YYYY (postal system layout)"""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")
