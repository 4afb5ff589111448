"""Fiscal year helpers.

Fiscal years are named by the calendar year in which they end. With a July
start, FY2026 runs from 2025-07-01 to 2026-06-30. A start month of 1 makes
the fiscal year equal to the calendar year.
"""

from calendar import monthrange
from datetime import date, datetime


def _validate_month(month: int, name: str) -> None:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValueError(f"{name} must be an integer between 1 and 12")


def get_fiscal_year(value: date, start_month: int) -> int:
    """Return the fiscal year a date falls in.

    Examples:
        >>> get_fiscal_year(date(2025, 7, 1), 7)
        2026
        >>> get_fiscal_year(date(2025, 6, 30), 7)
        2025
        >>> get_fiscal_year(date(2025, 6, 30), 1)
        2025
    """
    _validate_month(start_month, "start_month")
    if isinstance(value, datetime):
        value = value.date()
    if start_month == 1:
        return value.year
    return value.year + 1 if value.month >= start_month else value.year


def get_fiscal_year_bounds(fiscal_year: int, start_month: int) -> tuple[date, date]:
    """Return (first_day, last_day) of a fiscal year, both inclusive.

    Examples:
        >>> get_fiscal_year_bounds(2026, 7)
        (datetime.date(2025, 7, 1), datetime.date(2026, 6, 30))
        >>> get_fiscal_year_bounds(2026, 1)
        (datetime.date(2026, 1, 1), datetime.date(2026, 12, 31))
    """
    _validate_month(start_month, "start_month")
    if start_month == 1:
        return date(fiscal_year, 1, 1), date(fiscal_year, 12, 31)

    start = date(fiscal_year - 1, start_month, 1)
    end_month = start_month - 1
    end = date(fiscal_year, end_month, monthrange(fiscal_year, end_month)[1])
    return start, end


def calendar_to_fiscal_month(calendar_month: int, start_month: int) -> int:
    """Convert a calendar month (1-12) to its position in the fiscal year (1-12)."""
    _validate_month(calendar_month, "calendar_month")
    _validate_month(start_month, "start_month")
    fiscal_month = calendar_month - start_month + 1
    if fiscal_month <= 0:
        fiscal_month += 12
    return fiscal_month


def is_in_fiscal_year(value: date, fiscal_year: int, start_month: int) -> bool:
    """Check whether a date falls within a fiscal year's calendar bounds."""
    if isinstance(value, datetime):
        value = value.date()
    start, end = get_fiscal_year_bounds(fiscal_year, start_month)
    return start <= value <= end


__all__ = [
    "get_fiscal_year",
    "get_fiscal_year_bounds",
    "calendar_to_fiscal_month",
    "is_in_fiscal_year",
]
