"""
Utility functions for CashflowLab.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import numpy as np


def month_range(start: Any, months: int) -> np.ndarray:
    """
    Generate a range of monthly dates starting from a given date.

    **Args:**
        start: The starting date (or datetime64 month) for the range
        months: Number of months to generate

    **Returns:**
        A numpy array of datetime64[M] objects representing monthly intervals

    **Example:**
        ```python
        from datetime import date
        from cashflowlab.core.utils import month_range

        dates = month_range(date(2026, 1, 1), 12)
        # ['2026-01' '2026-02' ... '2026-12']
        ```
    """
    s = np.datetime64(start, "M")
    return s + np.arange(months).astype("timedelta64[M]")


def to_month(value: Any) -> np.datetime64:
    """
    Normalize a date-like value to month-precision numpy datetime64.

    Accepts: str ('YYYY-MM' or ISO date) | date | datetime | np.datetime64
    """
    if isinstance(value, np.datetime64):
        return value.astype("datetime64[M]")
    if isinstance(value, date):
        return np.datetime64(value.strftime("%Y-%m"), "M")
    return np.datetime64(str(value)[:7], "M")


def to_date(value: Any) -> date:
    """Coerce ISO strings and datetime64 values to ``datetime.date``."""
    if isinstance(value, date):
        return value
    if isinstance(value, np.datetime64):
        return value.astype("datetime64[D]").item()
    return date.fromisoformat(str(value))


def months_between(start: Any, end: Any) -> int:
    """Whole months from ``start`` to ``end`` (negative if end is earlier)."""
    return int((to_month(end) - to_month(start)).astype(int))


def month_of_year(t: np.datetime64) -> int:
    """Calendar month (1-12) of a datetime64[M] value."""
    return int(t.astype(int) % 12) + 1


def year_of(t: np.datetime64) -> int:
    """Calendar year of a datetime64[M] value."""
    return int(t.astype(int) // 12) + 1970


def age_in_years(date_of_birth: date, at: Any) -> int:
    """
    Completed years of age on the first day of month ``at``.

    A birthday that falls inside the month only counts from the next month,
    so the age is constant within a simulated month.
    """
    at_date = to_date(to_month(at))
    years = at_date.year - date_of_birth.year
    if (at_date.month, at_date.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def month_when_age_reached(date_of_birth: date, age: int) -> np.datetime64:
    """First simulated month in which the household has completed ``age`` years."""
    birthday = to_month(date(date_of_birth.year + age, date_of_birth.month, 1))
    if date_of_birth.day > 1:
        return birthday + np.timedelta64(1, "M")
    return birthday
