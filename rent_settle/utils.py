"""Utility functions for the settlement engine.

This module provides helpers for parsing user input into Python data types and
for handling calendar periods: stepping by months, counting whole months
between two periods, and labelling a month for display. Money values are
rounded to cents with ``ROUND_HALF_UP``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP, getcontext
import calendar
from typing import Iterator, Tuple

from .errors import InvalidInput

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")
MIN_YEAR = 1900
MAX_YEAR = 2200

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


def parse_year_month(ym: str) -> date:
    """Parse a YYYY-MM string into a ``date`` object (first day of month).

    Parameters
    ----------
    ym: str
        A string in the form ``"YYYY-MM"``. The day component, if present,
        will be ignored.

    Returns
    -------
    date
        A date object representing the first day of the specified month.

    Raises
    ------
    InvalidInput
        If the string is not a valid year-month.
    """
    try:
        parts = ym.split("-")
        if len(parts) < 2:
            raise ValueError
        year = int(parts[0])
        month = int(parts[1])
        return date(year, month, 1)
    except Exception as exc:
        raise InvalidInput(f"Invalid year-month string: {ym}") from exc


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    try:
        year, month, day = (int(p) for p in value.split("-"))
        return date(year, month, day)
    except Exception as exc:
        raise InvalidInput(f"Invalid date string: {value}") from exc


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_start(dt: date) -> date:
    return date(dt.year, dt.month, 1)


def months_between(earlier: date, later: date) -> int:
    """Number of whole calendar months from ``earlier``'s month to ``later``'s.

    Days are ignored, so two dates in the same month give 0 and
    2024-01-31 -> 2024-02-01 gives 1.
    """
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def iter_months(first: date, last: date) -> Iterator[Tuple[int, int]]:
    """Yield ``(month, year)`` pairs from ``first`` to ``last`` inclusive."""
    current = month_start(first)
    end = month_start(last)
    while current <= end:
        yield current.month, current.year
        current = add_months(current, 1)


def month_label(month: int, year: int) -> str:
    """Human label for a period, e.g. ``"January 2024"``."""
    return f"{MONTH_NAMES[month - 1]} {year}"


def validate_period(month: int, year: int) -> None:
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidInput(f"Month must be between 1 and 12; got {month}")
    if not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidInput(f"Year must be between {MIN_YEAR} and {MAX_YEAR}; got {year}")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals into a ``Decimal``.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidInput(f"Invalid numeric value: {value}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return decimal_from_str(str(value))


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``InvalidInput`` if conversion fails.
    """
    try:
        cleaned = value.strip().replace(",", "")
        result = Decimal(cleaned)
    except Exception as exc:
        raise InvalidInput(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise InvalidInput(f"Invalid numeric value: {value}")
    return result


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
