# gainday/utils/date_utils.py
"""
Date utility functions shared by the refresh, backfill and FX cache code.

Usage:
    from gainday.utils.date_utils import is_weekend, find_on_or_before

    value, found_on = find_on_or_before(closes, day, max_days=5)
"""

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from typing import TypeVar

T = TypeVar("T")


def is_weekend(d: date) -> bool:
    """True on Saturday and Sunday (weekday() >= 5)."""
    return d.weekday() >= 5


def trading_dates(dates: Iterable[date]) -> list[date]:
    """
    Sorted, de-duplicated weekdays from any collection of dates.

    Used to turn the union of every fetched price series into the list
    of dates the backfill evaluates.
    """
    return sorted({d for d in dates if not is_weekend(d)})


def find_on_or_before(
        values_by_date: Mapping[date, T],
        target: date,
        max_days: int,
        include_target: bool = True,
) -> tuple[T | None, date | None]:
    """
    Find the value at target, or the nearest one in the preceding days.

    Searches target itself (when include_target is True), then target-1,
    target-2, ... target-max_days, nearest first. Day max_days+1 and
    beyond are never considered.

    Args:
        values_by_date: Date-keyed values (price closes, FX rates)
        target: Date to look up
        max_days: Maximum number of calendar days to walk back
        include_target: Whether the target date itself counts as a match

    Returns:
        Tuple of (value, date found). (None, None) if nothing is in range.

    Example:
        >>> find_on_or_before({date(2024, 1, 2): 10}, date(2024, 1, 4), 5)
        (10, date(2024, 1, 2))
    """
    if include_target and target in values_by_date:
        return values_by_date[target], target

    for days_back in range(1, max_days + 1):
        check_date = target - timedelta(days=days_back)
        if check_date in values_by_date:
            return values_by_date[check_date], check_date

    return None, None


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    start = date(year, month, 1)
    if month == 12:
        end = date(year, 12, 31)
    else:
        end = date(year, month + 1, 1) - timedelta(days=1)
    return start, end
