"""
Interval Stepper

Advances a calendar date by exactly one period of a rule's interval.

Month and year steps keep the day of month. When the target month is
shorter than that day, the surplus days roll over into the following
month instead of clamping to the month's last day:

    2024-01-31 + 1 month -> 2024-03-02
    2024-02-29 + 1 year  -> 2025-03-01

Steps are applied to the previous occurrence, so a rolled-over date
keeps its new day of month afterwards (2024-03-02 -> 2024-04-02).
"""

from datetime import date, timedelta

from recurring_ledger.models.rule import Interval


def _add_months(current: date, months: int) -> date:
    month_index = current.month - 1 + months
    year = current.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1) + timedelta(days=current.day - 1)


def advance(current: date, interval: Interval) -> date:
    """Return the occurrence that follows `current`."""
    if interval == Interval.DAILY:
        return current + timedelta(days=1)
    if interval == Interval.WEEKLY:
        return current + timedelta(days=7)
    if interval == Interval.MONTHLY:
        return _add_months(current, 1)
    if interval == Interval.YEARLY:
        return _add_months(current, 12)
    raise ValueError(f"Unsupported interval: {interval!r}")
