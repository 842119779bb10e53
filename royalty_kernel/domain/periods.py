"""
Periods -- royalty run date ranges.

Responsibility:
    Validation, overlap and day-count helpers for run periods and license
    intervals, plus generators for standard monthly/quarterly periods.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Both ends of a period are inclusive.  A run for January is
      ``2024-01-01..2024-01-31`` and covers 31 days.
    - ``period_end`` must be strictly after ``period_start``.
    - Two periods overlap iff ``a.start <= b.end and a.end >= b.start``.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from enum import Enum

from royalty_kernel.exceptions import InvalidPeriodError


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Period:
    """An inclusive date range."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return inclusive_days(self.start, self.end)


def validate_period_dates(period_start: date, period_end: date) -> None:
    """Raise InvalidPeriodError unless ``period_start < period_end``."""
    if not isinstance(period_start, date) or not isinstance(period_end, date):
        raise InvalidPeriodError(period_start, period_end, "dates are required")
    if period_end <= period_start:
        raise InvalidPeriodError(
            period_start, period_end, "period_end must be after period_start"
        )


def periods_overlap(
    a_start: date, a_end: date, b_start: date, b_end: date
) -> bool:
    return a_start <= b_end and a_end >= b_start


def inclusive_days(start: date, end: date) -> int:
    """Number of calendar days in ``start..end`` counting both ends."""
    if end < start:
        return 0
    return (end - start).days + 1


def overlap_window(
    a_start: date, a_end: date | None, b_start: date, b_end: date
) -> Period | None:
    """Intersection of an (optionally open-ended) interval with a closed one."""
    start = max(a_start, b_start)
    end = b_end if a_end is None else min(a_end, b_end)
    if end < start:
        return None
    return Period(start, end)


def overlap_days(
    a_start: date, a_end: date | None, b_start: date, b_end: date
) -> int:
    window = overlap_window(a_start, a_end, b_start, b_end)
    return window.days if window else 0


def detect_period_type(period_start: date, period_end: date) -> PeriodType:
    """Classify a period as a calendar month, a calendar quarter, or custom."""
    if period_start.day != 1:
        return PeriodType.CUSTOM
    last_day = calendar.monthrange(period_end.year, period_end.month)[1]
    if period_end.day != last_day:
        return PeriodType.CUSTOM

    span = months_between(period_start, period_end) + 1
    if span == 1:
        return PeriodType.MONTHLY
    if span == 3 and period_start.month in (1, 4, 7, 10):
        return PeriodType.QUARTERLY
    return PeriodType.CUSTOM


def period_display_name(period_start: date, period_end: date) -> str:
    """E.g. ``January 2024``, ``Q1 2024`` or ``2024-01-15 to 2024-02-14``."""
    match detect_period_type(period_start, period_end):
        case PeriodType.MONTHLY:
            return f"{calendar.month_name[period_start.month]} {period_start.year}"
        case PeriodType.QUARTERLY:
            quarter = (period_start.month - 1) // 3 + 1
            return f"Q{quarter} {period_start.year}"
        case _:
            return f"{period_start.isoformat()} to {period_end.isoformat()}"


def generate_monthly_periods(year: int) -> list[Period]:
    periods = []
    for month in range(1, 13):
        last_day = calendar.monthrange(year, month)[1]
        periods.append(Period(date(year, month, 1), date(year, month, last_day)))
    return periods


def generate_quarterly_periods(year: int) -> list[Period]:
    periods = []
    for first_month in (1, 4, 7, 10):
        last_month = first_month + 2
        last_day = calendar.monthrange(year, last_month)[1]
        periods.append(
            Period(date(year, first_month, 1), date(year, last_month, last_day))
        )
    return periods


def months_between(earlier: date, later: date) -> int:
    """Whole calendar months from ``earlier`` to ``later`` (day-of-month aware)."""
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if later.day < earlier.day and months > 0:
        last_day = calendar.monthrange(later.year, later.month)[1]
        # A month-end date counts as reaching any later day-of-month.
        if later.day != last_day:
            months -= 1
    return months
