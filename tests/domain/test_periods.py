"""
Tests for run periods: validation, overlap, day counts and display names.
"""

from datetime import date

import pytest

from royalty_kernel.domain.periods import (
    Period,
    PeriodType,
    detect_period_type,
    generate_monthly_periods,
    generate_quarterly_periods,
    inclusive_days,
    months_between,
    overlap_days,
    overlap_window,
    period_display_name,
    periods_overlap,
    validate_period_dates,
)
from royalty_kernel.exceptions import InvalidPeriodError


class TestValidation:
    def test_end_after_start_is_valid(self):
        validate_period_dates(date(2024, 1, 1), date(2024, 1, 31))

    @pytest.mark.parametrize(
        "start, end",
        [
            (date(2024, 1, 31), date(2024, 1, 1)),
            (date(2024, 1, 1), date(2024, 1, 1)),
        ],
    )
    def test_end_not_after_start_rejected(self, start, end):
        with pytest.raises(InvalidPeriodError) as exc_info:
            validate_period_dates(start, end)
        assert exc_info.value.code == "INVALID_PERIOD"

    def test_missing_dates_rejected(self):
        with pytest.raises(InvalidPeriodError):
            validate_period_dates(None, date(2024, 1, 31))


class TestOverlap:
    def test_shared_boundary_day_overlaps(self):
        assert periods_overlap(
            date(2024, 1, 1), date(2024, 1, 31), date(2024, 1, 31), date(2024, 2, 29)
        )

    def test_adjacent_periods_do_not_overlap(self):
        assert not periods_overlap(
            date(2024, 1, 1), date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 29)
        )

    def test_overlap_window_of_partial_license(self):
        window = overlap_window(
            date(2024, 1, 22), date(2024, 2, 20), date(2024, 1, 1), date(2024, 1, 31)
        )
        assert window == Period(date(2024, 1, 22), date(2024, 1, 31))
        assert window.days == 10

    def test_open_ended_interval_runs_to_period_end(self):
        assert overlap_days(date(2023, 6, 1), None, date(2024, 1, 1), date(2024, 1, 31)) == 31

    def test_disjoint_intervals_have_no_window(self):
        assert overlap_window(
            date(2024, 3, 1), None, date(2024, 1, 1), date(2024, 1, 31)
        ) is None
        assert overlap_days(
            date(2023, 1, 1), date(2023, 12, 31), date(2024, 1, 1), date(2024, 1, 31)
        ) == 0


class TestDayCounts:
    def test_both_ends_count(self):
        assert inclusive_days(date(2024, 1, 1), date(2024, 1, 31)) == 31
        assert inclusive_days(date(2024, 2, 1), date(2024, 2, 29)) == 29
        assert inclusive_days(date(2024, 1, 5), date(2024, 1, 5)) == 1

    def test_reversed_range_is_empty(self):
        assert inclusive_days(date(2024, 1, 5), date(2024, 1, 4)) == 0

    @pytest.mark.parametrize(
        "earlier, later, expected",
        [
            (date(2024, 1, 1), date(2024, 1, 31), 0),
            (date(2023, 1, 1), date(2024, 1, 31), 12),
            (date(2024, 1, 15), date(2024, 2, 14), 0),
            (date(2024, 1, 15), date(2024, 2, 15), 1),
            (date(2024, 1, 31), date(2024, 2, 29), 1),
        ],
    )
    def test_months_between(self, earlier, later, expected):
        assert months_between(earlier, later) == expected


class TestPeriodTypes:
    def test_calendar_month(self):
        assert detect_period_type(date(2024, 1, 1), date(2024, 1, 31)) == PeriodType.MONTHLY
        assert period_display_name(date(2024, 1, 1), date(2024, 1, 31)) == "January 2024"

    def test_calendar_quarter(self):
        assert detect_period_type(date(2024, 4, 1), date(2024, 6, 30)) == PeriodType.QUARTERLY
        assert period_display_name(date(2024, 4, 1), date(2024, 6, 30)) == "Q2 2024"

    def test_misaligned_quarter_is_custom(self):
        assert detect_period_type(date(2024, 2, 1), date(2024, 4, 30)) == PeriodType.CUSTOM

    def test_custom_range_display(self):
        assert (
            period_display_name(date(2024, 1, 15), date(2024, 2, 14))
            == "2024-01-15 to 2024-02-14"
        )

    def test_generated_months_cover_the_year(self):
        months = generate_monthly_periods(2024)
        assert len(months) == 12
        assert months[1] == Period(date(2024, 2, 1), date(2024, 2, 29))
        assert sum(p.days for p in months) == 366

    def test_generated_quarters(self):
        quarters = generate_quarterly_periods(2023)
        assert [q.start.month for q in quarters] == [1, 4, 7, 10]
        assert quarters[-1].end == date(2023, 12, 31)
