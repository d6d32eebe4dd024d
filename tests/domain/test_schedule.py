"""
Tests for recurring_orders.domain.schedule.

Covers:
- next_execution_date for every frequency and interval
- Month-end clamping and anchor-day preservation
- Catch-up collapse when ``now`` is given
- first_execution_date for future, current and past start dates
- missed_cycles and days_until
- Rejection of invalid intervals
"""

from datetime import date, datetime, timezone

import pytest

from procurement_kernel.exceptions import ScheduleError
from recurring_orders.domain.schedule import (
    MAX_INTERVAL,
    add_months,
    days_until,
    first_execution_date,
    missed_cycles,
    next_execution_date,
    validate_schedule,
)
from recurring_orders.domain.types import Frequency


# =============================================================================
# Basic stepping
# =============================================================================


class TestNextExecutionDate:
    @pytest.mark.parametrize(
        "frequency, interval, expected",
        [
            (Frequency.DAILY, 1, date(2024, 3, 2)),
            (Frequency.DAILY, 3, date(2024, 3, 4)),
            (Frequency.WEEKLY, 1, date(2024, 3, 8)),
            (Frequency.WEEKLY, 2, date(2024, 3, 15)),
            (Frequency.BIWEEKLY, 1, date(2024, 3, 15)),
            (Frequency.MONTHLY, 1, date(2024, 4, 1)),
            (Frequency.MONTHLY, 2, date(2024, 5, 1)),
            (Frequency.QUARTERLY, 1, date(2024, 6, 1)),
            (Frequency.ANNUALLY, 1, date(2025, 3, 1)),
        ],
    )
    def test_steps_by_frequency(self, frequency, interval, expected):
        assert next_execution_date(frequency, interval, date(2024, 3, 1)) == expected

    def test_weekly_from_friday_lands_on_friday(self):
        result = next_execution_date(Frequency.WEEKLY, 1, date(2024, 3, 1))
        assert result.weekday() == 4

    def test_accepts_datetime(self):
        when = datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc)
        assert next_execution_date(Frequency.DAILY, 1, when) == date(2024, 3, 2)

    def test_year_rollover(self):
        assert next_execution_date(Frequency.MONTHLY, 1, date(2024, 12, 15)) == date(2025, 1, 15)
        assert next_execution_date(Frequency.DAILY, 1, date(2024, 12, 31)) == date(2025, 1, 1)


# =============================================================================
# Month arithmetic
# =============================================================================


class TestMonthEnd:
    def test_jan_31_to_feb_29_in_leap_year(self):
        assert next_execution_date(Frequency.MONTHLY, 1, date(2024, 1, 31)) == date(2024, 2, 29)

    def test_jan_31_to_feb_28_in_common_year(self):
        assert next_execution_date(Frequency.MONTHLY, 1, date(2023, 1, 31)) == date(2023, 2, 28)

    def test_never_overflows_into_next_month(self):
        for month in range(1, 13):
            result = add_months(date(2024, 1, 31), month)
            assert result.month == (1 + month - 1) % 12 + 1

    def test_anchor_day_restores_after_short_month(self):
        feb = next_execution_date(Frequency.MONTHLY, 1, date(2024, 1, 31), anchor_day=31)
        mar = next_execution_date(Frequency.MONTHLY, 1, feb, anchor_day=31)
        apr = next_execution_date(Frequency.MONTHLY, 1, mar, anchor_day=31)
        assert (feb, mar, apr) == (date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30))

    def test_without_anchor_day_the_short_month_day_sticks(self):
        feb = next_execution_date(Frequency.MONTHLY, 1, date(2024, 1, 31))
        assert next_execution_date(Frequency.MONTHLY, 1, feb) == date(2024, 3, 29)

    def test_quarterly_from_november_30(self):
        assert next_execution_date(Frequency.QUARTERLY, 1, date(2023, 11, 30)) == date(2024, 2, 29)

    def test_annual_from_leap_day(self):
        assert next_execution_date(Frequency.ANNUALLY, 1, date(2024, 2, 29)) == date(2025, 2, 28)

    def test_add_months_doctest_examples(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 2, 29), 1, anchor_day=31) == date(2024, 3, 31)


# =============================================================================
# Catch-up
# =============================================================================


class TestCatchUp:
    def test_future_result_is_unchanged(self):
        result = next_execution_date(
            Frequency.WEEKLY, 1, date(2024, 3, 1), now=date(2024, 3, 2),
        )
        assert result == date(2024, 3, 8)

    def test_daily_collapses_to_today(self):
        result = next_execution_date(
            Frequency.DAILY, 1, date(2024, 1, 1), now=date(2024, 3, 1),
        )
        assert result == date(2024, 3, 1)

    def test_weekly_collapses_to_first_cycle_on_or_after_now(self):
        # Cycles: Jan 5, Jan 12, ... Mar 1 (Friday); now is Wednesday Feb 28
        result = next_execution_date(
            Frequency.WEEKLY, 1, date(2024, 1, 5), now=date(2024, 2, 28),
        )
        assert result == date(2024, 3, 1)

    def test_monthly_collapse_keeps_anchor(self):
        result = next_execution_date(
            Frequency.MONTHLY, 1, date(2023, 10, 31), now=date(2024, 3, 15), anchor_day=31,
        )
        assert result == date(2024, 3, 31)

    def test_result_is_never_before_now(self):
        now = date(2024, 6, 17)
        for frequency in Frequency:
            result = next_execution_date(frequency, 1, date(2023, 1, 1), now=now)
            assert result >= now


# =============================================================================
# First execution
# =============================================================================


class TestFirstExecutionDate:
    def test_start_today(self):
        today = date(2024, 3, 1)
        assert first_execution_date(Frequency.WEEKLY, 1, today, today) == today

    def test_start_in_future(self):
        assert first_execution_date(
            Frequency.MONTHLY, 1, date(2024, 4, 15), date(2024, 3, 1),
        ) == date(2024, 4, 15)

    def test_start_in_past_lands_on_cycle(self):
        # Monthly on the 31st, resumed mid-April
        assert first_execution_date(
            Frequency.MONTHLY, 1, date(2024, 1, 31), date(2024, 4, 10),
        ) == date(2024, 4, 30)

    def test_start_in_past_weekly(self):
        assert first_execution_date(
            Frequency.WEEKLY, 1, date(2024, 2, 2), date(2024, 3, 1),
        ) == date(2024, 3, 1)


# =============================================================================
# Reporting helpers
# =============================================================================


class TestMissedCycles:
    def test_none_missed_when_on_time(self):
        assert missed_cycles(Frequency.WEEKLY, 1, date(2024, 3, 1), date(2024, 3, 1)) == 0

    def test_counts_whole_cycles(self):
        assert missed_cycles(Frequency.WEEKLY, 1, date(2024, 2, 9), date(2024, 3, 1)) == 3

    def test_partial_cycle_not_counted(self):
        assert missed_cycles(Frequency.WEEKLY, 1, date(2024, 2, 9), date(2024, 2, 15)) == 0

    def test_days_until(self):
        assert days_until(date(2024, 3, 4), date(2024, 3, 1)) == 3
        assert days_until(date(2024, 2, 28), date(2024, 3, 1)) == -2


# =============================================================================
# Validation
# =============================================================================


class TestValidateSchedule:
    @pytest.mark.parametrize("interval", [0, -1, MAX_INTERVAL + 1])
    def test_rejects_out_of_range_interval(self, interval):
        with pytest.raises(ScheduleError) as exc_info:
            validate_schedule(Frequency.WEEKLY, interval)
        assert exc_info.value.code == "SCHEDULE_ERROR"

    @pytest.mark.parametrize("interval", [True, 1.5, "2"])
    def test_rejects_non_integer_interval(self, interval):
        with pytest.raises(ScheduleError):
            validate_schedule(Frequency.DAILY, interval)

    def test_next_execution_date_validates(self):
        with pytest.raises(ScheduleError):
            next_execution_date(Frequency.MONTHLY, 0, date(2024, 3, 1))

    def test_accepts_boundaries(self):
        validate_schedule(Frequency.DAILY, 1)
        validate_schedule(Frequency.DAILY, MAX_INTERVAL)
