"""Unit tests for the injectable clock."""

from datetime import date, datetime, timedelta, timezone

import pytest

from procurement_kernel.domain.clock import DeterministicClock, SystemClock

START = datetime(2024, 3, 1, 23, 59, 0, tzinfo=timezone.utc)


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock(START)
        assert clock.now() == clock.now() == START

    def test_advance_crosses_midnight(self):
        clock = DeterministicClock(START)
        clock.advance(60)
        assert clock.now() == START + timedelta(minutes=1)
        assert clock.today() == date(2024, 3, 2)

    def test_advance_days(self):
        clock = DeterministicClock(START)
        clock.advance_days(7)
        assert clock.today() == date(2024, 3, 8)

    def test_default_start(self):
        assert DeterministicClock().now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_naive_start_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            DeterministicClock(datetime(2024, 3, 1))

    def test_set_time_resets_advance(self):
        clock = DeterministicClock(START)
        clock.advance(500)
        later = datetime(2024, 6, 1, tzinfo=timezone.utc)
        clock.set_time(later)
        assert clock.now() == later

    def test_set_time_requires_aware(self):
        with pytest.raises(ValueError):
            DeterministicClock(START).set_time(datetime(2024, 6, 1))

    def test_today_is_utc_date(self):
        offset = timezone(timedelta(hours=-5))
        clock = DeterministicClock(datetime(2024, 3, 1, 20, 0, tzinfo=offset))
        assert clock.today() == date(2024, 3, 2)


def test_system_clock_is_aware():
    assert SystemClock().now().tzinfo is not None
