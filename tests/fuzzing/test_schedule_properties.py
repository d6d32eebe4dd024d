"""
Property-based tests for schedule arithmetic and the retry policy.

Generates frequencies, intervals, anchors and failure histories and checks
the invariants that must hold for every input:
    - Month stepping always yields a real calendar date in the target month.
    - Day-based stepping is additive.
    - Catch-up lands on or after "now" and never more than one cycle past it.
    - retry_count never exceeds max_retries; backoff stays within bounds.
"""

from datetime import date, datetime, timedelta, timezone

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from recurring_orders.domain.retry import RetryPolicy, compute_backoff, decide_retry
from recurring_orders.domain.schedule import add_months, next_execution_date
from recurring_orders.domain.types import Frequency

DAY_FREQUENCIES = {Frequency.DAILY: 1, Frequency.WEEKLY: 7, Frequency.BIWEEKLY: 14}
MONTH_FREQUENCIES = {Frequency.MONTHLY: 1, Frequency.QUARTERLY: 3, Frequency.ANNUALLY: 12}

dates = st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31))
intervals = st.integers(min_value=1, max_value=12)
NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestMonthArithmetic:
    @given(start=dates, months=st.integers(min_value=0, max_value=120))
    def test_lands_in_target_month(self, start, months):
        result = add_months(start, months)
        expected_index = start.year * 12 + start.month - 1 + months
        assert result.year * 12 + result.month - 1 == expected_index

    @given(
        start=dates,
        months=st.integers(min_value=1, max_value=120),
        anchor=st.integers(min_value=1, max_value=31),
    )
    def test_day_clamped_not_overflowed(self, start, months, anchor):
        result = add_months(start, months, anchor_day=anchor)
        assert result.day <= anchor
        if result.day < anchor:
            # Clamped: the following day is in the next month
            assert (result + timedelta(days=1)).day == 1

    @given(frequency=st.sampled_from(list(MONTH_FREQUENCIES)), interval=intervals, start=dates)
    def test_month_frequencies_never_drift(self, frequency, interval, start):
        anchor = start.day
        current = start
        for _ in range(6):
            current = next_execution_date(frequency, interval, current, anchor_day=anchor)
            if current.day != anchor:
                assert (current + timedelta(days=1)).day == 1


class TestDayArithmetic:
    @given(frequency=st.sampled_from(list(DAY_FREQUENCIES)), interval=intervals, start=dates)
    def test_additive(self, frequency, interval, start):
        result = next_execution_date(frequency, interval, start)
        assert (result - start).days == DAY_FREQUENCIES[frequency] * interval


class TestCatchUp:
    @given(
        frequency=st.sampled_from(list(Frequency)),
        interval=st.integers(min_value=1, max_value=4),
        days_back=st.integers(min_value=0, max_value=2000),
    )
    @settings(max_examples=200)
    def test_result_is_not_in_the_past(self, frequency, interval, days_back):
        start = NOW.date() - timedelta(days=days_back)
        result = next_execution_date(frequency, interval, start, now=NOW)
        assert result >= NOW.date()

    @given(
        frequency=st.sampled_from(list(DAY_FREQUENCIES)),
        interval=st.integers(min_value=1, max_value=4),
        days_back=st.integers(min_value=1, max_value=2000),
    )
    def test_collapses_to_first_cycle_on_or_after_now(self, frequency, interval, days_back):
        start = NOW.date() - timedelta(days=days_back)
        step = DAY_FREQUENCIES[frequency] * interval
        result = next_execution_date(frequency, interval, start, now=NOW)
        assert (result - start).days % step == 0
        assert (result - NOW.date()).days < step

    @given(frequency=st.sampled_from(list(Frequency)), interval=intervals, start=dates)
    def test_future_anchor_unchanged_by_now(self, frequency, interval, start):
        assume(start >= NOW.date())
        assert next_execution_date(frequency, interval, start, now=NOW) == (
            next_execution_date(frequency, interval, start)
        )


class TestRetryPolicy:
    @given(
        max_retries=st.integers(min_value=0, max_value=10),
        outcomes=st.lists(st.booleans(), min_size=1, max_size=15),
    )
    def test_count_never_exceeds_max(self, max_retries, outcomes):
        policy = RetryPolicy()
        count = 0
        for retryable in outcomes:
            decision = decide_retry(count, max_retries, retryable, NOW, policy)
            assert decision.terminal == (not retryable or count >= max_retries)
            assert decision.retry_count <= max(max_retries, count)
            assert decision.terminal or decision.next_retry_at > NOW
            count = decision.retry_count
            if decision.terminal:
                break
        assert count <= max_retries

    @given(
        retry_count=st.integers(min_value=0, max_value=10_000),
        base=st.integers(min_value=1, max_value=600),
        extra=st.integers(min_value=0, max_value=86_400),
    )
    def test_backoff_bounded(self, retry_count, base, extra):
        policy = RetryPolicy(base_delay_seconds=base, max_delay_seconds=base + extra)
        delay = compute_backoff(retry_count, policy)
        assert base <= delay <= base + extra

    @given(retry_count=st.integers(min_value=0, max_value=40))
    def test_backoff_monotonic(self, retry_count):
        policy = RetryPolicy()
        assert compute_backoff(retry_count, policy) <= compute_backoff(retry_count + 1, policy)
