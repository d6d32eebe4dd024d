"""
Pure schedule calculation for recurring orders.

Contract:
    ``next_execution_date(frequency, interval, from_date)`` maps a cycle
    anchor to the following execution date.  With ``now`` it also catches
    up: a result in the past is advanced cycle by cycle until it is on or
    after ``now``, so a long outage collapses missed cycles into a single
    catch-up execution instead of one execution per missed cycle.

Architecture: recurring_orders/domain.  ZERO I/O.

Invariants enforced:
    RO-1 -- Pure; "now" always comes from the caller.
    - Month arithmetic clamps to the last day of the target month and never
      overflows into the following month.
    - The anchor day-of-month is preserved across short months
      (Jan 31 -> Feb 29 -> Mar 31), no drift.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from procurement_kernel.exceptions import ScheduleError
from recurring_orders.domain.types import Frequency

# Days per step for day-based frequencies
_DAY_STEPS: dict[Frequency, int] = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

# Months per step for month-based frequencies
_MONTH_STEPS: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.ANNUALLY: 12,
}

MAX_INTERVAL = 366


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(start: date, months: int, anchor_day: int | None = None) -> date:
    """Add ``months`` to ``start``, landing on ``anchor_day`` or the month end.

    >>> add_months(date(2024, 1, 31), 1)
    datetime.date(2024, 2, 29)
    >>> add_months(date(2024, 2, 29), 1, anchor_day=31)
    datetime.date(2024, 3, 31)
    """
    day = anchor_day if anchor_day is not None else start.day
    month_index = start.year * 12 + (start.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def validate_schedule(frequency: Frequency, interval: int) -> None:
    """Raise ScheduleError unless (frequency, interval) can be stepped."""
    if frequency not in _DAY_STEPS and frequency not in _MONTH_STEPS:
        raise ScheduleError(str(frequency), interval, "unsupported frequency")
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ScheduleError(frequency.value, interval, "interval must be an integer")
    if interval < 1 or interval > MAX_INTERVAL:
        raise ScheduleError(
            frequency.value, interval, f"interval must be between 1 and {MAX_INTERVAL}"
        )


def _step(
    frequency: Frequency,
    interval: int,
    from_date: date,
    anchor_day: int | None,
) -> date:
    if frequency in _DAY_STEPS:
        return from_date + timedelta(days=_DAY_STEPS[frequency] * interval)
    return add_months(from_date, _MONTH_STEPS[frequency] * interval, anchor_day)


def next_execution_date(
    frequency: Frequency,
    interval: int,
    from_date: date | datetime,
    *,
    now: date | datetime | None = None,
    anchor_day: int | None = None,
) -> date:
    """Compute the next execution date after ``from_date``.

    Args:
        frequency: Recurrence frequency.
        interval: Positive multiplier of the frequency.
        from_date: The date the previous cycle was anchored at.
        now: When given, results before ``now`` are advanced until they
            are on or after it (catch-up collapse).
        anchor_day: Day-of-month for month-based frequencies.  Defaults to
            ``from_date.day``.

    Raises:
        ScheduleError: If the frequency/interval pair is invalid.
    """
    validate_schedule(frequency, interval)
    current = _step(frequency, interval, _as_date(from_date), anchor_day)
    if now is None:
        return current

    today = _as_date(now)
    if current >= today:
        return current

    if frequency in _DAY_STEPS:
        step_days = _DAY_STEPS[frequency] * interval
        behind = (today - current).days
        cycles = -(-behind // step_days)  # ceil
        return current + timedelta(days=cycles * step_days)

    while current < today:
        current = _step(frequency, interval, current, anchor_day)
    return current


def first_execution_date(
    frequency: Frequency,
    interval: int,
    start_date: date,
    today: date,
) -> date:
    """First execution date of a new or resumed schedule.

    ``start_date`` itself when it is today or later; otherwise the first
    cycle date anchored at ``start_date`` that is on or after ``today``.
    """
    validate_schedule(frequency, interval)
    if start_date >= today:
        return start_date
    return next_execution_date(
        frequency, interval, start_date, now=today, anchor_day=start_date.day
    )


def missed_cycles(
    frequency: Frequency,
    interval: int,
    scheduled_date: date,
    today: date,
    anchor_day: int | None = None,
) -> int:
    """Number of whole cycles between ``scheduled_date`` and ``today``.

    Used to report how many cycles a catch-up execution collapsed.
    """
    validate_schedule(frequency, interval)
    count = 0
    current = _step(frequency, interval, scheduled_date, anchor_day)
    while current <= today:
        count += 1
        current = _step(frequency, interval, current, anchor_day)
    return count


def days_until(target: date, today: date) -> int:
    """Signed days from ``today`` to ``target`` (negative when overdue)."""
    return (target - today).days
