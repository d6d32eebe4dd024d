"""
Clock -- injectable source of "now" for the recurring order engine.

Schedule calculation, retry timers, leases and reminders never call
``datetime.now()`` or ``date.today()`` themselves; they ask the Clock they
were constructed with.  ``SystemClock`` is the only place that reads the
wall clock.

Invariants enforced:
    - ``now()`` is always timezone-aware.
    - ``today()`` is the UTC calendar date, whatever offset ``now()`` has.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("DeterministicClock requires a timezone-aware datetime")
    return value


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""

    def today(self) -> date:
        """Current UTC calendar date; schedule dates are compared against it."""
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Clock that only moves when a test moves it.

    Args:
        start: Initial instant.  Defaults to 2024-01-01 12:00 UTC.
    """

    def __init__(self, start: datetime | None = None):
        self._current = _require_aware(start or _DEFAULT_START)

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = _require_aware(when)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        self._current += timedelta(days=days)
