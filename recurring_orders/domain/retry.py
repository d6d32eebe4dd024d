"""
Pure retry policy for failed executions.

Architecture: recurring_orders/domain.  ZERO I/O.

A retryable failure with ``retry_count < max_retries`` increments the counter
and always arms a re-attempt, so ``max_retries=3`` allows three retries
(four attempts).  A failure while ``retry_count == max_retries`` is
terminal and leaves the counter alone, so ``retry_count`` never exceeds
``max_retries``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

# Safety limit on the per-order max_retries setting
MAX_RETRIES_LIMIT = 10


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: int = 60
    max_delay_seconds: int = 3600

    def __post_init__(self) -> None:
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")


@dataclass(frozen=True)
class RetryDecision:
    """What happens to an execution after a failed attempt."""

    retry_count: int
    terminal: bool
    delay_seconds: int | None = None
    next_retry_at: datetime | None = None


def compute_backoff(retry_count: int, policy: RetryPolicy) -> int:
    """``min(base * 2^retry_count, max)`` in seconds."""
    if retry_count < 0:
        raise ValueError("retry_count must be non-negative")
    # Cap the exponent so huge counts cannot build enormous integers
    exponent = min(retry_count, 32)
    return min(policy.base_delay_seconds * (2 ** exponent), policy.max_delay_seconds)


def decide_retry(
    retry_count: int,
    max_retries: int,
    retryable: bool,
    now: datetime,
    policy: RetryPolicy,
) -> RetryDecision:
    """Decide whether a failed attempt gets another try, and when.

    Non-retryable failures, and failures of an attempt that already used the
    whole budget, keep their counter and become terminal.
    """
    if not retryable or retry_count >= max_retries:
        return RetryDecision(retry_count=retry_count, terminal=True)

    new_count = retry_count + 1
    delay = compute_backoff(new_count, policy)
    return RetryDecision(
        retry_count=new_count,
        terminal=False,
        delay_seconds=delay,
        next_retry_at=now + timedelta(seconds=delay),
    )
