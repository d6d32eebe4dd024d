"""
RetryManager -- bounded exponential backoff for failed executions.

Responsibility:
    Records the outcome of a failed attempt on the execution row and, when
    another attempt is allowed, arms a durable retry timer
    (``next_retry_at``).  The scheduler later finds due timers and asks the
    execution coordinator to re-run the pipeline on the same record.

Architecture position:
    recurring_orders/services.  Pure decisions live in domain.retry.

Invariants enforced:
    RO-3 -- retry_count never exceeds max_retries; a terminal execution is
            never re-armed or re-attempted.
    - Timers are rows, not in-process timers, so they survive restarts.

Failure modes:
    - RetryNotAllowedError: execution is not FAILED, is terminal, or its
      timer has not fired yet (unless forced).
"""

from __future__ import annotations

from uuid import UUID

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import RetryNotAllowedError
from procurement_kernel.logging_config import get_logger
from recurring_orders.domain.retry import RetryDecision, RetryPolicy, decide_retry
from recurring_orders.domain.types import ExecutionStatus, FailureKind
from recurring_orders.models.recurring_order import OrderExecutionModel
from recurring_orders.services.repository import RecurringOrderRepository

logger = get_logger("recurring.retry")


class RetryManager:
    """Arms, checks and consumes retry timers on execution rows.

    Non-goals:
        - Does NOT run the pipeline -- the coordinator does.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        repository: RecurringOrderRepository,
        clock: Clock | None = None,
        policy: RetryPolicy | None = None,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._policy = policy or RetryPolicy()

    def record_failure(
        self,
        execution: OrderExecutionModel,
        failure_kind: FailureKind,
        retryable: bool,
    ) -> RetryDecision:
        """Mark the attempt FAILED and decide whether another one follows."""
        decision = decide_retry(
            execution.retry_count,
            execution.max_retries,
            retryable,
            self._clock.now(),
            self._policy,
        )
        execution.status = ExecutionStatus.FAILED.value
        execution.failure_kind = failure_kind.value
        execution.retryable = retryable
        execution.retry_count = decision.retry_count
        execution.next_retry_at = decision.next_retry_at
        execution.awaiting_approval = False

        if decision.terminal:
            logger.info(
                "execution_failed_terminal",
                extra={
                    "execution_id": str(execution.id),
                    "failure_kind": failure_kind.value,
                    "retryable": retryable,
                    "retry_count": decision.retry_count,
                    "max_retries": execution.max_retries,
                },
            )
        else:
            logger.info(
                "retry_scheduled",
                extra={
                    "execution_id": str(execution.id),
                    "failure_kind": failure_kind.value,
                    "retry_count": decision.retry_count,
                    "delay_seconds": decision.delay_seconds,
                    "next_retry_at": decision.next_retry_at,
                },
            )
        return decision

    def begin_retry(self, execution: OrderExecutionModel, *, force: bool = False) -> None:
        """Consume the retry timer and put the execution back in flight.

        Raises:
            RetryNotAllowedError: If the execution cannot be retried now.
        """
        if execution.status != ExecutionStatus.FAILED.value:
            raise RetryNotAllowedError(
                str(execution.id), f"status is {execution.status}, not failed"
            )
        if execution.to_dto().is_terminal or execution.next_retry_at is None:
            raise RetryNotAllowedError(str(execution.id), "execution is terminal")
        if not force and execution.next_retry_at > self._clock.now():
            raise RetryNotAllowedError(
                str(execution.id), f"retry not due until {execution.next_retry_at}"
            )

        execution.status = ExecutionStatus.PENDING.value
        execution.next_retry_at = None
        logger.info(
            "retry_started",
            extra={
                "execution_id": str(execution.id),
                "retry_count": execution.retry_count,
                "max_retries": execution.max_retries,
            },
        )

    def due_retries(self, limit: int) -> list[UUID]:
        return self._repository.due_retry_ids(self._clock.now(), limit)
