"""
RecurringOrderScheduler -- in-process polling scheduler.

Contract:
    Each ``tick()``:
        1. re-runs retry-pending executions whose ``next_retry_at`` passed,
        2. executes ACTIVE orders whose ``next_execution_date`` <= today and
           whose cycle is not already owned by an execution,
        3. dispatches reminders for orders with ``send_reminders`` whose next
           execution is exactly one of their ``reminder_days`` away,
        4. sends notification intents still PENDING after their transaction
           committed (new reminders, or intents a coordinator failed to send).
    Work goes through ExecutionCoordinator, so the scheduler and manual
    triggers never run the same order at once.

Architecture: recurring_orders/services.

Invariants enforced:
    - All "now"/"today" values come from the injected Clock.
    - One failing order is logged and skipped; it never stops the tick.
    - Graceful shutdown: the stop signal is checked between items.
    - Timers are database rows, so a restarted scheduler picks up retries
      that were armed before the restart.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.db.engine import session_scope
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import ExecutionInProgressError, RetryNotAllowedError
from procurement_kernel.logging_config import get_logger
from recurring_orders.config import EngineConfig
from recurring_orders.domain.health import ScheduleHealth, schedule_health
from recurring_orders.services.execution_coordinator import ExecutionCoordinator
from recurring_orders.services.notification_dispatcher import NotificationDispatcher
from recurring_orders.services.repository import RecurringOrderRepository

logger = get_logger("recurring.scheduler")


@dataclass(frozen=True)
class TickSummary:
    retried: int = 0
    executed: int = 0
    reminders: int = 0
    notifications: int = 0
    skipped: int = 0
    failed: int = 0


class RecurringOrderScheduler:
    """Polls for due work and hands it to the coordinator.

    Non-goals:
        - NOT a distributed scheduler (no leader election); the per-order
          lease keeps several schedulers from double-executing.
        - Does NOT handle timezones; "today" is the clock's UTC date.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        coordinator: ExecutionCoordinator,
        dispatcher_factory: Callable[[Session], NotificationDispatcher],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self._coordinator = coordinator
        self._dispatcher_factory = dispatcher_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> TickSummary:
        """Run one polling pass (public for testing)."""
        counts = {
            "retried": 0,
            "executed": 0,
            "reminders": 0,
            "notifications": 0,
            "skipped": 0,
            "failed": 0,
        }
        self._run_due_retries(counts)
        self._run_due_orders(counts)
        self._send_reminders(counts)
        self._deliver_notifications(counts)
        summary = TickSummary(**counts)
        logger.info("scheduler_tick_completed", extra=counts)
        return summary

    def start(self) -> None:
        """Start ticking on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="recurring-order-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"tick_interval": self._config.tick_interval_seconds},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def schedule_health(self) -> ScheduleHealth:
        """Current schedule health across every warehouse, read in its own session."""
        with session_scope(self._session_factory) as session:
            repository = RecurringOrderRepository(session, self._clock)
            return schedule_health(
                repository.order_activity(),
                repository.execution_activity(),
                self._clock.today(),
            )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._config.tick_interval_seconds)

    def _due(self, query: Callable[[RecurringOrderRepository], list[UUID]]) -> list[UUID]:
        with session_scope(self._session_factory) as session:
            return query(RecurringOrderRepository(session, self._clock))

    def _run_due_retries(self, counts: dict[str, int]) -> None:
        now = self._clock.now()
        due = self._due(
            lambda repo: repo.due_retry_ids(now, self._config.scheduler_batch_size)
        )
        for execution_id in due:
            if self._stop_event.is_set():
                return
            try:
                self._coordinator.retry_execution(execution_id)
                counts["retried"] += 1
            except (ExecutionInProgressError, RetryNotAllowedError) as exc:
                counts["skipped"] += 1
                logger.info(
                    "scheduled_retry_skipped",
                    extra={"execution_id": str(execution_id), "reason": str(exc)},
                )
            except Exception:
                counts["failed"] += 1
                logger.exception(
                    "scheduled_retry_failed", extra={"execution_id": str(execution_id)},
                )

    def _run_due_orders(self, counts: dict[str, int]) -> None:
        today = self._clock.today()
        due = self._due(
            lambda repo: repo.due_order_ids(today, self._config.scheduler_batch_size)
        )
        for order_id in due:
            if self._stop_event.is_set():
                return
            try:
                self._coordinator.execute_recurring_order(order_id)
                counts["executed"] += 1
            except ExecutionInProgressError:
                counts["skipped"] += 1
                logger.info(
                    "scheduled_execution_skipped",
                    extra={"recurring_order_id": str(order_id)},
                )
            except Exception:
                counts["failed"] += 1
                logger.exception(
                    "scheduled_execution_failed",
                    extra={"recurring_order_id": str(order_id)},
                )

    def _send_reminders(self, counts: dict[str, int]) -> None:
        today = self._clock.today()
        try:
            with session_scope(self._session_factory) as session:
                dispatcher = self._dispatcher_factory(session)
                for model in RecurringOrderRepository(session, self._clock).active_orders():
                    if self._stop_event.is_set():
                        return
                    if dispatcher.dispatch_reminder(model.to_dto(), today):
                        counts["reminders"] += 1
        except Exception:
            counts["failed"] += 1
            logger.exception("scheduled_reminders_failed")

    def _deliver_notifications(self, counts: dict[str, int]) -> None:
        try:
            with session_scope(self._session_factory) as session:
                counts["notifications"] += self._dispatcher_factory(session).deliver_pending(
                    limit=self._config.scheduler_batch_size,
                )
        except Exception:
            counts["failed"] += 1
            logger.exception("notification_delivery_sweep_failed")
