"""
ExecutionCoordinator -- lease, transaction and release around the pipeline.

Contract:
    Every execution-side operation (execute, retry, approve, reject) runs as

        1. lease      conditional UPDATE on the order row, committed on its own
        2. work       ExecutionPipeline in a fresh session, committed on success
        3. notify     intents stored PENDING in step 2 are sent after the commit
        4. release    lease cleared in its own session, always attempted

    and returns the OrderExecution snapshot taken inside step 2.  A failed
    step 3 leaves the intents PENDING for the scheduler's delivery sweep.

Architecture: recurring_orders/services.  Owns session boundaries; the
    pipeline and everything below it only flush.

Invariants enforced:
    RO-5 -- At most one invocation per recurring order holds the lease.  A
            concurrent trigger gets ExecutionInProgressError and creates
            nothing.  A lease whose holder died expires after
            ``lease_ttl_seconds`` and may be taken over.
    - Different recurring orders never contend.
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.db.engine import session_scope
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import ExecutionInProgressError
from procurement_kernel.logging_config import LogContext, get_logger
from recurring_orders.config import EngineConfig
from recurring_orders.domain.types import OrderExecution
from recurring_orders.services.execution_pipeline import ExecutionPipeline
from recurring_orders.services.notification_dispatcher import NotificationDispatcher
from recurring_orders.services.repository import RecurringOrderRepository

logger = get_logger("recurring.coordinator")


class ExecutionCoordinator:
    """Serializes execution work per recurring order.

    Non-goals:
        - NOT a distributed lock service; the lease lives on the order row.
        - Does NOT queue rejected triggers; the caller (or the next
          scheduler tick) tries again.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        pipeline_factory: Callable[[Session], ExecutionPipeline],
        dispatcher_factory: Callable[[Session], NotificationDispatcher],
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._session_factory = session_factory
        self._pipeline_factory = pipeline_factory
        self._dispatcher_factory = dispatcher_factory
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute_recurring_order(self, recurring_order_id: UUID) -> OrderExecution:
        """Run (or return) the current cycle of a recurring order.

        Raises:
            RecurringOrderNotFoundError: Unknown order.
            ExecutionInProgressError: Another invocation holds the lease.
        """
        return self._run_leased(
            recurring_order_id,
            "execute",
            lambda pipeline: pipeline.execute(recurring_order_id),
        )

    def retry_execution(self, execution_id: UUID, *, force: bool = False) -> OrderExecution:
        """Re-run a retry-pending execution.

        Raises:
            ExecutionNotFoundError, RetryNotAllowedError,
            ExecutionInProgressError.
        """
        order_id = self._order_for_execution(execution_id)
        return self._run_leased(
            order_id,
            "retry",
            lambda pipeline: pipeline.retry(execution_id, force=force),
        )

    def approve_execution(self, execution_id: UUID, approver_id: str) -> OrderExecution:
        order_id = self._order_for_execution(execution_id)
        return self._run_leased(
            order_id,
            "approve",
            lambda pipeline: pipeline.approve(execution_id, approver_id),
        )

    def reject_execution(
        self, execution_id: UUID, approver_id: str, reason: str | None = None,
    ) -> OrderExecution:
        order_id = self._order_for_execution(execution_id)
        return self._run_leased(
            order_id,
            "reject",
            lambda pipeline: pipeline.reject(execution_id, approver_id, reason),
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _repository(self, session: Session) -> RecurringOrderRepository:
        return RecurringOrderRepository(session, self._clock)

    def _order_for_execution(self, execution_id: UUID) -> UUID:
        with session_scope(self._session_factory) as session:
            return self._repository(session).get_execution(execution_id).recurring_order_id

    def _run_leased(
        self,
        recurring_order_id: UUID,
        action: str,
        work: Callable[[ExecutionPipeline], OrderExecution],
    ) -> OrderExecution:
        token = str(uuid4())
        with LogContext.bind(correlation_id=token, recurring_order_id=recurring_order_id):
            self._acquire(recurring_order_id, token)
            try:
                with session_scope(self._session_factory) as session:
                    result = work(self._pipeline_factory(session))
                logger.info(
                    "execution_committed",
                    extra={
                        "action": action,
                        "execution_id": str(result.id),
                        "status": result.status.value,
                    },
                )
                self._deliver_notifications(result)
                return result
            finally:
                self._release(recurring_order_id, token)

    def _deliver_notifications(self, execution: OrderExecution) -> None:
        try:
            with session_scope(self._session_factory) as session:
                self._dispatcher_factory(session).deliver_pending(execution_id=execution.id)
        except Exception:
            # Intents stay PENDING; the scheduler's delivery sweep retries them
            logger.exception(
                "notification_delivery_failed",
                extra={"execution_id": str(execution.id)},
            )

    def _acquire(self, recurring_order_id: UUID, token: str) -> None:
        with session_scope(self._session_factory) as session:
            repository = self._repository(session)
            repository.get_order(recurring_order_id)
            if repository.acquire_lease(
                recurring_order_id, token, self._config.lease_ttl_seconds,
            ):
                return
            expires_at = repository.lease_expiry(recurring_order_id)

        logger.info(
            "execution_in_progress",
            extra={"lease_expires_at": expires_at},
        )
        raise ExecutionInProgressError(str(recurring_order_id), expires_at)

    def _release(self, recurring_order_id: UUID, token: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                released = self._repository(session).release_lease(recurring_order_id, token)
        except Exception:
            # The lease still expires after its TTL
            logger.exception("execution_lease_release_failed")
            return
        if not released:
            logger.warning("execution_lease_lost")
