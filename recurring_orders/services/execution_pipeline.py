"""
ExecutionPipeline -- runs one attempt of a recurring order.

Contract:
    ``execute(recurring_order_id)`` opens the order's current cycle (or
    returns the execution that already owns it) and runs one attempt:

        1. validate   order must be ACTIVE
        2. resolve    template -> draft lines (OrderTemplateResolver)
        3. total      sum of line totals (+ shipping estimate when requested)
        4. ceiling    total > max_order_value -> FAILED, never retried
        5. approval   gate says "needs a human" -> PENDING, awaiting approval
        6. place      OrderPlacementService with a stable idempotency key
        7. schedule   advance next_execution_date on SUCCESS or terminal FAILED
        8. notify     NotificationDispatcher

    ``retry``, ``approve`` and ``reject`` re-enter the same record.  Every
    path returns a completed OrderExecution snapshot; business failures are
    recorded as issues, never raised.

Architecture: recurring_orders/services.  Wired by RecurringOrderOrchestrator.

Invariants enforced:
    RO-2 -- next_execution_date only moves after a completed attempt
            (SUCCESS, or FAILED and terminal).  PENDING and retry-pending
            executions keep the cycle.
    RO-3 -- retry bookkeeping goes through RetryManager only.
    RO-4 -- awaiting approval is PENDING, not FAILED; retry_count untouched.
    - The execution row and the schedule change are flushed together; the
      caller's commit makes them visible atomically.

Failure modes:
    - RecurringOrderNotFoundError / ExecutionNotFoundError for unknown ids.
    - ApprovalNotPendingError when approving/rejecting a non-waiting execution.
    - RetryNotAllowedError from RetryManager.
    - SQLAlchemy errors propagate; the caller rolls back.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from procurement_kernel.db.types import round_money
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import ApprovalNotPendingError, PlacementRejectedError
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.sequence_service import SequenceService
from procurement_kernel.utils.idempotency import generate_idempotency_key
from recurring_orders.collaborators import OrderPlacementService
from recurring_orders.domain.approval import GateOutcome, evaluate_gate
from recurring_orders.domain.notifications import PRODUCER
from recurring_orders.domain.schedule import missed_cycles, next_execution_date
from recurring_orders.domain.types import (
    RETRYABLE_FAILURES,
    DraftOrder,
    ExecutionStatus,
    FailureKind,
    Frequency,
    Issue,
    IssueSeverity,
    IssueType,
    OrderExecution,
    RecurringOrder,
    RecurringOrderStatus,
    TemplateResolution,
)
from recurring_orders.models.recurring_order import OrderExecutionModel, RecurringOrderModel
from recurring_orders.services.notification_dispatcher import NotificationDispatcher
from recurring_orders.services.repository import RecurringOrderRepository
from recurring_orders.services.retry_manager import RetryManager
from recurring_orders.services.template_resolver import OrderTemplateResolver

logger = get_logger("recurring.pipeline")


class ExecutionPipeline:
    """State machine for one execution attempt.

    Non-goals:
        - Does NOT take the execution lease -- ExecutionCoordinator does.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        repository: RecurringOrderRepository,
        resolver: OrderTemplateResolver,
        placement: OrderPlacementService,
        dispatcher: NotificationDispatcher,
        retry_manager: RetryManager,
        sequence_service: SequenceService,
        clock: Clock | None = None,
    ):
        self._repository = repository
        self._resolver = resolver
        self._placement = placement
        self._dispatcher = dispatcher
        self._retry = retry_manager
        self._sequence = sequence_service
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def execute(self, recurring_order_id: UUID) -> OrderExecution:
        """Run the current cycle of a recurring order.

        If the cycle is already owned by an execution that is awaiting
        approval or waiting for a retry, that execution is returned
        unchanged.
        """
        order = self._repository.get_order(recurring_order_id, for_update=True)
        with LogContext.bind(
            recurring_order_id=order.id, supplier_id=order.supplier_id,
        ):
            existing = self._repository.open_execution(order.id)
            if existing is not None:
                logger.info(
                    "execution_already_open",
                    extra={
                        "execution_id": str(existing.id),
                        "status": existing.status,
                        "awaiting_approval": existing.awaiting_approval,
                    },
                )
                return existing.to_dto()

            execution = self._open_cycle(order)
            with LogContext.bind(execution_id=execution.id):
                return self._attempt(order, execution)

    def retry(self, execution_id: UUID, *, force: bool = False) -> OrderExecution:
        """Re-run a retry-pending execution on the same record."""
        execution = self._repository.get_execution(execution_id, for_update=True)
        order = self._repository.get_order(execution.recurring_order_id, for_update=True)
        with LogContext.bind(
            recurring_order_id=order.id,
            supplier_id=order.supplier_id,
            execution_id=execution.id,
        ):
            self._retry.begin_retry(execution, force=force)
            return self._attempt(order, execution)

    def approve(self, execution_id: UUID, approver_id: str) -> OrderExecution:
        """Record a manual approval and continue the attempt past the gate.

        The template is resolved again, so live prices and stock apply.  The
        ceiling is still enforced after approval.
        """
        execution = self._repository.get_execution(execution_id, for_update=True)
        order = self._repository.get_order(execution.recurring_order_id, for_update=True)
        self._require_awaiting_approval(execution)
        with LogContext.bind(
            recurring_order_id=order.id,
            supplier_id=order.supplier_id,
            execution_id=execution.id,
        ):
            execution.approved_by = approver_id
            execution.approved_at = self._clock.now()
            execution.awaiting_approval = False
            logger.info("execution_approved", extra={"approved_by": approver_id})
            return self._attempt(order, execution)

    def reject(
        self, execution_id: UUID, approver_id: str, reason: str | None = None,
    ) -> OrderExecution:
        """Reject an execution awaiting approval.  Terminal; consumes the cycle."""
        execution = self._repository.get_execution(execution_id, for_update=True)
        order = self._repository.get_order(execution.recurring_order_id, for_update=True)
        self._require_awaiting_approval(execution)
        with LogContext.bind(
            recurring_order_id=order.id,
            supplier_id=order.supplier_id,
            execution_id=execution.id,
        ):
            message = f"Rejected by {approver_id}"
            if reason:
                message = f"{message}: {reason}"
            logger.info("execution_rejected", extra={"rejected_by": approver_id})
            return self._fail(
                order,
                execution,
                FailureKind.APPROVAL_REJECTED,
                retryable=False,
                issue=Issue(
                    IssueType.APPROVAL,
                    IssueSeverity.MEDIUM,
                    message,
                    attempt=execution.retry_count,
                ),
            )

    # -------------------------------------------------------------------------
    # Attempt
    # -------------------------------------------------------------------------

    def _open_cycle(self, order: RecurringOrderModel) -> OrderExecutionModel:
        now = self._clock.now()
        execution = OrderExecutionModel(
            recurring_order_id=order.id,
            sequence=self._sequence.next_execution_sequence(order.id),
            status=ExecutionStatus.PENDING.value,
            scheduled_date=order.next_execution_date,
            retry_count=0,
            max_retries=order.max_retries,
            awaiting_approval=False,
            subtotal=Decimal("0"),
            shipping_estimate=Decimal("0"),
            total_value=Decimal("0"),
            item_count=0,
            adjustments=[],
            issues=[],
            retryable=False,
            created_at=now,
            updated_at=now,
        )
        self._repository.add_execution(execution)

        today = self._clock.today()
        skipped = 0
        if order.next_execution_date < today:
            skipped = missed_cycles(
                Frequency(order.frequency),
                order.interval,
                order.next_execution_date,
                today,
                anchor_day=order.start_date.day,
            )
        logger.info(
            "execution_created",
            extra={
                "execution_id": str(execution.id),
                "sequence": execution.sequence,
                "scheduled_date": order.next_execution_date,
                "collapsed_cycles": skipped,
            },
        )
        return execution

    def _attempt(
        self, order: RecurringOrderModel, execution: OrderExecutionModel,
    ) -> OrderExecution:
        snapshot = order.to_dto()
        attempt = execution.retry_count
        execution.adjustments = []
        execution.failure_kind = None
        execution.retryable = False

        # 1. validate
        if not snapshot.is_active:
            return self._fail(
                order,
                execution,
                FailureKind.VALIDATION,
                retryable=False,
                issue=Issue(
                    IssueType.VALIDATION,
                    IssueSeverity.HIGH,
                    f"Recurring order is {snapshot.status.value}; execution not allowed",
                    attempt=attempt,
                ),
            )

        # 2. resolve, 3. total
        resolution = self._resolver.resolve(snapshot, attempt)
        self._record_resolution(snapshot, execution, resolution)
        if resolution.failed:
            kind = resolution.failure_kind or FailureKind.VALIDATION
            return self._fail(order, execution, kind, retryable=kind in RETRYABLE_FAILURES)

        # 4. ceiling, 5. approval
        decision = evaluate_gate(
            snapshot.policy,
            execution.total_value,
            already_approved=execution.approved_at is not None,
            requires_review=resolution.requires_review,
        )
        if decision.outcome is GateOutcome.EXCEEDS_CEILING:
            return self._fail(
                order,
                execution,
                FailureKind.CEILING,
                retryable=False,
                issue=Issue(
                    IssueType.VALIDATION,
                    IssueSeverity.CRITICAL,
                    decision.reason,
                    attempt=attempt,
                ),
            )
        if decision.outcome is GateOutcome.REQUIRES_APPROVAL:
            return self._await_approval(order, execution, decision.reason)

        # 6. place
        draft = self._draft(snapshot, execution, resolution)
        try:
            placed_order_id = self._placement.place_order(draft)
        except PlacementRejectedError as exc:
            return self._fail(
                order,
                execution,
                FailureKind.PLACEMENT_PERMANENT,
                retryable=False,
                issue=Issue(
                    IssueType.PLACEMENT,
                    IssueSeverity.CRITICAL,
                    f"Order placement rejected: {exc.reason}",
                    attempt=attempt,
                ),
            )
        except Exception as exc:
            logger.warning(
                "placement_failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return self._fail(
                order,
                execution,
                FailureKind.PLACEMENT_TRANSIENT,
                retryable=True,
                issue=Issue(
                    IssueType.PLACEMENT,
                    IssueSeverity.HIGH,
                    f"Order placement failed: {exc}",
                    attempt=attempt,
                ),
            )

        return self._succeed(order, execution, placed_order_id)

    def _record_resolution(
        self,
        order: RecurringOrder,
        execution: OrderExecutionModel,
        resolution: TemplateResolution,
    ) -> None:
        execution.adjustments = [a.to_dict() for a in resolution.adjustments]
        for issue in resolution.issues:
            execution.add_issue(issue)

        shipping = order.template.shipping
        shipping_estimate = Decimal("0")
        if shipping.include_estimate_in_total and shipping.estimated_cost is not None:
            shipping_estimate = round_money(shipping.estimated_cost)
        subtotal = round_money(resolution.subtotal)

        execution.subtotal = subtotal
        execution.shipping_estimate = shipping_estimate
        execution.total_value = subtotal + shipping_estimate
        execution.item_count = sum(line.quantity for line in resolution.lines)

    def _draft(
        self,
        order: RecurringOrder,
        execution: OrderExecutionModel,
        resolution: TemplateResolution,
    ) -> DraftOrder:
        return DraftOrder(
            recurring_order_id=order.id,
            execution_id=execution.id,
            supplier_id=order.supplier_id,
            warehouse=order.warehouse,
            currency=order.currency,
            lines=resolution.lines,
            subtotal=execution.subtotal,
            shipping_estimate=execution.shipping_estimate,
            total_value=execution.total_value,
            delivery_address=order.template.delivery_address,
            shipping=order.template.shipping,
            payment=order.template.payment,
            # Same key on every retry so placement is deduplicated downstream
            idempotency_key=generate_idempotency_key(
                PRODUCER, "order.place", str(execution.id)
            ),
            special_instructions=order.template.special_instructions,
        )

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def _succeed(
        self,
        order: RecurringOrderModel,
        execution: OrderExecutionModel,
        placed_order_id: str,
    ) -> OrderExecution:
        now = self._clock.now()
        execution.status = ExecutionStatus.SUCCESS.value
        execution.order_id = placed_order_id
        execution.executed_at = now
        execution.next_retry_at = None
        execution.awaiting_approval = False

        order.successful_executions += 1
        order.total_order_value = order.total_order_value + execution.total_value
        self._complete_cycle(order, execution, last_execution_date=self._clock.today())

        logger.info(
            "execution_succeeded",
            extra={
                "order_id": placed_order_id,
                "total_value": execution.total_value,
                "retry_count": execution.retry_count,
                "next_execution_date": order.next_execution_date,
            },
        )
        return self._finish(order, execution)

    def _fail(
        self,
        order: RecurringOrderModel,
        execution: OrderExecutionModel,
        failure_kind: FailureKind,
        *,
        retryable: bool,
        issue: Issue | None = None,
    ) -> OrderExecution:
        if issue is not None:
            execution.add_issue(issue)
        decision = self._retry.record_failure(execution, failure_kind, retryable)

        # An inactive order keeps its schedule; resume recomputes it
        if decision.terminal and order.status == RecurringOrderStatus.ACTIVE.value:
            self._complete_cycle(order, execution)
        return self._finish(order, execution)

    def _await_approval(
        self, order: RecurringOrderModel, execution: OrderExecutionModel, reason: str,
    ) -> OrderExecution:
        execution.status = ExecutionStatus.PENDING.value
        execution.awaiting_approval = True
        execution.next_retry_at = None
        execution.add_issue(Issue(
            IssueType.APPROVAL,
            IssueSeverity.LOW,
            reason,
            attempt=execution.retry_count,
        ))
        logger.info(
            "execution_awaiting_approval",
            extra={"total_value": execution.total_value, "reason": reason},
        )
        return self._finish(order, execution)

    def _complete_cycle(
        self,
        order: RecurringOrderModel,
        execution: OrderExecutionModel,
        last_execution_date: date | None = None,
    ) -> None:
        """Consume the execution's cycle and move the order to the next one.

        A placed order steps from the day it executed (never earlier than
        its scheduled date), so a late run restarts the cadence from that
        day.  A terminal failure steps from the scheduled date and lands
        strictly after today.  Month-based frequencies keep the start
        date's day of month.
        """
        frequency = Frequency(order.frequency)
        anchor_day = order.start_date.day
        if last_execution_date is not None:
            next_date = next_execution_date(
                frequency,
                order.interval,
                max(last_execution_date, execution.scheduled_date),
                anchor_day=anchor_day,
            )
        else:
            next_date = next_execution_date(
                frequency,
                order.interval,
                execution.scheduled_date,
                now=self._clock.today() + timedelta(days=1),
                anchor_day=anchor_day,
            )
        order.total_executions += 1
        self._repository.advance_schedule(order, next_date, last_execution_date)
        logger.info(
            "schedule_advanced",
            extra={
                "scheduled_date": execution.scheduled_date,
                "next_execution_date": next_date,
            },
        )

    def _finish(
        self, order: RecurringOrderModel, execution: OrderExecutionModel,
    ) -> OrderExecution:
        self._repository.save_execution(execution)
        self._repository.save_order(order)
        result = execution.to_dto()
        self._dispatcher.dispatch_execution(order.to_dto(), result)
        return result

    @staticmethod
    def _require_awaiting_approval(execution: OrderExecutionModel) -> None:
        if execution.status != ExecutionStatus.PENDING.value or not execution.awaiting_approval:
            raise ApprovalNotPendingError(str(execution.id), execution.status)
