"""
Tests for recurring_orders.services.retry_manager.

Covers failure recording on the execution row, durable timers, the
begin_retry guards and the due-retry query.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, SUPPLIER_ID, order_spec
from procurement_kernel.exceptions import RetryNotAllowedError
from recurring_orders.domain.retry import RetryPolicy
from recurring_orders.domain.types import ExecutionStatus, FailureKind
from recurring_orders.models.recurring_order import OrderExecutionModel
from recurring_orders.services.retry_manager import RetryManager


@pytest.fixture
def manager(orchestrator, clock):
    return RetryManager(orchestrator.repository, clock, RetryPolicy())


@pytest.fixture
def execution(service, orchestrator):
    order = service.create_recurring_order(SUPPLIER_ID, order_spec())
    model = OrderExecutionModel(
        recurring_order_id=order.id,
        sequence=1,
        status=ExecutionStatus.PENDING.value,
        scheduled_date=order.next_execution_date,
        retry_count=0,
        max_retries=3,
        awaiting_approval=False,
        subtotal=Decimal("0"),
        shipping_estimate=Decimal("0"),
        total_value=Decimal("0"),
        item_count=0,
        adjustments=[],
        issues=[],
        retryable=False,
        created_at=NOW,
        updated_at=NOW,
    )
    return orchestrator.repository.add_execution(model)


class TestRecordFailure:
    def test_retryable_failure_arms_timer(self, manager, execution):
        decision = manager.record_failure(execution, FailureKind.PRICING, retryable=True)
        assert not decision.terminal
        assert execution.status == ExecutionStatus.FAILED.value
        assert execution.failure_kind == "pricing"
        assert execution.retry_count == 1
        assert execution.next_retry_at == NOW + timedelta(seconds=120)

    def test_non_retryable_failure_is_terminal(self, manager, execution):
        decision = manager.record_failure(execution, FailureKind.CEILING, retryable=False)
        assert decision.terminal
        assert execution.retry_count == 0
        assert execution.next_retry_at is None
        assert execution.to_dto().is_terminal

    def test_clears_awaiting_approval(self, manager, execution):
        execution.awaiting_approval = True
        manager.record_failure(execution, FailureKind.APPROVAL_REJECTED, retryable=False)
        assert execution.awaiting_approval is False

    def test_backoff_grows_per_attempt(self, manager, execution, clock):
        manager.record_failure(execution, FailureKind.PLACEMENT_TRANSIENT, retryable=True)
        clock.advance(120)
        manager.begin_retry(execution)
        manager.record_failure(execution, FailureKind.PLACEMENT_TRANSIENT, retryable=True)
        assert execution.retry_count == 2
        assert execution.next_retry_at == clock.now() + timedelta(seconds=240)

    def test_full_budget_is_retried_before_terminal(self, manager, execution):
        for expected in (1, 2, 3):
            manager.record_failure(execution, FailureKind.PLACEMENT_TRANSIENT, retryable=True)
            assert execution.retry_count == expected
            assert execution.to_dto().is_retry_pending
            manager.begin_retry(execution, force=True)

        decision = manager.record_failure(
            execution, FailureKind.PLACEMENT_TRANSIENT, retryable=True,
        )
        assert decision.terminal
        assert execution.retry_count == 3
        assert execution.next_retry_at is None
        assert execution.to_dto().is_terminal


class TestBeginRetry:
    def test_due_timer_is_consumed(self, manager, execution, clock):
        manager.record_failure(execution, FailureKind.INVENTORY, retryable=True)
        clock.advance(120)
        manager.begin_retry(execution)
        assert execution.status == ExecutionStatus.PENDING.value
        assert execution.next_retry_at is None
        assert execution.retry_count == 1

    def test_not_due(self, manager, execution):
        manager.record_failure(execution, FailureKind.INVENTORY, retryable=True)
        with pytest.raises(RetryNotAllowedError) as exc_info:
            manager.begin_retry(execution)
        assert "not due" in exc_info.value.reason

    def test_force_ignores_timer(self, manager, execution):
        manager.record_failure(execution, FailureKind.INVENTORY, retryable=True)
        manager.begin_retry(execution, force=True)
        assert execution.status == ExecutionStatus.PENDING.value

    def test_pending_execution_cannot_be_retried(self, manager, execution):
        with pytest.raises(RetryNotAllowedError):
            manager.begin_retry(execution, force=True)

    def test_terminal_execution_cannot_be_retried(self, manager, execution):
        manager.record_failure(execution, FailureKind.CEILING, retryable=False)
        with pytest.raises(RetryNotAllowedError) as exc_info:
            manager.begin_retry(execution, force=True)
        assert exc_info.value.code == "RETRY_NOT_ALLOWED"


class TestDueRetries:
    def test_only_fired_timers(self, manager, execution, clock, session):
        manager.record_failure(execution, FailureKind.INVENTORY, retryable=True)
        session.flush()
        assert manager.due_retries(10) == []
        clock.advance(120)
        assert manager.due_retries(10) == [execution.id]
