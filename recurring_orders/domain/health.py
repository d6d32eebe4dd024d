"""
Schedule health -- pure roll-up of schedules and execution outcomes.

Given lightweight order and execution rows and "today", reports how many
schedules exist and are active, how many executions were opened today and
in the last seven days, the success rate of completed executions, and a
per-warehouse breakdown with the alerts an operator should look at.

Architecture: recurring_orders/domain.  ZERO I/O.

Success rates are fractions in [0, 1] over completed executions (SUCCESS
or terminal FAILED); executions still awaiting approval or a retry are
counted as pending and left out of the rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable

from recurring_orders.domain.schedule import days_until
from recurring_orders.domain.types import (
    ExecutionStatus,
    RecurringOrderStatus,
    Warehouse,
)

# Completed executions below this success rate raise a critical alert
LOW_SUCCESS_RATE = Decimal("0.8")

WEEK_DAYS = 7


@dataclass(frozen=True)
class OrderActivity:
    warehouse: Warehouse
    status: RecurringOrderStatus
    next_execution_date: date


@dataclass(frozen=True)
class ExecutionActivity:
    warehouse: Warehouse
    status: ExecutionStatus
    awaiting_approval: bool
    retry_pending: bool
    created_on: date

    @property
    def is_open(self) -> bool:
        return self.status is ExecutionStatus.PENDING or self.retry_pending

    @property
    def is_terminal_failure(self) -> bool:
        return self.status is ExecutionStatus.FAILED and not self.retry_pending


@dataclass(frozen=True)
class WarehouseHealth:
    warehouse: Warehouse
    total_scheduled: int
    pending_executions: int
    failed_executions: int
    success_rate: Decimal
    upcoming_executions: int
    critical_issues: tuple[str, ...]
    warnings: tuple[str, ...]


@dataclass(frozen=True)
class ScheduleHealth:
    total_recurring_orders: int
    active_schedules: int
    executions_today: int
    executions_this_week: int
    global_success_rate: Decimal
    warehouse_metrics: tuple[WarehouseHealth, ...]

    @property
    def alert_count(self) -> int:
        return sum(
            len(w.critical_issues) + len(w.warnings) for w in self.warehouse_metrics
        )

    def for_warehouse(self, warehouse: Warehouse) -> WarehouseHealth:
        for metrics in self.warehouse_metrics:
            if metrics.warehouse is warehouse:
                return metrics
        raise KeyError(warehouse)


def success_rate(executions: Iterable[ExecutionActivity]) -> Decimal:
    succeeded = completed = 0
    for row in executions:
        if row.status is ExecutionStatus.SUCCESS:
            succeeded += 1
            completed += 1
        elif row.is_terminal_failure:
            completed += 1
    if not completed:
        return Decimal("0")
    return Decimal(succeeded) / Decimal(completed)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def warehouse_health(
    warehouse: Warehouse,
    orders: list[OrderActivity],
    executions: list[ExecutionActivity],
    today: date,
    upcoming_days: int,
) -> WarehouseHealth:
    active = [o for o in orders if o.status is RecurringOrderStatus.ACTIVE]
    week_start = today - timedelta(days=WEEK_DAYS - 1)
    pending = sum(1 for e in executions if e.is_open)
    failed = sum(1 for e in executions if e.is_terminal_failure)
    recent_failures = sum(
        1 for e in executions if e.is_terminal_failure and e.created_on >= week_start
    )
    awaiting = sum(1 for e in executions if e.awaiting_approval)
    overdue = sum(1 for o in active if days_until(o.next_execution_date, today) < 0)
    upcoming = sum(
        1 for o in active if 0 <= days_until(o.next_execution_date, today) <= upcoming_days
    )
    rate = success_rate(executions)
    completed = any(
        e.status is ExecutionStatus.SUCCESS or e.is_terminal_failure for e in executions
    )

    critical: list[str] = []
    if recent_failures:
        critical.append(
            f"{_plural(recent_failures, 'failed execution')} in the last {WEEK_DAYS} days"
        )
    if completed and rate < LOW_SUCCESS_RATE:
        critical.append(f"success rate {rate:.0%} is below {LOW_SUCCESS_RATE:.0%}")

    warnings: list[str] = []
    if overdue:
        warnings.append(f"{_plural(overdue, 'schedule')} overdue")
    if awaiting:
        warnings.append(f"{_plural(awaiting, 'execution')} awaiting approval")

    return WarehouseHealth(
        warehouse=warehouse,
        total_scheduled=len(active),
        pending_executions=pending,
        failed_executions=failed,
        success_rate=rate,
        upcoming_executions=upcoming,
        critical_issues=tuple(critical),
        warnings=tuple(warnings),
    )


def schedule_health(
    orders: Iterable[OrderActivity],
    executions: Iterable[ExecutionActivity],
    today: date,
    *,
    upcoming_days: int = WEEK_DAYS,
) -> ScheduleHealth:
    """Roll up every warehouse, including ones with no schedules yet.

    ``upcoming_days`` bounds the window for ``upcoming_executions``; overdue
    schedules are reported as warnings instead.
    """
    if upcoming_days < 0:
        raise ValueError("upcoming_days must be non-negative")
    order_rows = list(orders)
    execution_rows = list(executions)
    week_start = today - timedelta(days=WEEK_DAYS - 1)

    metrics = tuple(
        warehouse_health(
            warehouse,
            [o for o in order_rows if o.warehouse is warehouse],
            [e for e in execution_rows if e.warehouse is warehouse],
            today,
            upcoming_days,
        )
        for warehouse in Warehouse
    )
    return ScheduleHealth(
        total_recurring_orders=len(order_rows),
        active_schedules=sum(
            1 for o in order_rows if o.status is RecurringOrderStatus.ACTIVE
        ),
        executions_today=sum(1 for e in execution_rows if e.created_on == today),
        executions_this_week=sum(
            1 for e in execution_rows if week_start <= e.created_on <= today
        ),
        global_success_rate=success_rate(execution_rows),
        warehouse_metrics=metrics,
    )
