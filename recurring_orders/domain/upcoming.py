"""
Upcoming execution forecast -- pure analysis of scheduled cycles.

Given active recurring orders and "today", classifies each order's next
execution (overdue, due today, due soon, scheduled), lists the potential
issues a human might want to look at before it runs and rolls the result up
into a summary per status and per warehouse.

Architecture: recurring_orders/domain.  ZERO I/O.  Values are estimates at
last-known template prices; nothing here calls pricing or inventory.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from recurring_orders.domain.approval import exceeds_ceiling, requires_approval
from recurring_orders.domain.schedule import days_until
from recurring_orders.domain.types import Frequency, RecurringOrder, Warehouse


class UpcomingStatus(str, Enum):
    SCHEDULED = "scheduled"
    DUE_TODAY = "due_today"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


class PotentialIssue(str, Enum):
    MANUAL_APPROVAL_REQUIRED = "manual_approval_required"
    OVERDUE = "overdue"
    EXCEEDS_MAX_ORDER_VALUE = "exceeds_max_order_value"
    DYNAMIC_PRICING = "dynamic_pricing"  # Final total may differ from the estimate


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class UpcomingExecution:
    recurring_order_id: UUID
    reference: str
    name: str
    warehouse: Warehouse
    frequency: Frequency
    next_execution_date: date
    days_until: int
    status: UpcomingStatus
    estimated_value: Decimal
    item_count: int
    potential_issues: tuple[PotentialIssue, ...]
    risk_level: RiskLevel


@dataclass(frozen=True)
class WarehouseSummary:
    warehouse: Warehouse
    count: int
    estimated_value: Decimal


@dataclass(frozen=True)
class UpcomingSummary:
    total: int
    scheduled: int
    due_today: int
    due_soon: int
    overdue: int
    total_estimated_value: Decimal
    by_warehouse: tuple[WarehouseSummary, ...]


@dataclass(frozen=True)
class UpcomingExecutions:
    executions: tuple[UpcomingExecution, ...]
    summary: UpcomingSummary


def classify(days: int, due_soon_days: int) -> UpcomingStatus:
    if days < 0:
        return UpcomingStatus.OVERDUE
    if days == 0:
        return UpcomingStatus.DUE_TODAY
    if days <= due_soon_days:
        return UpcomingStatus.DUE_SOON
    return UpcomingStatus.SCHEDULED


def risk_level(issue_count: int) -> RiskLevel:
    if issue_count >= 2:
        return RiskLevel.HIGH
    if issue_count == 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def potential_issues(
    order: RecurringOrder, status: UpcomingStatus,
) -> tuple[PotentialIssue, ...]:
    """Things that may stop or change the next execution."""
    estimate = order.estimated_value
    found: list[PotentialIssue] = []
    if requires_approval(order.policy, estimate):
        found.append(PotentialIssue.MANUAL_APPROVAL_REQUIRED)
    if status is UpcomingStatus.OVERDUE:
        found.append(PotentialIssue.OVERDUE)
    if exceeds_ceiling(order.policy, estimate):
        found.append(PotentialIssue.EXCEEDS_MAX_ORDER_VALUE)
    if any(item.use_dynamic_pricing for item in order.template.items):
        found.append(PotentialIssue.DYNAMIC_PRICING)
    return tuple(found)


def analyze_order(
    order: RecurringOrder, today: date, due_soon_days: int,
) -> UpcomingExecution:
    days = days_until(order.next_execution_date, today)
    status = classify(days, due_soon_days)
    issues = potential_issues(order, status)
    return UpcomingExecution(
        recurring_order_id=order.id,
        reference=order.reference,
        name=order.name,
        warehouse=order.warehouse,
        frequency=order.frequency,
        next_execution_date=order.next_execution_date,
        days_until=days,
        status=status,
        estimated_value=order.estimated_value,
        item_count=sum(item.quantity for item in order.template.items),
        potential_issues=issues,
        risk_level=risk_level(len(issues)),
    )


def summarize(executions: Iterable[UpcomingExecution]) -> UpcomingSummary:
    rows = list(executions)
    counts = {status: 0 for status in UpcomingStatus}
    per_warehouse: dict[Warehouse, tuple[int, Decimal]] = {}
    total_value = Decimal("0")
    for row in rows:
        counts[row.status] += 1
        total_value += row.estimated_value
        count, value = per_warehouse.get(row.warehouse, (0, Decimal("0")))
        per_warehouse[row.warehouse] = (count + 1, value + row.estimated_value)

    return UpcomingSummary(
        total=len(rows),
        scheduled=counts[UpcomingStatus.SCHEDULED],
        due_today=counts[UpcomingStatus.DUE_TODAY],
        due_soon=counts[UpcomingStatus.DUE_SOON],
        overdue=counts[UpcomingStatus.OVERDUE],
        total_estimated_value=total_value,
        by_warehouse=tuple(
            WarehouseSummary(warehouse, count, value)
            for warehouse, (count, value) in sorted(
                per_warehouse.items(), key=lambda kv: kv[0].value
            )
        ),
    )


def upcoming_executions(
    orders: Iterable[RecurringOrder],
    today: date,
    *,
    days: int = 7,
    include_overdue: bool = True,
    due_soon_days: int = 3,
) -> UpcomingExecutions:
    """Forecast the executions falling within ``days`` of ``today``.

    Overdue cycles are included unless ``include_overdue`` is False.  Rows
    are ordered by next execution date, then reference.
    """
    if days < 0:
        raise ValueError("days must be non-negative")
    rows: list[UpcomingExecution] = []
    for order in orders:
        if not order.is_active:
            continue
        row = analyze_order(order, today, due_soon_days)
        if row.days_until > days:
            continue
        if row.status is UpcomingStatus.OVERDUE and not include_overdue:
            continue
        rows.append(row)
    rows.sort(key=lambda r: (r.next_execution_date, r.reference))
    return UpcomingExecutions(executions=tuple(rows), summary=summarize(rows))
