"""
Tests for recurring_orders.domain.upcoming.

Covers status classification, potential issues and risk levels, the
forecast window, overdue handling and the per-warehouse summary.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from recurring_orders.domain.types import (
    ApprovalPolicy,
    DeliveryAddress,
    Frequency,
    OrderTemplate,
    RecurringOrder,
    RecurringOrderStatus,
    TemplateItem,
    Warehouse,
)
from recurring_orders.domain.upcoming import (
    PotentialIssue,
    RiskLevel,
    UpcomingStatus,
    classify,
    risk_level,
    upcoming_executions,
)

TODAY = date(2024, 3, 1)


def _order(reference: str, next_date: date, **overrides) -> RecurringOrder:
    values = dict(
        id=uuid4(),
        supplier_id="supplier-001",
        reference=reference,
        name=f"Order {reference}",
        warehouse=Warehouse.US,
        frequency=Frequency.WEEKLY,
        interval=1,
        start_date=date(2024, 1, 5),
        next_execution_date=next_date,
        status=RecurringOrderStatus.ACTIVE,
        template=OrderTemplate(
            items=(TemplateItem("BOLT-100", 100, unit_price=Decimal("49.25")),),
            delivery_address=DeliveryAddress("Dock", "1 Way", "Springfield", "62701", "US"),
        ),
    )
    values.update(overrides)
    return RecurringOrder(**values)


class TestClassify:
    @pytest.mark.parametrize("days, expected", [
        (-1, UpcomingStatus.OVERDUE),
        (0, UpcomingStatus.DUE_TODAY),
        (1, UpcomingStatus.DUE_SOON),
        (3, UpcomingStatus.DUE_SOON),
        (4, UpcomingStatus.SCHEDULED),
    ])
    def test_classify(self, days, expected):
        assert classify(days, due_soon_days=3) is expected

    @pytest.mark.parametrize("count, expected", [
        (0, RiskLevel.LOW), (1, RiskLevel.MEDIUM), (2, RiskLevel.HIGH), (4, RiskLevel.HIGH),
    ])
    def test_risk_level(self, count, expected):
        assert risk_level(count) is expected


class TestUpcomingExecutions:
    def test_window_and_ordering(self):
        orders = [
            _order("RO-000003", date(2024, 3, 6)),
            _order("RO-000001", date(2024, 3, 1)),
            _order("RO-000002", date(2024, 3, 1)),
            _order("RO-000004", date(2024, 3, 20)),
        ]
        result = upcoming_executions(orders, TODAY, days=7)
        assert [r.reference for r in result.executions] == [
            "RO-000001", "RO-000002", "RO-000003",
        ]
        assert result.executions[0].status is UpcomingStatus.DUE_TODAY
        assert result.executions[2].status is UpcomingStatus.SCHEDULED
        assert result.executions[2].days_until == 5

    def test_overdue_included_and_flagged(self):
        result = upcoming_executions([_order("RO-000001", date(2024, 2, 23))], TODAY)
        row = result.executions[0]
        assert row.status is UpcomingStatus.OVERDUE
        assert PotentialIssue.OVERDUE in row.potential_issues
        assert result.summary.overdue == 1

    def test_overdue_excluded(self):
        result = upcoming_executions(
            [_order("RO-000001", date(2024, 2, 23))], TODAY, include_overdue=False,
        )
        assert result.executions == ()

    def test_inactive_orders_skipped(self):
        paused = _order("RO-000001", TODAY, status=RecurringOrderStatus.PAUSED)
        assert upcoming_executions([paused], TODAY).executions == ()

    def test_estimate_and_issues(self):
        order = _order(
            "RO-000001",
            date(2024, 2, 29),
            policy=ApprovalPolicy(
                approval_threshold=Decimal("1000"), max_order_value=Decimal("4000"),
            ),
        )
        row = upcoming_executions([order], TODAY).executions[0]
        assert row.estimated_value == Decimal("4925.00")
        assert row.item_count == 100
        assert row.potential_issues == (
            PotentialIssue.MANUAL_APPROVAL_REQUIRED,
            PotentialIssue.OVERDUE,
            PotentialIssue.EXCEEDS_MAX_ORDER_VALUE,
        )
        assert row.risk_level is RiskLevel.HIGH

    def test_dynamic_pricing_is_medium_risk(self):
        order = _order("RO-000001", TODAY)
        dynamic = replace(
            order,
            template=replace(
                order.template,
                items=(replace(order.template.items[0], use_dynamic_pricing=True),),
            ),
        )
        row = upcoming_executions([dynamic], TODAY).executions[0]
        assert row.potential_issues == (PotentialIssue.DYNAMIC_PRICING,)
        assert row.risk_level is RiskLevel.MEDIUM

    def test_summary_by_warehouse(self):
        orders = [
            _order("RO-000001", TODAY, warehouse=Warehouse.US),
            _order("RO-000002", date(2024, 3, 2), warehouse=Warehouse.EU),
            _order("RO-000003", date(2024, 3, 5), warehouse=Warehouse.EU),
        ]
        summary = upcoming_executions(orders, TODAY).summary
        assert summary.total == 3
        assert (summary.due_today, summary.due_soon, summary.scheduled) == (1, 1, 1)
        assert summary.total_estimated_value == Decimal("14775.00")
        assert [(w.warehouse, w.count) for w in summary.by_warehouse] == [
            (Warehouse.EU, 2), (Warehouse.US, 1),
        ]

    def test_negative_days_rejected(self):
        with pytest.raises(ValueError):
            upcoming_executions([], TODAY, days=-1)
