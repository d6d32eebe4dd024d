"""
Tests for recurring_orders.services.template_resolver.

Covers static and dynamic pricing, price change review, pricing failures,
every backorder behavior, substitutes, quantity bounds and the failure kind
reported when no item can be resolved.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FakeInventoryService, FakePricingService
from recurring_orders.config import EngineConfig
from recurring_orders.domain.types import (
    AdjustmentType,
    ApprovalPolicy,
    BackorderBehavior,
    DeliveryAddress,
    FailureKind,
    Frequency,
    IssueSeverity,
    IssueType,
    OrderTemplate,
    RecurringOrder,
    RecurringOrderStatus,
    TemplateItem,
    Warehouse,
)
from recurring_orders.services.template_resolver import OrderTemplateResolver


def _order(*items: TemplateItem, policy: ApprovalPolicy | None = None) -> RecurringOrder:
    return RecurringOrder(
        id=uuid4(),
        supplier_id="supplier-001",
        reference="RO-000001",
        name="Weekly fasteners",
        warehouse=Warehouse.US,
        frequency=Frequency.WEEKLY,
        interval=1,
        start_date=date(2024, 3, 1),
        next_execution_date=date(2024, 3, 1),
        status=RecurringOrderStatus.ACTIVE,
        template=OrderTemplate(
            items=items,
            delivery_address=DeliveryAddress("Dock", "1 Way", "Springfield", "62701", "US"),
        ),
        policy=policy or ApprovalPolicy(),
    )


BOLT = TemplateItem(
    "BOLT-100", 100, sku="HB-M8-100", name="Hex bolt M8", unit_price=Decimal("49.25"),
)


@pytest.fixture
def pricing():
    return FakePricingService()


@pytest.fixture
def inventory():
    return FakeInventoryService()


@pytest.fixture
def resolver(pricing, inventory):
    return OrderTemplateResolver(pricing, inventory, EngineConfig())


# =============================================================================
# Pricing
# =============================================================================


class TestPricing:
    def test_static_price(self, resolver, pricing):
        result = resolver.resolve(_order(BOLT))
        assert not result.failed
        line = result.lines[0]
        assert (line.product_id, line.quantity, line.unit_price) == (
            "BOLT-100", 100, Decimal("49.25"),
        )
        assert line.line_total == Decimal("4925.00")
        assert result.subtotal == Decimal("4925.00")
        assert result.adjustments == ()
        assert pricing.calls == []

    def test_dynamic_price_within_tolerance(self, resolver, pricing):
        pricing.prices["BOLT-100"] = Decimal("49.255")
        result = resolver.resolve(_order(replace(BOLT, use_dynamic_pricing=True)))
        assert result.adjustments == ()
        assert result.lines[0].unit_price == Decimal("49.255")

    def test_dynamic_price_change_auto_accepted(self, resolver, pricing):
        pricing.prices["BOLT-100"] = Decimal("60.00")
        result = resolver.resolve(_order(replace(BOLT, use_dynamic_pricing=True)))
        (adjustment,) = result.adjustments
        assert adjustment.type is AdjustmentType.PRICE
        assert adjustment.old_value == Decimal("49.25")
        assert adjustment.new_value == Decimal("60.00")
        assert adjustment.auto_approved
        assert not result.requires_review
        assert result.subtotal == Decimal("6000.00")

    def test_large_unapproved_change_requires_review(self, resolver, pricing):
        pricing.prices["BOLT-100"] = Decimal("60.00")
        result = resolver.resolve(_order(
            replace(BOLT, use_dynamic_pricing=True),
            policy=ApprovalPolicy(auto_accept_price_changes=False),
        ))
        assert result.requires_review
        assert not result.adjustments[0].auto_approved
        (issue,) = result.issues
        assert (issue.type, issue.severity) == (IssueType.PRICING, IssueSeverity.HIGH)

    def test_small_unapproved_change_needs_no_review(self, resolver, pricing):
        pricing.prices["BOLT-100"] = Decimal("51.00")
        result = resolver.resolve(_order(
            replace(BOLT, use_dynamic_pricing=True),
            policy=ApprovalPolicy(auto_accept_price_changes=False),
        ))
        assert not result.requires_review
        assert result.issues == ()
        assert not result.adjustments[0].auto_approved

    def test_pricing_failure_falls_back_to_last_known(self, resolver, pricing):
        pricing.failures.add("BOLT-100")
        result = resolver.resolve(_order(replace(BOLT, use_dynamic_pricing=True)))
        assert not result.failed
        assert result.lines[0].unit_price == Decimal("49.25")
        (issue,) = result.issues
        assert (issue.type, issue.severity) == (IssueType.PRICING, IssueSeverity.MEDIUM)

    def test_pricing_failure_without_last_known_fails_retryable(self, resolver, pricing):
        pricing.failures.add("BOLT-100")
        result = resolver.resolve(
            _order(replace(BOLT, use_dynamic_pricing=True, unit_price=None)), attempt=2,
        )
        assert result.failed
        assert result.failure_kind is FailureKind.PRICING
        assert result.issues[-1].severity is IssueSeverity.CRITICAL
        assert all(issue.attempt == 2 for issue in result.issues)

    def test_no_price_at_all_is_a_validation_failure(self, resolver):
        result = resolver.resolve(_order(replace(BOLT, unit_price=None)))
        assert result.failed
        assert result.failure_kind is FailureKind.VALIDATION


# =============================================================================
# Inventory
# =============================================================================


class TestBackorder:
    def test_allow_keeps_full_quantity(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 40
        result = resolver.resolve(_order(BOLT))
        assert result.lines[0].quantity == 100
        (issue,) = result.issues
        assert (issue.type, issue.severity) == (IssueType.INVENTORY, IssueSeverity.MEDIUM)

    def test_partial_reduces_to_available(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 40
        result = resolver.resolve(_order(
            replace(BOLT, backorder_behavior=BackorderBehavior.PARTIAL),
        ))
        assert not result.failed
        assert not result.requires_review
        assert result.lines[0].quantity == 40
        assert result.subtotal == Decimal("1970.00")
        (adjustment,) = result.adjustments
        assert adjustment.type is AdjustmentType.QUANTITY
        assert (adjustment.old_value, adjustment.new_value) == (100, 40)
        assert not adjustment.auto_approved

    def test_partial_below_minimum_excluded(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 5
        result = resolver.resolve(_order(
            replace(BOLT, backorder_behavior=BackorderBehavior.PARTIAL, min_quantity=10),
        ))
        assert result.failed
        assert result.failure_kind is FailureKind.INVENTORY

    def test_reject(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 0
        result = resolver.resolve(_order(
            replace(BOLT, backorder_behavior=BackorderBehavior.REJECT),
        ))
        assert result.failed
        assert result.issues[0].severity is IssueSeverity.HIGH

    def test_skip_leaves_other_items(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 0
        washer = TemplateItem("WASHER-8", 200, unit_price=Decimal("0.10"))
        result = resolver.resolve(_order(
            replace(BOLT, backorder_behavior=BackorderBehavior.SKIP), washer,
        ))
        assert not result.failed
        assert [line.product_id for line in result.lines] == ["WASHER-8"]
        assert result.subtotal == Decimal("20.00")
        assert result.issues[0].severity is IssueSeverity.MEDIUM

    def test_substitute_used_before_backorder(self, resolver, inventory):
        inventory.stock["BOLT-100"] = 0
        result = resolver.resolve(_order(replace(
            BOLT,
            allow_substitutions=True,
            substitute_product_ids=("BOLT-101",),
            backorder_behavior=BackorderBehavior.REJECT,
        )))
        line = result.lines[0]
        assert (line.product_id, line.template_product_id) == ("BOLT-101", "BOLT-100")
        assert line.sku is None
        (adjustment,) = result.adjustments
        assert adjustment.type is AdjustmentType.SUBSTITUTION
        assert adjustment.new_value == "BOLT-101"

    def test_inventory_failure_is_retryable(self, resolver, inventory):
        inventory.failures.add("BOLT-100")
        result = resolver.resolve(_order(BOLT))
        assert result.failed
        assert result.failure_kind is FailureKind.INVENTORY


class TestQuantityBounds:
    def test_clamped_when_adjustment_allowed(self, resolver):
        result = resolver.resolve(_order(
            replace(BOLT, allow_quantity_adjustment=True, max_quantity=80),
        ))
        assert result.lines[0].quantity == 80
        assert result.adjustments[0].type is AdjustmentType.QUANTITY
        assert result.adjustments[0].auto_approved

    def test_not_clamped_otherwise(self, resolver):
        result = resolver.resolve(_order(replace(BOLT, max_quantity=80)))
        assert result.lines[0].quantity == 100
