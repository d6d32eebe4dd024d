"""
OrderTemplateResolver -- expands a recurring order template into draft lines.

Contract:
    ``resolve(order, attempt)`` returns a TemplateResolution: the concrete
    lines that can be ordered now, plus every adjustment applied and every
    issue met along the way.  Collaborator failures are recorded, never
    raised.

Architecture: recurring_orders/services.  Calls the pricing and inventory
    collaborators; no persistence.

Per item, in order:
    1. Quantity bounds -- with ``allow_quantity_adjustment`` a quantity
       outside [min_quantity, max_quantity] is clamped (QUANTITY adjustment).
    2. Inventory -- on a shortage, try substitutes first (SUBSTITUTION
       adjustment), then apply the backorder behavior:
         ALLOW    keep the full quantity, MEDIUM issue
         PARTIAL  reduce to what is available (QUANTITY adjustment), or
                  exclude when that is below min_quantity
         REJECT   exclude, HIGH issue
         SKIP     exclude, MEDIUM issue
    3. Price -- dynamic pricing asks the pricing collaborator and records a
       PRICE adjustment when the price moved beyond the tolerance.  A large
       price change the supplier has not pre-approved becomes a HIGH issue
       and flags the draft for review.

If every item is excluded the resolution fails.  It is retryable unless
every exclusion was a validation problem (nothing will change by waiting).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from procurement_kernel.db.types import round_money, to_decimal
from procurement_kernel.logging_config import get_logger
from recurring_orders.collaborators import InventoryLevel, InventoryService, PricingService
from recurring_orders.config import EngineConfig
from recurring_orders.domain.types import (
    Adjustment,
    AdjustmentType,
    BackorderBehavior,
    FailureKind,
    Issue,
    IssueSeverity,
    IssueType,
    RecurringOrder,
    ResolvedLine,
    TemplateItem,
    TemplateResolution,
)

logger = get_logger("recurring.resolver")


@dataclass
class _ItemOutcome:
    line: ResolvedLine | None = None
    adjustments: list[Adjustment] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    requires_review: bool = False
    excluded_as: IssueType | None = None


class OrderTemplateResolver:
    """Resolves template items against live pricing and inventory.

    Non-goals:
        - Does NOT decide approval or ceilings -- that is the gate's job.
        - Does NOT persist anything.
    """

    def __init__(
        self,
        pricing: PricingService,
        inventory: InventoryService,
        config: EngineConfig | None = None,
    ):
        self._pricing = pricing
        self._inventory = inventory
        self._config = config or EngineConfig()

    def resolve(self, order: RecurringOrder, attempt: int = 0) -> TemplateResolution:
        lines: list[ResolvedLine] = []
        adjustments: list[Adjustment] = []
        issues: list[Issue] = []
        excluded: list[IssueType] = []
        requires_review = False

        for item in order.template.items:
            outcome = self._resolve_item(order, item, attempt)
            adjustments.extend(outcome.adjustments)
            issues.extend(outcome.issues)
            requires_review = requires_review or outcome.requires_review
            if outcome.line is not None:
                lines.append(outcome.line)
            elif outcome.excluded_as is not None:
                excluded.append(outcome.excluded_as)

        if lines:
            return TemplateResolution(
                lines=tuple(lines),
                adjustments=tuple(adjustments),
                issues=tuple(issues),
                requires_review=requires_review,
            )

        failure_kind = self._failure_kind(excluded)
        issue_type = {
            FailureKind.VALIDATION: IssueType.VALIDATION,
            FailureKind.PRICING: IssueType.PRICING,
        }.get(failure_kind, IssueType.INVENTORY)
        issues.append(Issue(
            type=issue_type,
            severity=IssueSeverity.CRITICAL,
            message="No template items could be resolved for this cycle",
            attempt=attempt,
        ))
        logger.info(
            "template_resolution_failed",
            extra={
                "recurring_order_id": str(order.id),
                "failure_kind": failure_kind.value,
                "excluded_items": len(excluded),
            },
        )
        return TemplateResolution(
            lines=(),
            adjustments=tuple(adjustments),
            issues=tuple(issues),
            failed=True,
            failure_kind=failure_kind,
            requires_review=requires_review,
        )

    @staticmethod
    def _failure_kind(excluded: list[IssueType]) -> FailureKind:
        if not excluded or all(kind is IssueType.VALIDATION for kind in excluded):
            return FailureKind.VALIDATION
        if IssueType.INVENTORY in excluded:
            return FailureKind.INVENTORY
        return FailureKind.PRICING

    # -------------------------------------------------------------------------
    # Per item
    # -------------------------------------------------------------------------

    def _resolve_item(
        self, order: RecurringOrder, item: TemplateItem, attempt: int,
    ) -> _ItemOutcome:
        outcome = _ItemOutcome()
        quantity = self._apply_bounds(item, outcome)

        product_id, quantity = self._apply_inventory(order, item, quantity, outcome, attempt)
        if product_id is None:
            return outcome

        price = self._resolve_price(order, item, product_id, outcome, attempt)
        if price is None:
            return outcome

        outcome.line = ResolvedLine(
            product_id=product_id,
            template_product_id=item.product_id,
            quantity=quantity,
            unit_price=price,
            line_total=round_money(price * quantity),
            sku=item.sku if product_id == item.product_id else None,
            name=item.name if product_id == item.product_id else None,
        )
        return outcome

    @staticmethod
    def _apply_bounds(item: TemplateItem, outcome: _ItemOutcome) -> int:
        quantity = item.quantity
        if not item.allow_quantity_adjustment:
            return quantity
        bounded = quantity
        if item.max_quantity is not None and bounded > item.max_quantity:
            bounded = item.max_quantity
        if item.min_quantity is not None and bounded < item.min_quantity:
            bounded = item.min_quantity
        if bounded != quantity:
            outcome.adjustments.append(Adjustment(
                type=AdjustmentType.QUANTITY,
                item_id=item.product_id,
                old_value=quantity,
                new_value=bounded,
                reason="clamped to quantity bounds",
                auto_approved=True,
            ))
        return bounded

    def _check(
        self, order: RecurringOrder, product_id: str, quantity: int,
    ) -> InventoryLevel:
        return self._inventory.check_inventory(product_id, order.warehouse, quantity)

    def _apply_inventory(
        self,
        order: RecurringOrder,
        item: TemplateItem,
        quantity: int,
        outcome: _ItemOutcome,
        attempt: int,
    ) -> tuple[str | None, int]:
        """Returns (product to order, quantity); product is None when excluded."""
        try:
            level = self._check(order, item.product_id, quantity)
        except Exception as exc:
            logger.warning(
                "inventory_check_failed",
                extra={"product_id": item.product_id, "error": str(exc)},
            )
            self._exclude(
                outcome, IssueType.INVENTORY, IssueSeverity.HIGH,
                f"Inventory check failed for {item.product_id}: {exc}",
                item.product_id, attempt,
            )
            return None, quantity

        if level.available:
            return item.product_id, quantity

        substitute = self._find_substitute(order, item, quantity, outcome, attempt)
        if substitute is not None:
            return substitute, quantity

        available = max(level.max_available, 0)
        behavior = item.backorder_behavior

        if behavior is BackorderBehavior.ALLOW:
            outcome.issues.append(Issue(
                type=IssueType.INVENTORY,
                severity=IssueSeverity.MEDIUM,
                message=(
                    f"Only {available} of {quantity} units of {item.product_id} "
                    "available; remainder backordered"
                ),
                item_id=item.product_id,
                attempt=attempt,
            ))
            return item.product_id, quantity

        if behavior is BackorderBehavior.PARTIAL:
            floor = item.min_quantity if item.min_quantity is not None else 1
            if available >= floor:
                outcome.adjustments.append(Adjustment(
                    type=AdjustmentType.QUANTITY,
                    item_id=item.product_id,
                    old_value=quantity,
                    new_value=available,
                    reason="reduced to available inventory",
                    auto_approved=item.allow_quantity_adjustment,
                ))
                return item.product_id, available
            self._exclude(
                outcome, IssueType.INVENTORY, IssueSeverity.HIGH,
                f"Only {available} units of {item.product_id} available, "
                f"below minimum {floor}",
                item.product_id, attempt,
            )
            return None, quantity

        if behavior is BackorderBehavior.SKIP:
            self._exclude(
                outcome, IssueType.INVENTORY, IssueSeverity.MEDIUM,
                f"{item.product_id} skipped this cycle: insufficient inventory",
                item.product_id, attempt,
            )
            return None, quantity

        self._exclude(
            outcome, IssueType.INVENTORY, IssueSeverity.HIGH,
            f"{item.product_id} rejected: only {available} of {quantity} units available",
            item.product_id, attempt,
        )
        return None, quantity

    def _find_substitute(
        self,
        order: RecurringOrder,
        item: TemplateItem,
        quantity: int,
        outcome: _ItemOutcome,
        attempt: int,
    ) -> str | None:
        if not item.allow_substitutions:
            return None
        for candidate in item.substitute_product_ids:
            try:
                level = self._check(order, candidate, quantity)
            except Exception as exc:
                outcome.issues.append(Issue(
                    type=IssueType.INVENTORY,
                    severity=IssueSeverity.LOW,
                    message=f"Inventory check failed for substitute {candidate}: {exc}",
                    item_id=item.product_id,
                    attempt=attempt,
                ))
                continue
            if level.available:
                outcome.adjustments.append(Adjustment(
                    type=AdjustmentType.SUBSTITUTION,
                    item_id=item.product_id,
                    old_value=item.product_id,
                    new_value=candidate,
                    reason="substituted for out-of-stock item",
                    auto_approved=True,
                ))
                return candidate
        return None

    def _resolve_price(
        self,
        order: RecurringOrder,
        item: TemplateItem,
        product_id: str,
        outcome: _ItemOutcome,
        attempt: int,
    ) -> Decimal | None:
        last_known = item.unit_price

        if not item.use_dynamic_pricing:
            if last_known is None:
                self._exclude(
                    outcome, IssueType.VALIDATION, IssueSeverity.HIGH,
                    f"{item.product_id} has no unit price and dynamic pricing is off",
                    item.product_id, attempt,
                )
            return last_known

        try:
            price = to_decimal(self._pricing.resolve_price(product_id, order.warehouse))
        except Exception as exc:
            logger.warning(
                "dynamic_pricing_failed",
                extra={"product_id": product_id, "error": str(exc)},
            )
            if last_known is None:
                self._exclude(
                    outcome, IssueType.PRICING, IssueSeverity.HIGH,
                    f"Dynamic pricing failed for {product_id} and no last-known price: {exc}",
                    item.product_id, attempt,
                )
                return None
            outcome.issues.append(Issue(
                type=IssueType.PRICING,
                severity=IssueSeverity.MEDIUM,
                message=(
                    f"Dynamic pricing failed for {product_id}; using last-known "
                    f"price {last_known}"
                ),
                item_id=item.product_id,
                attempt=attempt,
            ))
            return last_known

        if last_known is None or abs(price - last_known) <= self._config.price_tolerance:
            return price

        auto_approved = order.policy.auto_accept_price_changes
        outcome.adjustments.append(Adjustment(
            type=AdjustmentType.PRICE,
            item_id=item.product_id,
            old_value=last_known,
            new_value=price,
            reason="dynamic pricing",
            auto_approved=auto_approved,
        ))
        if not auto_approved and self._is_large_change(last_known, price):
            outcome.requires_review = True
            outcome.issues.append(Issue(
                type=IssueType.PRICING,
                severity=IssueSeverity.HIGH,
                message=(
                    f"Price of {product_id} changed from {last_known} to {price}; "
                    "manual review required"
                ),
                item_id=item.product_id,
                attempt=attempt,
            ))
        return price

    def _is_large_change(self, old: Decimal, new: Decimal) -> bool:
        if old == 0:
            return True
        return abs(new - old) / old > self._config.price_change_issue_threshold

    @staticmethod
    def _exclude(
        outcome: _ItemOutcome,
        issue_type: IssueType,
        severity: IssueSeverity,
        message: str,
        item_id: str,
        attempt: int,
    ) -> None:
        outcome.excluded_as = issue_type
        outcome.issues.append(Issue(
            type=issue_type,
            severity=severity,
            message=message,
            item_id=item_id,
            attempt=attempt,
        ))
