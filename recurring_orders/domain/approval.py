"""
Approval gate (``recurring_orders.domain.approval``).

Responsibility
--------------
Decides, from an execution's computed total and the recurring order's
standing policy, whether the execution may place its order automatically,
must pause for manual approval, or must fail because it breaks the hard
ceiling.

Architecture position
---------------------
**Domain layer** -- pure functions.  ZERO I/O.

Invariants enforced
-------------------
* The ceiling is checked before the gate: a total above
  ``max_order_value`` is a hard failure, never an approval request.
* ``approval_threshold`` applies even when ``auto_approve`` is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from recurring_orders.domain.types import ApprovalPolicy


class GateOutcome(str, Enum):
    PROCEED = "proceed"
    REQUIRES_APPROVAL = "requires_approval"
    EXCEEDS_CEILING = "exceeds_ceiling"


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    reason: str

    @property
    def may_proceed(self) -> bool:
        return self.outcome is GateOutcome.PROCEED


def requires_approval(policy: ApprovalPolicy, computed_total: Decimal) -> bool:
    """True if an execution with ``computed_total`` needs manual sign-off."""
    if not policy.auto_approve:
        return True
    if policy.approval_threshold is not None and computed_total > policy.approval_threshold:
        return True
    return False


def exceeds_ceiling(policy: ApprovalPolicy, computed_total: Decimal) -> bool:
    """True if ``computed_total`` is above the hard ``max_order_value``."""
    return policy.max_order_value is not None and computed_total > policy.max_order_value


def evaluate_gate(
    policy: ApprovalPolicy,
    computed_total: Decimal,
    *,
    already_approved: bool = False,
    requires_review: bool = False,
) -> GateDecision:
    """Combined ceiling + approval decision for one attempt.

    Args:
        policy: The recurring order's approval policy.
        computed_total: Total value of the resolved draft.
        already_approved: A manual approval was recorded for this execution.
        requires_review: The resolver flagged changes (e.g. an unapproved
            large price change) that need a human regardless of policy.
    """
    if exceeds_ceiling(policy, computed_total):
        return GateDecision(
            GateOutcome.EXCEEDS_CEILING,
            f"Order total {computed_total} exceeds maximum order value "
            f"{policy.max_order_value}",
        )
    if already_approved:
        return GateDecision(GateOutcome.PROCEED, "manually approved")
    if not policy.auto_approve:
        return GateDecision(
            GateOutcome.REQUIRES_APPROVAL,
            "Manual approval required: auto-approve is disabled",
        )
    if requires_approval(policy, computed_total):
        return GateDecision(
            GateOutcome.REQUIRES_APPROVAL,
            f"Manual approval required: order total {computed_total} exceeds "
            f"approval threshold {policy.approval_threshold}",
        )
    if requires_review:
        return GateDecision(
            GateOutcome.REQUIRES_APPROVAL,
            "Manual approval required: price changes need review",
        )
    return GateDecision(GateOutcome.PROCEED, "auto-approved")
