"""
External collaborator protocols.

Contract:
    The engine depends only on these Protocols.  Production adapters wrap
    the pricing engine, inventory service, order-creation service and
    notification transport; tests pass in-memory fakes.

Error contract:
    - ``PricingService`` / ``InventoryService`` raise
      ``PricingUnavailableError`` / ``InventoryUnavailableError`` (or any
      exception, including ``TimeoutError``) when they cannot answer.  The
      resolver turns every such failure into a retryable issue.
    - ``OrderPlacementService`` raises ``PlacementRejectedError`` for
      permanent rejections.  Any other exception is treated as transient.
    - ``NotificationSender`` is fire-and-forget; exceptions are logged and
      recorded on the intent, never propagated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

from recurring_orders.domain.types import DraftOrder, NotificationIntent, Warehouse


@dataclass(frozen=True)
class InventoryLevel:
    """Answer of an inventory check.

    ``available`` is True when the full requested quantity can ship;
    ``max_available`` is what can ship right now.
    """

    available: bool
    max_available: int


@runtime_checkable
class PricingService(Protocol):
    def resolve_price(self, product_id: str, warehouse: Warehouse) -> Decimal:
        """Current unit price of ``product_id`` at ``warehouse``."""
        ...


@runtime_checkable
class InventoryService(Protocol):
    def check_inventory(
        self, product_id: str, warehouse: Warehouse, quantity: int
    ) -> InventoryLevel:
        """Availability of ``quantity`` units of ``product_id``."""
        ...


@runtime_checkable
class OrderPlacementService(Protocol):
    def place_order(self, draft: DraftOrder) -> str:
        """Create the purchase order and return its id.

        ``draft.idempotency_key`` is stable across retries of one
        execution so the service can deduplicate a timed-out attempt.
        """
        ...


@runtime_checkable
class NotificationSender(Protocol):
    def send(self, intent: NotificationIntent) -> None:
        """Deliver one notification intent."""
        ...


class NullNotificationSender:
    """Sender that drops every intent.  Used when no transport is configured."""

    def send(self, intent: NotificationIntent) -> None:
        return None


@dataclass(frozen=True)
class Collaborators:
    """Bundle of collaborator adapters injected into the engine."""

    pricing: PricingService
    inventory: InventoryService
    placement: OrderPlacementService
    notifications: NotificationSender = field(default_factory=NullNotificationSender)
