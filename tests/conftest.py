"""
Pytest fixtures for the recurring order engine test suite.

Provides:
- In-memory SQLite database (one shared connection per test)
- Deterministic clock pinned to 2024-03-01 09:00 UTC
- In-memory fakes for the pricing, inventory, placement and notification
  collaborators
- A recurring order payload builder and helpers that persist orders

Sessions:
    Every session from ``session_factory`` shares one SQLite connection.
    Coordinator and scheduler tests therefore commit their setup first and
    read results back through ``read_session()``.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session, sessionmaker

import recurring_orders.models  # noqa: F401
from procurement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.exceptions import InventoryUnavailableError, PricingUnavailableError
from procurement_kernel.logging_config import LogContext
from recurring_orders.collaborators import Collaborators, InventoryLevel
from recurring_orders.config import EngineConfig
from recurring_orders.domain.types import DraftOrder, NotificationIntent, RecurringOrder, Warehouse
from recurring_orders.orchestrator import RecurringOrderOrchestrator
from recurring_orders.services.repository import RecurringOrderRepository

SUPPLIER_ID = "supplier-001"
OTHER_SUPPLIER_ID = "supplier-002"

# Friday
NOW = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

DELIVERY_ADDRESS = {
    "name": "Receiving Dock",
    "company": "Acme Manufacturing",
    "address1": "100 Industrial Way",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
    "email": "dock@acme.example",
}


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakePricingService:
    """Prices by product id.  Products in ``failures`` raise."""

    def __init__(self, prices: dict[str, Decimal] | None = None):
        self.prices: dict[str, Decimal] = dict(prices or {})
        self.failures: set[str] = set()
        self.calls: list[tuple[str, Warehouse]] = []

    def resolve_price(self, product_id: str, warehouse: Warehouse) -> Decimal:
        self.calls.append((product_id, warehouse))
        if product_id in self.failures:
            raise PricingUnavailableError(product_id, "pricing engine timeout")
        return self.prices[product_id]


class FakeInventoryService:
    """Stock by product id; unknown products have ``default_stock`` units."""

    def __init__(self, stock: dict[str, int] | None = None, default_stock: int = 10_000):
        self.stock: dict[str, int] = dict(stock or {})
        self.default_stock = default_stock
        self.failures: set[str] = set()

    def check_inventory(
        self, product_id: str, warehouse: Warehouse, quantity: int,
    ) -> InventoryLevel:
        if product_id in self.failures:
            raise InventoryUnavailableError(product_id, "inventory service timeout")
        available = self.stock.get(product_id, self.default_stock)
        return InventoryLevel(available=available >= quantity, max_available=available)


class FakePlacementService:
    """Raises queued errors first, then places drafts as PO-00001, PO-00002..."""

    def __init__(self):
        self.errors: list[Exception] = []
        self.attempts: list[DraftOrder] = []
        self.placed: list[DraftOrder] = []

    def place_order(self, draft: DraftOrder) -> str:
        self.attempts.append(draft)
        if self.errors:
            raise self.errors.pop(0)
        self.placed.append(draft)
        return f"PO-{len(self.placed):05d}"


class RecordingSender:
    def __init__(self):
        self.sent: list[NotificationIntent] = []
        self.fail = False

    def send(self, intent: NotificationIntent) -> None:
        if self.fail:
            raise ConnectionError("smtp relay unreachable")
        self.sent.append(intent)


# =============================================================================
# Payload builders
# =============================================================================


def item_spec(**overrides: Any) -> dict[str, Any]:
    item = {
        "product_id": "BOLT-100",
        "sku": "HB-M8-100",
        "name": "Hex bolt M8",
        "quantity": 100,
        "unit_price": "49.25",
    }
    item.update(overrides)
    return item


def order_spec(**overrides: Any) -> dict[str, Any]:
    """Weekly order for 100 x 49.25 = 4925.00 at the US warehouse."""
    spec: dict[str, Any] = {
        "name": "Weekly fasteners",
        "warehouse": "us",
        "frequency": "weekly",
        "interval": 1,
        "template": {
            "items": [item_spec()],
            "delivery_address": dict(DELIVERY_ADDRESS),
        },
        "notification_settings": {"email": ["buyer@acme.example"]},
    }
    spec.update(overrides)
    return spec


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def engine():
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def read_session(session_factory):
    """Open a throwaway session for reading committed state."""

    @contextmanager
    def _open() -> Generator[Session, None, None]:
        with session_scope(session_factory) as s:
            yield s

    return _open


# =============================================================================
# Engine wiring
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(NOW)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def pricing() -> FakePricingService:
    return FakePricingService()


@pytest.fixture
def inventory() -> FakeInventoryService:
    return FakeInventoryService()


@pytest.fixture
def placement() -> FakePlacementService:
    return FakePlacementService()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def collaborators(pricing, inventory, placement, sender) -> Collaborators:
    return Collaborators(
        pricing=pricing,
        inventory=inventory,
        placement=placement,
        notifications=sender,
    )


@pytest.fixture
def orchestrator(session, collaborators, clock, config) -> RecurringOrderOrchestrator:
    return RecurringOrderOrchestrator.from_session(session, collaborators, clock, config)


@pytest.fixture
def service(orchestrator):
    return orchestrator.service


@pytest.fixture
def pipeline(orchestrator):
    return orchestrator.pipeline


@pytest.fixture
def coordinator(orchestrator, session_factory):
    return orchestrator.create_coordinator(session_factory)


@pytest.fixture
def scheduler(orchestrator, session_factory, coordinator):
    return orchestrator.create_scheduler(session_factory, coordinator)


@pytest.fixture
def create_order(session, service):
    """Create a recurring order from ``order_spec(**overrides)`` and commit it."""

    def _create(supplier_id: str = SUPPLIER_ID, **overrides: Any) -> RecurringOrder:
        order = service.create_recurring_order(supplier_id, order_spec(**overrides))
        session.commit()
        return order

    return _create


@pytest.fixture
def load_order(read_session, clock):
    """Read a recurring order's committed state."""

    def _load(order_id: UUID) -> RecurringOrder:
        with read_session() as s:
            return RecurringOrderRepository(s, clock).get_order(order_id).to_dto()

    return _load
