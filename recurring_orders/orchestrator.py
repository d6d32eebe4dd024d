"""
RecurringOrderOrchestrator -- DI container for the recurring order engine.

Contract:
    Wires repository, sequence service, template resolver, notification
    dispatcher, retry manager, execution pipeline and management service
    around one session.  ``create_coordinator()`` and ``create_scheduler()``
    build the session-owning components from a session factory.  This is
    the single place where engine dependencies are composed.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Configuration injection: every service receives the same EngineConfig.
    - No singletons; each session gets its own service graph.
    - Components that own their sessions (coordinator, scheduler) store
      notification intents in the work transaction and send them after it
      commits; an orchestrator built on a caller-owned session sends them
      as they are stored unless ``defer_notifications`` is set.

Usage:
    orchestrator = RecurringOrderOrchestrator.from_session(session, collaborators)
    order = orchestrator.service.create_recurring_order(supplier_id, spec)

    coordinator = orchestrator.create_coordinator(session_factory)
    execution = coordinator.execute_recurring_order(order.id)
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.services.sequence_service import SequenceService
from recurring_orders.collaborators import Collaborators
from recurring_orders.config import EngineConfig
from recurring_orders.services.execution_coordinator import ExecutionCoordinator
from recurring_orders.services.execution_pipeline import ExecutionPipeline
from recurring_orders.services.notification_dispatcher import NotificationDispatcher
from recurring_orders.services.recurring_order_service import RecurringOrderService
from recurring_orders.services.repository import RecurringOrderRepository
from recurring_orders.services.retry_manager import RetryManager
from recurring_orders.services.scheduler import RecurringOrderScheduler
from recurring_orders.services.template_resolver import OrderTemplateResolver


class RecurringOrderOrchestrator:
    """DI container for one session's worth of engine services.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        collaborators: Collaborators,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        *,
        defer_notifications: bool = False,
    ) -> None:
        self._session = session
        self._collaborators = collaborators
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()

        self._repository = RecurringOrderRepository(session, self._clock)
        self._sequence = SequenceService(session)
        self._dispatcher = NotificationDispatcher(
            session,
            collaborators.notifications,
            self._clock,
            defer_delivery=defer_notifications,
        )
        self._resolver = OrderTemplateResolver(
            collaborators.pricing, collaborators.inventory, self._config,
        )
        self._retry_manager = RetryManager(
            self._repository, self._clock, self._config.retry_policy,
        )
        self._pipeline = ExecutionPipeline(
            repository=self._repository,
            resolver=self._resolver,
            placement=collaborators.placement,
            dispatcher=self._dispatcher,
            retry_manager=self._retry_manager,
            sequence_service=self._sequence,
            clock=self._clock,
        )
        self._service = RecurringOrderService(
            repository=self._repository,
            sequence_service=self._sequence,
            dispatcher=self._dispatcher,
            clock=self._clock,
            config=self._config,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        collaborators: Collaborators,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> RecurringOrderOrchestrator:
        """Create a fully wired orchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            collaborators: Pricing, inventory, placement and notification
                adapters.
            clock: Optional clock for deterministic testing.
            config: Optional engine configuration; defaults apply if None.
        """
        return cls(
            session=session,
            collaborators=collaborators,
            clock=clock or SystemClock(),
            config=config or EngineConfig(),
        )

    # -------------------------------------------------------------------------
    # Session-owning components
    # -------------------------------------------------------------------------

    def create_coordinator(self, session_factory: sessionmaker[Session]) -> ExecutionCoordinator:
        """Create an ExecutionCoordinator that opens its own sessions."""
        collaborators, clock, config = self._collaborators, self._clock, self._config

        def pipeline_factory(session: Session) -> ExecutionPipeline:
            return RecurringOrderOrchestrator(
                session, collaborators, clock, config, defer_notifications=True,
            ).pipeline

        return ExecutionCoordinator(
            session_factory=session_factory,
            pipeline_factory=pipeline_factory,
            dispatcher_factory=self._deferred_dispatcher_factory(),
            clock=clock,
            config=config,
        )

    def create_scheduler(
        self,
        session_factory: sessionmaker[Session],
        coordinator: ExecutionCoordinator | None = None,
    ) -> RecurringOrderScheduler:
        """Create a RecurringOrderScheduler for background use."""
        return RecurringOrderScheduler(
            session_factory=session_factory,
            coordinator=coordinator or self.create_coordinator(session_factory),
            dispatcher_factory=self._deferred_dispatcher_factory(),
            clock=self._clock,
            config=self._config,
        )

    def _deferred_dispatcher_factory(self) -> Callable[[Session], NotificationDispatcher]:
        sender, clock = self._collaborators.notifications, self._clock

        def dispatcher_factory(session: Session) -> NotificationDispatcher:
            return NotificationDispatcher(session, sender, clock, defer_delivery=True)

        return dispatcher_factory

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def repository(self) -> RecurringOrderRepository:
        return self._repository

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def retry_manager(self) -> RetryManager:
        return self._retry_manager

    @property
    def pipeline(self) -> ExecutionPipeline:
        return self._pipeline

    @property
    def service(self) -> RecurringOrderService:
        return self._service
