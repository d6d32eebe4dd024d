"""
RecurringOrderRepository -- transactional store for recurring orders.

Contract:
    All reads and writes of RecurringOrderModel / OrderExecutionModel go
    through this class.  It also owns the per-order execution lease and the
    due-order / due-retry queries the scheduler runs, and the activity rows
    behind the schedule health report.

Architecture: recurring_orders/services.  Imports from recurring_orders.models
    and kernel infrastructure.

Invariants enforced:
    RO-5 -- The execution lease is taken with a single conditional UPDATE
            (free or expired -> ours), so two sessions can never both hold it.
    - Execution rows are saved in the same flush as any schedule change on
      the parent order; the caller's commit makes both visible together.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    ExecutionNotFoundError,
    RecurringOrderAccessDeniedError,
    RecurringOrderNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from recurring_orders.domain.health import ExecutionActivity, OrderActivity
from recurring_orders.domain.types import (
    ExecutionStatus,
    RecurringOrderFilters,
    RecurringOrderStatus,
    Warehouse,
)
from recurring_orders.models.recurring_order import (
    OrderExecutionModel,
    RecurringOrderModel,
    RecurringOrderTagModel,
)

logger = get_logger("recurring.repository")


def _open_execution_clause():
    """Executions that still own their cycle: awaiting approval or retry-pending."""
    return or_(
        OrderExecutionModel.status == ExecutionStatus.PENDING.value,
        and_(
            OrderExecutionModel.status == ExecutionStatus.FAILED.value,
            OrderExecutionModel.next_retry_at.is_not(None),
        ),
    )


class RecurringOrderRepository:
    """SQLAlchemy-backed persistence for the recurring order engine."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------------
    # Recurring orders
    # -------------------------------------------------------------------------

    def add_order(self, model: RecurringOrderModel) -> RecurringOrderModel:
        self._session.add(model)
        self._session.flush()
        return model

    def get_order(self, order_id: UUID, *, for_update: bool = False) -> RecurringOrderModel:
        """Load one order.

        Raises:
            RecurringOrderNotFoundError: If no such order exists.
        """
        stmt = select(RecurringOrderModel).where(RecurringOrderModel.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RecurringOrderNotFoundError(str(order_id))
        return model

    def get_owned_order(
        self, order_id: UUID, supplier_id: str, *, for_update: bool = False,
    ) -> RecurringOrderModel:
        """Load one order and check that ``supplier_id`` owns it.

        Raises:
            RecurringOrderNotFoundError: If no such order exists.
            RecurringOrderAccessDeniedError: If another supplier owns it.
        """
        model = self.get_order(order_id, for_update=for_update)
        if model.supplier_id != supplier_id:
            logger.warning(
                "recurring_order_access_denied",
                extra={"recurring_order_id": str(order_id), "supplier_id": supplier_id},
            )
            raise RecurringOrderAccessDeniedError(str(order_id), supplier_id)
        return model

    def save_order(self, model: RecurringOrderModel) -> RecurringOrderModel:
        model.updated_at = self._clock.now()
        self._session.flush()
        return model

    def advance_schedule(
        self,
        model: RecurringOrderModel,
        next_execution_date: date,
        last_execution_date: date | None = None,
    ) -> None:
        """Move the order to its next cycle.  Flushed with the execution."""
        model.next_execution_date = next_execution_date
        if last_execution_date is not None:
            model.last_execution_date = last_execution_date
        model.updated_at = self._clock.now()

    def list_orders(
        self,
        supplier_id: str,
        filters: RecurringOrderFilters,
        offset: int,
        limit: int,
    ) -> tuple[list[RecurringOrderModel], int]:
        """One page of a supplier's orders (newest first) plus the total count."""
        stmt = select(RecurringOrderModel).where(
            RecurringOrderModel.supplier_id == supplier_id
        )
        if filters.warehouses:
            stmt = stmt.where(
                RecurringOrderModel.warehouse.in_([w.value for w in filters.warehouses])
            )
        if filters.frequencies:
            stmt = stmt.where(
                RecurringOrderModel.frequency.in_([f.value for f in filters.frequencies])
            )
        if filters.statuses:
            stmt = stmt.where(
                RecurringOrderModel.status.in_([s.value for s in filters.statuses])
            )
        if filters.tags:
            tagged = select(RecurringOrderTagModel.recurring_order_id).where(
                RecurringOrderTagModel.tag.in_(list(filters.tags))
            )
            stmt = stmt.where(RecurringOrderModel.id.in_(tagged))

        total = self._session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        rows = self._session.execute(
            stmt.order_by(
                RecurringOrderModel.created_at.desc(),
                RecurringOrderModel.reference.desc(),
            )
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return list(rows), total

    def active_orders(
        self, supplier_id: str | None = None, warehouse: str | None = None,
    ) -> list[RecurringOrderModel]:
        """ACTIVE orders, soonest first, optionally narrowed."""
        stmt = select(RecurringOrderModel).where(
            RecurringOrderModel.status == RecurringOrderStatus.ACTIVE.value
        )
        if supplier_id is not None:
            stmt = stmt.where(RecurringOrderModel.supplier_id == supplier_id)
        if warehouse is not None:
            stmt = stmt.where(RecurringOrderModel.warehouse == warehouse)
        stmt = stmt.order_by(
            RecurringOrderModel.next_execution_date, RecurringOrderModel.reference,
        )
        return list(self._session.execute(stmt).scalars().all())

    def due_order_ids(self, today: date, limit: int) -> list[UUID]:
        """ACTIVE orders whose cycle is due and not already owned by an execution."""
        has_open = exists().where(
            OrderExecutionModel.recurring_order_id == RecurringOrderModel.id,
            _open_execution_clause(),
        )
        stmt = (
            select(RecurringOrderModel.id)
            .where(
                RecurringOrderModel.status == RecurringOrderStatus.ACTIVE.value,
                RecurringOrderModel.next_execution_date <= today,
                ~has_open,
            )
            .order_by(RecurringOrderModel.next_execution_date, RecurringOrderModel.reference)
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Execution lease
    # -------------------------------------------------------------------------

    def acquire_lease(self, order_id: UUID, token: str, ttl_seconds: int) -> bool:
        """Take the execution lease if it is free or expired.

        Returns:
            True if this call now holds the lease.
        """
        now = self._clock.now()
        result = self._session.execute(
            update(RecurringOrderModel)
            .where(
                RecurringOrderModel.id == order_id,
                or_(
                    RecurringOrderModel.lease_token.is_(None),
                    RecurringOrderModel.lease_expires_at < now,
                ),
            )
            .values(
                lease_token=token,
                lease_expires_at=now + timedelta(seconds=ttl_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        acquired = result.rowcount == 1
        logger.debug(
            "execution_lease_acquired" if acquired else "execution_lease_busy",
            extra={"recurring_order_id": str(order_id)},
        )
        return acquired

    def release_lease(self, order_id: UUID, token: str) -> bool:
        """Release the lease if ``token`` still holds it."""
        result = self._session.execute(
            update(RecurringOrderModel)
            .where(
                RecurringOrderModel.id == order_id,
                RecurringOrderModel.lease_token == token,
            )
            .values(lease_token=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def lease_expiry(self, order_id: UUID) -> datetime | None:
        return self._session.execute(
            select(RecurringOrderModel.lease_expires_at).where(
                RecurringOrderModel.id == order_id
            )
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Executions
    # -------------------------------------------------------------------------

    def add_execution(self, model: OrderExecutionModel) -> OrderExecutionModel:
        self._session.add(model)
        self._session.flush()
        return model

    def get_execution(
        self, execution_id: UUID, *, for_update: bool = False,
    ) -> OrderExecutionModel:
        """Load one execution.

        Raises:
            ExecutionNotFoundError: If no such execution exists.
        """
        stmt = select(OrderExecutionModel).where(OrderExecutionModel.id == execution_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ExecutionNotFoundError(str(execution_id))
        return model

    def save_execution(self, model: OrderExecutionModel) -> OrderExecutionModel:
        model.updated_at = self._clock.now()
        self._session.flush()
        return model

    def open_execution(self, order_id: UUID) -> OrderExecutionModel | None:
        """The execution still owning the order's current cycle, if any."""
        stmt = (
            select(OrderExecutionModel)
            .where(
                OrderExecutionModel.recurring_order_id == order_id,
                _open_execution_clause(),
            )
            .order_by(OrderExecutionModel.sequence.desc())
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def list_executions(self, order_id: UUID) -> list[OrderExecutionModel]:
        stmt = (
            select(OrderExecutionModel)
            .where(OrderExecutionModel.recurring_order_id == order_id)
            .order_by(OrderExecutionModel.sequence.desc())
        )
        return list(self._session.execute(stmt).scalars().all())

    def due_retry_ids(self, now: datetime, limit: int) -> list[UUID]:
        """Retry-pending executions whose timer has fired, oldest timer first."""
        stmt = (
            select(OrderExecutionModel.id)
            .where(
                OrderExecutionModel.status == ExecutionStatus.FAILED.value,
                OrderExecutionModel.next_retry_at.is_not(None),
                OrderExecutionModel.next_retry_at <= now,
            )
            .order_by(OrderExecutionModel.next_retry_at)
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Schedule health
    # -------------------------------------------------------------------------

    def order_activity(self) -> list[OrderActivity]:
        """Warehouse, status and next date of every recurring order."""
        stmt = select(
            RecurringOrderModel.warehouse,
            RecurringOrderModel.status,
            RecurringOrderModel.next_execution_date,
        )
        return [
            OrderActivity(Warehouse(warehouse), RecurringOrderStatus(status), next_date)
            for warehouse, status, next_date in self._session.execute(stmt)
        ]

    def execution_activity(self) -> list[ExecutionActivity]:
        """Outcome of every execution, tagged with its order's warehouse."""
        stmt = select(
            RecurringOrderModel.warehouse,
            OrderExecutionModel.status,
            OrderExecutionModel.awaiting_approval,
            OrderExecutionModel.next_retry_at.is_not(None),
            OrderExecutionModel.created_at,
        ).join(
            RecurringOrderModel,
            RecurringOrderModel.id == OrderExecutionModel.recurring_order_id,
        )
        return [
            ExecutionActivity(
                warehouse=Warehouse(warehouse),
                status=ExecutionStatus(status),
                awaiting_approval=bool(awaiting),
                retry_pending=ExecutionStatus(status) is ExecutionStatus.FAILED and bool(armed),
                created_on=created_at.astimezone(timezone.utc).date(),
            )
            for warehouse, status, awaiting, armed, created_at in self._session.execute(stmt)
        ]
