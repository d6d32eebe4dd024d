"""
ORM models for recurring orders and their executions.

Contract:
    RecurringOrderModel, RecurringOrderTagModel and OrderExecutionModel
    persist the standing order, its tags and each execution attempt.
    ``to_dto()`` produces the frozen domain snapshot.

Architecture: recurring_orders/models.  Imports from procurement_kernel.db
only (plus domain DTOs for conversion).

Invariants enforced:
    - ``reference`` is UNIQUE and allocated via SequenceService.
    - (recurring_order_id, sequence) is UNIQUE on executions.
    - Tags live in their own table so tag filters are portable SQL.
    - ``lease_token`` / ``lease_expires_at`` hold the per-order execution
      lease; only the repository writes them.
    - JSON columns are replaced wholesale, never mutated in place.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TimestampedBase, UUIDString
from recurring_orders.domain.types import (
    Adjustment,
    ApprovalPolicy,
    ExecutionStats,
    ExecutionStatus,
    FailureKind,
    Frequency,
    Issue,
    NotificationSettings,
    OrderExecution,
    OrderTemplate,
    RecurringOrder,
    RecurringOrderStatus,
    Warehouse,
)


class RecurringOrderModel(TimestampedBase):
    """A supplier's standing order template plus schedule and policy."""

    __tablename__ = "recurring_orders"

    __table_args__ = (
        Index("ix_recurring_orders_supplier", "supplier_id"),
        Index("ix_recurring_orders_due", "status", "next_execution_date"),
    )

    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    warehouse: Mapped[str] = mapped_column(String(10), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Schedule
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    interval: Mapped[int] = mapped_column(
        "schedule_interval", Integer, nullable=False, default=1,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_execution_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Template and settings
    template: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    notification_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Policy
    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approval_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_order_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    auto_accept_price_changes: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Statistics
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_executions: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    total_order_value: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )

    # Execution lease
    lease_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    tag_rows: Mapped[list[RecurringOrderTagModel]] = relationship(
        "RecurringOrderTagModel",
        back_populates="recurring_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RecurringOrderTagModel.tag",
    )

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(row.tag for row in self.tag_rows)

    def set_tags(self, tags: tuple[str, ...] | list[str]) -> None:
        """Replace the tag set, keeping rows for tags that stay."""
        wanted = list(dict.fromkeys(tags))
        keep = [row for row in self.tag_rows if row.tag in wanted]
        existing = {row.tag for row in keep}
        keep.extend(RecurringOrderTagModel(tag=t) for t in wanted if t not in existing)
        self.tag_rows = keep

    @property
    def policy(self) -> ApprovalPolicy:
        return ApprovalPolicy(
            auto_approve=self.auto_approve,
            approval_threshold=self.approval_threshold,
            max_order_value=self.max_order_value,
            auto_accept_price_changes=self.auto_accept_price_changes,
            max_retries=self.max_retries,
        )

    def apply_policy(self, policy: ApprovalPolicy) -> None:
        self.auto_approve = policy.auto_approve
        self.approval_threshold = policy.approval_threshold
        self.max_order_value = policy.max_order_value
        self.auto_accept_price_changes = policy.auto_accept_price_changes
        self.max_retries = policy.max_retries

    def to_dto(self) -> RecurringOrder:
        return RecurringOrder(
            id=self.id,
            supplier_id=self.supplier_id,
            reference=self.reference,
            name=self.name,
            description=self.description,
            warehouse=Warehouse(self.warehouse),
            currency=self.currency,
            frequency=Frequency(self.frequency),
            interval=self.interval,
            start_date=self.start_date,
            next_execution_date=self.next_execution_date,
            last_execution_date=self.last_execution_date,
            status=RecurringOrderStatus(self.status),
            template=OrderTemplate.from_dict(self.template),
            policy=self.policy,
            notification_settings=NotificationSettings.from_dict(
                self.notification_settings
            ),
            tags=self.tags,
            custom_fields=dict(self.custom_fields or {}),
            stats=ExecutionStats(
                total_executions=self.total_executions,
                successful_executions=self.successful_executions,
                total_order_value=self.total_order_value,
            ),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RecurringOrderTagModel(TimestampedBase):
    """One tag on a recurring order."""

    __tablename__ = "recurring_order_tags"

    __table_args__ = (
        UniqueConstraint("recurring_order_id", "tag", name="uq_recurring_order_tag"),
        Index("ix_recurring_order_tags_tag", "tag"),
    )

    recurring_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    tag: Mapped[str] = mapped_column(String(100), nullable=False)

    recurring_order: Mapped[RecurringOrderModel] = relationship(
        "RecurringOrderModel",
        back_populates="tag_rows",
    )


class OrderExecutionModel(TimestampedBase):
    """One execution of a recurring order, retried in place."""

    __tablename__ = "order_executions"

    __table_args__ = (
        UniqueConstraint(
            "recurring_order_id", "sequence", name="uq_order_execution_sequence",
        ),
        Index("ix_order_executions_cycle", "recurring_order_id", "scheduled_date"),
        Index("ix_order_executions_retry", "status", "next_retry_at"),
    )

    recurring_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_orders.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)
    awaiting_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    shipping_estimate: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    adjustments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    issues: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    failure_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def add_issue(self, issue: Issue) -> None:
        self.issues = [*(self.issues or []), issue.to_dict()]

    def to_dto(self) -> OrderExecution:
        return OrderExecution(
            id=self.id,
            recurring_order_id=self.recurring_order_id,
            sequence=self.sequence,
            status=ExecutionStatus(self.status),
            scheduled_date=self.scheduled_date,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            executed_at=self.executed_at,
            next_retry_at=self.next_retry_at,
            awaiting_approval=self.awaiting_approval,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            order_id=self.order_id,
            subtotal=self.subtotal,
            shipping_estimate=self.shipping_estimate,
            total_value=self.total_value,
            item_count=self.item_count,
            adjustments=tuple(Adjustment.from_dict(a) for a in self.adjustments or ()),
            issues=tuple(Issue.from_dict(i) for i in self.issues or ()),
            failure_kind=FailureKind(self.failure_kind) if self.failure_kind else None,
            retryable=self.retryable,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
