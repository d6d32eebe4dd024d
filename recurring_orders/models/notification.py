"""
ORM model for notification intents (outbox).

Invariants enforced:
    RO-6 -- (idempotency_key, channel) is UNIQUE: an event produces at most
            one intent per channel no matter how often it is dispatched.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TimestampedBase, UUIDString
from recurring_orders.domain.types import (
    DeliveryStatus,
    NotificationChannel,
    NotificationEvent,
    NotificationIntent,
)


class NotificationIntentModel(TimestampedBase):
    """Persisted notification intent with its delivery outcome."""

    __tablename__ = "notification_intents"

    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", "channel", name="uq_notification_intent_key_channel",
        ),
        Index("ix_notification_intents_delivery", "delivery_status"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)
    event: Mapped[str] = mapped_column(String(30), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    recipients: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    template_key: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    recurring_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_orders.id"),
        nullable=False,
    )
    execution_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING.value,
    )
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> NotificationIntent:
        return NotificationIntent(
            id=self.id,
            idempotency_key=self.idempotency_key,
            event=NotificationEvent(self.event),
            channel=NotificationChannel(self.channel),
            recipients=tuple(self.recipients),
            template_key=self.template_key,
            payload=dict(self.payload),
            recurring_order_id=self.recurring_order_id,
            execution_id=self.execution_id,
            delivery_status=DeliveryStatus(self.delivery_status),
        )

    @classmethod
    def from_dto(cls, dto: NotificationIntent) -> NotificationIntentModel:
        return cls(
            idempotency_key=dto.idempotency_key,
            event=dto.event.value,
            channel=dto.channel.value,
            recipients=list(dto.recipients),
            template_key=dto.template_key,
            payload=dto.payload,
            recurring_order_id=dto.recurring_order_id,
            execution_id=dto.execution_id,
            delivery_status=dto.delivery_status.value,
        )
