"""
NotificationDispatcher -- persists notification intents and hands them off.

Contract:
    ``dispatch_execution(order, execution)`` turns an execution's state into
    intents (see domain.notifications), stores the ones not seen before and
    passes each new one to the NotificationSender.

    With ``defer_delivery`` new intents are only stored (PENDING) and
    ``deliver_pending`` sends them later, once the transaction that stored
    them has committed.  ExecutionCoordinator and the scheduler work this
    way, so a rolled-back execution never notifies anyone.

Architecture: recurring_orders/services.

Invariants enforced:
    RO-6 -- An intent is stored at most once per (idempotency key, channel);
            repeated dispatches of the same execution event send nothing.
    - Transport failures are logged and recorded on the intent row.  They
      never change the execution's outcome.

Non-goals:
    - Does NOT render or deliver messages itself.
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from recurring_orders.collaborators import NotificationSender
from recurring_orders.domain.notifications import (
    build_intents,
    events_for_execution,
    execution_payload,
    order_payload,
)
from recurring_orders.domain.schedule import days_until
from recurring_orders.domain.types import (
    DeliveryStatus,
    NotificationEvent,
    NotificationIntent,
    OrderExecution,
    RecurringOrder,
)
from recurring_orders.models.notification import NotificationIntentModel

logger = get_logger("recurring.notifications")


class NotificationDispatcher:
    def __init__(
        self,
        session: Session,
        sender: NotificationSender,
        clock: Clock | None = None,
        *,
        defer_delivery: bool = False,
    ):
        self._session = session
        self._sender = sender
        self._clock = clock or SystemClock()
        self._defer_delivery = defer_delivery

    def dispatch_execution(
        self, order: RecurringOrder, execution: OrderExecution,
    ) -> list[NotificationIntent]:
        """Dispatch every event the execution's current state calls for."""
        payload = execution_payload(order, execution)
        intents: list[NotificationIntent] = []
        for event in events_for_execution(execution):
            intents.extend(self.dispatch(
                order,
                event,
                subject_id=execution.id,
                payload=payload,
                execution_id=execution.id,
            ))
        return intents

    def dispatch_order_created(self, order: RecurringOrder) -> list[NotificationIntent]:
        return self.dispatch(
            order,
            NotificationEvent.ORDER_CREATED,
            subject_id=order.id,
            payload=order_payload(order),
        )

    def dispatch_reminder(
        self, order: RecurringOrder, today: date,
    ) -> list[NotificationIntent]:
        """Reminder when the next execution is exactly a configured lead time away."""
        settings = order.notification_settings
        lead = days_until(order.next_execution_date, today)
        if not settings.send_reminders or lead not in settings.reminder_days:
            return []
        payload = order_payload(order)
        payload["days_until_execution"] = lead
        return self.dispatch(
            order,
            NotificationEvent.REMINDER,
            subject_id=order.id,
            payload=payload,
            qualifiers=(order.next_execution_date.isoformat(), lead),
        )

    def dispatch(
        self,
        order: RecurringOrder,
        event: NotificationEvent,
        *,
        subject_id: UUID,
        payload: dict[str, Any],
        execution_id: UUID | None = None,
        qualifiers: tuple[object, ...] = (),
    ) -> list[NotificationIntent]:
        """Store and send the intents for one event.  Returns only new intents."""
        candidates = build_intents(
            order.notification_settings,
            event,
            order.id,
            subject_id,
            payload,
            execution_id=execution_id,
            qualifiers=qualifiers,
        )
        if not candidates:
            return []

        seen = self._existing_channels(candidates[0].idempotency_key)
        created: list[NotificationIntentModel] = []
        for intent in candidates:
            if intent.channel.value in seen:
                continue
            model = NotificationIntentModel.from_dto(intent)
            model.created_at = model.updated_at = self._clock.now()
            self._session.add(model)
            created.append(model)

        if not created:
            logger.debug(
                "notification_already_dispatched",
                extra={"event": event.value, "subject_id": str(subject_id)},
            )
            return []

        self._session.flush()
        if not self._defer_delivery:
            for model in created:
                self._deliver(model)
            self._session.flush()

        logger.info(
            "notification_queued" if self._defer_delivery else "notification_dispatched",
            extra={
                "event": event.value,
                "subject_id": str(subject_id),
                "channels": [m.channel for m in created],
            },
        )
        return [m.to_dto() for m in created]

    def deliver_pending(
        self, execution_id: UUID | None = None, limit: int | None = None,
    ) -> int:
        """Send intents still waiting for delivery, oldest first.

        Deferred dispatchers leave new intents PENDING; this sends them from
        a session opened after the one that stored them has committed.
        Returns the number of intents handed to the sender.
        """
        stmt = select(NotificationIntentModel).where(
            NotificationIntentModel.delivery_status == DeliveryStatus.PENDING.value
        )
        if execution_id is not None:
            stmt = stmt.where(NotificationIntentModel.execution_id == execution_id)
        stmt = stmt.order_by(
            NotificationIntentModel.created_at, NotificationIntentModel.event,
        ).with_for_update(skip_locked=True)
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = self._session.execute(stmt).scalars().all()
        for model in rows:
            self._deliver(model)
        self._session.flush()
        return len(rows)

    def list_intents(self, recurring_order_id: UUID) -> list[NotificationIntent]:
        rows = self._session.execute(
            select(NotificationIntentModel)
            .where(NotificationIntentModel.recurring_order_id == recurring_order_id)
            .order_by(NotificationIntentModel.created_at, NotificationIntentModel.event)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def _existing_channels(self, idempotency_key: str) -> set[str]:
        return set(self._session.execute(
            select(NotificationIntentModel.channel).where(
                NotificationIntentModel.idempotency_key == idempotency_key
            )
        ).scalars().all())

    def _deliver(self, model: NotificationIntentModel) -> None:
        try:
            self._sender.send(model.to_dto())
        except Exception as exc:
            logger.warning(
                "notification_send_failed",
                extra={
                    "idempotency_key": model.idempotency_key,
                    "channel": model.channel,
                    "error": str(exc),
                },
            )
            model.delivery_status = DeliveryStatus.FAILED.value
            model.delivery_error = str(exc)
            return
        model.delivery_status = DeliveryStatus.SENT.value
        model.delivered_at = self._clock.now()
