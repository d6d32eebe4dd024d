"""
Pure notification intent building.

Architecture: recurring_orders/domain.  ZERO I/O.

Maps execution lifecycle states to notification events and expands an
event into one intent per configured channel.  Every intent carries an
idempotency key derived from (subject id, event type[, qualifiers]); the
dispatcher persists intents uniquely on (key, channel).
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from procurement_kernel.utils.idempotency import generate_idempotency_key
from recurring_orders.domain.types import (
    AdjustmentType,
    ExecutionStatus,
    IssueType,
    NotificationEvent,
    NotificationIntent,
    NotificationSettings,
    OrderExecution,
    RecurringOrder,
)

PRODUCER = "recurring_orders"


def template_key(event: NotificationEvent) -> str:
    return f"recurring_order.{event.value}"


def notification_key(
    event: NotificationEvent, subject_id: UUID | str, *qualifiers: object,
) -> str:
    return generate_idempotency_key(
        PRODUCER, f"notify.{event.value}", subject_id, *qualifiers
    )


def build_intents(
    settings: NotificationSettings,
    event: NotificationEvent,
    recurring_order_id: UUID,
    subject_id: UUID | str,
    payload: dict[str, Any],
    *,
    execution_id: UUID | None = None,
    qualifiers: tuple[object, ...] = (),
) -> list[NotificationIntent]:
    """One intent per configured channel, or none if the event is disabled."""
    if not settings.is_enabled(event):
        return []
    key = notification_key(event, subject_id, *qualifiers)
    return [
        NotificationIntent(
            idempotency_key=key,
            event=event,
            channel=channel,
            recipients=recipients,
            template_key=template_key(event),
            payload=payload,
            recurring_order_id=recurring_order_id,
            execution_id=execution_id,
        )
        for channel, recipients in settings.recipients()
    ]


def events_for_execution(execution: OrderExecution) -> list[NotificationEvent]:
    """Events an execution's current state calls for.

    Retry-pending failures do not notify failure; only the terminal one does.
    """
    events: list[NotificationEvent] = []
    if any(i.type is IssueType.INVENTORY for i in execution.issues):
        events.append(NotificationEvent.INVENTORY_ISSUE)
    if any(a.type is AdjustmentType.PRICE for a in execution.adjustments):
        events.append(NotificationEvent.PRICE_CHANGE)

    if execution.status is ExecutionStatus.SUCCESS:
        events.append(NotificationEvent.ORDER_SUCCESS)
    elif execution.status is ExecutionStatus.PENDING and execution.awaiting_approval:
        events.append(NotificationEvent.APPROVAL_REQUIRED)
    elif execution.status is ExecutionStatus.FAILED and execution.is_terminal:
        events.append(NotificationEvent.ORDER_FAILURE)
    return events


def order_payload(order: RecurringOrder) -> dict[str, Any]:
    """JSON-safe summary of a recurring order."""
    return {
        "recurring_order_id": str(order.id),
        "reference": order.reference,
        "name": order.name,
        "supplier_id": order.supplier_id,
        "warehouse": order.warehouse.value,
        "frequency": order.frequency.value,
        "next_execution_date": order.next_execution_date.isoformat(),
    }


def execution_payload(order: RecurringOrder, execution: OrderExecution) -> dict[str, Any]:
    """JSON-safe summary of an execution for notification templates."""
    payload = order_payload(order)
    payload.update({
        "execution_id": str(execution.id),
        "sequence": execution.sequence,
        "status": execution.status.value,
        "scheduled_date": execution.scheduled_date.isoformat(),
        "total_value": str(execution.total_value),
        "currency": order.currency,
        "item_count": execution.item_count,
        "retry_count": execution.retry_count,
        "order_id": execution.order_id,
        "issues": [i.to_dict() for i in execution.issues],
        "adjustments": [a.to_dict() for a in execution.adjustments],
    })
    return payload
