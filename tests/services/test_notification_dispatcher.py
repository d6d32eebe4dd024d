"""
Tests for recurring_orders.services.notification_dispatcher.

Notification intents are stored once per (idempotency key, channel) and a
failing transport is recorded on the intent without raising.  Deferred
dispatchers store intents PENDING and send them from deliver_pending.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import SUPPLIER_ID, order_spec
from recurring_orders.domain.types import (
    DeliveryStatus,
    ExecutionStatus,
    NotificationChannel,
    NotificationEvent,
    OrderExecution,
)
from recurring_orders.models.notification import NotificationIntentModel
from recurring_orders.services.notification_dispatcher import NotificationDispatcher


@pytest.fixture
def dispatcher(orchestrator):
    return orchestrator.dispatcher


@pytest.fixture
def order(service):
    return service.create_recurring_order(SUPPLIER_ID, order_spec(
        notification_settings={
            "email": ["buyer@acme.example"],
            "webhook_url": "https://hooks.acme.example/orders",
            "send_reminders": True,
            "reminder_days": [1, 3],
        },
    ))


def _execution(order, status=ExecutionStatus.SUCCESS, **overrides):
    values = dict(
        id=uuid4(),
        recurring_order_id=order.id,
        sequence=1,
        status=status,
        scheduled_date=order.next_execution_date,
        order_id="PO-00001",
    )
    values.update(overrides)
    return OrderExecution(**values)


class TestOrderCreated:
    def test_created_event_sent_on_each_channel(self, order, sender):
        assert [(i.event, i.channel) for i in sender.sent] == [
            (NotificationEvent.ORDER_CREATED, NotificationChannel.EMAIL),
            (NotificationEvent.ORDER_CREATED, NotificationChannel.WEBHOOK),
        ]
        assert sender.sent[0].recipients == ("buyer@acme.example",)
        assert sender.sent[0].payload["reference"] == order.reference

    def test_redispatch_sends_nothing(self, dispatcher, order, sender):
        assert dispatcher.dispatch_order_created(order) == []
        assert len(sender.sent) == 2


class TestExecutionEvents:
    def test_success_dispatched_once(self, dispatcher, order):
        execution = _execution(order)
        created = dispatcher.dispatch_execution(order, execution)
        assert {i.event for i in created} == {NotificationEvent.ORDER_SUCCESS}
        assert all(i.delivery_status is DeliveryStatus.SENT for i in created)
        assert dispatcher.dispatch_execution(order, execution) == []

    def test_each_execution_has_its_own_key(self, dispatcher, order):
        first = dispatcher.dispatch_execution(order, _execution(order))
        second = dispatcher.dispatch_execution(order, _execution(order, sequence=2))
        assert first and second
        assert first[0].idempotency_key != second[0].idempotency_key

    def test_disabled_event_not_stored(self, service, dispatcher):
        order = service.create_recurring_order(SUPPLIER_ID, order_spec(
            notification_settings={
                "email": ["buyer@acme.example"], "on_order_success": False,
            },
        ))
        assert dispatcher.dispatch_execution(order, _execution(order)) == []
        assert [i.event for i in dispatcher.list_intents(order.id)] == [
            NotificationEvent.ORDER_CREATED,
        ]


class TestDeliveryFailure:
    def test_failure_recorded_not_raised(self, dispatcher, order, sender, session):
        sender.fail = True
        created = dispatcher.dispatch_execution(order, _execution(order))
        assert created
        assert all(i.delivery_status is DeliveryStatus.FAILED for i in created)

        row = session.get(NotificationIntentModel, created[0].id)
        assert row.delivery_error == "smtp relay unreachable"
        assert row.delivered_at is None

    def test_failed_intent_not_resent(self, dispatcher, order, sender):
        execution = _execution(order)
        sender.fail = True
        dispatcher.dispatch_execution(order, execution)
        sender.fail = False
        assert dispatcher.dispatch_execution(order, execution) == []


class TestDeferredDelivery:
    @pytest.fixture
    def deferred(self, session, sender, clock):
        return NotificationDispatcher(session, sender, clock, defer_delivery=True)

    def test_stored_pending_without_sending(self, deferred, order, sender):
        created = deferred.dispatch_execution(order, _execution(order))
        assert created
        assert all(i.delivery_status is DeliveryStatus.PENDING for i in created)
        assert [i.event for i in sender.sent] == [NotificationEvent.ORDER_CREATED] * 2

    def test_deliver_pending_sends_once(self, deferred, order, sender, session):
        created = deferred.dispatch_execution(order, _execution(order))

        assert deferred.deliver_pending() == len(created)
        assert deferred.deliver_pending() == 0

        assert [i.event for i in sender.sent[2:]] == [NotificationEvent.ORDER_SUCCESS] * 2
        row = session.get(NotificationIntentModel, created[0].id)
        assert row.delivery_status == DeliveryStatus.SENT.value

    def test_deliver_pending_for_one_execution(self, deferred, order, sender):
        first, second = _execution(order), _execution(order, sequence=2)
        deferred.dispatch_execution(order, first)
        deferred.dispatch_execution(order, second)

        deferred.deliver_pending(execution_id=second.id)

        assert {i.execution_id for i in sender.sent[2:]} == {second.id}

    def test_delivery_failure_recorded(self, deferred, order, sender, session):
        created = deferred.dispatch_execution(order, _execution(order))
        sender.fail = True
        deferred.deliver_pending()
        row = session.get(NotificationIntentModel, created[0].id)
        assert row.delivery_status == DeliveryStatus.FAILED.value
        assert deferred.deliver_pending() == 0


class TestReminders:
    def test_sent_at_configured_lead_time(self, dispatcher, order):
        reminder_day = order.next_execution_date - timedelta(days=3)
        created = dispatcher.dispatch_reminder(order, reminder_day)
        assert {i.event for i in created} == {NotificationEvent.REMINDER}
        assert created[0].payload["days_until_execution"] == 3

    def test_not_sent_on_other_days(self, dispatcher, order):
        other_day = order.next_execution_date - timedelta(days=2)
        assert dispatcher.dispatch_reminder(order, other_day) == []

    def test_once_per_lead_time(self, dispatcher, order):
        day = order.next_execution_date - timedelta(days=1)
        assert dispatcher.dispatch_reminder(order, day)
        assert dispatcher.dispatch_reminder(order, day) == []

    def test_disabled(self, service, dispatcher):
        order = service.create_recurring_order(SUPPLIER_ID, order_spec(
            notification_settings={"email": ["buyer@acme.example"], "reminder_days": [1]},
        ))
        day = order.next_execution_date - timedelta(days=1)
        assert dispatcher.dispatch_reminder(order, day) == []
