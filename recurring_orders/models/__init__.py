"""ORM models for recurring orders, executions and notification intents."""

from recurring_orders.models.notification import NotificationIntentModel
from recurring_orders.models.recurring_order import (
    OrderExecutionModel,
    RecurringOrderModel,
    RecurringOrderTagModel,
)

__all__ = [
    "NotificationIntentModel",
    "OrderExecutionModel",
    "RecurringOrderModel",
    "RecurringOrderTagModel",
]
