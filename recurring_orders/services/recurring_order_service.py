"""
RecurringOrderService -- supplier-facing management of recurring orders.

Contract:
    Create, update, read, list and change the status of recurring orders,
    and read their execution history, upcoming executions and the
    operator-wide schedule health report.  Every operation that names an
    order checks that the calling supplier owns it.

Architecture: recurring_orders/services.  Pure validation lives in
    domain.validators; upcoming forecasts in domain.upcoming; health
    roll-ups in domain.health.

Invariants enforced:
    - Create/update validate the whole payload before touching the database
      and report every problem at once (RecurringOrderValidationError).
    - ``next_execution_date`` is only ever produced by the schedule
      calculator (first_execution_date / next_execution_date).
    - Status changes follow RECURRING_ORDER_TRANSITIONS; CANCELLED is final
      and cancelled orders are never deleted.

Non-goals:
    - Does NOT execute orders -- see ExecutionCoordinator.
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    InvalidRecurringOrderTransitionError,
    RecurringOrderValidationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.sequence_service import SequenceService
from recurring_orders.config import EngineConfig
from recurring_orders.domain.health import ScheduleHealth, schedule_health
from recurring_orders.domain.schedule import first_execution_date
from recurring_orders.domain.types import (
    RECURRING_ORDER_TRANSITIONS,
    ApprovalPolicy,
    Frequency,
    NotificationIntent,
    NotificationSettings,
    OrderExecution,
    RecurringOrder,
    RecurringOrderFilters,
    RecurringOrderPage,
    RecurringOrderStatus,
    Warehouse,
)
from recurring_orders.domain.upcoming import UpcomingExecutions, upcoming_executions
from recurring_orders.domain.validators import (
    FieldErrors,
    field_error,
    parse_currency,
    parse_custom_fields,
    parse_date,
    parse_enum,
    parse_name,
    parse_notification_settings,
    parse_optional_text,
    parse_policy,
    parse_schedule,
    parse_tags,
    parse_template,
)
from recurring_orders.models.recurring_order import RecurringOrderModel
from recurring_orders.services.notification_dispatcher import NotificationDispatcher
from recurring_orders.services.repository import RecurringOrderRepository

logger = get_logger("recurring.service")

_UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "warehouse",
    "currency",
    "frequency",
    "interval",
    "start_date",
    "template",
    "policy",
    "notification_settings",
    "tags",
    "custom_fields",
})


class RecurringOrderService:
    """Management operations on recurring orders."""

    def __init__(
        self,
        repository: RecurringOrderRepository,
        sequence_service: SequenceService,
        dispatcher: NotificationDispatcher,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ):
        self._repository = repository
        self._sequence = sequence_service
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    def create_recurring_order(
        self, supplier_id: str, spec: dict[str, Any],
    ) -> RecurringOrder:
        """Validate ``spec`` and store a new ACTIVE recurring order.

        ``start_date`` defaults to today and may not be in the past.  The
        first execution is on ``start_date``.

        Raises:
            RecurringOrderValidationError: With every field problem found.
        """
        errors: FieldErrors = []
        today = self._clock.today()
        if not isinstance(spec, dict):
            raise RecurringOrderValidationError(
                [field_error("spec", "INVALID_TYPE", "must be an object")]
            )

        name = parse_name(spec.get("name"), errors)
        description = parse_optional_text(spec.get("description"), "description", errors)
        warehouse = parse_enum(Warehouse, spec.get("warehouse"), "warehouse", errors)
        currency = parse_currency(spec.get("currency", "USD"), errors)
        schedule = parse_schedule(spec.get("frequency"), spec.get("interval", 1), errors)
        start_date = today
        if spec.get("start_date") is not None:
            start_date = parse_date(spec["start_date"], "start_date", errors)
            if start_date is not None and start_date < today:
                errors.append(field_error(
                    "start_date", "IN_PAST", "must not be in the past",
                ))
        template = parse_template(spec.get("template"), errors)
        policy = parse_policy(
            spec.get("policy"),
            errors,
            base=ApprovalPolicy(max_retries=self._config.default_max_retries),
        )
        notifications = parse_notification_settings(
            spec.get("notification_settings"), errors, base=NotificationSettings(),
        )
        tags = parse_tags(spec.get("tags"), errors)
        custom_fields = parse_custom_fields(spec.get("custom_fields"), errors)
        unknown = set(spec) - _UPDATABLE_FIELDS
        for key in sorted(unknown):
            errors.append(field_error(key, "UNKNOWN_FIELD", "is not a recurring order field"))

        if errors:
            logger.info(
                "recurring_order_validation_failed",
                extra={"supplier_id": supplier_id, "fields": [e["field"] for e in errors]},
            )
            raise RecurringOrderValidationError(errors)

        frequency, interval = schedule
        now = self._clock.now()
        model = RecurringOrderModel(
            supplier_id=supplier_id,
            reference=self._sequence.next_reference(),
            name=name,
            description=description,
            warehouse=warehouse.value,
            currency=currency,
            frequency=frequency.value,
            interval=interval,
            start_date=start_date,
            next_execution_date=first_execution_date(frequency, interval, start_date, today),
            status=RecurringOrderStatus.ACTIVE.value,
            template=template.to_dict(),
            notification_settings=notifications.to_dict(),
            custom_fields=custom_fields,
            total_executions=0,
            successful_executions=0,
            created_at=now,
            updated_at=now,
        )
        model.apply_policy(policy)
        model.set_tags(tags)
        self._repository.add_order(model)

        order = model.to_dto()
        with LogContext.bind(recurring_order_id=order.id, supplier_id=supplier_id):
            logger.info(
                "recurring_order_created",
                extra={
                    "reference": order.reference,
                    "frequency": frequency.value,
                    "interval": interval,
                    "next_execution_date": order.next_execution_date,
                },
            )
            self._dispatcher.dispatch_order_created(order)
        return order

    def update_recurring_order(
        self, recurring_order_id: UUID, supplier_id: str, patch: dict[str, Any],
    ) -> RecurringOrder:
        """Apply a partial update.

        Template, tags and custom fields are replaced; policy and
        notification settings are merged key by key.  Changing frequency,
        interval or start date recomputes ``next_execution_date``.

        Raises:
            RecurringOrderNotFoundError, RecurringOrderAccessDeniedError,
            RecurringOrderValidationError.
        """
        model = self._repository.get_owned_order(
            recurring_order_id, supplier_id, for_update=True,
        )
        errors: FieldErrors = []
        if not isinstance(patch, dict):
            raise RecurringOrderValidationError(
                [field_error("patch", "INVALID_TYPE", "must be an object")]
            )
        if model.status == RecurringOrderStatus.CANCELLED.value:
            raise RecurringOrderValidationError([field_error(
                "status", "CANCELLED", "cancelled recurring orders cannot be modified",
            )])
        if "status" in patch:
            errors.append(field_error(
                "status", "READ_ONLY", "use pause, resume or cancel to change status",
            ))
        for key in sorted(set(patch) - _UPDATABLE_FIELDS - {"status"}):
            errors.append(field_error(key, "UNKNOWN_FIELD", "is not a recurring order field"))

        current = model.to_dto()
        changes: dict[str, Any] = {}
        if "name" in patch:
            changes["name"] = parse_name(patch["name"], errors)
        if "description" in patch:
            changes["description"] = parse_optional_text(
                patch["description"], "description", errors,
            )
        if "warehouse" in patch:
            warehouse = parse_enum(Warehouse, patch["warehouse"], "warehouse", errors)
            changes["warehouse"] = warehouse.value if warehouse else None
        if "currency" in patch:
            changes["currency"] = parse_currency(patch["currency"], errors)

        schedule_changed = bool({"frequency", "interval", "start_date"} & set(patch))
        frequency, interval, start_date = current.frequency, current.interval, current.start_date
        if "frequency" in patch or "interval" in patch:
            parsed = parse_schedule(
                patch.get("frequency", current.frequency),
                patch.get("interval", current.interval),
                errors,
            )
            if parsed is not None:
                frequency, interval = parsed
        if "start_date" in patch:
            parsed_start = parse_date(patch["start_date"], "start_date", errors)
            if parsed_start is not None:
                if parsed_start < self._clock.today() and parsed_start != current.start_date:
                    errors.append(field_error(
                        "start_date", "IN_PAST", "must not be in the past",
                    ))
                start_date = parsed_start

        template = policy = notifications = tags = custom_fields = None
        if "template" in patch:
            template = parse_template(patch["template"], errors)
        if "policy" in patch:
            policy = parse_policy(patch["policy"], errors, base=current.policy)
        if "notification_settings" in patch:
            notifications = parse_notification_settings(
                patch["notification_settings"], errors, base=current.notification_settings,
            )
        if "tags" in patch:
            tags = parse_tags(patch["tags"], errors)
        if "custom_fields" in patch:
            custom_fields = parse_custom_fields(patch["custom_fields"], errors)

        if errors:
            logger.info(
                "recurring_order_validation_failed",
                extra={
                    "recurring_order_id": str(recurring_order_id),
                    "fields": [e["field"] for e in errors],
                },
            )
            raise RecurringOrderValidationError(errors)

        for attr, value in changes.items():
            setattr(model, attr, value)
        if schedule_changed:
            model.frequency = frequency.value
            model.interval = interval
            model.start_date = start_date
            model.next_execution_date = first_execution_date(
                frequency, interval, start_date, self._clock.today(),
            )
        if template is not None:
            model.template = template.to_dict()
        if policy is not None:
            model.apply_policy(policy)
        if notifications is not None:
            model.notification_settings = notifications.to_dict()
        if tags is not None:
            model.set_tags(tags)
        if custom_fields is not None:
            model.custom_fields = custom_fields
        self._repository.save_order(model)

        logger.info(
            "recurring_order_updated",
            extra={
                "recurring_order_id": str(model.id),
                "fields": sorted(patch),
                "next_execution_date": model.next_execution_date,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_recurring_order(self, recurring_order_id: UUID, supplier_id: str) -> RecurringOrder:
        return self._repository.get_owned_order(recurring_order_id, supplier_id).to_dto()

    def list_recurring_orders(
        self,
        supplier_id: str,
        filters: RecurringOrderFilters | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> RecurringOrderPage:
        """One page of the supplier's orders, newest first.

        ``limit`` defaults to the configured page size and is capped at the
        configured maximum.
        """
        errors: FieldErrors = []
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            errors.append(field_error("offset", "OUT_OF_RANGE", "must be a non-negative integer"))
        if limit is None:
            limit = self._config.default_page_limit
        elif isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            errors.append(field_error("limit", "OUT_OF_RANGE", "must be a positive integer"))
        if errors:
            raise RecurringOrderValidationError(errors)

        limit = min(limit, self._config.max_page_limit)
        rows, total = self._repository.list_orders(
            supplier_id, filters or RecurringOrderFilters(), offset, limit,
        )
        return RecurringOrderPage(
            orders=tuple(row.to_dto() for row in rows),
            total=total,
            offset=offset,
            limit=limit,
        )

    def list_executions(
        self, recurring_order_id: UUID, supplier_id: str,
    ) -> list[OrderExecution]:
        """Execution history, newest first."""
        model = self._repository.get_owned_order(recurring_order_id, supplier_id)
        return [e.to_dto() for e in self._repository.list_executions(model.id)]

    def get_execution(self, execution_id: UUID, supplier_id: str) -> OrderExecution:
        execution = self._repository.get_execution(execution_id)
        self._repository.get_owned_order(execution.recurring_order_id, supplier_id)
        return execution.to_dto()

    def list_notifications(
        self, recurring_order_id: UUID, supplier_id: str,
    ) -> list[NotificationIntent]:
        model = self._repository.get_owned_order(recurring_order_id, supplier_id)
        return self._dispatcher.list_intents(model.id)

    def list_upcoming_executions(
        self,
        supplier_id: str,
        days: int = 7,
        include_overdue: bool = True,
        warehouse: Warehouse | str | None = None,
    ) -> UpcomingExecutions:
        """Forecast of the supplier's ACTIVE orders due within ``days``."""
        errors: FieldErrors = []
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            errors.append(field_error("days", "OUT_OF_RANGE", "must be a non-negative integer"))
        wh = None
        if warehouse is not None:
            wh = parse_enum(Warehouse, warehouse, "warehouse", errors)
        if errors:
            raise RecurringOrderValidationError(errors)

        rows = self._repository.active_orders(
            supplier_id=supplier_id, warehouse=wh.value if wh else None,
        )
        return upcoming_executions(
            (row.to_dto() for row in rows),
            self._clock.today(),
            days=days,
            include_overdue=include_overdue,
            due_soon_days=self._config.due_soon_days,
        )

    def schedule_health(self, upcoming_days: int = 7) -> ScheduleHealth:
        """Operator view across every supplier: schedules, outcomes, alerts."""
        valid = isinstance(upcoming_days, int) and not isinstance(upcoming_days, bool)
        if not valid or upcoming_days < 0:
            raise RecurringOrderValidationError([
                field_error("upcoming_days", "OUT_OF_RANGE", "must be a non-negative integer"),
            ])
        health = schedule_health(
            self._repository.order_activity(),
            self._repository.execution_activity(),
            self._clock.today(),
            upcoming_days=upcoming_days,
        )
        logger.info(
            "schedule_health_computed",
            extra={
                "active_schedules": health.active_schedules,
                "executions_today": health.executions_today,
                "alert_count": health.alert_count,
            },
        )
        return health

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def pause_recurring_order(self, recurring_order_id: UUID, supplier_id: str) -> RecurringOrder:
        return self._transition(recurring_order_id, supplier_id, RecurringOrderStatus.PAUSED)

    def resume_recurring_order(self, recurring_order_id: UUID, supplier_id: str) -> RecurringOrder:
        """Reactivate a paused order.  A next date in the past is caught up."""
        return self._transition(recurring_order_id, supplier_id, RecurringOrderStatus.ACTIVE)

    def cancel_recurring_order(self, recurring_order_id: UUID, supplier_id: str) -> RecurringOrder:
        return self._transition(recurring_order_id, supplier_id, RecurringOrderStatus.CANCELLED)

    def _transition(
        self,
        recurring_order_id: UUID,
        supplier_id: str,
        target: RecurringOrderStatus,
    ) -> RecurringOrder:
        model = self._repository.get_owned_order(
            recurring_order_id, supplier_id, for_update=True,
        )
        current = RecurringOrderStatus(model.status)
        if target not in RECURRING_ORDER_TRANSITIONS[current]:
            raise InvalidRecurringOrderTransitionError(
                str(model.id), current.value, target.value,
            )

        model.status = target.value
        today = self._clock.today()
        if target is RecurringOrderStatus.ACTIVE and model.next_execution_date < today:
            model.next_execution_date = first_execution_date(
                Frequency(model.frequency), model.interval, model.start_date, today,
            )
        self._repository.save_order(model)

        logger.info(
            "recurring_order_status_changed",
            extra={
                "recurring_order_id": str(model.id),
                "from_status": current.value,
                "to_status": target.value,
                "next_execution_date": model.next_execution_date,
            },
        )
        return model.to_dto()
