"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the management API, the scheduler, the execution coordinator) must
react to errors by type, not by parsing messages:

  1. Every error has a TYPED exception class
  2. Every exception has a CODE class attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA as attributes

Example:
    try:
        service.update_recurring_order(order_id, supplier_id, patch)
    except RecurringOrderAccessDeniedError as e:
        api_response(status=403, code=e.code, order=e.recurring_order_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- ValidationError
    |   +-- RecurringOrderValidationError
    |   +-- ScheduleError
    |
    +-- NotFoundError
    |   +-- RecurringOrderNotFoundError
    |   +-- ExecutionNotFoundError
    |
    +-- RecurringOrderAccessDeniedError
    |
    +-- StateError
    |   +-- InvalidRecurringOrderTransitionError
    |   +-- ApprovalNotPendingError
    |   +-- RetryNotAllowedError
    |
    +-- ConcurrencyError
    |   +-- ExecutionInProgressError
    |
    +-- CollaboratorError
    |   +-- PricingUnavailableError
    |   +-- InventoryUnavailableError
    |   +-- PlacementRejectedError        (permanent)
    |   +-- PlacementUnavailableError     (transient)
    |
    +-- EngineConfigError

===============================================================================
PROPAGATION
===============================================================================

The execution pipeline never lets CollaboratorError escape: every
collaborator failure becomes an issue on the OrderExecution record.  The
other categories surface to callers of the management operations.
Infrastructure errors (sqlalchemy.exc.*) are not wrapped and propagate as-is.
"""


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses carry a ``code`` class attribute.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ProcurementKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class RecurringOrderValidationError(ValidationError):
    """A create/update request failed validation.

    ``field_errors`` is a list of ``{"field": ..., "message": ...}`` dicts.
    """

    code: str = "RECURRING_ORDER_VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict]):
        self.field_errors = field_errors
        fields = ", ".join(err["field"] for err in field_errors)
        super().__init__(
            f"Recurring order validation failed: {len(field_errors)} error(s) ({fields})"
        )


class ScheduleError(ValidationError):
    """Frequency or interval cannot produce a schedule."""

    code: str = "SCHEDULE_ERROR"

    def __init__(self, frequency: str, interval: int, reason: str):
        self.frequency = frequency
        self.interval = interval
        self.reason = reason
        super().__init__(f"Invalid schedule {frequency} x{interval}: {reason}")


# Lookup exceptions


class NotFoundError(ProcurementKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RecurringOrderNotFoundError(NotFoundError):
    """Recurring order with given ID was not found."""

    code: str = "RECURRING_ORDER_NOT_FOUND"

    def __init__(self, recurring_order_id: str):
        self.recurring_order_id = str(recurring_order_id)
        super().__init__(f"Recurring order not found: {recurring_order_id}")


class ExecutionNotFoundError(NotFoundError):
    """Order execution with given ID was not found."""

    code: str = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = str(execution_id)
        super().__init__(f"Order execution not found: {execution_id}")


class RecurringOrderAccessDeniedError(ProcurementKernelError):
    """The caller's supplier does not own the recurring order."""

    code: str = "RECURRING_ORDER_ACCESS_DENIED"

    def __init__(self, recurring_order_id: str, supplier_id: str):
        self.recurring_order_id = str(recurring_order_id)
        self.supplier_id = str(supplier_id)
        super().__init__(
            f"Supplier {supplier_id} does not own recurring order {recurring_order_id}"
        )


# State-machine exceptions


class StateError(ProcurementKernelError):
    """Base exception for operations not allowed in the current state."""

    code: str = "STATE_ERROR"


class InvalidRecurringOrderTransitionError(StateError):
    """Requested status change is not a valid transition."""

    code: str = "INVALID_RECURRING_ORDER_TRANSITION"

    def __init__(self, recurring_order_id: str, from_status: str, to_status: str):
        self.recurring_order_id = str(recurring_order_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Recurring order {recurring_order_id} cannot move "
            f"from {from_status} to {to_status}"
        )


class ApprovalNotPendingError(StateError):
    """Approve/reject was requested for an execution not awaiting approval."""

    code: str = "APPROVAL_NOT_PENDING"

    def __init__(self, execution_id: str, status: str):
        self.execution_id = str(execution_id)
        self.status = status
        super().__init__(
            f"Execution {execution_id} is not awaiting approval (status {status})"
        )


class RetryNotAllowedError(StateError):
    """Execution is not in a retryable state."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, execution_id: str, reason: str):
        self.execution_id = str(execution_id)
        self.reason = reason
        super().__init__(f"Retry not allowed for execution {execution_id}: {reason}")


# Concurrency exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ExecutionInProgressError(ConcurrencyError):
    """Another invocation holds the execution lease for this recurring order."""

    code: str = "EXECUTION_IN_PROGRESS"

    def __init__(self, recurring_order_id: str, lease_expires_at: object = None):
        self.recurring_order_id = str(recurring_order_id)
        self.lease_expires_at = lease_expires_at
        super().__init__(
            f"An execution is already in progress for recurring order {recurring_order_id}"
        )


# Collaborator exceptions


class CollaboratorError(ProcurementKernelError):
    """Base exception raised by external collaborator adapters."""

    code: str = "COLLABORATOR_ERROR"
    retryable: bool = True


class PricingUnavailableError(CollaboratorError):
    """The pricing engine could not produce a price."""

    code: str = "PRICING_UNAVAILABLE"

    def __init__(self, product_id: str, reason: str = "pricing unavailable"):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Price unavailable for {product_id}: {reason}")


class InventoryUnavailableError(CollaboratorError):
    """The inventory checker could not answer."""

    code: str = "INVENTORY_UNAVAILABLE"

    def __init__(self, product_id: str, reason: str = "inventory unavailable"):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Inventory unavailable for {product_id}: {reason}")


class PlacementRejectedError(CollaboratorError):
    """The order-creation service permanently rejected the draft."""

    code: str = "PLACEMENT_REJECTED"
    retryable = False

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Order placement rejected: {reason}")


class PlacementUnavailableError(CollaboratorError):
    """The order-creation service failed transiently."""

    code: str = "PLACEMENT_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Order placement temporarily unavailable: {reason}")


# Configuration exceptions


class EngineConfigError(ProcurementKernelError):
    """Engine configuration file is missing or malformed."""

    code: str = "ENGINE_CONFIG_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid engine configuration ({source}): {reason}")
