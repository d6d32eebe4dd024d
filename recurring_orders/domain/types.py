"""
recurring_orders.domain.types -- Pure frozen dataclasses for recurring orders.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  ORM models convert to and from these DTOs; services
and collaborators only ever see DTOs.

Invariants enforced:
    - All DTOs are immutable snapshots.
    - ApprovalPolicy.requires_approval == (not auto_approve) or
      (approval_threshold is not None).
    - OrderExecution.is_terminal is the single definition of "terminal".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class Frequency(str, Enum):
    """Recurrence frequency of a recurring order."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class RecurringOrderStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


RECURRING_ORDER_TRANSITIONS: dict[RecurringOrderStatus, frozenset[RecurringOrderStatus]] = {
    RecurringOrderStatus.ACTIVE: frozenset({
        RecurringOrderStatus.PAUSED,
        RecurringOrderStatus.CANCELLED,
    }),
    RecurringOrderStatus.PAUSED: frozenset({
        RecurringOrderStatus.ACTIVE,
        RecurringOrderStatus.CANCELLED,
    }),
    RecurringOrderStatus.CANCELLED: frozenset(),  # Terminal
}


class ExecutionStatus(str, Enum):
    """Status of one execution attempt."""

    PENDING = "pending"  # Created, in flight, or awaiting approval
    SUCCESS = "success"  # Purchase order placed
    FAILED = "failed"  # Retry-pending or terminal, see OrderExecution.is_terminal


class Warehouse(str, Enum):
    US = "us"
    EU = "eu"
    JP = "jp"
    AU = "au"


class BackorderBehavior(str, Enum):
    """What to do with a line item when stock is short."""

    ALLOW = "allow"  # Keep the full quantity, flag an issue
    PARTIAL = "partial"  # Reduce to what is available
    REJECT = "reject"  # Fail the item
    SKIP = "skip"  # Leave the item out this cycle


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"
    FREIGHT = "freight"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    NET_TERMS = "net_terms"
    ACH = "ach"
    WIRE = "wire"


class AdjustmentType(str, Enum):
    PRICE = "price"
    QUANTITY = "quantity"
    SUBSTITUTION = "substitution"


class IssueType(str, Enum):
    INVENTORY = "inventory"
    PRICING = "pricing"
    VALIDATION = "validation"
    APPROVAL = "approval"
    PLACEMENT = "placement"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FailureKind(str, Enum):
    """Why an execution attempt failed."""

    VALIDATION = "validation"  # Inactive order, malformed template
    CEILING = "ceiling"  # Total above max_order_value
    INVENTORY = "inventory"  # Nothing could be resolved from stock
    PRICING = "pricing"  # Nothing could be priced
    PLACEMENT_TRANSIENT = "placement_transient"
    PLACEMENT_PERMANENT = "placement_permanent"
    APPROVAL_REJECTED = "approval_rejected"


RETRYABLE_FAILURES: frozenset[FailureKind] = frozenset({
    FailureKind.INVENTORY,
    FailureKind.PRICING,
    FailureKind.PLACEMENT_TRANSIENT,
})


class NotificationEvent(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_SUCCESS = "order_success"
    ORDER_FAILURE = "order_failure"
    INVENTORY_ISSUE = "inventory_issue"
    PRICE_CHANGE = "price_change"
    APPROVAL_REQUIRED = "approval_required"
    REMINDER = "reminder"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# Template DTOs
# =============================================================================


@dataclass(frozen=True)
class TemplateItem:
    """One standing line of a recurring order.

    ``unit_price`` is the last-known price; dynamic pricing compares against
    it and records a PRICE adjustment when the two differ.
    """

    product_id: str
    quantity: int
    sku: str | None = None
    name: str | None = None
    unit_price: Decimal | None = None
    use_dynamic_pricing: bool = False
    allow_substitutions: bool = False
    substitute_product_ids: tuple[str, ...] = ()
    backorder_behavior: BackorderBehavior = BackorderBehavior.ALLOW
    allow_quantity_adjustment: bool = False
    min_quantity: int | None = None
    max_quantity: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "sku": self.sku,
            "name": self.name,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "use_dynamic_pricing": self.use_dynamic_pricing,
            "allow_substitutions": self.allow_substitutions,
            "substitute_product_ids": list(self.substitute_product_ids),
            "backorder_behavior": self.backorder_behavior.value,
            "allow_quantity_adjustment": self.allow_quantity_adjustment,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateItem:
        price = data.get("unit_price")
        return cls(
            product_id=data["product_id"],
            quantity=int(data["quantity"]),
            sku=data.get("sku"),
            name=data.get("name"),
            unit_price=Decimal(str(price)) if price is not None else None,
            use_dynamic_pricing=bool(data.get("use_dynamic_pricing", False)),
            allow_substitutions=bool(data.get("allow_substitutions", False)),
            substitute_product_ids=tuple(data.get("substitute_product_ids") or ()),
            backorder_behavior=BackorderBehavior(
                data.get("backorder_behavior", BackorderBehavior.ALLOW.value)
            ),
            allow_quantity_adjustment=bool(data.get("allow_quantity_adjustment", False)),
            min_quantity=data.get("min_quantity"),
            max_quantity=data.get("max_quantity"),
        )


@dataclass(frozen=True)
class ShippingOptions:
    method: ShippingMethod = ShippingMethod.STANDARD
    signature_required: bool = False
    insurance_required: bool = False
    include_packing_slip: bool = True
    estimated_cost: Decimal | None = None
    include_estimate_in_total: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "signature_required": self.signature_required,
            "insurance_required": self.insurance_required,
            "include_packing_slip": self.include_packing_slip,
            "estimated_cost": (
                str(self.estimated_cost) if self.estimated_cost is not None else None
            ),
            "include_estimate_in_total": self.include_estimate_in_total,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShippingOptions:
        cost = data.get("estimated_cost")
        return cls(
            method=ShippingMethod(data.get("method", ShippingMethod.STANDARD.value)),
            signature_required=bool(data.get("signature_required", False)),
            insurance_required=bool(data.get("insurance_required", False)),
            include_packing_slip=bool(data.get("include_packing_slip", True)),
            estimated_cost=Decimal(str(cost)) if cost is not None else None,
            include_estimate_in_total=bool(data.get("include_estimate_in_total", False)),
        )


@dataclass(frozen=True)
class PaymentOptions:
    method: PaymentMethod = PaymentMethod.NET_TERMS
    payment_terms: str | None = None
    po_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "payment_terms": self.payment_terms,
            "po_number": self.po_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentOptions:
        return cls(
            method=PaymentMethod(data.get("method", PaymentMethod.NET_TERMS.value)),
            payment_terms=data.get("payment_terms"),
            po_number=data.get("po_number"),
        )


@dataclass(frozen=True)
class DeliveryAddress:
    name: str
    address1: str
    city: str
    postal_code: str
    country: str
    company: str | None = None
    address2: str | None = None
    state: str | None = None
    phone: str | None = None
    email: str | None = None

    REQUIRED_FIELDS = ("name", "address1", "city", "postal_code", "country")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "company": self.company,
            "address1": self.address1,
            "address2": self.address2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryAddress:
        return cls(
            name=data["name"],
            address1=data["address1"],
            city=data["city"],
            postal_code=data["postal_code"],
            country=data["country"],
            company=data.get("company"),
            address2=data.get("address2"),
            state=data.get("state"),
            phone=data.get("phone"),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class OrderTemplate:
    """Everything needed to build a purchase order draft, minus live prices."""

    items: tuple[TemplateItem, ...]
    delivery_address: DeliveryAddress
    shipping: ShippingOptions = field(default_factory=ShippingOptions)
    payment: PaymentOptions = field(default_factory=PaymentOptions)
    special_instructions: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "delivery_address": self.delivery_address.to_dict(),
            "shipping": self.shipping.to_dict(),
            "payment": self.payment.to_dict(),
            "special_instructions": self.special_instructions,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderTemplate:
        return cls(
            items=tuple(TemplateItem.from_dict(i) for i in data["items"]),
            delivery_address=DeliveryAddress.from_dict(data["delivery_address"]),
            shipping=ShippingOptions.from_dict(data.get("shipping") or {}),
            payment=PaymentOptions.from_dict(data.get("payment") or {}),
            special_instructions=data.get("special_instructions"),
            notes=data.get("notes"),
        )


# =============================================================================
# Policy / settings DTOs
# =============================================================================


@dataclass(frozen=True)
class ApprovalPolicy:
    """Standing approval and safety policy of a recurring order.

    ``approval_threshold`` forces manual approval above the amount even when
    ``auto_approve`` is set.  ``max_order_value`` is a hard ceiling: an
    execution above it fails, it is never routed to approval.
    """

    auto_approve: bool = True
    approval_threshold: Decimal | None = None
    max_order_value: Decimal | None = None
    auto_accept_price_changes: bool = True
    max_retries: int = 3

    @property
    def requires_approval(self) -> bool:
        """True when some executions may need manual sign-off."""
        return (not self.auto_approve) or self.approval_threshold is not None


@dataclass(frozen=True)
class NotificationSettings:
    email: tuple[str, ...] = ()
    sms: tuple[str, ...] = ()
    webhook_url: str | None = None
    on_order_created: bool = True
    on_order_success: bool = True
    on_order_failure: bool = True
    on_inventory_issue: bool = True
    on_price_change: bool = True
    on_approval_required: bool = True
    send_reminders: bool = False
    reminder_days: tuple[int, ...] = ()

    def is_enabled(self, event: NotificationEvent) -> bool:
        if event is NotificationEvent.REMINDER:
            return self.send_reminders
        return bool(getattr(self, f"on_{event.value}"))

    def recipients(self) -> list[tuple[NotificationChannel, tuple[str, ...]]]:
        """Configured (channel, recipients) pairs, skipping empty channels."""
        pairs: list[tuple[NotificationChannel, tuple[str, ...]]] = []
        if self.email:
            pairs.append((NotificationChannel.EMAIL, self.email))
        if self.sms:
            pairs.append((NotificationChannel.SMS, self.sms))
        if self.webhook_url:
            pairs.append((NotificationChannel.WEBHOOK, (self.webhook_url,)))
        return pairs

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": list(self.email),
            "sms": list(self.sms),
            "webhook_url": self.webhook_url,
            "on_order_created": self.on_order_created,
            "on_order_success": self.on_order_success,
            "on_order_failure": self.on_order_failure,
            "on_inventory_issue": self.on_inventory_issue,
            "on_price_change": self.on_price_change,
            "on_approval_required": self.on_approval_required,
            "send_reminders": self.send_reminders,
            "reminder_days": list(self.reminder_days),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationSettings:
        defaults = cls()
        return cls(
            email=tuple(data.get("email") or ()),
            sms=tuple(data.get("sms") or ()),
            webhook_url=data.get("webhook_url"),
            on_order_created=bool(data.get("on_order_created", defaults.on_order_created)),
            on_order_success=bool(data.get("on_order_success", defaults.on_order_success)),
            on_order_failure=bool(data.get("on_order_failure", defaults.on_order_failure)),
            on_inventory_issue=bool(
                data.get("on_inventory_issue", defaults.on_inventory_issue)
            ),
            on_price_change=bool(data.get("on_price_change", defaults.on_price_change)),
            on_approval_required=bool(
                data.get("on_approval_required", defaults.on_approval_required)
            ),
            send_reminders=bool(data.get("send_reminders", defaults.send_reminders)),
            reminder_days=tuple(int(d) for d in data.get("reminder_days") or ()),
        )


@dataclass(frozen=True)
class ExecutionStats:
    total_executions: int = 0
    successful_executions: int = 0
    total_order_value: Decimal = Decimal("0")

    @property
    def success_rate(self) -> Decimal:
        if not self.total_executions:
            return Decimal("0")
        return Decimal(self.successful_executions) / Decimal(self.total_executions)

    @property
    def average_order_value(self) -> Decimal:
        if not self.successful_executions:
            return Decimal("0")
        return self.total_order_value / Decimal(self.successful_executions)


@dataclass(frozen=True)
class RecurringOrder:
    """Immutable snapshot of a recurring order."""

    id: UUID
    supplier_id: str
    reference: str
    name: str
    warehouse: Warehouse
    frequency: Frequency
    interval: int
    start_date: date
    next_execution_date: date
    status: RecurringOrderStatus
    template: OrderTemplate
    policy: ApprovalPolicy = field(default_factory=ApprovalPolicy)
    notification_settings: NotificationSettings = field(
        default_factory=NotificationSettings
    )
    currency: str = "USD"
    description: str | None = None
    last_execution_date: date | None = None
    tags: tuple[str, ...] = ()
    custom_fields: dict[str, Any] = field(default_factory=dict)
    stats: ExecutionStats = field(default_factory=ExecutionStats)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is RecurringOrderStatus.ACTIVE

    @property
    def estimated_value(self) -> Decimal:
        """Template value at last-known prices (unpriced items count as 0)."""
        return sum(
            (
                (item.unit_price or Decimal("0")) * item.quantity
                for item in self.template.items
            ),
            Decimal("0"),
        )


# =============================================================================
# Execution DTOs
# =============================================================================


@dataclass(frozen=True)
class Adjustment:
    """An expected deviation from the template that was applied."""

    type: AdjustmentType
    item_id: str
    old_value: Decimal | int | str
    new_value: Decimal | int | str
    reason: str
    auto_approved: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "item_id": self.item_id,
            "old_value": str(self.old_value),
            "new_value": str(self.new_value),
            "reason": self.reason,
            "auto_approved": self.auto_approved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Adjustment:
        adj_type = AdjustmentType(data["type"])
        convert: Any = {
            AdjustmentType.PRICE: Decimal,
            AdjustmentType.QUANTITY: int,
            AdjustmentType.SUBSTITUTION: str,
        }[adj_type]
        return cls(
            type=adj_type,
            item_id=data["item_id"],
            old_value=convert(data["old_value"]),
            new_value=convert(data["new_value"]),
            reason=data["reason"],
            auto_approved=bool(data.get("auto_approved", True)),
        )


@dataclass(frozen=True)
class Issue:
    """A problem recorded during resolution, approval or placement."""

    type: IssueType
    severity: IssueSeverity
    message: str
    item_id: str | None = None
    attempt: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "item_id": self.item_id,
            "attempt": self.attempt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Issue:
        return cls(
            type=IssueType(data["type"]),
            severity=IssueSeverity(data["severity"]),
            message=data["message"],
            item_id=data.get("item_id"),
            attempt=int(data.get("attempt", 0)),
        )


@dataclass(frozen=True)
class ResolvedLine:
    """A concrete line of a draft order.

    ``template_product_id`` differs from ``product_id`` when a substitute
    was used.
    """

    product_id: str
    template_product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    sku: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class TemplateResolution:
    """Output of the template resolver for one attempt."""

    lines: tuple[ResolvedLine, ...]
    adjustments: tuple[Adjustment, ...] = ()
    issues: tuple[Issue, ...] = ()
    failed: bool = False
    failure_kind: FailureKind | None = None
    requires_review: bool = False

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class DraftOrder:
    """Resolved purchase order handed to the order-placement collaborator."""

    recurring_order_id: UUID
    execution_id: UUID
    supplier_id: str
    warehouse: Warehouse
    currency: str
    lines: tuple[ResolvedLine, ...]
    subtotal: Decimal
    shipping_estimate: Decimal
    total_value: Decimal
    delivery_address: DeliveryAddress
    shipping: ShippingOptions
    payment: PaymentOptions
    idempotency_key: str
    special_instructions: str | None = None

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class OrderExecution:
    """Immutable snapshot of an execution record.

    Retries continue on the same record: ``id`` is preserved and
    ``retry_count`` is incremented.
    """

    id: UUID
    recurring_order_id: UUID
    sequence: int
    status: ExecutionStatus
    scheduled_date: date
    retry_count: int = 0
    max_retries: int = 3
    executed_at: datetime | None = None
    next_retry_at: datetime | None = None
    awaiting_approval: bool = False
    approved_by: str | None = None
    approved_at: datetime | None = None
    order_id: str | None = None
    subtotal: Decimal = Decimal("0")
    shipping_estimate: Decimal = Decimal("0")
    total_value: Decimal = Decimal("0")
    item_count: int = 0
    adjustments: tuple[Adjustment, ...] = ()
    issues: tuple[Issue, ...] = ()
    failure_kind: FailureKind | None = None
    retryable: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        if self.status is ExecutionStatus.SUCCESS:
            return True
        if self.status is ExecutionStatus.FAILED:
            # A failure stays open only while a retry timer is armed
            return not self.retryable or self.next_retry_at is None
        return False

    @property
    def is_retry_pending(self) -> bool:
        return self.status is ExecutionStatus.FAILED and not self.is_terminal


@dataclass(frozen=True)
class NotificationIntent:
    """A request for the notification transport. No delivery semantics."""

    idempotency_key: str
    event: NotificationEvent
    channel: NotificationChannel
    recipients: tuple[str, ...]
    template_key: str
    payload: dict[str, Any]
    recurring_order_id: UUID
    execution_id: UUID | None = None
    id: UUID | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING


# =============================================================================
# Query DTOs
# =============================================================================


@dataclass(frozen=True)
class RecurringOrderFilters:
    """Filters for list queries. Empty collections mean "no filter"."""

    warehouses: tuple[Warehouse, ...] = ()
    frequencies: tuple[Frequency, ...] = ()
    statuses: tuple[RecurringOrderStatus, ...] = ()
    tags: tuple[str, ...] = ()  # Matches orders carrying ANY of the tags


@dataclass(frozen=True)
class RecurringOrderPage:
    orders: tuple[RecurringOrder, ...]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.orders) < self.total
