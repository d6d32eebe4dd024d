"""
Request validators for recurring order create/update payloads.

Each ``parse_*`` function takes a raw value (as it arrives from an API
layer: strings, numbers, dicts, lists) and the running ``errors`` list.  It
returns the typed value, or ``None`` after appending one or more field
errors.  Callers collect every problem in one pass and raise
RecurringOrderValidationError once.

Field errors are ``{"field": ..., "code": ..., "message": ...}`` dicts;
nested fields use dotted paths with list indexes
(``template.items[2].quantity``).

Architecture: recurring_orders/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

from procurement_kernel.db.types import validate_currency
from procurement_kernel.exceptions import ScheduleError
from recurring_orders.domain.retry import MAX_RETRIES_LIMIT
from recurring_orders.domain.schedule import validate_schedule
from recurring_orders.domain.types import (
    ApprovalPolicy,
    BackorderBehavior,
    DeliveryAddress,
    Frequency,
    NotificationSettings,
    OrderTemplate,
    PaymentMethod,
    PaymentOptions,
    ShippingMethod,
    ShippingOptions,
    TemplateItem,
)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 200
TAG_MAX_LENGTH = 100
MAX_TEMPLATE_ITEMS = 500

E = TypeVar("E", bound=Enum)

FieldErrors = list[dict[str, str]]


def field_error(field: str, code: str, message: str) -> dict[str, str]:
    return {"field": field, "code": code, "message": message}


# -----------------------------------------------------------------------------
# Scalars
# -----------------------------------------------------------------------------


def parse_enum(
    enum_cls: type[E], value: Any, field: str, errors: FieldErrors,
) -> E | None:
    """Case-insensitive enum lookup by value."""
    if isinstance(value, enum_cls):
        return value
    if value is None:
        errors.append(field_error(field, "REQUIRED", f"{field} is required"))
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors.append(field_error(field, "INVALID_CHOICE", f"must be one of: {allowed}"))
        return None


def parse_decimal(
    value: Any,
    field: str,
    errors: FieldErrors,
    *,
    positive: bool = False,
) -> Decimal | None:
    """Non-negative (or strictly positive) decimal.  Floats go through str."""
    if isinstance(value, bool):
        errors.append(field_error(field, "INVALID_TYPE", "must be a number"))
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        errors.append(field_error(field, "INVALID_TYPE", "must be a number"))
        return None
    if not amount.is_finite():
        errors.append(field_error(field, "INVALID_TYPE", "must be a finite number"))
        return None
    if positive and amount <= 0:
        errors.append(field_error(field, "OUT_OF_RANGE", "must be greater than 0"))
        return None
    if amount < 0:
        errors.append(field_error(field, "OUT_OF_RANGE", "must not be negative"))
        return None
    return amount


def parse_int(
    value: Any,
    field: str,
    errors: FieldErrors,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(field_error(field, "INVALID_TYPE", "must be an integer"))
        return None
    if minimum is not None and value < minimum:
        errors.append(field_error(field, "OUT_OF_RANGE", f"must be at least {minimum}"))
        return None
    if maximum is not None and value > maximum:
        errors.append(field_error(field, "OUT_OF_RANGE", f"must be at most {maximum}"))
        return None
    return value


def parse_bool(value: Any, field: str, errors: FieldErrors) -> bool | None:
    if not isinstance(value, bool):
        errors.append(field_error(field, "INVALID_TYPE", "must be true or false"))
        return None
    return value


def parse_date(value: Any, field: str, errors: FieldErrors) -> date | None:
    """``date`` objects or ISO ``YYYY-MM-DD`` strings."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    errors.append(field_error(field, "INVALID_DATE", "must be a date (YYYY-MM-DD)"))
    return None


def parse_text(
    value: Any,
    field: str,
    errors: FieldErrors,
    *,
    min_length: int = 1,
    max_length: int | None = None,
) -> str | None:
    if not isinstance(value, str) or len(value.strip()) < min_length:
        if min_length > 1:
            message = f"must be at least {min_length} characters"
        else:
            message = f"{field} is required"
        errors.append(field_error(field, "REQUIRED", message))
        return None
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        errors.append(
            field_error(field, "TOO_LONG", f"must be at most {max_length} characters")
        )
        return None
    return text


def parse_optional_text(value: Any, field: str, errors: FieldErrors) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append(field_error(field, "INVALID_TYPE", "must be a string"))
        return None
    return value.strip() or None


def parse_name(value: Any, errors: FieldErrors) -> str | None:
    return parse_text(
        value, "name", errors, min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH,
    )


def parse_currency(value: Any, errors: FieldErrors) -> str | None:
    try:
        return validate_currency(value if isinstance(value, str) else "")
    except ValueError:
        errors.append(field_error("currency", "INVALID_CURRENCY", "must be an ISO 4217 code"))
        return None


def parse_schedule(
    frequency: Any, interval: Any, errors: FieldErrors,
) -> tuple[Frequency, int] | None:
    freq = parse_enum(Frequency, frequency, "frequency", errors)
    if isinstance(interval, bool) or not isinstance(interval, int):
        errors.append(field_error("interval", "INVALID_TYPE", "must be an integer"))
        return None
    if freq is None:
        return None
    try:
        validate_schedule(freq, interval)
    except ScheduleError as exc:
        errors.append(field_error("interval", "OUT_OF_RANGE", exc.reason))
        return None
    return freq, interval


# -----------------------------------------------------------------------------
# Template
# -----------------------------------------------------------------------------


def _require_mapping(value: Any, field: str, errors: FieldErrors) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        errors.append(field_error(field, "INVALID_TYPE", "must be an object"))
        return None
    return value


def parse_item(data: Any, field: str, errors: FieldErrors) -> TemplateItem | None:
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)

    product_id = parse_text(raw.get("product_id"), f"{field}.product_id", errors)
    quantity = parse_int(raw.get("quantity"), f"{field}.quantity", errors, minimum=1)
    unit_price = None
    if raw.get("unit_price") is not None:
        unit_price = parse_decimal(raw["unit_price"], f"{field}.unit_price", errors)

    behavior = BackorderBehavior.ALLOW
    if raw.get("backorder_behavior") is not None:
        behavior = parse_enum(
            BackorderBehavior, raw["backorder_behavior"], f"{field}.backorder_behavior", errors,
        )

    min_quantity = max_quantity = None
    if raw.get("min_quantity") is not None:
        min_quantity = parse_int(
            raw["min_quantity"], f"{field}.min_quantity", errors, minimum=1,
        )
    if raw.get("max_quantity") is not None:
        max_quantity = parse_int(
            raw["max_quantity"], f"{field}.max_quantity", errors, minimum=1,
        )
    if (
        min_quantity is not None
        and max_quantity is not None
        and min_quantity > max_quantity
    ):
        errors.append(field_error(
            f"{field}.max_quantity", "OUT_OF_RANGE", "must be >= min_quantity",
        ))

    substitutes = raw.get("substitute_product_ids") or []
    if not isinstance(substitutes, (list, tuple)) or not all(
        isinstance(s, str) and s for s in substitutes
    ):
        errors.append(field_error(
            f"{field}.substitute_product_ids", "INVALID_TYPE",
            "must be a list of product ids",
        ))

    sku = parse_optional_text(raw.get("sku"), f"{field}.sku", errors)
    name = parse_optional_text(raw.get("name"), f"{field}.name", errors)

    flags = {}
    for flag in ("use_dynamic_pricing", "allow_substitutions", "allow_quantity_adjustment"):
        if raw.get(flag) is not None:
            flags[flag] = parse_bool(raw[flag], f"{field}.{flag}", errors)

    if len(errors) > start:
        return None
    return TemplateItem(
        product_id=product_id,
        quantity=quantity,
        sku=sku,
        name=name,
        unit_price=unit_price,
        substitute_product_ids=tuple(substitutes),
        backorder_behavior=behavior,
        min_quantity=min_quantity,
        max_quantity=max_quantity,
        **flags,
    )


def parse_address(data: Any, field: str, errors: FieldErrors) -> DeliveryAddress | None:
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)
    values: dict[str, Any] = {}
    for name in DeliveryAddress.REQUIRED_FIELDS:
        values[name] = parse_text(raw.get(name), f"{field}.{name}", errors)
    for name in ("company", "address2", "state", "phone", "email"):
        values[name] = parse_optional_text(raw.get(name), f"{field}.{name}", errors)
    if values["email"] is not None and "@" not in values["email"]:
        errors.append(field_error(f"{field}.email", "INVALID_EMAIL", "must be an email address"))
    if len(errors) > start:
        return None
    return DeliveryAddress(**values)


def parse_shipping(data: Any, field: str, errors: FieldErrors) -> ShippingOptions | None:
    if data is None:
        return ShippingOptions()
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)
    method = ShippingMethod.STANDARD
    if raw.get("method") is not None:
        method = parse_enum(ShippingMethod, raw["method"], f"{field}.method", errors)
    cost = None
    if raw.get("estimated_cost") is not None:
        cost = parse_decimal(raw["estimated_cost"], f"{field}.estimated_cost", errors)
    flags = {}
    for flag in (
        "signature_required",
        "insurance_required",
        "include_packing_slip",
        "include_estimate_in_total",
    ):
        if raw.get(flag) is not None:
            flags[flag] = parse_bool(raw[flag], f"{field}.{flag}", errors)
    if len(errors) > start:
        return None
    return ShippingOptions(method=method, estimated_cost=cost, **flags)


def parse_payment(data: Any, field: str, errors: FieldErrors) -> PaymentOptions | None:
    if data is None:
        return PaymentOptions()
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)
    method = PaymentMethod.NET_TERMS
    if raw.get("method") is not None:
        method = parse_enum(PaymentMethod, raw["method"], f"{field}.method", errors)
    terms = parse_optional_text(raw.get("payment_terms"), f"{field}.payment_terms", errors)
    po_number = parse_optional_text(raw.get("po_number"), f"{field}.po_number", errors)
    if len(errors) > start:
        return None
    return PaymentOptions(method=method, payment_terms=terms, po_number=po_number)


def parse_template(data: Any, errors: FieldErrors, field: str = "template") -> OrderTemplate | None:
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)

    raw_items = raw.get("items")
    items: list[TemplateItem] = []
    if not isinstance(raw_items, list) or not raw_items:
        errors.append(field_error(
            f"{field}.items", "REQUIRED", "at least one item is required",
        ))
    elif len(raw_items) > MAX_TEMPLATE_ITEMS:
        errors.append(field_error(
            f"{field}.items", "TOO_MANY", f"at most {MAX_TEMPLATE_ITEMS} items",
        ))
    else:
        for index, raw_item in enumerate(raw_items):
            item = parse_item(raw_item, f"{field}.items[{index}]", errors)
            if item is not None:
                items.append(item)
        seen: set[str] = set()
        for index, item in enumerate(items):
            if item.product_id in seen:
                errors.append(field_error(
                    f"{field}.items[{index}].product_id", "DUPLICATE",
                    f"product {item.product_id} appears more than once",
                ))
            seen.add(item.product_id)

    address = parse_address(raw.get("delivery_address"), f"{field}.delivery_address", errors)
    shipping = parse_shipping(raw.get("shipping"), f"{field}.shipping", errors)
    payment = parse_payment(raw.get("payment"), f"{field}.payment", errors)
    instructions = parse_optional_text(
        raw.get("special_instructions"), f"{field}.special_instructions", errors,
    )
    notes = parse_optional_text(raw.get("notes"), f"{field}.notes", errors)

    if len(errors) > start:
        return None
    return OrderTemplate(
        items=tuple(items),
        delivery_address=address,
        shipping=shipping,
        payment=payment,
        special_instructions=instructions,
        notes=notes,
    )


# -----------------------------------------------------------------------------
# Policy, notifications, metadata
# -----------------------------------------------------------------------------


def parse_policy(
    data: Any, errors: FieldErrors, *, base: ApprovalPolicy, field: str = "policy",
) -> ApprovalPolicy | None:
    """Overlay ``data`` on ``base``.  Missing keys keep the base value."""
    if data is None:
        return base
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)

    values: dict[str, Any] = {
        "auto_approve": base.auto_approve,
        "approval_threshold": base.approval_threshold,
        "max_order_value": base.max_order_value,
        "auto_accept_price_changes": base.auto_accept_price_changes,
        "max_retries": base.max_retries,
    }
    for flag in ("auto_approve", "auto_accept_price_changes"):
        if flag in raw:
            values[flag] = parse_bool(raw[flag], f"{field}.{flag}", errors)
    for amount in ("approval_threshold", "max_order_value"):
        if amount in raw:
            values[amount] = (
                None if raw[amount] is None
                else parse_decimal(raw[amount], f"{field}.{amount}", errors, positive=True)
            )
    if "max_retries" in raw:
        values["max_retries"] = parse_int(
            raw["max_retries"], f"{field}.max_retries", errors,
            minimum=0, maximum=MAX_RETRIES_LIMIT,
        )

    if len(errors) > start:
        return None
    threshold, ceiling = values["approval_threshold"], values["max_order_value"]
    if threshold is not None and ceiling is not None and threshold > ceiling:
        errors.append(field_error(
            f"{field}.approval_threshold", "OUT_OF_RANGE",
            "must not exceed max_order_value",
        ))
        return None
    return ApprovalPolicy(**values)


def parse_notification_settings(
    data: Any,
    errors: FieldErrors,
    *,
    base: NotificationSettings,
    field: str = "notification_settings",
) -> NotificationSettings | None:
    """Overlay ``data`` on ``base``.  Missing keys keep the base value."""
    if data is None:
        return base
    raw = _require_mapping(data, field, errors)
    if raw is None:
        return None
    start = len(errors)
    merged = {**base.to_dict(), **raw}

    for channel in ("email", "sms"):
        value = merged.get(channel) or []
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(v, str) and v for v in value
        ):
            errors.append(field_error(
                f"{field}.{channel}", "INVALID_TYPE", "must be a list of strings",
            ))
        elif channel == "email" and any("@" not in v for v in value):
            errors.append(field_error(
                f"{field}.email", "INVALID_EMAIL", "must contain email addresses",
            ))

    webhook = merged.get("webhook_url")
    if webhook is not None and (
        not isinstance(webhook, str) or not webhook.startswith(("http://", "https://"))
    ):
        errors.append(field_error(
            f"{field}.webhook_url", "INVALID_URL", "must be an http(s) URL",
        ))

    for flag in (
        "on_order_created",
        "on_order_success",
        "on_order_failure",
        "on_inventory_issue",
        "on_price_change",
        "on_approval_required",
        "send_reminders",
    ):
        if flag in raw:
            parse_bool(raw[flag], f"{field}.{flag}", errors)

    reminder_days = merged.get("reminder_days") or []
    if not isinstance(reminder_days, (list, tuple)) or not all(
        isinstance(d, int) and not isinstance(d, bool) and d >= 1 for d in reminder_days
    ):
        errors.append(field_error(
            f"{field}.reminder_days", "INVALID_TYPE",
            "must be a list of positive day counts",
        ))

    if len(errors) > start:
        return None
    return NotificationSettings.from_dict(merged)


def parse_tags(value: Any, errors: FieldErrors) -> tuple[str, ...] | None:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        errors.append(field_error("tags", "INVALID_TYPE", "must be a list of strings"))
        return None
    start = len(errors)
    tags: list[str] = []
    for index, tag in enumerate(value):
        text = parse_text(tag, f"tags[{index}]", errors, max_length=TAG_MAX_LENGTH)
        if text is not None and text not in tags:
            tags.append(text)
    if len(errors) > start:
        return None
    return tuple(tags)


def parse_custom_fields(value: Any, errors: FieldErrors) -> dict[str, Any] | None:
    if value is None:
        return {}
    return _require_mapping(value, "custom_fields", errors)
