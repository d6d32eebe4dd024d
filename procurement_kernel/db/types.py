"""
Module: procurement_kernel.db.types
Responsibility: The timezone-safe datetime type and the money/currency
    helpers every subsystem shares.
Architecture position: Kernel > DB.  May be imported by models, domain and
    services.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  All monetary amounts are Decimal, and
      round_money() is the single rounding function for order totals.
    - Currency codes are 3-letter ISO 4217 codes (validate_currency()).
    - Datetimes are written as UTC and read back timezone-aware, including on
      SQLite which stores them without an offset.
"""

from datetime import timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Currencies suppliers can order in
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "AUD", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP", "HKD",
    "INR", "JPY", "KRW", "MXN", "NOK", "NZD", "PLN", "SEK", "SGD", "USD",
    "ZAR",
})


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    Guarantees:
        - Naive values are treated as UTC on bind; aware values are converted.
        - Loaded values always carry ``timezone.utc``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Example:
        round_money(Decimal("10.125")) -> Decimal("10.13")
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)


def to_decimal(value: object) -> Decimal:
    """Convert an int, str or Decimal amount to Decimal; floats go via str."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def validate_currency(code: str) -> str:
    """
    Validate and normalize a currency code.

    Raises:
        ValueError: If the code is not a known ISO 4217 code.
    """
    normalized = (code or "").strip().upper()
    if normalized not in ISO_4217_CURRENCIES:
        raise ValueError(f"Invalid currency code: {code!r}")
    return normalized

