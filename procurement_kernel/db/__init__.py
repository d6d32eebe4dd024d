"""Database layer: declarative base, column types, engine and sessions."""

from procurement_kernel.db.base import Base, TimestampedBase, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.db.types import UTCDateTime, round_money, validate_currency

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UTCDateTime",
    "create_tables",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "round_money",
    "session_scope",
    "validate_currency",
]
