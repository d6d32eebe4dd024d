"""
Engine configuration (``recurring_orders.config``).

Responsibility
--------------
Loads the engine's tunables (retry backoff, price tolerances, lease TTL,
scheduler cadence, pagination limits) from a YAML file into a frozen
``EngineConfig``.  Every key is optional; missing keys fall back to the
dataclass defaults.

Failure modes
-------------
* Missing file -> ``EngineConfigError``.
* Malformed YAML, unknown section or key, or an out-of-range value ->
  ``EngineConfigError``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from procurement_kernel.exceptions import EngineConfigError
from recurring_orders.domain.retry import MAX_RETRIES_LIMIT, RetryPolicy


@dataclass(frozen=True)
class EngineConfig:
    # retry
    retry_base_delay_seconds: int = 60
    retry_max_delay_seconds: int = 3600
    default_max_retries: int = 3
    # pricing
    price_tolerance: Decimal = Decimal("0.01")
    price_change_issue_threshold: Decimal = Decimal("0.10")
    # execution
    lease_ttl_seconds: int = 300
    # scheduler
    tick_interval_seconds: float = 60.0
    scheduler_batch_size: int = 50
    # listing
    default_page_limit: int = 20
    max_page_limit: int = 100
    # upcoming executions
    due_soon_days: int = 3
    # logging
    log_level: str = "INFO"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
        )


# YAML section -> {yaml key: EngineConfig field}
_SECTIONS: dict[str, dict[str, str]] = {
    "retry": {
        "base_delay_seconds": "retry_base_delay_seconds",
        "max_delay_seconds": "retry_max_delay_seconds",
        "default_max_retries": "default_max_retries",
    },
    "pricing": {
        "tolerance": "price_tolerance",
        "change_issue_threshold": "price_change_issue_threshold",
    },
    "execution": {
        "lease_ttl_seconds": "lease_ttl_seconds",
    },
    "scheduler": {
        "tick_interval_seconds": "tick_interval_seconds",
        "batch_size": "scheduler_batch_size",
    },
    "listing": {
        "default_limit": "default_page_limit",
        "max_limit": "max_page_limit",
    },
    "upcoming": {
        "due_soon_days": "due_soon_days",
    },
    "logging": {
        "level": "log_level",
    },
}

_FIELD_TYPES = {f.name: f.type for f in fields(EngineConfig)}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path) as fh:
        data = yaml.safe_load(fh)
    return data or {}


def _coerce(source: str, name: str, value: Any) -> Any:
    kind = _FIELD_TYPES[name]
    try:
        if kind == "Decimal":
            return Decimal(str(value))
        if kind == "int":
            if isinstance(value, bool):
                raise TypeError("boolean is not an integer")
            return int(value)
        if kind == "float":
            return float(value)
        return str(value)
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise EngineConfigError(source, f"{name}: {exc}") from exc


def _validate(source: str, config: EngineConfig) -> None:
    try:
        config.retry_policy
    except ValueError as exc:
        raise EngineConfigError(source, str(exc)) from exc
    if not 0 <= config.default_max_retries <= MAX_RETRIES_LIMIT:
        raise EngineConfigError(
            source, f"default_max_retries must be between 0 and {MAX_RETRIES_LIMIT}"
        )
    if config.price_tolerance < 0 or config.price_change_issue_threshold < 0:
        raise EngineConfigError(source, "price tolerances must be non-negative")
    if config.lease_ttl_seconds <= 0:
        raise EngineConfigError(source, "lease_ttl_seconds must be positive")
    if config.tick_interval_seconds <= 0 or config.scheduler_batch_size <= 0:
        raise EngineConfigError(source, "scheduler settings must be positive")
    if not 0 < config.default_page_limit <= config.max_page_limit:
        raise EngineConfigError(source, "default_limit must be in (0, max_limit]")
    if config.due_soon_days < 0:
        raise EngineConfigError(source, "due_soon_days must be non-negative")


def engine_config_from_dict(data: dict[str, Any], source: str = "<dict>") -> EngineConfig:
    """Build an EngineConfig from the sectioned YAML structure."""
    values: dict[str, Any] = {}
    for section, entries in data.items():
        mapping = _SECTIONS.get(section)
        if mapping is None:
            raise EngineConfigError(source, f"unknown section {section!r}")
        if not isinstance(entries, dict):
            raise EngineConfigError(source, f"section {section!r} must be a mapping")
        for key, value in entries.items():
            if key not in mapping:
                raise EngineConfigError(source, f"unknown key {section}.{key}")
            name = mapping[key]
            values[name] = _coerce(source, name, value)

    config = EngineConfig(**values)
    _validate(source, config)
    return config


def load_engine_config(path: str | Path | None = None) -> EngineConfig:
    """Load the engine configuration from ``path``, or defaults when None."""
    if path is None:
        return EngineConfig()
    path = Path(path)
    try:
        data = load_yaml_file(path)
    except FileNotFoundError as exc:
        raise EngineConfigError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise EngineConfigError(str(path), f"malformed YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise EngineConfigError(str(path), "top level must be a mapping")
    return engine_config_from_dict(data, source=str(path))
