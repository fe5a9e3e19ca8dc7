"""
Inventory settings (``inventory_kernel.config``).

Responsibility:
    Loads the YAML settings file, merges it over the packaged defaults and
    parses the result into frozen, self-validating dataclasses.
    ``get_settings()`` is the single runtime entry point and the only code in
    the kernel that reads environment variables.

Architecture position:
    Kernel > Config.  Imported by the engine bootstrap and the coordinator.
    Has no dependency on models, services or realtime.

Failure modes:
    - Missing settings file -> ``FileNotFoundError`` propagates.
    - Malformed YAML -> ``yaml.YAMLError`` propagates.
    - Out-of-range values -> ``ValueError`` from ``__post_init__``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from inventory_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_PATH_ENV = "INVENTORY_KERNEL_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    sqlite_busy_timeout_s: float = 30

    def __post_init__(self):
        if not self.url:
            raise ValueError("database.url must be set")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.sqlite_busy_timeout_s <= 0:
            raise ValueError("database.sqlite_busy_timeout_s must be positive")


@dataclass(frozen=True)
class LockingSettings:
    """Row-lock wait and retry policy for coordinator transactions."""

    lock_timeout_ms: int = 5000
    max_attempts: int = 3
    backoff_initial_ms: int = 25
    backoff_multiplier: float = 2.0
    backoff_max_ms: int = 500

    def __post_init__(self):
        if self.lock_timeout_ms <= 0:
            raise ValueError(f"locking.lock_timeout_ms must be positive, got {self.lock_timeout_ms}")
        if self.max_attempts < 1:
            raise ValueError(f"locking.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_multiplier < 1:
            raise ValueError("locking.backoff_multiplier must be >= 1")
        if self.backoff_initial_ms < 0 or self.backoff_max_ms < self.backoff_initial_ms:
            raise ValueError("locking backoff bounds are inconsistent")

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay_ms = self.backoff_initial_ms * (self.backoff_multiplier ** (attempt - 1))
        return min(delay_ms, self.backoff_max_ms) / 1000.0


@dataclass(frozen=True)
class CostingSettings:
    decimal_places: int = 2

    def __post_init__(self):
        if not 0 <= self.decimal_places <= 9:
            raise ValueError(f"costing.decimal_places must be 0..9, got {self.decimal_places}")


@dataclass(frozen=True)
class AlertSettings:
    """Severity bands for low_stock alerts, as available / reorder_point."""

    high_ratio: Decimal = Decimal("0.25")
    medium_ratio: Decimal = Decimal("0.50")

    def __post_init__(self):
        # YAML may hand us strings or floats
        object.__setattr__(self, "high_ratio", Decimal(str(self.high_ratio)))
        object.__setattr__(self, "medium_ratio", Decimal(str(self.medium_ratio)))
        if not Decimal("0") <= self.high_ratio <= self.medium_ratio <= Decimal("1"):
            raise ValueError(
                "alerts ratios must satisfy 0 <= high_ratio <= medium_ratio <= 1, "
                f"got high={self.high_ratio} medium={self.medium_ratio}"
            )


@dataclass(frozen=True)
class QuerySettings:
    default_page_size: int = 50
    max_page_size: int = 500
    reorder_suggestion_limit: int = 100

    def __post_init__(self):
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("queries.default_page_size must be within 1..max_page_size")
        if self.reorder_suggestion_limit < 1:
            raise ValueError("queries.reorder_suggestion_limit must be >= 1")


@dataclass(frozen=True)
class BroadcastSettings:
    # Connections with no client activity for this long are pruned by prune_idle()
    idle_timeout_s: float = 300.0

    def __post_init__(self):
        if self.idle_timeout_s <= 0:
            raise ValueError("broadcast.idle_timeout_s must be positive")


@dataclass(frozen=True)
class InventorySettings:
    """
    Complete kernel settings.

    Contract:
        Built either from YAML via ``load_settings`` or directly in tests
        with ``InventorySettings.with_defaults(...)``.

    Guarantees:
        Every section has validated itself; an instance is always usable.
    """

    database: DatabaseSettings
    locking: LockingSettings = field(default_factory=LockingSettings)
    costing: CostingSettings = field(default_factory=CostingSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    queries: QuerySettings = field(default_factory=QuerySettings)
    broadcast: BroadcastSettings = field(default_factory=BroadcastSettings)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventorySettings:
        return cls(
            database=DatabaseSettings(**data["database"]),
            locking=LockingSettings(**data.get("locking", {})),
            costing=CostingSettings(**data.get("costing", {})),
            alerts=AlertSettings(**data.get("alerts", {})),
            queries=QuerySettings(**data.get("queries", {})),
            broadcast=BroadcastSettings(**data.get("broadcast", {})),
            log_level=str(data.get("logging", {}).get("level", "INFO")).upper(),
        )

    @classmethod
    def with_defaults(cls, database_url: str, **overrides: Any) -> InventorySettings:
        """Packaged defaults with the database URL and any section objects replaced."""
        data = _load_yaml(_DEFAULTS_PATH)
        data["database"]["url"] = database_url
        settings = cls.from_dict(data)
        if overrides:
            settings = replace(settings, **overrides)
        return settings


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Path | str | None = None,
    database_url: str | None = None,
) -> InventorySettings:
    """
    Parse settings from ``path`` merged over the packaged defaults.

    Args:
        path: YAML settings file. When None only the defaults are used.
        database_url: Overrides ``database.url`` from any file.
    """
    data = _load_yaml(_DEFAULTS_PATH)
    if path is not None:
        data = _merge(data, _load_yaml(Path(path)))
    if database_url:
        data["database"]["url"] = database_url

    settings = InventorySettings.from_dict(data)
    logger.info(
        "settings_loaded",
        extra={
            "settings_path": str(path) if path is not None else None,
            "lock_timeout_ms": settings.locking.lock_timeout_ms,
            "max_attempts": settings.locking.max_attempts,
        },
    )
    return settings


def get_settings() -> InventorySettings:
    """
    The single runtime entry point for configuration.

    Reads ``INVENTORY_KERNEL_CONFIG`` (settings file path) and
    ``DATABASE_URL`` (overrides ``database.url``) from the environment.
    """
    return load_settings(
        os.environ.get(CONFIG_PATH_ENV),
        database_url=os.environ.get(DATABASE_URL_ENV),
    )
