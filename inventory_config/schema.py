"""
InventorySettings schema.

Typed, frozen view of the runtime configuration.  YAML documents and
environment overrides are parsed into these types by the loader; every
field has a default so an empty document is a valid configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "sqlite:///inventory.db"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for the stock store."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LedgerSettings:
    """Retry policy for concurrency conflicts in the stock ledger."""

    max_retries: int = 3
    retry_backoff_seconds: float = 0.05


@dataclass(frozen=True)
class HistorySettings:
    default_limit: int = 50
    max_limit: int = 200


@dataclass(frozen=True)
class AnalyticsSettings:
    """Windows and thresholds for sales analytics and the dashboard."""

    default_range_days: int = 7
    min_observed_days: int = 3
    risk_threshold_days: int = 3
    max_references: int = 5
    most_sold_limit: int = 5
    recent_transactions_limit: int = 15


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class InventorySettings:
    """Root of the configuration tree."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    analytics: AnalyticsSettings = field(default_factory=AnalyticsSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
