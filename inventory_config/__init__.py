"""
inventory_config -- runtime configuration for the inventory kernel.

Responsibility:
    Resolves ``InventorySettings`` from dataclass defaults, an optional
    YAML file (explicit path or the INVENTORY_CONFIG environment variable)
    and INVENTORY_* environment overrides.

Architecture position:
    Configuration layer.  Kernel services, selectors and models MUST NEVER
    import from ``inventory_config``; only the entry points
    (``inventory_kernel.cli`` and ``scripts/``) read settings here and pass
    plain values into services and selectors.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` -- unknown key or invalid value.
"""

from __future__ import annotations

import logging
from pathlib import Path

from inventory_config.loader import load_settings
from inventory_config.schema import (
    AnalyticsSettings,
    DatabaseSettings,
    HistorySettings,
    InventorySettings,
    LedgerSettings,
    LoggingSettings,
)

_logger = logging.getLogger("inventory_kernel.config")

_settings: InventorySettings | None = None


def get_settings(path: Path | str | None = None) -> InventorySettings:
    """
    Process-wide settings, resolved once.

    Passing ``path`` forces a reload from that file.
    """
    global _settings
    if _settings is None or path is not None:
        _settings = load_settings(path)
        _logger.info(
            "inventory_config_loaded",
            extra={
                "database_dialect": _settings.database.url.split(":", 1)[0],
                "ledger_max_retries": _settings.ledger.max_retries,
                "log_level": _settings.logging.level,
            },
        )
    return _settings


def reset_settings() -> None:
    """Forget the cached settings.  For tests."""
    global _settings
    _settings = None


__all__ = [
    "AnalyticsSettings",
    "DatabaseSettings",
    "HistorySettings",
    "InventorySettings",
    "LedgerSettings",
    "LoggingSettings",
    "get_settings",
    "load_settings",
    "reset_settings",
]
