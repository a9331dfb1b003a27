"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a YAML document and environment overrides and parses them into the
frozen ``inventory_config.schema`` dataclasses.

Architecture position
---------------------
**Config layer**.  Consumed by ``inventory_config.get_settings()`` and the
CLI.  The kernel never imports this package; callers pass the resolved
values into services and selectors as plain arguments.

Invariants enforced
-------------------
* Layering: dataclass defaults <- YAML document <- environment variables.
* Unknown sections and keys are rejected, so a typo never silently falls
  back to a default.
* Numeric limits are range-checked after layering.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key, wrong type or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    AnalyticsSettings,
    DatabaseSettings,
    HistorySettings,
    InventorySettings,
    LedgerSettings,
    LoggingSettings,
)

CONFIG_PATH_ENV = "INVENTORY_CONFIG"

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "ledger": LedgerSettings,
    "history": HistorySettings,
    "analytics": AnalyticsSettings,
    "logging": LoggingSettings,
}

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "INVENTORY_DATABASE_URL": ("database", "url"),
    "INVENTORY_DATABASE_ECHO": ("database", "echo"),
    "INVENTORY_LOG_LEVEL": ("logging", "level"),
    "INVENTORY_LEDGER_MAX_RETRIES": ("ledger", "max_retries"),
}

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _coerce(section: str, key: str, value: Any, default: Any) -> Any:
    where = f"{section}.{key}"
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
            return value.strip().lower() in _TRUE
        raise ValueError(f"{where} must be a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(f"{where} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{where} must be an integer, got {value!r}") from None
    if isinstance(default, float):
        if isinstance(value, bool):
            raise ValueError(f"{where} must be a number, got {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{where} must be a number, got {value!r}") from None
    if not isinstance(value, str):
        raise ValueError(f"{where} must be a string, got {value!r}")
    return value


def parse_section(section: str, data: Any) -> Any:
    """Parse one top-level section into its dataclass."""
    cls = _SECTIONS[section]
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")

    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")

    values = {
        key: _coerce(section, key, value, getattr(defaults, key))
        for key, value in data.items()
    }
    return replace(defaults, **values)


def parse_settings(data: Mapping[str, Any]) -> InventorySettings:
    """
    Parse a full configuration document.

    Raises:
        ValueError: unknown section or key, or an invalid value.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")
    settings = InventorySettings(
        **{section: parse_section(section, data.get(section)) for section in _SECTIONS}
    )
    validate_settings(settings)
    return settings


def apply_env_overrides(
    settings: InventorySettings, env: Mapping[str, str]
) -> InventorySettings:
    """Return a copy of ``settings`` with the INVENTORY_* variables applied."""
    for var, (section, key) in ENV_OVERRIDES.items():
        if var not in env:
            continue
        current = getattr(settings, section)
        value = _coerce(section, key, env[var], getattr(current, key))
        settings = replace(settings, **{section: replace(current, **{key: value})})
    validate_settings(settings)
    return settings


def validate_settings(settings: InventorySettings) -> None:
    """
    Range checks that span more than one field.

    Raises:
        ValueError: on the first violated constraint.
    """
    if not settings.database.url.strip():
        raise ValueError("database.url must not be empty")
    if settings.ledger.max_retries < 1:
        raise ValueError("ledger.max_retries must be at least 1")
    if settings.ledger.retry_backoff_seconds < 0:
        raise ValueError("ledger.retry_backoff_seconds must not be negative")
    if settings.history.default_limit < 1 or settings.history.max_limit < 1:
        raise ValueError("history limits must be at least 1")
    if settings.history.default_limit > settings.history.max_limit:
        raise ValueError("history.default_limit must not exceed history.max_limit")

    analytics = settings.analytics
    for key in (
        "default_range_days",
        "min_observed_days",
        "risk_threshold_days",
        "max_references",
        "most_sold_limit",
        "recent_transactions_limit",
    ):
        if getattr(analytics, key) < 1:
            raise ValueError(f"analytics.{key} must be at least 1")

    if not isinstance(logging.getLevelName(settings.logging.level.upper()), int):
        raise ValueError(f"Unknown logging level: {settings.logging.level}")


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> InventorySettings:
    """
    Resolve settings from defaults, an optional YAML file and the environment.

    The file is ``path`` when given, else the file named by INVENTORY_CONFIG,
    else none.

    Raises:
        FileNotFoundError: the named file does not exist.
        ValueError: the document or an override is invalid.
    """
    env = os.environ if env is None else env
    if path is None and env.get(CONFIG_PATH_ENV):
        path = env[CONFIG_PATH_ENV]

    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        data = load_yaml_file(path)

    return apply_env_overrides(parse_settings(data), env)
