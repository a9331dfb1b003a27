"""
Structured JSON logging for stock movements.

Each record is written as one JSON object.  Besides the envelope
(``ts``, ``level``, ``logger``, ``message``) a line carries the identity of
the movement being applied: the ledger opens ``LogContext.for_movement()``
once per call and every line logged inside it, from any module, is stamped
with the item, the warehouses, the movement kind and the current attempt.

Kernel errors are rendered with their code and structured attributes under
``error`` so a rejected or failed movement can be read without parsing the
traceback.
"""

from __future__ import annotations

__all__ = [
    "MOVEMENT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID, uuid4

ROOT_LOGGER_NAME = "inventory_kernel"

MOVEMENT_FIELDS = (
    "correlation_id",
    "actor_id",
    "item_id",
    "movement_kind",
    "warehouse_id",
    "to_warehouse_id",
    "attempt",
    "transaction_id",
)

_EMPTY: Mapping[str, Any] = MappingProxyType({})
_movement: ContextVar[Mapping[str, Any]] = ContextVar("inventory_log_movement", default=_EMPTY)


def _normalize(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(MOVEMENT_FIELDS)
    if unknown:
        raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
    values: dict[str, Any] = {}
    for name, value in fields.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        values[name] = int(value) if name == "attempt" else str(value)
    return values


class LogContext:
    """
    Movement identity shared by every log line of one ledger call.

    Backed by a single contextvar, so threads and tasks each see their own
    movement.  ``None`` values are ignored everywhere.
    """

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type[LogContext]]:
        """Add fields for the duration of a block; the previous state returns on exit."""
        token = _movement.set(MappingProxyType({**_movement.get(), **_normalize(fields)}))
        try:
            yield cls
        finally:
            _movement.reset(token)

    @classmethod
    def for_movement(
        cls,
        kind: Enum | str,
        item_id: UUID | None,
        warehouse_id: UUID | None,
        to_warehouse_id: UUID | None = None,
        *,
        actor_id: str | None = None,
    ):
        """Bind a fresh correlation id together with the movement's item and warehouses."""
        return cls.bind(
            correlation_id=uuid4(),
            movement_kind=kind,
            item_id=item_id,
            warehouse_id=warehouse_id,
            to_warehouse_id=to_warehouse_id,
            actor_id=actor_id,
        )

    @classmethod
    def update(cls, **fields: Any) -> None:
        """Change fields in place, e.g. the attempt number inside a retry loop."""
        _movement.set(MappingProxyType({**_movement.get(), **_normalize(fields)}))

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return dict(_movement.get())

    @classmethod
    def clear(cls) -> None:
        _movement.set(_EMPTY)


# Attributes every LogRecord has; anything else on a record came from ``extra=``.
_RECORD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        # quantities keep their scale: "2.000", never 2.0
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        fields["code"] = code
        fields.update(
            (name, value) for name, value in vars(exc).items() if not name.startswith("_")
        )
    return fields


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_movement.get(),
        }
        for name, value in record.__dict__.items():
            if name not in _RECORD_ATTRIBUTES:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["error"] = _error_fields(exc)
            if "code" in payload["error"]:
                payload.setdefault("error_code", payload["error"]["code"])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_handler: logging.Handler | None = None
_handler_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``inventory_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.  Records do
    not propagate to the root logger.
    """
    global _handler
    with _handler_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach every handler and fall back to WARNING."""
    global _handler
    with _handler_lock:
        _handler = None
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
