"""Database layer - engine, base classes, column types, and immutability."""

from inventory_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from inventory_kernel.db.engine import create_tables, get_engine, get_session
from inventory_kernel.db.types import QuantityType, UTCDateTime

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "QuantityType",
    "UTCDateTime",
]
