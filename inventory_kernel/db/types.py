"""
Module: inventory_kernel.db.types
Responsibility: Column types for stock quantities and timestamps.  Keeps the
    fixed-point storage format and the UTC normalization in one place so
    every model stores them identically.
Architecture position: Kernel > DB.  May be imported by models/ and db/base.py.
    Depends only on domain/quantity.py.

Invariants enforced:
    - Quantities are stored as BIGINT thousandths and surface in Python as
      Decimal quantized to 0.001.  Aggregates over a QuantityType column
      (SUM, MIN, MAX) inherit the type and come back as Decimals too.
    - Timestamps are always returned timezone-aware in UTC.  Backends
      without timezone support (SQLite) store naive UTC values.

Failure modes:
    - InvalidQuantityError if a non-numeric value is bound to a quantity column.
"""

from datetime import timezone

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.types import TypeDecorator

from inventory_kernel.domain.quantity import from_milli, to_milli, to_storage


class QuantityType(TypeDecorator):
    """
    Stock quantity stored as an integer number of thousandths.

    Contract:
        Python side: Decimal with exactly three fractional digits.
        SQL side: BIGINT, so comparisons against zero are exact.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_milli(to_storage(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_milli(value)

    def coerce_compared_value(self, op, value):
        return self


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalized to UTC.

    Naive values are taken to already be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

