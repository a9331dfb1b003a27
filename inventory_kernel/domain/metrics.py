"""
Module: inventory_kernel.domain.metrics
Responsibility: Pure statistical policies behind the analytics selectors:
    observation-window sizing, the minimum-sample guard for velocity,
    days-of-cover classification, period-over-period deltas, unit-price
    parsing and calendar bucketing for sales reports.
Architecture position: Kernel > Domain.  Pure, zero I/O.  The selectors run
    the aggregate queries and hand the raw numbers to these functions.

Invariants enforced:
    - observed_days is clamped to [1, range_days] whenever a sale exists.
    - average_daily is None unless total > 0 and observed_days >= the
      minimum sample size (3 by default).
    - percentage is None whenever the prior total is not > 0, and the
      direction is then always NA.
    - Days of cover is rounded to one decimal place ROUND_HALF_UP.

Failure modes:
    - ValueError for unknown bucket intervals.
"""

import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterator

SECONDS_PER_DAY = 86400
DEFAULT_MIN_OBSERVED_DAYS = 3
DEFAULT_RISK_THRESHOLD_DAYS = 3
COVER_QUANTUM = Decimal("0.1")
PERCENT_QUANTUM = Decimal("0.01")


class SalesDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"
    NA = "na"


class CoverStatus(str, Enum):
    INSUFFICIENT_DATA = "insufficient-data"
    RISK = "risk"
    OK = "ok"


class SalesMetric(str, Enum):
    UNITS = "units"
    REVENUE = "revenue"


class BucketInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def observed_days(now: datetime, earliest: datetime, range_days: int) -> int:
    """Whole days between the earliest sale and now, clamped to [1, range_days]."""
    elapsed = (now - earliest).total_seconds() / SECONDS_PER_DAY
    return max(1, min(range_days, math.ceil(elapsed)))


def average_daily(
    total: Decimal,
    days: int,
    min_observed_days: int = DEFAULT_MIN_OBSERVED_DAYS,
) -> Decimal | None:
    """Average units per day, or None when the sample is too thin."""
    if total <= 0 or days < min_observed_days:
        return None
    return total / Decimal(days)


def classify_cover(
    on_hand: Decimal,
    average: Decimal | None,
    risk_threshold_days: int | Decimal = DEFAULT_RISK_THRESHOLD_DAYS,
) -> tuple[CoverStatus, Decimal | None]:
    """Return (status, days_of_cover)."""
    if average is None or average <= 0:
        return CoverStatus.INSUFFICIENT_DATA, None
    try:
        cover = (Decimal(on_hand) / average).quantize(COVER_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ArithmeticError):
        return CoverStatus.INSUFFICIENT_DATA, None
    if not cover.is_finite():
        return CoverStatus.INSUFFICIENT_DATA, None
    if cover <= Decimal(risk_threshold_days):
        return CoverStatus.RISK, cover
    return CoverStatus.OK, cover


def safe_percentage(current: Decimal, prior: Decimal) -> Decimal | None:
    if prior <= 0:
        return None
    return ((current - prior) / prior * 100).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def resolve_direction(absolute: Decimal, percentage: Decimal | None) -> SalesDirection:
    # No prior baseline means no direction, whatever the absolute change.
    if percentage is None:
        return SalesDirection.NA
    if absolute > 0:
        return SalesDirection.UP
    if absolute < 0:
        return SalesDirection.DOWN
    return SalesDirection.FLAT


def parse_unit_price(metadata: dict[str, Any] | None) -> Decimal:
    """
    Read ``metadata["price"]`` as a Decimal.

    Numbers and numeric strings are accepted; anything else (absent, blank,
    boolean, non-finite, garbage) counts as a price of zero.
    """
    if not isinstance(metadata, dict):
        return Decimal(0)
    raw = metadata.get("price")
    if raw is None or isinstance(raw, bool):
        return Decimal(0)
    try:
        price = Decimal(repr(raw)) if isinstance(raw, float) else Decimal(str(raw).strip())
    except InvalidOperation:
        return Decimal(0)
    return price if price.is_finite() else Decimal(0)


# ---------------------------------------------------------------------------
# Calendar buckets
# ---------------------------------------------------------------------------


def bucket_start(moment: datetime, interval: BucketInterval | str) -> datetime:
    """Start of the day / ISO week (Monday) / month containing ``moment``."""
    interval = BucketInterval(interval)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval is BucketInterval.DAY:
        return day
    if interval is BucketInterval.WEEK:
        return day - timedelta(days=day.weekday())
    return day.replace(day=1)


def next_bucket(start: datetime, interval: BucketInterval | str) -> datetime:
    interval = BucketInterval(interval)
    if interval is BucketInterval.DAY:
        return start + timedelta(days=1)
    if interval is BucketInterval.WEEK:
        return start + timedelta(days=7)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def iter_buckets(
    start: datetime, end: datetime, interval: BucketInterval | str
) -> Iterator[datetime]:
    """Yield bucket starts from the bucket containing ``start`` through ``end``."""
    cursor = bucket_start(start, interval)
    while cursor <= end:
        yield cursor
        cursor = next_bucket(cursor, interval)
