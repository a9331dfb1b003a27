"""
Module: inventory_kernel.selectors.analytics
Responsibility: Read-only analytics over the stock ledger: sales velocity,
    days of cover, inbound coverage, period-over-period sales delta,
    bucketed sales totals and top sellers.
Architecture position: Kernel > Selectors.  Runs aggregate queries and
    delegates every policy decision (sample-size guard, cover status,
    direction) to domain/metrics.py.

Invariants enforced:
    - Only ``sale`` rows feed sales figures and only ``inbound`` rows feed
      inbound coverage.
    - A sale is attributed to its source warehouse.
    - Each figure is computed from a single aggregate query.  Figures from
      different calls are not guaranteed to describe the same instant.
    - Sales delta windows: current = [now - r, now], prior = [now - 2r, now - r).

Failure modes:
    - ValidationError for range_days < 1 or an unknown metric / interval.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.metrics import (
    DEFAULT_MIN_OBSERVED_DAYS,
    DEFAULT_RISK_THRESHOLD_DAYS,
    BucketInterval,
    CoverStatus,
    SalesDirection,
    SalesMetric,
    average_daily,
    bucket_start,
    classify_cover,
    iter_buckets,
    observed_days,
    parse_unit_price,
    resolve_direction,
    safe_percentage,
)
from inventory_kernel.domain.movements import MovementKind
from inventory_kernel.domain.quantity import ZERO
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.selectors.base import BaseSelector, InventoryScope

logger = get_logger("selectors.analytics")

DEFAULT_RANGE_DAYS = 7
DEFAULT_MAX_REFERENCES = 5


@dataclass(frozen=True)
class VelocityResult:
    item_id: UUID
    warehouse_id: UUID | None
    range_days: int
    total_sold: Decimal
    observed_days: int
    average_daily: Decimal | None

    @property
    def has_average(self) -> bool:
        return self.average_daily is not None


@dataclass(frozen=True)
class CoverResult:
    status: CoverStatus
    days_of_cover: Decimal | None
    on_hand: Decimal
    velocity: VelocityResult


@dataclass(frozen=True)
class InboundCoverage:
    item_id: UUID
    range_days: int
    total_inbound: Decimal
    next_arrival: datetime | None
    references: tuple[str, ...]


@dataclass(frozen=True)
class SalesDeltaResult:
    metric: SalesMetric
    range_days: int
    current_total: Decimal
    prior_total: Decimal
    absolute: Decimal
    percentage: Decimal | None
    direction: SalesDirection


@dataclass(frozen=True)
class SalesBucket:
    period_start: datetime
    quantity: Decimal
    revenue: Decimal


@dataclass(frozen=True)
class TopSeller:
    item_id: UUID
    sku: str
    name: str
    quantity: Decimal
    revenue: Decimal


def _as_utc(moment: datetime | None) -> datetime | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def require_range_days(range_days: int) -> int:
    if isinstance(range_days, bool) or not isinstance(range_days, int) or range_days < 1:
        raise ValidationError(f"range_days must be a positive integer, got {range_days!r}")
    return range_days


class AnalyticsEngine(BaseSelector):
    """
    Sales and stock-cover analytics.

    Contract:
        All ``range_days`` arguments are whole days >= 1 measured back from
        the injected clock's "now".
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        *,
        min_observed_days: int = DEFAULT_MIN_OBSERVED_DAYS,
        risk_threshold_days: int = DEFAULT_RISK_THRESHOLD_DAYS,
        max_references: int = DEFAULT_MAX_REFERENCES,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._min_observed_days = min_observed_days
        self._risk_threshold_days = risk_threshold_days
        self._max_references = max_references

    # ------------------------------------------------------------------
    # Velocity / cover
    # ------------------------------------------------------------------

    def compute_velocity(
        self,
        item_id: UUID,
        warehouse_id: UUID | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
    ) -> VelocityResult:
        """
        Average units sold per day over the lookback window.

        ``observed_days`` runs from the earliest sale in the window to now,
        so a recently listed item is not diluted by days it was not on sale.
        The average is withheld while fewer than ``min_observed_days`` days
        have been observed.
        """
        range_days = require_range_days(range_days)
        now = self._clock.now_utc()
        since = now - timedelta(days=range_days)

        stmt = select(
            func.sum(StockTransaction.quantity),
            func.min(StockTransaction.occurred_at),
        ).where(
            StockTransaction.item_id == item_id,
            StockTransaction.transaction_type == MovementKind.SALE.value,
            StockTransaction.occurred_at >= since,
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockTransaction.source_warehouse_id == warehouse_id)

        total, earliest = self.session.execute(stmt).one()
        total = total if total is not None else ZERO

        if earliest is None or total <= 0:
            return VelocityResult(
                item_id=item_id,
                warehouse_id=warehouse_id,
                range_days=range_days,
                total_sold=total,
                observed_days=0,
                average_daily=None,
            )

        days = observed_days(now, earliest, range_days)
        return VelocityResult(
            item_id=item_id,
            warehouse_id=warehouse_id,
            range_days=range_days,
            total_sold=total,
            observed_days=days,
            average_daily=average_daily(total, days, self._min_observed_days),
        )

    def days_of_cover(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        on_hand: Decimal | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
        risk_threshold_days: int | None = None,
    ) -> CoverResult:
        """
        How long current stock lasts at the recent sales rate.

        When ``on_hand`` is omitted the stored level is read.
        """
        if on_hand is None:
            on_hand = self.session.execute(
                select(StockLevel.quantity_on_hand).where(
                    StockLevel.item_id == item_id,
                    StockLevel.warehouse_id == warehouse_id,
                )
            ).scalar_one_or_none()
            on_hand = on_hand if on_hand is not None else ZERO

        velocity = self.compute_velocity(item_id, warehouse_id, range_days)
        threshold = (
            risk_threshold_days
            if risk_threshold_days is not None
            else self._risk_threshold_days
        )
        status, cover = classify_cover(on_hand, velocity.average_daily, threshold)
        return CoverResult(
            status=status,
            days_of_cover=cover,
            on_hand=Decimal(on_hand),
            velocity=velocity,
        )

    def inbound_coverage(
        self, item_id: UUID, range_days: int = DEFAULT_RANGE_DAYS
    ) -> InboundCoverage:
        range_days = require_range_days(range_days)
        since = self._clock.days_ago(range_days)

        rows = self.session.execute(
            select(StockTransaction.quantity, StockTransaction.occurred_at, StockTransaction.reference)
            .where(
                StockTransaction.item_id == item_id,
                StockTransaction.transaction_type == MovementKind.INBOUND.value,
                StockTransaction.occurred_at >= since,
            )
            .order_by(StockTransaction.occurred_at, StockTransaction.created_at)
        ).all()

        total = ZERO
        references: list[str] = []
        for quantity, _occurred_at, reference in rows:
            total += quantity
            if reference and reference not in references and len(references) < self._max_references:
                references.append(reference)

        return InboundCoverage(
            item_id=item_id,
            range_days=range_days,
            total_inbound=total,
            next_arrival=rows[0].occurred_at if rows else None,
            references=tuple(references),
        )

    # ------------------------------------------------------------------
    # Sales reports
    # ------------------------------------------------------------------

    def _sales_by_item(
        self,
        scope: InventoryScope,
        start: datetime | None,
        end: datetime | None,
        end_inclusive: bool = True,
        active_only: bool = False,
    ) -> dict[UUID, Decimal]:
        stmt = (
            select(StockTransaction.item_id, func.sum(StockTransaction.quantity))
            .join(Item, Item.id == StockTransaction.item_id)
            .where(StockTransaction.transaction_type == MovementKind.SALE.value)
            .group_by(StockTransaction.item_id)
        )
        stmt = self._apply_scope(stmt, scope)
        if active_only:
            stmt = stmt.where(Item.is_active.is_(True))
        if start is not None:
            stmt = stmt.where(StockTransaction.occurred_at >= start)
        if end is not None:
            if end_inclusive:
                stmt = stmt.where(StockTransaction.occurred_at <= end)
            else:
                stmt = stmt.where(StockTransaction.occurred_at < end)
        return {item_id: total or ZERO for item_id, total in self.session.execute(stmt).all()}

    @staticmethod
    def _apply_scope(stmt, scope: InventoryScope):
        if scope.shop_id is not None:
            stmt = stmt.where(Item.shop_id == scope.shop_id)
        if scope.warehouse_ids is not None:
            stmt = stmt.where(StockTransaction.source_warehouse_id.in_(scope.warehouse_ids))
        return stmt

    def _unit_prices(self, item_ids) -> dict[UUID, Decimal]:
        if not item_ids:
            return {}
        rows = self.session.execute(
            select(Item.id, Item.item_metadata).where(Item.id.in_(list(item_ids)))
        ).all()
        return {item_id: parse_unit_price(metadata) for item_id, metadata in rows}

    def _total(self, sold: dict[UUID, Decimal], metric: SalesMetric) -> Decimal:
        if metric is SalesMetric.UNITS:
            return sum(sold.values(), ZERO)
        prices = self._unit_prices(sold.keys())
        return sum(
            (quantity * prices.get(item_id, Decimal(0)) for item_id, quantity in sold.items()),
            Decimal(0),
        )

    def sales_delta(
        self,
        scope: InventoryScope | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
        metric: SalesMetric | str = SalesMetric.UNITS,
    ) -> SalesDeltaResult:
        """
        Compare the current window against the window immediately before it.

        Direction is NA whenever there is no prior-period baseline, even if
        the current window has sales.
        """
        range_days = require_range_days(range_days)
        try:
            metric = SalesMetric(metric)
        except ValueError:
            raise ValidationError(f"Unknown sales metric: {metric}") from None
        scope = scope or InventoryScope()

        now = self._clock.now_utc()
        current_start = now - timedelta(days=range_days)
        prior_start = now - timedelta(days=2 * range_days)

        current = self._total(self._sales_by_item(scope, current_start, now), metric)
        prior = self._total(
            self._sales_by_item(scope, prior_start, current_start, end_inclusive=False),
            metric,
        )

        absolute = current - prior
        percentage = safe_percentage(current, prior)
        result = SalesDeltaResult(
            metric=metric,
            range_days=range_days,
            current_total=current,
            prior_total=prior,
            absolute=absolute,
            percentage=percentage,
            direction=resolve_direction(absolute, percentage),
        )
        logger.debug(
            "sales_delta_computed",
            extra={
                "metric": metric.value,
                "range_days": range_days,
                "current_total": current,
                "prior_total": prior,
                "direction": result.direction.value,
            },
        )
        return result

    def sales_totals(
        self,
        scope: InventoryScope | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        interval: BucketInterval | str = BucketInterval.DAY,
    ) -> tuple[SalesBucket, ...]:
        """
        Sold units and revenue per calendar bucket (UTC).

        Buckets run from ``start`` (or the first sale) through ``end`` (or
        the last sale) and include empty periods.  No sales at all yields
        an empty tuple.
        """
        try:
            interval = BucketInterval(interval)
        except ValueError:
            raise ValidationError(f"Unknown bucket interval: {interval}") from None
        scope = scope or InventoryScope()
        start = _as_utc(start)
        end = _as_utc(end)

        stmt = (
            select(
                StockTransaction.item_id,
                StockTransaction.quantity,
                StockTransaction.occurred_at,
            )
            .join(Item, Item.id == StockTransaction.item_id)
            .where(StockTransaction.transaction_type == MovementKind.SALE.value)
            .order_by(StockTransaction.occurred_at)
        )
        stmt = self._apply_scope(stmt, scope)
        if start is not None:
            stmt = stmt.where(StockTransaction.occurred_at >= start)
        if end is not None:
            stmt = stmt.where(StockTransaction.occurred_at <= end)

        rows = self.session.execute(stmt).all()
        if not rows:
            return ()

        prices = self._unit_prices({row.item_id for row in rows})
        first = start or rows[0].occurred_at
        last = end or rows[-1].occurred_at

        quantities = {bucket: ZERO for bucket in iter_buckets(first, last, interval)}
        revenue = {bucket: Decimal(0) for bucket in quantities}
        for item_id, quantity, occurred_at in rows:
            bucket = bucket_start(occurred_at, interval)
            quantities[bucket] = quantities.get(bucket, ZERO) + quantity
            revenue[bucket] = revenue.get(bucket, Decimal(0)) + quantity * prices.get(
                item_id, Decimal(0)
            )

        return tuple(
            SalesBucket(period_start=bucket, quantity=quantities[bucket], revenue=revenue[bucket])
            for bucket in sorted(quantities)
        )

    def most_sold(
        self,
        scope: InventoryScope | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
        limit: int = 5,
        active_only: bool = False,
    ) -> tuple[TopSeller, ...]:
        """Best-selling items in the window by units, ties broken by name."""
        range_days = require_range_days(range_days)
        scope = scope or InventoryScope()
        since = self._clock.days_ago(range_days)

        sold = self._sales_by_item(scope, since, None, active_only=active_only)
        if not sold:
            return ()

        items = {
            item.id: item
            for item in self.session.execute(
                select(Item).where(Item.id.in_(list(sold)))
            ).scalars()
        }
        ranked = sorted(
            sold.items(),
            key=lambda pair: (-pair[1], items[pair[0]].name, items[pair[0]].sku),
        )[: max(limit, 0)]

        return tuple(
            TopSeller(
                item_id=item_id,
                sku=items[item_id].sku,
                name=items[item_id].name,
                quantity=quantity,
                revenue=quantity * parse_unit_price(items[item_id].item_metadata),
            )
            for item_id, quantity in ranked
        )
