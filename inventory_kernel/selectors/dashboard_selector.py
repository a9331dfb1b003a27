"""
Module: inventory_kernel.selectors.dashboard_selector
Responsibility: The overview payload shown on the shop dashboard: stock
    totals and value, low-stock warnings, top sellers and recent movements,
    together with the full inventory snapshot and a units sales delta.
Architecture position: Kernel > Selectors.  Composes the snapshot selector
    and the analytics engine; adds only the warning and recent-transaction
    queries of its own.

Invariants enforced:
    - Central warehouses warn against their reorder point, POS locations
      against their safety stock.  A warning is raised only when the
      threshold is > 0 and on hand <= threshold.
    - Sales totals cover the listed top sellers only.
    - Recent transactions are limited to the same lookback window.
    - Warning cover and inbound figures use the same lookback window.

Failure modes:
    - ValidationError for range_days < 1.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import aliased

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.metrics import CoverStatus, SalesMetric, parse_unit_price
from inventory_kernel.domain.movements import MovementKind
from inventory_kernel.domain.quantity import ZERO
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.models.warehouse import Warehouse, WarehouseType
from inventory_kernel.selectors.analytics import (
    DEFAULT_RANGE_DAYS,
    AnalyticsEngine,
    InboundCoverage,
    SalesDeltaResult,
    TopSeller,
    require_range_days,
)
from inventory_kernel.selectors.base import BaseSelector, InventoryScope
from inventory_kernel.selectors.snapshot_selector import (
    InventorySnapshot,
    InventorySnapshotSelector,
)

logger = get_logger("selectors.dashboard")

DEFAULT_MOST_SOLD_LIMIT = 5
DEFAULT_RECENT_LIMIT = 15


@dataclass(frozen=True)
class DashboardTotals:
    item_count: int
    total_on_hand: Decimal
    total_value: Decimal
    sales_quantity: Decimal
    sales_revenue: Decimal


@dataclass(frozen=True)
class LowStockWarning:
    item_id: UUID
    item_name: str
    sku: str
    warehouse_id: UUID
    warehouse_name: str
    warehouse_type: WarehouseType
    quantity_on_hand: Decimal
    threshold: Decimal
    days_of_cover: Decimal | None
    days_of_cover_status: CoverStatus
    inbound_coverage: InboundCoverage


@dataclass(frozen=True)
class RecentTransaction:
    id: UUID
    item_id: UUID
    item_name: str
    sku: str
    warehouse_name: str | None
    quantity: Decimal
    transaction_type: MovementKind
    occurred_at: datetime
    reference: str | None


@dataclass(frozen=True)
class DashboardSnapshot:
    range_days: int
    generated_at: datetime
    totals: DashboardTotals
    warnings: tuple[LowStockWarning, ...]
    most_sold: tuple[TopSeller, ...]
    recent_transactions: tuple[RecentTransaction, ...]
    inventory: InventorySnapshot
    sales_delta: SalesDeltaResult


class DashboardSelector(BaseSelector):
    """Builds the dashboard payload from fresh reads."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        analytics: AnalyticsEngine | None = None,
        most_sold_limit: int = DEFAULT_MOST_SOLD_LIMIT,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._analytics = analytics or AnalyticsEngine(session, self._clock)
        self._snapshots = InventorySnapshotSelector(session, self._clock)
        self._most_sold_limit = most_sold_limit
        self._recent_limit = recent_limit

    def build_dashboard(
        self,
        scope: InventoryScope | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
    ) -> DashboardSnapshot:
        range_days = require_range_days(range_days)
        scope = scope or InventoryScope()
        now = self._clock.now_utc()
        since = now - timedelta(days=range_days)

        inventory = self._snapshots.build_snapshot(scope)
        prices = self._prices([entry.item_id for entry in inventory.items])

        total_value = sum(
            (entry.total_on_hand * prices.get(entry.item_id, Decimal(0)) for entry in inventory.items),
            Decimal(0),
        )

        most_sold = self._analytics.most_sold(
            scope, range_days, limit=self._most_sold_limit, active_only=True
        )
        totals = DashboardTotals(
            item_count=len(inventory.items),
            total_on_hand=inventory.total_on_hand,
            total_value=total_value,
            sales_quantity=sum((seller.quantity for seller in most_sold), ZERO),
            sales_revenue=sum((seller.revenue for seller in most_sold), Decimal(0)),
        )

        dashboard = DashboardSnapshot(
            range_days=range_days,
            generated_at=now,
            totals=totals,
            warnings=self.low_stock_warnings(scope, range_days),
            most_sold=most_sold,
            recent_transactions=self.recent_transactions(scope, since),
            inventory=inventory,
            sales_delta=self._analytics.sales_delta(scope, range_days, SalesMetric.UNITS),
        )
        logger.info(
            "dashboard_built",
            extra={
                "range_days": range_days,
                "item_count": totals.item_count,
                "warning_count": len(dashboard.warnings),
            },
        )
        return dashboard

    def _prices(self, item_ids: list[UUID]) -> dict[UUID, Decimal]:
        if not item_ids:
            return {}
        rows = self.session.execute(
            select(Item.id, Item.item_metadata).where(Item.id.in_(item_ids))
        ).all()
        return {item_id: parse_unit_price(metadata) for item_id, metadata in rows}

    def low_stock_warnings(
        self,
        scope: InventoryScope | None = None,
        range_days: int = DEFAULT_RANGE_DAYS,
    ) -> tuple[LowStockWarning, ...]:
        """
        Levels at or below their warehouse-type threshold, by item then warehouse name.

        Each warning carries the level's days of cover at the sales rate of
        the last ``range_days`` days and the item's inbound receipts over the
        same window.
        """
        range_days = require_range_days(range_days)
        scope = scope or InventoryScope()
        stmt = (
            select(StockLevel, Item, Warehouse)
            .join(Item, Item.id == StockLevel.item_id)
            .join(Warehouse, Warehouse.id == StockLevel.warehouse_id)
            .where(Item.is_active.is_(True))
            .order_by(Item.name, Item.sku, Warehouse.name)
        )
        if scope.shop_id is not None:
            stmt = stmt.where(Item.shop_id == scope.shop_id)
        if scope.warehouse_ids is not None:
            stmt = stmt.where(StockLevel.warehouse_id.in_(scope.warehouse_ids))

        warnings = []
        inbound: dict[UUID, InboundCoverage] = {}
        for level, item, warehouse in self.session.execute(stmt).all():
            warehouse_type = WarehouseType(warehouse.warehouse_type)
            if warehouse_type is WarehouseType.CENTRAL:
                threshold = level.reorder_point
            else:
                threshold = level.safety_stock
            if threshold is None or threshold <= 0:
                continue
            if level.quantity_on_hand <= threshold:
                cover = self._analytics.days_of_cover(
                    item.id, warehouse.id, level.quantity_on_hand, range_days
                )
                if item.id not in inbound:
                    inbound[item.id] = self._analytics.inbound_coverage(item.id, range_days)
                warnings.append(
                    LowStockWarning(
                        item_id=item.id,
                        item_name=item.name,
                        sku=item.sku,
                        warehouse_id=warehouse.id,
                        warehouse_name=warehouse.name,
                        warehouse_type=warehouse_type,
                        quantity_on_hand=level.quantity_on_hand,
                        threshold=threshold,
                        days_of_cover=cover.days_of_cover,
                        days_of_cover_status=cover.status,
                        inbound_coverage=inbound[item.id],
                    )
                )
        return tuple(warnings)

    def recent_transactions(
        self, scope: InventoryScope, since: datetime
    ) -> tuple[RecentTransaction, ...]:
        source = aliased(Warehouse)
        target = aliased(Warehouse)
        stmt = (
            select(StockTransaction, Item, source, target)
            .join(Item, Item.id == StockTransaction.item_id)
            .outerjoin(source, source.id == StockTransaction.source_warehouse_id)
            .outerjoin(target, target.id == StockTransaction.target_warehouse_id)
            .where(StockTransaction.occurred_at >= since)
            .order_by(
                StockTransaction.occurred_at.desc(),
                StockTransaction.created_at.desc(),
                StockTransaction.id,
            )
            .limit(self._recent_limit)
        )
        if scope.shop_id is not None:
            stmt = stmt.where(Item.shop_id == scope.shop_id)
        if scope.warehouse_ids is not None:
            ids = scope.warehouse_ids
            stmt = stmt.where(
                StockTransaction.source_warehouse_id.in_(ids)
                | StockTransaction.target_warehouse_id.in_(ids)
            )

        recent = []
        for tx, item, source_wh, target_wh in self.session.execute(stmt).all():
            warehouse = target_wh if target_wh is not None else source_wh
            recent.append(
                RecentTransaction(
                    id=tx.id,
                    item_id=item.id,
                    item_name=item.name,
                    sku=item.sku,
                    warehouse_name=warehouse.name if warehouse is not None else None,
                    quantity=tx.quantity,
                    transaction_type=MovementKind(tx.transaction_type),
                    occurred_at=tx.occurred_at,
                    reference=tx.reference,
                )
            )
        return tuple(recent)
