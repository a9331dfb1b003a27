"""
Module: inventory_kernel.selectors.snapshot_selector
Responsibility: Point-in-time inventory snapshot built from StockLevel rows:
    per-item totals with a per-warehouse breakdown, per-warehouse totals
    across items, and global totals.  Also the stock list of a single POS
    location.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only active items are included.  Items with no stock levels appear
      with zero totals and an empty breakdown.
    - The snapshot is built from ONE query, so its item, warehouse and
      global totals are mutually consistent.
    - Sum of item totals == global total == sum of warehouse totals.

Failure modes:
    - WarehouseNotFoundError from pos_inventory() for an unknown slug.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, select

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.quantity import ZERO
from inventory_kernel.exceptions import WarehouseNotFoundError
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.warehouse import Warehouse, WarehouseType
from inventory_kernel.selectors.base import BaseSelector, InventoryScope


@dataclass(frozen=True)
class WarehouseStock:
    """Quantities held at one warehouse (for one item, or summed across items)."""

    warehouse_id: UUID
    slug: str
    name: str
    warehouse_type: WarehouseType
    quantity_on_hand: Decimal
    quantity_reserved: Decimal


@dataclass(frozen=True)
class ItemStock:
    """One active item with totals and per-warehouse breakdown."""

    item_id: UUID
    sku: str
    name: str
    unit: str
    description: str | None
    total_on_hand: Decimal
    total_reserved: Decimal
    breakdown: tuple[WarehouseStock, ...]


@dataclass(frozen=True)
class InventorySnapshot:
    items: tuple[ItemStock, ...]
    warehouse_totals: tuple[WarehouseStock, ...]
    total_on_hand: Decimal
    total_reserved: Decimal
    generated_at: datetime

    def item(self, item_id: UUID) -> ItemStock | None:
        for entry in self.items:
            if entry.item_id == item_id:
                return entry
        return None


@dataclass(frozen=True)
class PosStockLine:
    item_id: UUID
    sku: str
    name: str
    unit: str
    quantity_on_hand: Decimal
    quantity_reserved: Decimal


@dataclass(frozen=True)
class PosInventory:
    warehouse_id: UUID | None
    slug: str | None
    name: str | None
    items: tuple[PosStockLine, ...]


def _warehouse_stock(warehouse: Warehouse, on_hand: Decimal, reserved: Decimal) -> WarehouseStock:
    return WarehouseStock(
        warehouse_id=warehouse.id,
        slug=warehouse.slug,
        name=warehouse.name,
        warehouse_type=WarehouseType(warehouse.warehouse_type),
        quantity_on_hand=on_hand,
        quantity_reserved=reserved,
    )


class InventorySnapshotSelector(BaseSelector):
    """
    Builds inventory snapshots.

    Guarantees:
        - Items ordered by name (then SKU); breakdown and warehouse totals
          ordered by warehouse name.
        - All quantities are Decimal at scale 3.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def build_snapshot(self, scope: InventoryScope | None = None) -> InventorySnapshot:
        scope = scope or InventoryScope()

        level_join = StockLevel.item_id == Item.id
        if scope.warehouse_ids is not None:
            level_join = and_(level_join, StockLevel.warehouse_id.in_(scope.warehouse_ids))

        stmt = (
            select(Item, StockLevel, Warehouse)
            .outerjoin(StockLevel, level_join)
            .outerjoin(Warehouse, Warehouse.id == StockLevel.warehouse_id)
            .where(Item.is_active.is_(True))
            .order_by(Item.name, Item.sku, Warehouse.name, Warehouse.slug)
        )
        if scope.shop_id is not None:
            stmt = stmt.where(Item.shop_id == scope.shop_id)

        # item_id -> (item, [(warehouse, level)])
        grouped: dict[UUID, tuple[Item, list[tuple[Warehouse, StockLevel]]]] = {}
        for item, level, warehouse in self.session.execute(stmt).all():
            entry = grouped.setdefault(item.id, (item, []))
            if level is not None:
                entry[1].append((warehouse, level))

        warehouse_totals: dict[UUID, list] = {}
        items: list[ItemStock] = []
        global_on_hand = ZERO
        global_reserved = ZERO

        for item, rows in grouped.values():
            breakdown = []
            item_on_hand = ZERO
            item_reserved = ZERO
            for warehouse, level in rows:
                breakdown.append(
                    _warehouse_stock(warehouse, level.quantity_on_hand, level.quantity_reserved)
                )
                item_on_hand += level.quantity_on_hand
                item_reserved += level.quantity_reserved

                totals = warehouse_totals.setdefault(warehouse.id, [warehouse, ZERO, ZERO])
                totals[1] += level.quantity_on_hand
                totals[2] += level.quantity_reserved

            global_on_hand += item_on_hand
            global_reserved += item_reserved
            items.append(
                ItemStock(
                    item_id=item.id,
                    sku=item.sku,
                    name=item.name,
                    unit=item.unit,
                    description=item.description,
                    total_on_hand=item_on_hand,
                    total_reserved=item_reserved,
                    breakdown=tuple(breakdown),
                )
            )

        ordered_totals = sorted(
            (_warehouse_stock(w, on_hand, reserved) for w, on_hand, reserved in warehouse_totals.values()),
            key=lambda w: (w.name, w.slug),
        )

        return InventorySnapshot(
            items=tuple(items),
            warehouse_totals=tuple(ordered_totals),
            total_on_hand=global_on_hand,
            total_reserved=global_reserved,
            generated_at=self._clock.now_utc(),
        )

    def list_pos_warehouses(self) -> list[Warehouse]:
        return list(
            self.session.execute(
                select(Warehouse)
                .where(Warehouse.warehouse_type == WarehouseType.POS.value)
                .order_by(Warehouse.name, Warehouse.slug)
            ).scalars()
        )

    def pos_inventory(self, warehouse_slug: str | None = None) -> PosInventory:
        """
        Stock list of one POS location, ordered by item name.

        Without a slug the first POS warehouse (by name) is used; with no
        POS warehouse at all an empty PosInventory is returned.
        """
        if warehouse_slug:
            warehouse = self.session.execute(
                select(Warehouse).where(Warehouse.slug == warehouse_slug.strip().lower())
            ).scalar_one_or_none()
            if warehouse is None:
                raise WarehouseNotFoundError(warehouse_slug)
        else:
            pos = self.list_pos_warehouses()
            warehouse = pos[0] if pos else None

        if warehouse is None:
            return PosInventory(warehouse_id=None, slug=None, name=None, items=())

        rows = self.session.execute(
            select(StockLevel, Item)
            .join(Item, Item.id == StockLevel.item_id)
            .where(StockLevel.warehouse_id == warehouse.id, Item.is_active.is_(True))
            .order_by(Item.name, Item.sku)
        ).all()

        return PosInventory(
            warehouse_id=warehouse.id,
            slug=warehouse.slug,
            name=warehouse.name,
            items=tuple(
                PosStockLine(
                    item_id=item.id,
                    sku=item.sku,
                    name=item.name,
                    unit=item.unit,
                    quantity_on_hand=level.quantity_on_hand,
                    quantity_reserved=level.quantity_reserved,
                )
                for level, item in rows
            ),
        )
