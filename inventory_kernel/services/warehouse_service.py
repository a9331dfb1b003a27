"""
WarehouseService -- warehouse registry and low-stock thresholds.

Responsibility:
    Creates and looks up warehouses, and maintains the per-level
    thresholds (reorder point, safety stock) used by dashboard warnings.

Architecture position:
    Kernel > Services.  Session-bound: flushes, never commits.  Thresholds
    are the only StockLevel fields written outside the StockLedger;
    quantities are never touched here.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.quantity import ZERO, require_non_negative
from inventory_kernel.exceptions import (
    DuplicateWarehouseError,
    ItemNotFoundError,
    ValidationError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.warehouse import Warehouse, WarehouseType
from inventory_kernel.services.base import BaseService

logger = get_logger("services.warehouse")

_UNSET = object()


class WarehouseService(BaseService):
    """Warehouse registry operations."""

    def create_warehouse(
        self,
        slug: str,
        name: str,
        warehouse_type: WarehouseType | str = WarehouseType.CENTRAL,
    ) -> Warehouse:
        slug = (slug or "").strip().lower()
        name = (name or "").strip()
        if not slug:
            raise ValidationError("Warehouse slug is required")
        if not name:
            raise ValidationError("Warehouse name is required")
        try:
            warehouse_type = WarehouseType(warehouse_type)
        except ValueError:
            raise ValidationError(f"Unknown warehouse type: {warehouse_type}") from None

        existing = self._session.execute(
            select(Warehouse.id).where(Warehouse.slug == slug)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateWarehouseError(slug)

        warehouse = Warehouse(slug=slug, name=name, warehouse_type=warehouse_type.value)
        self._session.add(warehouse)
        self._session.flush()
        logger.info(
            "warehouse_created",
            extra={
                "warehouse_id": str(warehouse.id),
                "slug": slug,
                "warehouse_type": warehouse_type.value,
            },
        )
        return warehouse

    def get_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def get_by_slug(self, slug: str) -> Warehouse:
        warehouse = self._session.execute(
            select(Warehouse).where(Warehouse.slug == slug.strip().lower())
        ).scalar_one_or_none()
        if warehouse is None:
            raise WarehouseNotFoundError(slug)
        return warehouse

    def list_warehouses(
        self, warehouse_type: WarehouseType | str | None = None
    ) -> list[Warehouse]:
        """All warehouses ordered by name, optionally of one type."""
        stmt = select(Warehouse).order_by(Warehouse.name, Warehouse.slug)
        if warehouse_type is not None:
            stmt = stmt.where(Warehouse.warehouse_type == WarehouseType(warehouse_type).value)
        return list(self._session.execute(stmt).scalars().all())

    def set_thresholds(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        *,
        reorder_point: object = _UNSET,
        safety_stock: object = _UNSET,
    ) -> StockLevel:
        """
        Set low-stock thresholds on the (item, warehouse) level.

        Pass None to clear a threshold; omit it to leave it unchanged.
        Creates a zero level if none exists yet.
        """
        if self._session.get(Item, item_id) is None:
            raise ItemNotFoundError(str(item_id))
        self.get_warehouse(warehouse_id)

        level = self._session.execute(
            select(StockLevel)
            .where(StockLevel.item_id == item_id, StockLevel.warehouse_id == warehouse_id)
            .with_for_update(of=StockLevel)
        ).scalar_one_or_none()
        if level is None:
            level = StockLevel(
                item_id=item_id,
                warehouse_id=warehouse_id,
                quantity_on_hand=ZERO,
                quantity_reserved=ZERO,
            )
            self._session.add(level)

        if reorder_point is not _UNSET:
            level.reorder_point = self._threshold(reorder_point, "reorder_point")
        if safety_stock is not _UNSET:
            level.safety_stock = self._threshold(safety_stock, "safety_stock")
        self._session.flush()

        logger.info(
            "stock_thresholds_set",
            extra={
                "item_id": str(item_id),
                "warehouse_id": str(warehouse_id),
                "reorder_point": level.reorder_point,
                "safety_stock": level.safety_stock,
            },
        )
        return level

    @staticmethod
    def _threshold(value: object, field: str) -> Decimal | None:
        if value is None:
            return None
        return require_non_negative(value, field)
