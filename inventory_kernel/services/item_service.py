"""
ItemService -- item registry writes.

Responsibility:
    Creates items (optionally booking opening stock through the ledger in
    the same transaction), deactivates them, and purges items that never
    moved.

Architecture position:
    Kernel > Services.  Session-bound: flushes, never commits.

Invariants enforced:
    - SKU uniqueness is checked before insert (DuplicateSkuError) and backed
      by the uq_item_sku constraint.
    - Opening stock is a regular ``inbound`` ledger row (reference
      ``ITEM_INIT``), never a direct write to stock_levels.
    - Deactivation is a tombstone: the item's ledger and stock levels stay.
    - Purge is refused while any ledger row references the item
      (ItemReferencedError, enforced again by db/immutability.py).
"""

from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.movements import MovementKind, MovementRequest
from inventory_kernel.domain.quantity import require_non_negative
from inventory_kernel.domain.references import ITEM_INIT_REFERENCE
from inventory_kernel.exceptions import (
    DuplicateSkuError,
    ItemNotFoundError,
    ItemReferencedError,
    ValidationError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.stock_ledger import MovementResult, StockLedger

logger = get_logger("services.item")

DEFAULT_UNIT = "stk"
INITIAL_STOCK_NOTES = "Initial stock"


class ItemService(BaseService):
    """
    Item registry operations.

    Contract:
        ``ledger`` is required only for ``create_item`` with opening stock.
    """

    def __init__(
        self,
        session,
        ledger: StockLedger | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._clock = clock or SystemClock()

    def create_item(
        self,
        sku: str,
        name: str,
        *,
        unit: str | None = None,
        barcode: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        shop_id: str | None = None,
        initial_stock: object = None,
        warehouse_id: UUID | None = None,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
    ) -> tuple[Item, MovementResult | None]:
        """
        Create an item and optionally book its opening stock.

        Returns:
            (item, movement result of the opening inbound or None)

        Raises:
            ValidationError: blank name/sku, or opening stock without a warehouse.
            DuplicateSkuError: SKU already taken.
            InvalidQuantityError: opening stock is negative or not a number.
            WarehouseNotFoundError: opening stock warehouse does not exist.
        """
        name = (name or "").strip()
        sku = (sku or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        if not sku:
            raise ValidationError("Item SKU is required")

        opening = None
        if initial_stock is not None:
            opening = require_non_negative(initial_stock, "initial_stock")
            if opening > 0 and warehouse_id is None:
                raise ValidationError("Opening stock requires a warehouse")

        existing = self._session.execute(
            select(Item.id).where(Item.sku == sku)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateSkuError(sku)

        item = Item(
            sku=sku,
            name=name,
            unit=(unit or "").strip() or DEFAULT_UNIT,
            barcode=barcode or None,
            description=description or None,
            item_metadata=dict(metadata or {}),
            shop_id=shop_id or None,
            is_active=True,
        )
        self._session.add(item)
        self._session.flush()

        movement = None
        if opening is not None and opening > 0:
            if self._ledger is None:
                raise RuntimeError("ItemService needs a StockLedger to book opening stock")
            movement = self._ledger.apply_in_session(
                self._session,
                MovementKind.INBOUND,
                MovementRequest(
                    item_id=item.id,
                    quantity=opening,
                    warehouse_id=warehouse_id,
                    reference=reference or ITEM_INIT_REFERENCE,
                    notes=notes or INITIAL_STOCK_NOTES,
                    performed_by=performed_by,
                ),
            )

        logger.info(
            "item_created",
            extra={
                "item_id": str(item.id),
                "sku": sku,
                "opening_stock": str(opening) if opening else None,
            },
        )
        return item, movement

    def get_item(self, item_id: UUID) -> Item:
        item = self._session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def get_by_sku(self, sku: str) -> Item:
        item = self._session.execute(
            select(Item).where(Item.sku == sku.strip())
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(sku)
        return item

    def deactivate_item(self, item_id: UUID) -> Item:
        """
        Tombstone an item.  Its history and stock levels are preserved;
        it drops out of snapshots and rejects new movements.
        """
        item = self.get_item(item_id)
        if item.is_active:
            item.is_active = False
            item.deactivated_at = self._clock.now_utc()
            self._session.flush()
            logger.info("item_deactivated", extra={"item_id": str(item_id)})
        return item

    def reactivate_item(self, item_id: UUID) -> Item:
        item = self.get_item(item_id)
        if not item.is_active:
            item.is_active = True
            item.deactivated_at = None
            self._session.flush()
            logger.info("item_reactivated", extra={"item_id": str(item_id)})
        return item

    def purge_item(self, item_id: UUID) -> None:
        """
        Physically delete an item that has no ledger history, together
        with its (necessarily zero) stock levels.

        Raises:
            ItemNotFoundError: unknown item.
            ItemReferencedError: the item has ledger rows.
        """
        item = self.get_item(item_id)
        count = self._session.execute(
            select(func.count(StockTransaction.id)).where(
                StockTransaction.item_id == item_id
            )
        ).scalar_one()
        if count:
            raise ItemReferencedError(str(item_id), count)

        self._session.execute(delete(StockLevel).where(StockLevel.item_id == item_id))
        self._session.delete(item)
        self._session.flush()
        logger.info("item_purged", extra={"item_id": str(item_id), "sku": item.sku})
