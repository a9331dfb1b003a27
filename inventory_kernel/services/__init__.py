"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.item_service import ItemService
from inventory_kernel.services.stock_ledger import (
    MovementResult,
    MovementStatus,
    StockLedger,
    StockLevelState,
)
from inventory_kernel.services.unit_of_work import UnitOfWork, begin_unit_of_work
from inventory_kernel.services.warehouse_service import WarehouseService

__all__ = [
    "ItemService",
    "MovementResult",
    "MovementStatus",
    "StockLedger",
    "StockLevelState",
    "UnitOfWork",
    "WarehouseService",
    "begin_unit_of_work",
]
