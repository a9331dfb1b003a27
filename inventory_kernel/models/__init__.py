"""ORM models for the inventory kernel."""

from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction, TransactionType
from inventory_kernel.models.warehouse import Warehouse, WarehouseType

__all__ = [
    "Item",
    "StockLevel",
    "StockTransaction",
    "TransactionType",
    "Warehouse",
    "WarehouseType",
]
