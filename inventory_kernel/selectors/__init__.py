"""Read-only selectors for the inventory kernel."""

from inventory_kernel.selectors.analytics import (
    AnalyticsEngine,
    CoverResult,
    InboundCoverage,
    SalesBucket,
    SalesDeltaResult,
    TopSeller,
    VelocityResult,
)
from inventory_kernel.selectors.base import BaseSelector, InventoryScope
from inventory_kernel.selectors.dashboard_selector import (
    DashboardSelector,
    DashboardSnapshot,
    DashboardTotals,
    LowStockWarning,
    RecentTransaction,
)
from inventory_kernel.selectors.history_selector import (
    HistoryFilters,
    HistoryPage,
    ReconciliationRow,
    SaleReceipt,
    StockHistorySelector,
    StockTransactionRecord,
)
from inventory_kernel.selectors.snapshot_selector import (
    InventorySnapshot,
    InventorySnapshotSelector,
    ItemStock,
    PosInventory,
    WarehouseStock,
)

__all__ = [
    "AnalyticsEngine",
    "BaseSelector",
    "CoverResult",
    "DashboardSelector",
    "DashboardSnapshot",
    "DashboardTotals",
    "HistoryFilters",
    "HistoryPage",
    "InboundCoverage",
    "InventoryScope",
    "InventorySnapshot",
    "InventorySnapshotSelector",
    "ItemStock",
    "LowStockWarning",
    "PosInventory",
    "RecentTransaction",
    "ReconciliationRow",
    "SaleReceipt",
    "SalesBucket",
    "SalesDeltaResult",
    "StockHistorySelector",
    "StockTransactionRecord",
    "TopSeller",
    "VelocityResult",
    "WarehouseStock",
]
