"""
Module: inventory_kernel.models.stock_level
Responsibility: ORM persistence for the mutable per-(warehouse, item)
    quantity projection of the ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (warehouse_id, item_id) (uq_stock_level_warehouse_item).
    - quantity_on_hand >= 0 and quantity_reserved >= 0, both in the StockLedger
      and as CHECK constraints.
    - version is SQLAlchemy's version_id_col: every UPDATE is conditioned on
      the version read, so a lost update raises StaleDataError even on
      backends without row locks.
    - Rows are created lazily by the StockLedger (get-or-create-zero inside
      the movement's own transaction) and never deleted while the item has
      ledger history.

Failure modes:
    - IntegrityError on a concurrent first insert of the same pair (the
      ledger retries), or on a CHECK violation.
    - StaleDataError when another transaction updated the row first.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.models.item import Item
from inventory_kernel.models.warehouse import Warehouse


class StockLevel(TrackedBase):
    """
    Current quantity of one item at one warehouse.

    Contract:
        Quantities change only through the StockLedger.  Thresholds
        (reorder_point, safety_stock) change only through the
        WarehouseService.
    """

    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "item_id", name="uq_stock_level_warehouse_item"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_stock_level_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_level_reserved_non_negative"),
        Index("idx_stock_level_item", "item_id"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    quantity_on_hand: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0.000"),
    )

    quantity_reserved: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0.000"),
    )

    reorder_point: Mapped[Decimal | None] = mapped_column(
        nullable=True,
    )

    safety_stock: Mapped[Decimal | None] = mapped_column(
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    item: Mapped[Item] = relationship()
    warehouse: Mapped[Warehouse] = relationship()

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockLevel item={self.item_id} warehouse={self.warehouse_id} "
            f"on_hand={self.quantity_on_hand} reserved={self.quantity_reserved}>"
        )
