"""
Module: inventory_kernel.models.stock_transaction
Responsibility: ORM persistence for the append-only stock ledger.  One row per
    applied movement.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/movements.py (transaction type enum and text column widths).

Invariants enforced:
    - Append-only: db/immutability.py rejects every UPDATE and DELETE.
    - quantity is a non-negative magnitude (CHECK constraint).
    - Direction encoding:
        inbound, return              -> target only
        sale, writeoff, donation     -> source only
        transfer                     -> source and target
        adjustment                   -> target if delta > 0, source if delta < 0
    - net_change is the signed on-hand effect summed over all warehouses:
      +quantity for credits, -quantity for debits, the delta itself for
      adjustments, zero for transfers.
    - At least one of source/target is populated (CHECK constraint).

Failure modes:
    - ImmutabilityViolationError on any attempted UPDATE or DELETE.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.movements import (
    NOTES_MAX_LENGTH,
    PERFORMED_BY_MAX_LENGTH,
    REFERENCE_MAX_LENGTH,
    MovementKind,
)
from inventory_kernel.models.item import Item
from inventory_kernel.models.warehouse import Warehouse

# Ledger rows use the movement vocabulary directly.
TransactionType = MovementKind


class StockTransaction(Base):
    """
    Immutable record of one stock movement.

    Contract:
        Written exactly once by the StockLedger inside the same transaction
        that updates the affected StockLevel rows.  Never updated, never
        deleted.
    """

    __tablename__ = "stock_transactions"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_transaction_quantity_non_negative"),
        CheckConstraint(
            "source_warehouse_id IS NOT NULL OR target_warehouse_id IS NOT NULL",
            name="ck_stock_transaction_has_warehouse",
        ),
        Index("idx_stock_tx_item_occurred", "item_id", "occurred_at"),
        Index("idx_stock_tx_type_occurred", "transaction_type", "occurred_at"),
        Index("idx_stock_tx_source", "source_warehouse_id"),
        Index("idx_stock_tx_target", "target_warehouse_id"),
        Index("idx_stock_tx_reference", "reference"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Non-negative magnitude
    quantity: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    # Signed on-hand effect across all warehouses
    net_change: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    source_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=True,
    )

    target_warehouse_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=True,
    )

    reference: Mapped[str | None] = mapped_column(
        String(REFERENCE_MAX_LENGTH),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        String(NOTES_MAX_LENGTH),
        nullable=True,
    )

    performed_by: Mapped[str | None] = mapped_column(
        String(PERFORMED_BY_MAX_LENGTH),
        nullable=True,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    item: Mapped[Item] = relationship()
    source_warehouse: Mapped[Warehouse | None] = relationship(
        foreign_keys=[source_warehouse_id],
    )
    target_warehouse: Mapped[Warehouse | None] = relationship(
        foreign_keys=[target_warehouse_id],
    )

    @property
    def kind(self) -> MovementKind:
        return MovementKind(self.transaction_type)

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.id} {self.transaction_type} "
            f"item={self.item_id} qty={self.quantity}>"
        )
