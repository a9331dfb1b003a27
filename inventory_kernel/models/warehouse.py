"""
Module: inventory_kernel.models.warehouse
Responsibility: ORM persistence for stock locations: the central warehouse
    and point-of-sale locations.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - slug is globally unique (uq_warehouse_slug) and is the stable
      external handle (CLI, sale reference prefixes).
    - warehouse_type is one of WarehouseType and selects the low-stock
      threshold semantic: reorder_point for CENTRAL, safety_stock for POS.

Failure modes:
    - IntegrityError on duplicate slug.
"""

from enum import Enum

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class WarehouseType(str, Enum):
    """Classification of stock locations."""

    CENTRAL = "central"
    POS = "pos"


class Warehouse(TrackedBase):
    """
    A physical or logical stock location.

    Contract:
        Warehouses are referenced by StockLevel rows and by ledger rows as
        source and/or target.  They are never deleted once referenced.
    """

    __tablename__ = "warehouses"
    __table_args__ = (
        UniqueConstraint("slug", name="uq_warehouse_slug"),
        Index("idx_warehouse_type", "warehouse_type"),
    )

    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    warehouse_type: Mapped[WarehouseType] = mapped_column(
        String(20),
        nullable=False,
        default=WarehouseType.CENTRAL,
    )

    @property
    def is_pos(self) -> bool:
        return self.warehouse_type == WarehouseType.POS

    def __repr__(self) -> str:
        return f"<Warehouse {self.slug}: {self.name} ({self.warehouse_type})>"
