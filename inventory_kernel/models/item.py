"""
Module: inventory_kernel.models.item
Responsibility: ORM persistence for sellable products.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sku is globally unique (uq_item_sku).
    - Items are deactivated (is_active=False, deactivated_at set) rather than
      deleted once they have stock history.  A physical delete is refused
      by db/immutability.py while ledger rows reference the item.

Failure modes:
    - IntegrityError on duplicate sku.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class Item(TrackedBase):
    """
    A sellable product tracked across warehouses.

    Contract:
        ``item_metadata`` is an opaque JSON map.  The only key the kernel
        reads is ``price``, used for revenue analytics and stock value.

    Non-goals:
        - Pricing, tax and supplier data are not modelled here.
    """

    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("sku", name="uq_item_sku"),
        Index("idx_item_active", "is_active"),
        Index("idx_item_shop", "shop_id"),
        Index("idx_item_name", "name"),
    )

    sku: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="stk",
    )

    barcode: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(4000),
        nullable=True,
    )

    # "metadata" is reserved on declarative classes
    item_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Opaque tenant tag used for scope filtering
    shop_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    deactivated_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    def __repr__(self) -> str:
        state = "" if self.is_active else " (inactive)"
        return f"<Item {self.sku}: {self.name}{state}>"
