"""
Module: inventory_kernel.selectors.history_selector
Responsibility: Paginated, filterable read access to the stock ledger of one
    item; receipt lookup by sale reference; and ledger-vs-level
    reconciliation.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - History is ordered by occurred_at DESC, then created_at DESC, then id,
      so identical queries return identical pages.
    - Page size defaults to 50 and is capped at 200.  Non-positive limits
      fall back to the default; negative offsets are treated as 0.
    - Time bounds are inclusive on both ends.
    - Reconciliation replays the source/target encoding of every ledger row,
      independent of the stored StockLevel projection.

Failure modes:
    - ValidationError when item_id is missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from inventory_kernel.domain.movements import MovementKind, signed_effect
from inventory_kernel.domain.quantity import ZERO
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class HistoryFilters:
    """Optional narrowing of an item's history."""

    types: frozenset[MovementKind] | None = None
    warehouse_id: UUID | None = None
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class StockTransactionRecord:
    """Immutable view of one ledger row."""

    id: UUID
    item_id: UUID
    transaction_type: MovementKind
    quantity: Decimal
    net_change: Decimal
    source_warehouse_id: UUID | None
    target_warehouse_id: UUID | None
    reference: str | None
    notes: str | None
    performed_by: str | None
    occurred_at: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, row: StockTransaction) -> StockTransactionRecord:
        return cls(
            id=row.id,
            item_id=row.item_id,
            transaction_type=MovementKind(row.transaction_type),
            quantity=row.quantity,
            net_change=row.net_change,
            source_warehouse_id=row.source_warehouse_id,
            target_warehouse_id=row.target_warehouse_id,
            reference=row.reference,
            notes=row.notes,
            performed_by=row.performed_by,
            occurred_at=row.occurred_at,
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class HistoryPage:
    item_id: UUID
    records: tuple[StockTransactionRecord, ...]
    limit: int
    offset: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.records) < self.total


@dataclass(frozen=True)
class SaleLine:
    transaction_id: UUID
    item_id: UUID
    sku: str
    name: str
    unit: str
    quantity: Decimal
    warehouse_id: UUID | None
    warehouse_slug: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class SaleReceipt:
    """All sale rows sharing one receipt reference, oldest first."""

    reference: str
    lines: tuple[SaleLine, ...]
    sold_by_item: dict[UUID, Decimal] = field(default_factory=dict)
    returned_by_item: dict[UUID, Decimal] = field(default_factory=dict)

    def returnable(self, item_id: UUID) -> Decimal:
        """Units of an item that can still be returned against this receipt."""
        remaining = self.sold_by_item.get(item_id, ZERO) - self.returned_by_item.get(item_id, ZERO)
        return max(remaining, ZERO)


@dataclass(frozen=True)
class ReconciliationRow:
    warehouse_id: UUID
    ledger_on_hand: Decimal
    level_on_hand: Decimal

    @property
    def matches(self) -> bool:
        return self.ledger_on_hand == self.level_on_hand


class StockHistorySelector(BaseSelector):
    """
    Ledger read paths.

    Guarantees:
        - Never mutates; repeated calls with the same arguments return
          equal results absent new movements.
    """

    def __init__(
        self,
        session,
        default_limit: int = DEFAULT_PAGE_SIZE,
        max_limit: int = MAX_PAGE_SIZE,
    ):
        super().__init__(session)
        self._default_limit = default_limit
        self._max_limit = max_limit

    def _page_size(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return min(self._default_limit, self._max_limit)
        return min(limit, self._max_limit)

    def query_history(
        self, item_id: UUID | None, filters: HistoryFilters | None = None
    ) -> HistoryPage:
        """
        One page of an item's ledger, newest first.

        Raises:
            ValidationError: item_id is missing.
        """
        if item_id is None or (isinstance(item_id, str) and not item_id.strip()):
            raise ValidationError("item_id is required for a history query")
        if isinstance(item_id, str):
            try:
                item_id = UUID(item_id)
            except ValueError:
                raise ValidationError(f"item_id is not a valid identifier: {item_id}") from None

        filters = filters or HistoryFilters()
        limit = self._page_size(filters.limit)
        offset = max(filters.offset or 0, 0)

        conditions = [StockTransaction.item_id == item_id]
        if filters.types:
            conditions.append(
                StockTransaction.transaction_type.in_(
                    sorted(MovementKind.parse(t).value for t in filters.types)
                )
            )
        if filters.warehouse_id is not None:
            conditions.append(
                or_(
                    StockTransaction.source_warehouse_id == filters.warehouse_id,
                    StockTransaction.target_warehouse_id == filters.warehouse_id,
                )
            )
        if filters.occurred_from is not None:
            conditions.append(StockTransaction.occurred_at >= filters.occurred_from)
        if filters.occurred_to is not None:
            conditions.append(StockTransaction.occurred_at <= filters.occurred_to)

        total = self.session.execute(
            select(func.count(StockTransaction.id)).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(StockTransaction)
            .where(*conditions)
            .order_by(
                StockTransaction.occurred_at.desc(),
                StockTransaction.created_at.desc(),
                StockTransaction.id,
            )
            .limit(limit)
            .offset(offset)
        ).scalars()

        return HistoryPage(
            item_id=item_id,
            records=tuple(StockTransactionRecord.from_model(row) for row in rows),
            limit=limit,
            offset=offset,
            total=total,
        )

    def sales_by_reference(self, reference: str) -> SaleReceipt:
        """Sale lines recorded under one receipt reference, oldest first."""
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("reference is required")

        rows = self.session.execute(
            select(StockTransaction, Item, Warehouse)
            .join(Item, Item.id == StockTransaction.item_id)
            .outerjoin(Warehouse, Warehouse.id == StockTransaction.source_warehouse_id)
            .where(
                StockTransaction.reference == reference,
                StockTransaction.transaction_type == MovementKind.SALE.value,
            )
            .order_by(StockTransaction.occurred_at, StockTransaction.created_at)
        ).all()

        lines = []
        sold: dict[UUID, Decimal] = {}
        for tx, item, warehouse in rows:
            lines.append(
                SaleLine(
                    transaction_id=tx.id,
                    item_id=item.id,
                    sku=item.sku,
                    name=item.name,
                    unit=item.unit,
                    quantity=tx.quantity,
                    warehouse_id=tx.source_warehouse_id,
                    warehouse_slug=warehouse.slug if warehouse is not None else None,
                    occurred_at=tx.occurred_at,
                )
            )
            sold[item.id] = sold.get(item.id, ZERO) + tx.quantity

        returned = {
            item_id: quantity
            for item_id, quantity in self.session.execute(
                select(StockTransaction.item_id, func.sum(StockTransaction.quantity))
                .where(
                    StockTransaction.reference == reference,
                    StockTransaction.transaction_type == MovementKind.RETURN.value,
                )
                .group_by(StockTransaction.item_id)
            ).all()
        }

        return SaleReceipt(
            reference=reference,
            lines=tuple(lines),
            sold_by_item=sold,
            returned_by_item=returned,
        )

    def reconcile_item(self, item_id: UUID) -> tuple[ReconciliationRow, ...]:
        """
        Replay the item's ledger per warehouse and compare with its levels.

        Rows are returned for every warehouse that appears in either the
        ledger or the levels, ordered by warehouse id.
        """
        ledger: dict[UUID, Decimal] = {}
        rows = self.session.execute(
            select(
                StockTransaction.quantity,
                StockTransaction.source_warehouse_id,
                StockTransaction.target_warehouse_id,
            ).where(StockTransaction.item_id == item_id)
        ).all()
        for quantity, source_id, target_id in rows:
            for warehouse_id in {source_id, target_id} - {None}:
                ledger[warehouse_id] = ledger.get(warehouse_id, ZERO) + signed_effect(
                    quantity, warehouse_id, source_id, target_id
                )

        levels = {
            warehouse_id: on_hand
            for warehouse_id, on_hand in self.session.execute(
                select(StockLevel.warehouse_id, StockLevel.quantity_on_hand).where(
                    StockLevel.item_id == item_id
                )
            ).all()
        }

        return tuple(
            ReconciliationRow(
                warehouse_id=warehouse_id,
                ledger_on_hand=ledger.get(warehouse_id, ZERO),
                level_on_hand=levels.get(warehouse_id, ZERO),
            )
            for warehouse_id in sorted(set(ledger) | set(levels), key=str)
        )
