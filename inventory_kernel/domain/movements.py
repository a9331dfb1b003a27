"""
Module: inventory_kernel.domain.movements
Responsibility: Movement kinds, the caller-facing MovementRequest DTO, and
    the pure planning step that turns a request into per-warehouse stock
    deltas plus the ledger row's direction fields.
Architecture position: Kernel > Domain.  Pure, zero I/O.  The StockLedger
    service executes the plans produced here; it never re-derives
    directions on its own.

Invariants enforced:
    - Every non-adjustment movement carries a strictly positive quantity.
    - Adjustment deltas are non-zero; the magnitude is stored as quantity,
      the sign selects target (positive) or source (negative).
    - Transfers name two distinct warehouses and produce legs that sum to zero.
    - Returns carry a non-blank reference to the originating sale.
    - net_change equals the sum of all leg deltas (system-wide on-hand effect).
    - reference, notes and performed_by fit their ledger columns.

Failure modes:
    - InvalidQuantityError for unparseable or non-positive quantities.
    - InvalidMovementError for structural violations (missing warehouse,
      source == target, zero delta, missing return reference, text longer
      than its column).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_kernel.domain.quantity import require_positive, to_storage
from inventory_kernel.exceptions import InvalidMovementError


class MovementKind(str, Enum):
    """Stock movement / ledger transaction types."""

    INBOUND = "inbound"
    TRANSFER = "transfer"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    WRITEOFF = "writeoff"
    DONATION = "donation"
    RETURN = "return"

    @classmethod
    def parse(cls, value: MovementKind | str) -> MovementKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidMovementError(str(value), "unknown movement kind") from None


# Column widths of the free-text ledger fields.
REFERENCE_MAX_LENGTH = 100
PERFORMED_BY_MAX_LENGTH = 100
NOTES_MAX_LENGTH = 4000

# Kinds that take stock out of a single source warehouse.
DEBIT_KINDS = frozenset({MovementKind.SALE, MovementKind.WRITEOFF, MovementKind.DONATION})

# Kinds that put stock into a single target warehouse.
CREDIT_KINDS = frozenset({MovementKind.INBOUND, MovementKind.RETURN})


@dataclass(frozen=True)
class MovementRequest:
    """
    Caller input for one logical stock movement.

    ``warehouse_id`` is the location being credited or debited.  For a
    transfer it is the source and ``to_warehouse_id`` the target.  For an
    adjustment ``quantity`` is the signed delta.
    """

    item_id: UUID | None
    quantity: object
    warehouse_id: UUID | None = None
    to_warehouse_id: UUID | None = None
    reference: str | None = None
    notes: str | None = None
    performed_by: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class StockLeg:
    """One on-hand delta applied to a single (item, warehouse) level."""

    warehouse_id: UUID
    delta: Decimal


@dataclass(frozen=True)
class MovementPlan:
    """Validated, direction-resolved form of a MovementRequest."""

    kind: MovementKind
    item_id: UUID
    quantity: Decimal
    net_change: Decimal
    legs: tuple[StockLeg, ...]
    source_warehouse_id: UUID | None = None
    target_warehouse_id: UUID | None = None
    reference: str | None = None
    notes: str | None = None
    performed_by: str | None = None
    occurred_at: datetime | None = None
    touched_warehouse_ids: tuple[UUID, ...] = field(default=())

    @property
    def lock_order(self) -> tuple[StockLeg, ...]:
        """Legs sorted by warehouse id so concurrent transfers lock in one order."""
        return tuple(sorted(self.legs, key=lambda leg: str(leg.warehouse_id)))


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    text = text.strip()
    return text or None


def _bounded(kind: MovementKind, name: str, text: str | None, limit: int) -> str | None:
    text = _clean(text)
    if text is not None and len(text) > limit:
        raise InvalidMovementError(kind.value, f"{name} is longer than {limit} characters")
    return text


def plan_movement(kind: MovementKind | str, request: MovementRequest) -> MovementPlan:
    """
    Validate a request and resolve it into stock legs and ledger directions.

    Performs no store access: existence of the item and warehouses and the
    non-negativity of the resulting levels are checked by the ledger.
    """
    kind = MovementKind.parse(kind)

    if request.item_id is None:
        raise InvalidMovementError(kind.value, "item_id is required")
    if request.warehouse_id is None:
        raise InvalidMovementError(kind.value, "warehouse_id is required")
    if kind is not MovementKind.TRANSFER and request.to_warehouse_id is not None:
        raise InvalidMovementError(kind.value, "only transfers take a target warehouse")

    common = dict(
        kind=kind,
        item_id=request.item_id,
        reference=_bounded(kind, "reference", request.reference, REFERENCE_MAX_LENGTH),
        notes=_bounded(kind, "notes", request.notes, NOTES_MAX_LENGTH),
        performed_by=_bounded(
            kind, "performed_by", request.performed_by, PERFORMED_BY_MAX_LENGTH
        ),
        occurred_at=request.occurred_at,
    )
    warehouse_id = request.warehouse_id

    if kind is MovementKind.ADJUSTMENT:
        delta = to_storage(request.quantity)
        if delta == 0:
            raise InvalidMovementError(kind.value, "delta must not be zero")
        return MovementPlan(
            quantity=abs(delta),
            net_change=delta,
            legs=(StockLeg(warehouse_id, delta),),
            source_warehouse_id=warehouse_id if delta < 0 else None,
            target_warehouse_id=warehouse_id if delta > 0 else None,
            touched_warehouse_ids=(warehouse_id,),
            **common,
        )

    quantity = require_positive(request.quantity)

    if kind is MovementKind.TRANSFER:
        target_id = request.to_warehouse_id
        if target_id is None:
            raise InvalidMovementError(kind.value, "to_warehouse_id is required")
        if target_id == warehouse_id:
            raise InvalidMovementError(
                kind.value, "source and target warehouse must differ"
            )
        return MovementPlan(
            quantity=quantity,
            net_change=Decimal("0.000"),
            legs=(StockLeg(warehouse_id, -quantity), StockLeg(target_id, quantity)),
            source_warehouse_id=warehouse_id,
            target_warehouse_id=target_id,
            touched_warehouse_ids=(warehouse_id, target_id),
            **common,
        )

    if kind is MovementKind.RETURN and common["reference"] is None:
        raise InvalidMovementError(
            kind.value, "reference to the originating sale is required"
        )

    if kind in DEBIT_KINDS:
        return MovementPlan(
            quantity=quantity,
            net_change=-quantity,
            legs=(StockLeg(warehouse_id, -quantity),),
            source_warehouse_id=warehouse_id,
            touched_warehouse_ids=(warehouse_id,),
            **common,
        )

    # CREDIT_KINDS
    return MovementPlan(
        quantity=quantity,
        net_change=quantity,
        legs=(StockLeg(warehouse_id, quantity),),
        target_warehouse_id=warehouse_id,
        touched_warehouse_ids=(warehouse_id,),
        **common,
    )


def signed_effect(
    quantity: Decimal,
    warehouse_id: UUID,
    source_warehouse_id: UUID | None,
    target_warehouse_id: UUID | None,
) -> Decimal:
    """
    On-hand effect of a recorded ledger row on one warehouse.

    Reads the source/target encoding, so rows written before net_change
    existed replay the same way as new ones.
    """
    effect = Decimal("0.000")
    if target_warehouse_id == warehouse_id:
        effect += quantity
    if source_warehouse_id == warehouse_id:
        effect -= quantity
    return effect
