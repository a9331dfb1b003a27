"""
Module: inventory_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors, and the
    scope filter shared by snapshot, analytics and dashboard reads.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the pure helpers in domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, NOT ORM
      instances.
    - No caching: every call re-queries the store, so a read issued after a
      committed movement always reflects it.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session


@dataclass(frozen=True)
class InventoryScope:
    """
    Optional narrowing of inventory reads.

    ``shop_id`` keeps only items tagged with that shop; ``warehouse_ids``
    keeps only stock held at (or moved through) those warehouses.
    """

    shop_id: str | None = None
    warehouse_ids: frozenset[UUID] | None = None

    @classmethod
    def everything(cls) -> InventoryScope:
        return cls()

    @classmethod
    def of(
        cls, shop_id: str | None = None, warehouse_ids=None
    ) -> InventoryScope:
        return cls(
            shop_id=shop_id,
            warehouse_ids=frozenset(warehouse_ids) if warehouse_ids is not None else None,
        )


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
