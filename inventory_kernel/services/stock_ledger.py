"""
StockLedger -- applies stock movements as atomic units of work.

Responsibility:
    The only writer of StockLevel quantities and StockTransaction rows.
    ``apply_movement()`` validates a request, locks every affected stock
    level, checks non-negativity, updates the levels, appends exactly one
    ledger row and returns the post-movement levels -- all in one
    transaction.

Architecture position:
    Kernel > Services.  Owns its transaction boundary: each attempt runs in
    its own UnitOfWork opened from the injected session factory.

Invariants enforced:
    - Non-negativity: no applied movement leaves quantity_on_hand or
      quantity_reserved below zero.  A missing level counts as zero.
    - Capacity: no level grows past MAX_QUANTITY, the largest storable count.
    - Zero-sum transfers: source and target change by the same magnitude
      in the same transaction.
    - Atomicity: a rejected or failed movement leaves no level change and
      no ledger row.
    - Lock ordering: levels are locked in warehouse-id order, so two
      opposite transfers cannot deadlock each other.
    - Get-or-create-zero: a missing level is inserted inside the same
      transaction under a savepoint, and a concurrent insert of the same
      pair falls back to locking the winner's row.

Failure modes:
    - Validation and insufficient stock are returned as a MovementResult
      with a non-success status.  Never retried.
    - Concurrency conflicts (stale version, serialization failure, deadlock,
      locked SQLite database) are retried up to ``max_retries`` attempts,
      then ConcurrencyRetryExhaustedError is raised.
    - Any other exception is logged and propagated unchanged.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.movements import (
    MovementKind,
    MovementPlan,
    MovementRequest,
    plan_movement,
)
from inventory_kernel.domain.quantity import MAX_QUANTITY, ZERO
from inventory_kernel.domain.references import generate_sale_reference
from inventory_kernel.exceptions import (
    ConcurrencyError,
    ConcurrencyRetryExhaustedError,
    InsufficientStockError,
    InvalidMovementError,
    OptimisticLockError,
    ItemNotFoundError,
    ValidationError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.services.unit_of_work import UnitOfWork

logger = get_logger("services.stock_ledger")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.05

# PostgreSQL serialization_failure and deadlock_detected
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


class MovementStatus(str, Enum):
    """Outcome of a movement."""

    APPLIED = "applied"
    INVALID_MOVEMENT = "invalid_movement"
    INSUFFICIENT_STOCK = "insufficient_stock"


@dataclass(frozen=True)
class StockLevelState:
    """Post-movement quantities of one (item, warehouse) level."""

    item_id: UUID
    warehouse_id: UUID
    quantity_on_hand: Decimal
    quantity_reserved: Decimal


@dataclass(frozen=True)
class MovementResult:
    """Result of a movement."""

    status: MovementStatus
    kind: MovementKind | None
    item_id: UUID | None
    transaction_id: UUID | None = None
    levels: tuple[StockLevelState, ...] = ()
    reference: str | None = None
    error: ValidationError | InsufficientStockError | None = None
    message: str | None = None
    attempts: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == MovementStatus.APPLIED

    def level_for(self, warehouse_id: UUID) -> StockLevelState | None:
        for level in self.levels:
            if level.warehouse_id == warehouse_id:
                return level
        return None

    def raise_for_status(self) -> MovementResult:
        """Re-raise the business error of a rejected movement; return self otherwise."""
        if self.error is not None:
            raise self.error
        return self


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)


def _is_transient_conflict(exc: BaseException) -> bool:
    if isinstance(exc, (StaleDataError, ConcurrencyError)):
        return True
    if isinstance(exc, DBAPIError) and not isinstance(exc, IntegrityError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in _RETRYABLE_PGCODES:
            return True
        return "database is locked" in str(exc.orig).lower()
    return False


class StockLedger:
    """
    Applies movements against the stock store.

    Contract:
        Every public method runs one complete unit of work and returns a
        MovementResult.  Callers never see a half-applied movement.

    Guarantees:
        - ``is_success`` implies exactly one new StockTransaction and
          updated levels for every touched warehouse.
        - A non-success result implies no change to the store.

    Non-goals:
        - Reservations.  quantity_reserved is carried and validated but no
          movement kind changes it.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def apply_movement(
        self, kind: MovementKind | str, request: MovementRequest
    ) -> MovementResult:
        """
        Validate and apply one movement.

        Returns:
            MovementResult with status APPLIED, INVALID_MOVEMENT or
            INSUFFICIENT_STOCK.

        Raises:
            ConcurrencyRetryExhaustedError: conflicts persisted past the
                retry budget.
            SQLAlchemyError: store failure (propagated unchanged).
        """
        with LogContext.for_movement(
            kind,
            request.item_id,
            request.warehouse_id,
            request.to_warehouse_id,
            actor_id=request.performed_by,
        ):
            logger.info("movement_started", extra={"quantity": str(request.quantity)})
            t0 = time.monotonic()

            try:
                plan = plan_movement(kind, request)
            except ValidationError as exc:
                return self._rejected(kind, request.item_id, exc, attempts=0, t0=t0)

            attempt = 0
            while True:
                attempt += 1
                LogContext.update(attempt=attempt)
                try:
                    result = self._apply_once(plan, attempt)
                except (InsufficientStockError, ValidationError) as exc:
                    return self._rejected(plan.kind, plan.item_id, exc, attempt, t0)
                except Exception as exc:
                    if not _is_transient_conflict(exc):
                        logger.error(
                            "movement_failed",
                            extra={"duration_ms": _elapsed_ms(t0)},
                            exc_info=True,
                        )
                        raise
                    if attempt >= self._max_retries:
                        logger.error("movement_retries_exhausted", exc_info=True)
                        raise ConcurrencyRetryExhaustedError(
                            plan.kind.value, attempt
                        ) from exc
                    logger.warning(
                        "movement_conflict_retry",
                        extra={
                            "max_retries": self._max_retries,
                            "conflict": type(exc).__name__,
                        },
                    )
                    time.sleep(self._retry_backoff_seconds * attempt)
                    continue

                LogContext.update(transaction_id=result.transaction_id)
                logger.info(
                    "movement_applied",
                    extra={
                        "status": result.status.value,
                        "quantity": str(plan.quantity),
                        "net_change": str(plan.net_change),
                        "duration_ms": _elapsed_ms(t0),
                    },
                )
                return result

    # ------------------------------------------------------------------
    # Convenience operations
    # ------------------------------------------------------------------

    def receive_inbound(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """Book goods received at a warehouse."""
        return self.apply_movement(
            MovementKind.INBOUND,
            MovementRequest(
                item_id=item_id,
                quantity=quantity,
                warehouse_id=warehouse_id,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                occurred_at=occurred_at,
            ),
        )

    def transfer(
        self,
        item_id: UUID,
        source_warehouse_id: UUID,
        target_warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """Move stock between two warehouses."""
        return self.apply_movement(
            MovementKind.TRANSFER,
            MovementRequest(
                item_id=item_id,
                quantity=quantity,
                warehouse_id=source_warehouse_id,
                to_warehouse_id=target_warehouse_id,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                occurred_at=occurred_at,
            ),
        )

    def record_sale(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """
        Book a sale.  Without a reference, one is generated from the
        warehouse slug and the current time.
        """
        return self._debit(
            MovementKind.SALE, item_id, warehouse_id, quantity,
            reference=reference, notes=notes,
            performed_by=performed_by, occurred_at=occurred_at,
        )

    def record_writeoff(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """Book stock written off as unsellable."""
        return self._debit(
            MovementKind.WRITEOFF, item_id, warehouse_id, quantity,
            reference=reference, notes=notes,
            performed_by=performed_by, occurred_at=occurred_at,
        )

    def record_donation(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """Book stock given away as a donation."""
        return self._debit(
            MovementKind.DONATION, item_id, warehouse_id, quantity,
            reference=reference, notes=notes,
            performed_by=performed_by, occurred_at=occurred_at,
        )

    def record_return(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None,
        reason: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """
        Book a customer return against the originating sale's reference.

        The reason, when given, is appended to the notes as ``Reason: ...``.
        """
        if reason and reason.strip():
            notes = f"{notes or ''}\nReason: {reason.strip()}".strip()
        return self.apply_movement(
            MovementKind.RETURN,
            MovementRequest(
                item_id=item_id,
                quantity=quantity,
                warehouse_id=warehouse_id,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                occurred_at=occurred_at,
            ),
        )

    def adjust(
        self,
        item_id: UUID,
        warehouse_id: UUID,
        delta: object,
        *,
        reference: str | None = None,
        notes: str | None = None,
        performed_by: str | None = None,
        occurred_at: datetime | None = None,
    ) -> MovementResult:
        """Correct on-hand stock by a signed, non-zero delta."""
        return self.apply_movement(
            MovementKind.ADJUSTMENT,
            MovementRequest(
                item_id=item_id,
                quantity=delta,
                warehouse_id=warehouse_id,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                occurred_at=occurred_at,
            ),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _debit(
        self,
        kind: MovementKind,
        item_id: UUID,
        warehouse_id: UUID,
        quantity: object,
        *,
        reference: str | None,
        notes: str | None,
        performed_by: str | None,
        occurred_at: datetime | None,
    ) -> MovementResult:
        """Book a sale, write-off or donation out of one warehouse."""
        return self.apply_movement(
            kind,
            MovementRequest(
                item_id=item_id,
                quantity=quantity,
                warehouse_id=warehouse_id,
                reference=reference,
                notes=notes,
                performed_by=performed_by,
                occurred_at=occurred_at,
            ),
        )

    def apply_in_session(
        self, session: Session, kind: MovementKind | str, request: MovementRequest
    ) -> MovementResult:
        """
        Apply a movement inside the caller's transaction.

        Flushes but never commits, and does not retry.  Business-rule
        violations are raised (InvalidMovementError, InsufficientStockError,
        ...) so the caller can roll back its whole transaction.
        """
        plan = plan_movement(kind, request)
        return self._execute(session, plan, attempt=1)

    def _apply_once(self, plan: MovementPlan, attempt: int) -> MovementResult:
        try:
            with UnitOfWork(self._session_factory) as uow:
                result = self._execute(uow.session, plan, attempt)
                uow.commit()
        except StaleDataError as exc:
            raise OptimisticLockError("StockLevel", str(plan.item_id)) from exc
        return result

    def _execute(self, session: Session, plan: MovementPlan, attempt: int) -> MovementResult:
        item = session.get(Item, plan.item_id)
        if item is None:
            raise ItemNotFoundError(str(plan.item_id))
        if not item.is_active:
            raise InvalidMovementError(plan.kind.value, f"item {item.sku} is inactive")

        warehouses: dict[UUID, Warehouse] = {}
        for warehouse_id in plan.touched_warehouse_ids:
            warehouse = session.get(Warehouse, warehouse_id)
            if warehouse is None:
                raise WarehouseNotFoundError(str(warehouse_id))
            warehouses[warehouse_id] = warehouse

        # Lock and check every leg before mutating any of them.
        levels: dict[UUID, StockLevel] = {}
        for leg in plan.lock_order:
            level = self._lock_level(session, plan.item_id, leg.warehouse_id)
            if level.quantity_on_hand + leg.delta < 0:
                raise InsufficientStockError(
                    item_id=str(plan.item_id),
                    warehouse_id=str(leg.warehouse_id),
                    available=level.quantity_on_hand,
                    requested=-leg.delta,
                )
            if level.quantity_on_hand + leg.delta > MAX_QUANTITY:
                raise InvalidMovementError(
                    plan.kind.value,
                    f"stock at warehouse {leg.warehouse_id} would exceed {MAX_QUANTITY}",
                )
            levels[leg.warehouse_id] = level

        for leg in plan.legs:
            level = levels[leg.warehouse_id]
            level.quantity_on_hand = level.quantity_on_hand + leg.delta

        now = self._clock.now_utc()
        reference = plan.reference
        if reference is None and plan.kind is MovementKind.SALE:
            reference = generate_sale_reference(
                warehouses[plan.source_warehouse_id].slug, now
            )

        transaction = StockTransaction(
            item_id=plan.item_id,
            transaction_type=plan.kind.value,
            quantity=plan.quantity,
            net_change=plan.net_change,
            source_warehouse_id=plan.source_warehouse_id,
            target_warehouse_id=plan.target_warehouse_id,
            reference=reference,
            notes=plan.notes,
            performed_by=plan.performed_by,
            occurred_at=plan.occurred_at or now,
            created_at=now,
        )
        session.add(transaction)
        session.flush()

        states = tuple(
            StockLevelState(
                item_id=plan.item_id,
                warehouse_id=warehouse_id,
                quantity_on_hand=levels[warehouse_id].quantity_on_hand,
                quantity_reserved=levels[warehouse_id].quantity_reserved,
            )
            for warehouse_id in plan.touched_warehouse_ids
        )

        return MovementResult(
            status=MovementStatus.APPLIED,
            kind=plan.kind,
            item_id=plan.item_id,
            transaction_id=transaction.id,
            levels=states,
            reference=reference,
            message=f"{plan.kind.value} of {plan.quantity} applied",
            attempts=attempt,
        )

    def _lock_level(self, session: Session, item_id: UUID, warehouse_id: UUID) -> StockLevel:
        """Return the locked level for (item, warehouse), creating a zero row if absent."""
        stmt = (
            select(StockLevel)
            .where(
                StockLevel.item_id == item_id,
                StockLevel.warehouse_id == warehouse_id,
            )
            .with_for_update(of=StockLevel)
            .execution_options(populate_existing=True)
        )
        level = session.execute(stmt).scalar_one_or_none()
        if level is not None:
            return level

        # Savepoint so a lost insert race does not roll back the whole movement.
        savepoint = session.begin_nested()
        try:
            level = StockLevel(
                item_id=item_id,
                warehouse_id=warehouse_id,
                quantity_on_hand=ZERO,
                quantity_reserved=ZERO,
            )
            session.add(level)
            session.flush()
            savepoint.commit()
            logger.debug(
                "stock_level_created",
                extra={"warehouse_id": str(warehouse_id)},
            )
            return level
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "stock_level_create_race",
                extra={"warehouse_id": str(warehouse_id)},
            )
            return session.execute(stmt).scalar_one()

    def _rejected(
        self,
        kind: MovementKind | str,
        item_id: UUID | None,
        exc: ValidationError | InsufficientStockError,
        attempts: int,
        t0: float,
    ) -> MovementResult:
        if isinstance(exc, InsufficientStockError):
            status = MovementStatus.INSUFFICIENT_STOCK
        else:
            status = MovementStatus.INVALID_MOVEMENT
        try:
            parsed_kind = MovementKind.parse(kind)
        except InvalidMovementError:
            parsed_kind = None

        logger.warning(
            "movement_rejected",
            extra={
                "status": status.value,
                "error_code": exc.code,
                "reason": str(exc),
                "duration_ms": _elapsed_ms(t0),
            },
        )
        return MovementResult(
            status=status,
            kind=parsed_kind,
            item_id=item_id,
            error=exc,
            message=str(exc),
            attempts=attempts,
        )
