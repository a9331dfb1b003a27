"""
Tests for the StockLedger service.

Verifies:
- Every movement kind updates levels and appends exactly one ledger row
- Rejected movements leave no level change and no ledger row
- Zero-sum transfers and the non-negativity floor
- Retry on optimistic-lock conflicts, and giving up after the retry budget
- Structured log events for applied and rejected movements
"""

import re
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.movements import MovementKind, MovementRequest
from inventory_kernel.exceptions import (
    ConcurrencyRetryExhaustedError,
    InsufficientStockError,
    InvalidMovementError,
    InvalidQuantityError,
    ItemNotFoundError,
    OptimisticLockError,
    WarehouseNotFoundError,
)
from inventory_kernel.models.stock_level import StockLevel
from inventory_kernel.models.stock_transaction import StockTransaction
from inventory_kernel.services.item_service import ItemService
from inventory_kernel.services.stock_ledger import MovementStatus, StockLedger


def _transactions(session_factory, item_id) -> list[StockTransaction]:
    with session_factory() as session:
        return list(
            session.execute(
                select(StockTransaction)
                .where(StockTransaction.item_id == item_id)
                .order_by(StockTransaction.created_at, StockTransaction.id)
            ).scalars()
        )


def _row(session_factory, transaction_id) -> StockTransaction:
    with session_factory() as session:
        return session.get(StockTransaction, transaction_id)


class TestMovementScenarios:
    """The core walk-through: inbound, rejected sale, transfer, adjustments."""

    def test_inbound_creates_level_and_row(self, ledger, item, warehouses, on_hand, session_factory):
        result = ledger.receive_inbound(item, warehouses.central, 10, reference="PO-1")

        assert result.is_success
        assert result.status is MovementStatus.APPLIED
        assert result.attempts == 1
        assert result.level_for(warehouses.central).quantity_on_hand == Decimal("10.000")
        assert on_hand(item, warehouses.central) == Decimal("10.000")

        (row,) = _transactions(session_factory, item)
        assert row.transaction_type == MovementKind.INBOUND
        assert row.target_warehouse_id == warehouses.central
        assert row.source_warehouse_id is None
        assert row.quantity == Decimal("10.000")
        assert row.net_change == Decimal("10.000")
        assert row.reference == "PO-1"
        assert row.id == result.transaction_id

    def test_oversell_is_rejected_without_side_effects(self, ledger, item, warehouses, on_hand, tx_count):
        ledger.receive_inbound(item, warehouses.central, 10)

        result = ledger.record_sale(item, warehouses.central, 12)

        assert not result.is_success
        assert result.status is MovementStatus.INSUFFICIENT_STOCK
        assert isinstance(result.error, InsufficientStockError)
        assert result.error.available == Decimal("10.000")
        assert result.error.requested == Decimal("12.000")
        assert result.transaction_id is None
        assert on_hand(item, warehouses.central) == Decimal("10.000")
        assert tx_count(item) == 1

    def test_transfer_moves_stock_between_warehouses(self, ledger, item, warehouses, on_hand, session_factory):
        ledger.receive_inbound(item, warehouses.central, 10)

        result = ledger.transfer(item, warehouses.central, warehouses.pos, 4)

        assert result.is_success
        assert on_hand(item, warehouses.central) == Decimal("6.000")
        assert on_hand(item, warehouses.pos) == Decimal("4.000")
        assert result.level_for(warehouses.pos).quantity_on_hand == Decimal("4.000")

        row = _row(session_factory, result.transaction_id)
        assert row.transaction_type == MovementKind.TRANSFER
        assert row.source_warehouse_id == warehouses.central
        assert row.target_warehouse_id == warehouses.pos
        assert row.quantity == Decimal("4.000")
        assert row.net_change == Decimal("0.000")

    def test_adjustment_down_to_zero_then_below(self, ledger, item, warehouses, on_hand, tx_count):
        ledger.receive_inbound(item, warehouses.central, 10)
        ledger.transfer(item, warehouses.central, warehouses.pos, 4)

        first = ledger.adjust(item, warehouses.central, -6)
        second = ledger.adjust(item, warehouses.central, -1)

        assert first.is_success
        assert second.status is MovementStatus.INSUFFICIENT_STOCK
        assert on_hand(item, warehouses.central) == Decimal("0.000")
        assert tx_count(item) == 3


class TestMovementKinds:
    @pytest.fixture
    def stocked(self, ledger, item, warehouses):
        ledger.receive_inbound(item, warehouses.pos, 20)
        return item

    @pytest.mark.parametrize(
        "method, kind",
        [
            ("record_sale", MovementKind.SALE),
            ("record_writeoff", MovementKind.WRITEOFF),
            ("record_donation", MovementKind.DONATION),
        ],
    )
    def test_debits_use_source_only(self, ledger, stocked, warehouses, on_hand, session_factory, method, kind):
        result = getattr(ledger, method)(stocked, warehouses.pos, "2.5", notes="shelf 3")

        assert result.is_success
        assert result.kind is kind
        assert on_hand(stocked, warehouses.pos) == Decimal("17.500")
        row = _row(session_factory, result.transaction_id)
        assert row.source_warehouse_id == warehouses.pos
        assert row.target_warehouse_id is None
        assert row.net_change == Decimal("-2.500")
        assert row.notes == "shelf 3"

    def test_sale_gets_generated_reference(self, ledger, stocked, warehouses):
        result = ledger.record_sale(stocked, warehouses.pos, 1)
        assert re.fullmatch(r"POSMAIN-20250108-120000-[A-Z0-9]{4}", result.reference)

    def test_sale_keeps_given_reference(self, ledger, stocked, warehouses):
        result = ledger.record_sale(stocked, warehouses.pos, 1, reference="R-77")
        assert result.reference == "R-77"

    def test_writeoff_has_no_generated_reference(self, ledger, stocked, warehouses):
        assert ledger.record_writeoff(stocked, warehouses.pos, 1).reference is None

    def test_return_requires_reference(self, ledger, stocked, warehouses, tx_count):
        before = tx_count(stocked)
        result = ledger.record_return(stocked, warehouses.pos, 1, reference=None)

        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert isinstance(result.error, InvalidMovementError)
        assert tx_count(stocked) == before

    def test_return_credits_target_and_records_reason(self, ledger, stocked, warehouses, on_hand, session_factory):
        sale = ledger.record_sale(stocked, warehouses.pos, 2)
        result = ledger.record_return(
            stocked, warehouses.pos, 1,
            reference=sale.reference, reason=" damaged ", notes="box opened",
        )

        assert result.is_success
        assert on_hand(stocked, warehouses.pos) == Decimal("19.000")
        row = _row(session_factory, result.transaction_id)
        assert row.target_warehouse_id == warehouses.pos
        assert row.reference == sale.reference
        assert row.notes == "box opened\nReason: damaged"

    def test_positive_adjustment(self, ledger, stocked, warehouses, on_hand, session_factory):
        result = ledger.adjust(stocked, warehouses.pos, "0.5", notes="recount")

        assert result.is_success
        assert on_hand(stocked, warehouses.pos) == Decimal("20.500")
        row = _row(session_factory, result.transaction_id)
        assert row.quantity == Decimal("0.500")
        assert row.target_warehouse_id == warehouses.pos

    def test_generic_entry_point_accepts_string_kind(self, ledger, stocked, warehouses):
        result = ledger.apply_movement(
            "Sale",
            MovementRequest(item_id=stocked, quantity=1, warehouse_id=warehouses.pos, performed_by="ops"),
        )
        assert result.is_success
        assert result.kind is MovementKind.SALE

    def test_occurred_at_defaults_to_clock(self, ledger, stocked, warehouses, clock, session_factory):
        clock.advance(90)
        result = ledger.record_sale(stocked, warehouses.pos, 1)
        row = _row(session_factory, result.transaction_id)
        assert row.occurred_at == clock.now_utc()
        assert row.created_at == clock.now_utc()


class TestRejections:
    def test_unknown_kind(self, ledger, item, warehouses):
        result = ledger.apply_movement(
            "theft", MovementRequest(item_id=item, quantity=1, warehouse_id=warehouses.pos)
        )
        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert result.kind is None

    def test_missing_item(self, ledger, warehouses):
        result = ledger.receive_inbound(uuid4(), warehouses.central, 1)
        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert isinstance(result.error, ItemNotFoundError)

    def test_missing_target_warehouse_leaves_source_untouched(self, ledger, item, warehouses, on_hand, tx_count):
        ledger.receive_inbound(item, warehouses.central, 5)
        result = ledger.transfer(item, warehouses.central, uuid4(), 2)

        assert isinstance(result.error, WarehouseNotFoundError)
        assert on_hand(item, warehouses.central) == Decimal("5.000")
        assert tx_count(item) == 1

    def test_failed_transfer_creates_no_target_level(self, ledger, item, warehouses, session_factory):
        ledger.receive_inbound(item, warehouses.central, 1)
        result = ledger.transfer(item, warehouses.central, warehouses.pos2, 3)

        assert result.status is MovementStatus.INSUFFICIENT_STOCK
        with session_factory() as session:
            level = session.execute(
                select(StockLevel).where(
                    StockLevel.item_id == item, StockLevel.warehouse_id == warehouses.pos2
                )
            ).scalar_one_or_none()
        assert level is None

    def test_inactive_item_rejects_movements(self, ledger, item, warehouses, session_factory, clock):
        with session_factory() as session:
            ItemService(session, clock=clock).deactivate_item(item)
            session.commit()

        result = ledger.receive_inbound(item, warehouses.central, 1)
        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert "inactive" in result.message

    def test_quantity_beyond_storage_capacity(self, ledger, item, warehouses, tx_count):
        result = ledger.receive_inbound(item, warehouses.central, Decimal("1e16"))

        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert isinstance(result.error, InvalidQuantityError)
        assert tx_count(item) == 0

    def test_level_may_not_grow_past_capacity(self, ledger, item, warehouses, on_hand, tx_count):
        assert ledger.receive_inbound(item, warehouses.central, Decimal("5e15")).is_success

        result = ledger.receive_inbound(item, warehouses.central, Decimal("5e15"))
        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert isinstance(result.error, InvalidMovementError)
        assert "would exceed" in result.message
        assert on_hand(item, warehouses.central) == Decimal("5000000000000000.000")
        assert tx_count(item) == 1

    def test_transfer_target_capacity_checked(self, ledger, item, warehouses, on_hand, tx_count):
        ledger.receive_inbound(item, warehouses.central, Decimal("5e15"))
        ledger.receive_inbound(item, warehouses.pos, Decimal("5e15"))

        result = ledger.transfer(item, warehouses.central, warehouses.pos, Decimal("5e15"))
        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert on_hand(item, warehouses.central) == Decimal("5000000000000000.000")
        assert tx_count(item) == 2

    def test_overlong_reference_rejected(self, ledger, item, warehouses, tx_count):
        result = ledger.receive_inbound(item, warehouses.central, 1, reference="PO-" + "9" * 98)

        assert result.status is MovementStatus.INVALID_MOVEMENT
        assert "reference is longer than 100" in result.message
        assert tx_count(item) == 0

    def test_raise_for_status(self, ledger, item, warehouses):
        ok = ledger.receive_inbound(item, warehouses.central, 1)
        assert ok.raise_for_status() is ok

        with pytest.raises(InsufficientStockError):
            ledger.record_sale(item, warehouses.central, 2).raise_for_status()

    def test_max_retries_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            StockLedger(session_factory, max_retries=0)


class TestApplyInSession:
    def test_business_errors_are_raised(self, ledger, item, warehouses, session_factory):
        with session_factory() as session:
            with pytest.raises(InsufficientStockError):
                ledger.apply_in_session(
                    session,
                    MovementKind.SALE,
                    MovementRequest(item_id=item, quantity=1, warehouse_id=warehouses.pos),
                )
            session.rollback()

    def test_joins_caller_transaction(self, ledger, item, warehouses, on_hand, tx_count, session_factory):
        with session_factory() as session:
            result = ledger.apply_in_session(
                session,
                MovementKind.INBOUND,
                MovementRequest(item_id=item, quantity=3, warehouse_id=warehouses.pos),
            )
            assert result.is_success
            session.rollback()

        assert on_hand(item, warehouses.pos) == Decimal("0.000")
        assert tx_count(item) == 0


class TestRetries:
    def test_stale_level_is_retried(self, ledger, item, warehouses, on_hand, tx_count, monkeypatch, captured_logs):
        original = ledger._execute
        calls = {"n": 0}

        def flaky(session, plan, attempt):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleDataError("stock_levels version changed")
            return original(session, plan, attempt)

        monkeypatch.setattr(ledger, "_execute", flaky)
        result = ledger.receive_inbound(item, warehouses.central, 4)

        assert result.is_success
        assert result.attempts == 2
        assert on_hand(item, warehouses.central) == Decimal("4.000")
        assert tx_count(item) == 1
        retries = [r for r in captured_logs() if r["message"] == "movement_conflict_retry"]
        assert len(retries) == 1
        assert retries[0]["conflict"] == "OptimisticLockError"
        assert retries[0]["attempt"] == 1

    def test_retry_budget_exhausted(self, ledger, item, warehouses, on_hand, tx_count, monkeypatch):
        def always_stale(session, plan, attempt):
            raise StaleDataError("stock_levels version changed")

        monkeypatch.setattr(ledger, "_execute", always_stale)
        with pytest.raises(ConcurrencyRetryExhaustedError) as exc_info:
            ledger.receive_inbound(item, warehouses.central, 4)

        assert exc_info.value.attempts == 3
        assert exc_info.value.code == "CONCURRENCY_RETRY_EXHAUSTED"
        assert isinstance(exc_info.value.__cause__, OptimisticLockError)
        assert on_hand(item, warehouses.central) == Decimal("0.000")
        assert tx_count(item) == 0

    def test_unexpected_errors_propagate_unchanged(self, ledger, item, warehouses, monkeypatch, captured_logs):
        def broken(session, plan, attempt):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(ledger, "_execute", broken)
        with pytest.raises(RuntimeError, match="disk on fire"):
            ledger.receive_inbound(item, warehouses.central, 1)

        failed = [r for r in captured_logs() if r["message"] == "movement_failed"]
        assert failed and failed[0]["exc_type"] == "RuntimeError"


class TestLedgerLogging:
    def test_applied_movement_logs(self, ledger, item, warehouses, captured_logs):
        ledger.receive_inbound(item, warehouses.central, 2, performed_by="alice")

        logs = captured_logs()
        started = next(r for r in logs if r["message"] == "movement_started")
        applied = next(r for r in logs if r["message"] == "movement_applied")
        assert started["movement_kind"] == "inbound"
        assert started["actor_id"] == "alice"
        assert applied["item_id"] == str(item)
        assert applied["status"] == "applied"
        assert applied["quantity"] == "2.000"
        assert applied["correlation_id"] == started["correlation_id"]

    def test_rejected_movement_logs(self, ledger, item, warehouses, captured_logs):
        ledger.record_sale(item, warehouses.central, 1)

        rejected = next(r for r in captured_logs() if r["message"] == "movement_rejected")
        assert rejected["level"] == "WARNING"
        assert rejected["status"] == "insufficient_stock"
        assert rejected["error_code"] == "INSUFFICIENT_STOCK"
