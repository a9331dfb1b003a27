"""
Tests for DashboardSelector.

Verifies:
- Totals (item count, on hand, stock value, sales) over one scope
- Low-stock warnings per warehouse type
- Recent transactions ordering, naming and limit
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from inventory_kernel.domain.metrics import CoverStatus, SalesDirection
from inventory_kernel.domain.movements import MovementKind
from inventory_kernel.exceptions import ValidationError
from inventory_kernel.models.warehouse import WarehouseType
from inventory_kernel.selectors.base import InventoryScope
from inventory_kernel.selectors.dashboard_selector import DashboardSelector
from inventory_kernel.services.warehouse_service import WarehouseService


@pytest.fixture
def shop(make_item, ledger, warehouses, clock, session_factory):
    """Coffee and tea stocked centrally and at the main POS, with a week of sales."""
    now = clock.now_utc()
    coffee = make_item("COF", "Coffee", price="10", initial_stock=50, warehouse_id=warehouses.central)
    tea = make_item("TEA", "Tea", price="4", initial_stock=20, warehouse_id=warehouses.central)

    ledger.transfer(coffee, warehouses.central, warehouses.pos, 10, occurred_at=now - timedelta(days=5))
    ledger.transfer(tea, warehouses.central, warehouses.pos, 5, occurred_at=now - timedelta(days=5))
    ledger.record_sale(coffee, warehouses.pos, 6, occurred_at=now - timedelta(days=2))
    ledger.record_sale(tea, warehouses.pos, 2, occurred_at=now - timedelta(days=1))
    ledger.record_sale(coffee, warehouses.pos, 1, occurred_at=now - timedelta(days=10))

    with session_factory() as session:
        service = WarehouseService(session)
        service.set_thresholds(coffee, warehouses.central, reorder_point=40)
        service.set_thresholds(tea, warehouses.central, reorder_point=5)
        service.set_thresholds(coffee, warehouses.pos, safety_stock=3)
        service.set_thresholds(tea, warehouses.pos, safety_stock=0)
        session.commit()
    return {"coffee": coffee, "tea": tea}


class TestBuildDashboard:
    def test_totals(self, shop, session_factory, clock):
        with session_factory() as session:
            dashboard = DashboardSelector(session, clock).build_dashboard(range_days=7)

        totals = dashboard.totals
        assert totals.item_count == 2
        # coffee 50 - 1 - 6 = 43 on hand, tea 20 - 2 = 18
        assert totals.total_on_hand == Decimal("61.000")
        assert totals.total_value == Decimal("502")
        assert totals.sales_quantity == Decimal("8.000")
        assert totals.sales_revenue == Decimal("68")
        assert dashboard.generated_at == clock.now_utc()

    def test_sales_delta_and_top_sellers(self, shop, session_factory, clock):
        with session_factory() as session:
            dashboard = DashboardSelector(session, clock).build_dashboard(range_days=7)

        assert [seller.sku for seller in dashboard.most_sold] == ["COF", "TEA"]
        assert dashboard.sales_delta.current_total == Decimal("8.000")
        assert dashboard.sales_delta.prior_total == Decimal("1.000")
        assert dashboard.sales_delta.direction is SalesDirection.UP

    def test_inventory_matches_totals(self, shop, session_factory, clock):
        with session_factory() as session:
            dashboard = DashboardSelector(session, clock).build_dashboard()
        assert dashboard.inventory.total_on_hand == dashboard.totals.total_on_hand

    def test_scope_by_shop(self, shop, make_item, ledger, warehouses, session_factory, clock):
        other = make_item("OTH", "Other", price="1", shop_id="elsewhere", initial_stock=3, warehouse_id=warehouses.central)
        with session_factory() as session:
            dashboard = DashboardSelector(session, clock).build_dashboard(InventoryScope.of(shop_id="elsewhere"))
        assert dashboard.totals.item_count == 1
        assert dashboard.totals.total_on_hand == Decimal("3.000")
        assert [r.item_id for r in dashboard.recent_transactions] == [other]

    def test_invalid_range(self, session_factory, clock):
        with session_factory() as session:
            with pytest.raises(ValidationError):
                DashboardSelector(session, clock).build_dashboard(range_days=0)

    def test_logs_build(self, shop, session_factory, clock, captured_logs):
        with session_factory() as session:
            DashboardSelector(session, clock).build_dashboard()
        built = next(r for r in captured_logs() if r["message"] == "dashboard_built")
        assert built["item_count"] == 2


class TestLowStockWarnings:
    def test_thresholds_by_warehouse_type(self, shop, warehouses, session_factory, clock):
        with session_factory() as session:
            warnings = DashboardSelector(session, clock).low_stock_warnings()

        flagged = {(w.sku, w.warehouse_type) for w in warnings}
        # central coffee 40 <= 40 reorder point, POS coffee 3 <= 3 safety stock;
        # central tea 15 > 5 and POS tea has a zero safety stock
        assert flagged == {("COF", WarehouseType.CENTRAL), ("COF", WarehouseType.POS)}
        pos_warning = next(w for w in warnings if w.warehouse_id == warehouses.pos)
        assert pos_warning.quantity_on_hand == Decimal("3.000")
        assert pos_warning.threshold == Decimal("3.000")

    def test_warehouse_scope(self, shop, warehouses, session_factory, clock):
        scope = InventoryScope.of(warehouse_ids=[warehouses.pos])
        with session_factory() as session:
            warnings = DashboardSelector(session, clock).low_stock_warnings(scope)
        assert [w.warehouse_name for w in warnings] == ["Main street shop"]

    def test_short_sales_history_gives_insufficient_data(self, shop, warehouses, session_factory, clock):
        with session_factory() as session:
            warnings = DashboardSelector(session, clock).low_stock_warnings(range_days=7)

        # the only in-window coffee sale is two days old and central never sells
        for warning in warnings:
            assert warning.days_of_cover is None
            assert warning.days_of_cover_status is CoverStatus.INSUFFICIENT_DATA
            assert warning.inbound_coverage.item_id == shop["coffee"]
            assert warning.inbound_coverage.total_inbound == Decimal("50.000")

    def test_steady_sales_flag_cover_risk(self, make_item, ledger, warehouses, session_factory, clock):
        now = clock.now_utc()
        mug = make_item("MUG", "Mug", price="5")
        ledger.receive_inbound(mug, warehouses.central, 12, reference="PO-7", occurred_at=now - timedelta(days=6, hours=1))
        ledger.transfer(mug, warehouses.central, warehouses.pos, 12, occurred_at=now - timedelta(days=6, hours=1))
        for days in (6, 4, 2):
            ledger.record_sale(mug, warehouses.pos, 3, occurred_at=now - timedelta(days=days))
        with session_factory() as session:
            WarehouseService(session).set_thresholds(mug, warehouses.pos, safety_stock=4)
            session.commit()

        with session_factory() as session:
            (warning,) = DashboardSelector(session, clock).low_stock_warnings(range_days=7)

        # 9 units over 6 observed days: 1.5 a day against 3 on hand
        assert warning.quantity_on_hand == Decimal("3.000")
        assert warning.days_of_cover == Decimal("2.0")
        assert warning.days_of_cover_status is CoverStatus.RISK
        assert warning.inbound_coverage.total_inbound == Decimal("12.000")
        assert warning.inbound_coverage.references == ("PO-7",)

    def test_dashboard_warnings_use_its_range(self, shop, session_factory, clock):
        with session_factory() as session:
            dashboard = DashboardSelector(session, clock).build_dashboard(range_days=14)

        assert {w.inbound_coverage.range_days for w in dashboard.warnings} == {14}


class TestRecentTransactions:
    def test_newest_first_within_window(self, shop, session_factory, clock):
        since = clock.now_utc() - timedelta(days=7)
        with session_factory() as session:
            recent = DashboardSelector(session, clock).recent_transactions(InventoryScope(), since)

        kinds = [r.transaction_type for r in recent]
        assert kinds[:2] == [MovementKind.INBOUND, MovementKind.INBOUND]
        assert kinds[2:] == [MovementKind.SALE, MovementKind.SALE, MovementKind.TRANSFER, MovementKind.TRANSFER]
        assert all(r.occurred_at >= since for r in recent)

    def test_warehouse_name_prefers_target(self, shop, session_factory, clock):
        since = clock.now_utc() - timedelta(days=7)
        with session_factory() as session:
            recent = DashboardSelector(session, clock).recent_transactions(InventoryScope(), since)

        transfer = next(r for r in recent if r.transaction_type is MovementKind.TRANSFER)
        sale = next(r for r in recent if r.transaction_type is MovementKind.SALE)
        assert transfer.warehouse_name == "Main street shop"
        assert sale.warehouse_name == "Main street shop"

    def test_limit(self, shop, session_factory, clock):
        since = clock.now_utc() - timedelta(days=30)
        with session_factory() as session:
            recent = DashboardSelector(session, clock, recent_limit=2).recent_transactions(InventoryScope(), since)
        assert len(recent) == 2
