"""
End-to-end tests for the inventory-kernel command line.

Each test drives ``main`` against its own SQLite file and parses the JSON
document the command prints.
"""

import json
from io import StringIO

import pytest

from inventory_kernel.cli import EXIT_OK, EXIT_REJECTED, main
from inventory_kernel.db.engine import reset_engine


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run one CLI command; returns (exit_code, parsed_output)."""
    monkeypatch.delenv("INVENTORY_CONFIG", raising=False)
    url = f"sqlite:///{tmp_path / 'cli.db'}"

    def _run(*argv):
        out = StringIO()
        code = main(["--db-url", url, *argv], out=out)
        return code, json.loads(out.getvalue())

    yield _run
    reset_engine()


@pytest.fixture
def stocked(cli):
    """Schema, two warehouses and one item with ten units at central."""
    assert cli("init-db")[0] == EXIT_OK
    cli("warehouse-add", "central-hq", "Central warehouse", "--type", "central")
    cli("warehouse-add", "pos-main", "Main street shop", "--type", "pos")
    code, payload = cli(
        "item-add", "COF-250", "Coffee beans 250g",
        "--price", "129.00", "--initial-stock", "10", "--warehouse", "central-hq",
    )
    assert code == EXIT_OK
    return payload


class TestSetupCommands:
    def test_init_db(self, cli):
        code, payload = cli("init-db")
        assert code == EXIT_OK
        assert payload["status"] == "ok"

    def test_item_add_books_opening_stock(self, stocked):
        assert stocked["sku"] == "COF-250"
        movement = stocked["movement"]
        assert movement["status"] == "applied"
        assert movement["kind"] == "inbound"
        assert movement["levels"][0]["quantity_on_hand"] == 10.0

    def test_duplicate_warehouse_rejected(self, cli, stocked):
        code, payload = cli("warehouse-add", "central-hq", "Again")
        assert code == EXIT_REJECTED
        assert payload["status"] == "rejected"
        assert payload["error_code"] == "DUPLICATE_WAREHOUSE"

    def test_thresholds(self, cli, stocked):
        code, payload = cli("thresholds", "COF-250", "central-hq", "--reorder-point", "4")
        assert code == EXIT_OK
        assert payload["reorder_point"] == 4.0


class TestMovementCommands:
    def test_inbound_transfer_and_sale(self, cli, stocked):
        code, payload = cli("inbound", "COF-250", "central-hq", "5", "--reference", "PO-1001")
        assert code == EXIT_OK
        assert payload["reference"] == "PO-1001"

        code, payload = cli("transfer", "COF-250", "central-hq", "pos-main", "6")
        assert code == EXIT_OK
        by_level = {level["quantity_on_hand"] for level in payload["levels"]}
        assert by_level == {9.0, 6.0}

        code, payload = cli("sale", "COF-250", "pos-main", "2")
        assert code == EXIT_OK
        assert payload["kind"] == "sale"
        assert payload["levels"][0]["quantity_on_hand"] == 4.0
        # generated receipt reference from the POS slug
        assert payload["reference"].startswith("POSMAIN-")

    def test_oversell_exits_with_rejection(self, cli, stocked):
        code, payload = cli("sale", "COF-250", "central-hq", "11")
        assert code == EXIT_REJECTED
        assert payload["status"] == "insufficient_stock"
        assert payload["error_code"] == "INSUFFICIENT_STOCK"
        assert payload["transaction_id"] is None

    def test_unknown_item_rejected(self, cli, stocked):
        code, payload = cli("inbound", "NOPE-1", "central-hq", "1")
        assert code == EXIT_REJECTED
        assert payload["error_code"] == "ITEM_NOT_FOUND"

    def test_return_against_receipt(self, cli, stocked):
        cli("transfer", "COF-250", "central-hq", "pos-main", "3")
        _, sale = cli("sale", "COF-250", "pos-main", "2", "--reference", "RCPT-1")

        code, receipt = cli("receipt", "RCPT-1")
        assert code == EXIT_OK
        assert receipt["returnable"] == {sale["item_id"]: 2.0}

        code, payload = cli(
            "return", "COF-250", "pos-main", "1", "--reference", "RCPT-1", "--reason", "damaged",
        )
        assert code == EXIT_OK
        assert payload["kind"] == "return"
        assert payload["levels"][0]["quantity_on_hand"] == 2.0


class TestReadCommands:
    def test_history_filters_by_type(self, cli, stocked):
        cli("transfer", "COF-250", "central-hq", "pos-main", "4")
        cli("sale", "COF-250", "pos-main", "1")

        code, page = cli("history", "COF-250", "--type", "sale")
        assert code == EXIT_OK
        assert page["total"] == 1
        assert page["records"][0]["transaction_type"] == "sale"

        _, page = cli("history", "COF-250")
        assert page["total"] == 3

    def test_snapshot(self, cli, stocked):
        cli("transfer", "COF-250", "central-hq", "pos-main", "4")

        code, snapshot = cli("snapshot")
        assert code == EXIT_OK
        assert snapshot["total_on_hand"] == 10.0
        (entry,) = snapshot["items"]
        assert entry["sku"] == "COF-250"
        assert len(entry["breakdown"]) == 2

    def test_dashboard(self, cli, stocked):
        cli("transfer", "COF-250", "central-hq", "pos-main", "4")
        cli("sale", "COF-250", "pos-main", "3")

        code, dashboard = cli("dashboard", "--range-days", "7")
        assert code == EXIT_OK
        assert dashboard["range_days"] == 7
        assert dashboard["totals"]["sales_quantity"] == 3.0
        assert dashboard["totals"]["sales_revenue"] == 387.0
        assert dashboard["most_sold"][0]["sku"] == "COF-250"

    def test_sales_report(self, cli, stocked):
        cli("sale", "COF-250", "central-hq", "2")

        code, report = cli("sales-report", "--metric", "revenue", "--range-days", "7")
        assert code == EXIT_OK
        assert report["delta"]["current_total"] == 258.0
        assert sum(bucket["quantity"] for bucket in report["buckets"]) == 2.0
