#!/usr/bin/env python3
"""
Seed the database with a small demo shop.

Drops all tables, recreates them, registers a central warehouse and two
POS locations, creates items with opening stock, and books two weeks of
transfers and backdated sales so the dashboard and analytics have data.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --db-url sqlite:///demo.db
"""

import argparse
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------
WAREHOUSES = [
    ("central-hq", "Central warehouse", "central"),
    ("pos-main", "Main street shop", "pos"),
    ("pos-harbour", "Harbour kiosk", "pos"),
]

# sku, name, unit, price, opening stock at central
ITEMS = [
    ("COF-250", "Coffee beans 250g", "stk", "129.00", 120),
    ("TEA-100", "Green tea 100g", "stk", "79.50", 60),
    ("MUG-01", "Ceramic mug", "stk", "149.00", 40),
    ("MLK-1L", "Oat milk 1L", "l", "32.90", 80),
]

# sku, pos slug, per-day units sold for the last 14 days (oldest first)
SALES = [
    ("COF-250", "pos-main", [2, 3, 1, 4, 2, 3, 5, 2, 4, 3, 6, 4, 5, 3]),
    ("TEA-100", "pos-main", [1, 0, 1, 2, 0, 1, 1, 0, 2, 1, 1, 0, 1, 2]),
    ("MUG-01", "pos-harbour", [0, 1, 0, 0, 2, 0, 1, 1, 0, 0, 1, 0, 0, 1]),
    ("MLK-1L", "pos-harbour", [3, 4, 2, 5, 3, 4, 6, 5, 4, 6, 5, 7, 6, 8]),
]


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the inventory database with demo data.")
    parser.add_argument("--db-url", help="Database URL (default: configured URL)")
    parser.add_argument("--config", help="YAML configuration file")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from inventory_config import load_settings
    from inventory_kernel.db.engine import (
        create_tables,
        drop_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from inventory_kernel.domain.clock import SystemClock
    from inventory_kernel.models.warehouse import WarehouseType
    from inventory_kernel.services.item_service import ItemService
    from inventory_kernel.services.stock_ledger import StockLedger
    from inventory_kernel.services.warehouse_service import WarehouseService

    settings = load_settings(args.config)
    db_url = args.db_url or settings.database.url

    # -----------------------------------------------------------------
    # 1. Connect + reset
    # -----------------------------------------------------------------
    print()
    print(f"  [1/4] Connecting to {db_url.split('@')[-1]}...")
    try:
        init_engine_from_url(db_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print("  [2/4] Dropping old tables and recreating schema...")
    drop_tables()
    create_tables()

    clock = SystemClock()
    ledger = StockLedger(
        get_session_factory(),
        clock=clock,
        max_retries=settings.ledger.max_retries,
        retry_backoff_seconds=settings.ledger.retry_backoff_seconds,
    )

    # -----------------------------------------------------------------
    # 2. Warehouses and items
    # -----------------------------------------------------------------
    print(f"  [3/4] Creating {len(WAREHOUSES)} warehouses and {len(ITEMS)} items...")
    now = clock.now_utc()
    start = now - timedelta(days=len(SALES[0][2]))

    with session_scope() as session:
        warehouses = WarehouseService(session)
        ids = {
            slug: warehouses.create_warehouse(slug, name, WarehouseType(kind)).id
            for slug, name, kind in WAREHOUSES
        }
        items = ItemService(session, ledger, clock)
        item_ids = {}
        for sku, name, unit, price, opening in ITEMS:
            item, _ = items.create_item(
                sku,
                name,
                unit=unit,
                metadata={"price": price},
                initial_stock=opening,
                warehouse_id=ids["central-hq"],
                performed_by="seed",
            )
            item_ids[sku] = item.id
            warehouses.set_thresholds(item.id, ids["central-hq"], reorder_point=Decimal(opening) / 4)

    # -----------------------------------------------------------------
    # 3. Transfers and sales
    # -----------------------------------------------------------------
    booked = 0
    rejected = 0
    for sku, slug, per_day in SALES:
        needed = sum(per_day)
        result = ledger.transfer(
            item_ids[sku], ids["central-hq"], ids[slug], needed + 5,
            reference=f"TR-{sku}", performed_by="seed", occurred_at=start,
        )
        if not result.is_success:
            rejected += 1
            continue
        with session_scope() as session:
            WarehouseService(session).set_thresholds(item_ids[sku], ids[slug], safety_stock=3)

        for offset, units in enumerate(per_day):
            if not units:
                continue
            result = ledger.record_sale(
                item_ids[sku], ids[slug], units,
                performed_by="seed",
                occurred_at=start + timedelta(days=offset, hours=10),
            )
            if result.is_success:
                booked += 1
            else:
                rejected += 1

    print(f"  [4/4] Booked {booked} sales ({rejected} rejected).")
    print()
    print("  Done.  Try: inventory-kernel dashboard")
    return 0


if __name__ == "__main__":
    sys.exit(main())
