"""
Command-line interface for the inventory kernel.

Usage:
    inventory-kernel init-db
    inventory-kernel warehouse-add central-hq "Central warehouse" --type central
    inventory-kernel item-add SKU-1 "Coffee beans" --price 129 --initial-stock 10 --warehouse central-hq
    inventory-kernel inbound SKU-1 central-hq 25 --reference PO-1001
    inventory-kernel transfer SKU-1 central-hq pos-main 5
    inventory-kernel sale SKU-1 pos-main 2
    inventory-kernel return SKU-1 pos-main 1 --reference POS-20250108-120000-AB12 --reason damaged
    inventory-kernel adjust SKU-1 central-hq -- -1
    inventory-kernel history SKU-1 --type sale --limit 20
    inventory-kernel snapshot
    inventory-kernel dashboard --range-days 7

Items are addressed by SKU or id, warehouses by slug or id.  Every command
prints one JSON document on stdout.

Exit codes:
    0  success
    2  business rule rejection (validation, insufficient stock, not found)
    1  unexpected failure
"""

import argparse
import json
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select

from inventory_config import InventorySettings, load_settings
from inventory_kernel.db.engine import (
    create_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from inventory_kernel.domain.clock import SystemClock
from inventory_kernel.domain.metrics import BucketInterval, SalesMetric
from inventory_kernel.domain.movements import MovementKind, MovementRequest
from inventory_kernel.exceptions import (
    ConcurrencyError,
    InventoryKernelError,
    ItemNotFoundError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import configure_logging, get_logger
from inventory_kernel.models.item import Item
from inventory_kernel.models.warehouse import Warehouse, WarehouseType
from inventory_kernel.selectors.analytics import AnalyticsEngine
from inventory_kernel.selectors.base import InventoryScope
from inventory_kernel.selectors.dashboard_selector import DashboardSelector
from inventory_kernel.selectors.history_selector import HistoryFilters, StockHistorySelector
from inventory_kernel.selectors.snapshot_selector import InventorySnapshotSelector
from inventory_kernel.services.item_service import ItemService
from inventory_kernel.services.stock_ledger import MovementResult, StockLedger
from inventory_kernel.services.warehouse_service import WarehouseService

logger = get_logger("cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REJECTED = 2

DEBIT_COMMANDS = {
    "sale": MovementKind.SALE,
    "writeoff": MovementKind.WRITEOFF,
    "donation": MovementKind.DONATION,
}


# =============================================================================
# Output helpers
# =============================================================================


def _json_default(obj):
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def emit(payload, out=None) -> None:
    if is_dataclass(payload) and not isinstance(payload, type):
        payload = asdict(payload)
    out = out or sys.stdout
    out.write(json.dumps(payload, indent=2, default=_json_default, ensure_ascii=False))
    out.write("\n")


def movement_payload(result: MovementResult) -> dict:
    return {
        "status": result.status.value,
        "kind": result.kind.value if result.kind else None,
        "item_id": result.item_id,
        "transaction_id": result.transaction_id,
        "reference": result.reference,
        "levels": [asdict(level) for level in result.levels],
        "error_code": result.error.code if result.error else None,
        "message": result.message,
        "attempts": result.attempts,
    }


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO timestamp: {value}") from None


# =============================================================================
# Lookups
# =============================================================================


def resolve_item(session, ref: str) -> Item:
    """Item by id, falling back to SKU."""
    try:
        item = session.get(Item, UUID(ref))
    except ValueError:
        item = None
    if item is None:
        item = session.execute(select(Item).where(Item.sku == ref.strip())).scalar_one_or_none()
    if item is None:
        raise ItemNotFoundError(ref)
    return item


def resolve_warehouse(session, ref: str) -> Warehouse:
    """Warehouse by id, falling back to slug."""
    try:
        warehouse = session.get(Warehouse, UUID(ref))
    except ValueError:
        warehouse = None
    if warehouse is None:
        warehouse = session.execute(
            select(Warehouse).where(Warehouse.slug == ref.strip().lower())
        ).scalar_one_or_none()
    if warehouse is None:
        raise WarehouseNotFoundError(ref)
    return warehouse


def _scope(session, args) -> InventoryScope:
    warehouse_ids = None
    if getattr(args, "warehouse", None):
        warehouse_ids = [resolve_warehouse(session, ref).id for ref in args.warehouse]
    return InventoryScope.of(shop_id=getattr(args, "shop", None), warehouse_ids=warehouse_ids)


# =============================================================================
# Commands
# =============================================================================


class Commands:
    """Command handlers.  Each returns an exit code."""

    def __init__(self, settings: InventorySettings, out=None):
        self.settings = settings
        self.out = out or sys.stdout
        self.clock = SystemClock()

    def ledger(self) -> StockLedger:
        return StockLedger(
            get_session_factory(),
            clock=self.clock,
            max_retries=self.settings.ledger.max_retries,
            retry_backoff_seconds=self.settings.ledger.retry_backoff_seconds,
        )

    def analytics(self, session) -> AnalyticsEngine:
        analytics = self.settings.analytics
        return AnalyticsEngine(
            session,
            self.clock,
            min_observed_days=analytics.min_observed_days,
            risk_threshold_days=analytics.risk_threshold_days,
            max_references=analytics.max_references,
        )

    def init_db(self, args) -> int:
        create_tables()
        emit({"status": "ok", "message": "tables created"}, self.out)
        return EXIT_OK

    def warehouse_add(self, args) -> int:
        with session_scope() as session:
            warehouse = WarehouseService(session).create_warehouse(
                args.slug, args.name, args.type
            )
            payload = {
                "warehouse_id": warehouse.id,
                "slug": warehouse.slug,
                "name": warehouse.name,
                "warehouse_type": warehouse.warehouse_type,
            }
        emit(payload, self.out)
        return EXIT_OK

    def item_add(self, args) -> int:
        metadata = {}
        if args.price is not None:
            metadata["price"] = args.price
        with session_scope() as session:
            warehouse_id = None
            if args.warehouse:
                warehouse_id = resolve_warehouse(session, args.warehouse).id
            item, movement = ItemService(session, self.ledger(), self.clock).create_item(
                args.sku,
                args.name,
                unit=args.unit,
                barcode=args.barcode,
                description=args.description,
                metadata=metadata,
                shop_id=args.shop,
                initial_stock=args.initial_stock,
                warehouse_id=warehouse_id,
                performed_by=args.performed_by,
            )
            payload = {
                "item_id": item.id,
                "sku": item.sku,
                "name": item.name,
                "unit": item.unit,
                "movement": movement_payload(movement) if movement else None,
            }
        emit(payload, self.out)
        return EXIT_OK

    def item_deactivate(self, args) -> int:
        with session_scope() as session:
            item = ItemService(session, clock=self.clock).deactivate_item(
                resolve_item(session, args.item).id
            )
            payload = {"item_id": item.id, "sku": item.sku, "is_active": item.is_active}
        emit(payload, self.out)
        return EXIT_OK

    def thresholds(self, args) -> int:
        kwargs = {}
        if args.reorder_point is not None:
            kwargs["reorder_point"] = args.reorder_point
        if args.safety_stock is not None:
            kwargs["safety_stock"] = args.safety_stock
        with session_scope() as session:
            item = resolve_item(session, args.item)
            warehouse = resolve_warehouse(session, args.warehouse)
            level = WarehouseService(session).set_thresholds(item.id, warehouse.id, **kwargs)
            payload = {
                "item_id": item.id,
                "warehouse_id": warehouse.id,
                "reorder_point": level.reorder_point,
                "safety_stock": level.safety_stock,
            }
        emit(payload, self.out)
        return EXIT_OK

    def movement(self, args) -> int:
        with get_session() as session:
            item_id = resolve_item(session, args.item).id
            warehouse_id = resolve_warehouse(session, args.warehouse).id
            target_id = None
            if args.command == "transfer":
                target_id = resolve_warehouse(session, args.target).id

        notes = args.notes
        if args.command == "return" and args.reason:
            notes = f"{notes or ''}\nReason: {args.reason.strip()}".strip()

        kind = DEBIT_COMMANDS.get(args.command) or MovementKind.parse(
            "adjustment" if args.command == "adjust" else args.command
        )
        result = self.ledger().apply_movement(
            kind,
            MovementRequest(
                item_id=item_id,
                quantity=args.quantity,
                warehouse_id=warehouse_id,
                to_warehouse_id=target_id,
                reference=args.reference,
                notes=notes,
                performed_by=args.performed_by,
                occurred_at=args.occurred_at,
            ),
        )
        emit(movement_payload(result), self.out)
        return EXIT_OK if result.is_success else EXIT_REJECTED

    def history(self, args) -> int:
        with get_session() as session:
            item = resolve_item(session, args.item)
            warehouse_id = resolve_warehouse(session, args.warehouse).id if args.warehouse else None
            selector = StockHistorySelector(
                session,
                default_limit=self.settings.history.default_limit,
                max_limit=self.settings.history.max_limit,
            )
            page = selector.query_history(
                item.id,
                HistoryFilters(
                    types=frozenset(MovementKind.parse(t) for t in args.type) if args.type else None,
                    warehouse_id=warehouse_id,
                    occurred_from=args.occurred_from,
                    occurred_to=args.occurred_to,
                    limit=args.limit,
                    offset=args.offset,
                ),
            )
        emit(page, self.out)
        return EXIT_OK

    def receipt(self, args) -> int:
        with get_session() as session:
            receipt = StockHistorySelector(session).sales_by_reference(args.reference)
        emit(
            {
                "reference": receipt.reference,
                "lines": [asdict(line) for line in receipt.lines],
                "returnable": {
                    str(item_id): receipt.returnable(item_id) for item_id in receipt.sold_by_item
                },
            },
            self.out,
        )
        return EXIT_OK

    def snapshot(self, args) -> int:
        with get_session() as session:
            snapshot = InventorySnapshotSelector(session, self.clock).build_snapshot(
                _scope(session, args)
            )
        emit(snapshot, self.out)
        return EXIT_OK

    def item_stats(self, args) -> int:
        range_days = args.range_days or self.settings.analytics.default_range_days
        with get_session() as session:
            item = resolve_item(session, args.item)
            engine = self.analytics(session)
            payload = {
                "item_id": item.id,
                "sku": item.sku,
                "inbound": asdict(engine.inbound_coverage(item.id, range_days)),
            }
            if args.warehouse:
                warehouse = resolve_warehouse(session, args.warehouse)
                payload["cover"] = asdict(
                    engine.days_of_cover(item.id, warehouse.id, range_days=range_days)
                )
            else:
                payload["velocity"] = asdict(engine.compute_velocity(item.id, None, range_days))
        emit(payload, self.out)
        return EXIT_OK

    def sales_report(self, args) -> int:
        range_days = args.range_days or self.settings.analytics.default_range_days
        with get_session() as session:
            engine = self.analytics(session)
            scope = _scope(session, args)
            payload = {
                "delta": asdict(engine.sales_delta(scope, range_days, args.metric)),
                "buckets": [
                    asdict(bucket)
                    for bucket in engine.sales_totals(
                        scope, args.start, args.end, args.interval
                    )
                ],
            }
        emit(payload, self.out)
        return EXIT_OK

    def dashboard(self, args) -> int:
        analytics = self.settings.analytics
        range_days = args.range_days or analytics.default_range_days
        with get_session() as session:
            selector = DashboardSelector(
                session,
                self.clock,
                analytics=self.analytics(session),
                most_sold_limit=analytics.most_sold_limit,
                recent_limit=analytics.recent_transactions_limit,
            )
            dashboard = selector.build_dashboard(_scope(session, args), range_days)
        emit(dashboard, self.out)
        return EXIT_OK


# =============================================================================
# Parser
# =============================================================================


def _add_movement_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--reference", help="External reference (PO, receipt number)")
    parser.add_argument("--notes")
    parser.add_argument("--by", dest="performed_by", help="Who performed the movement")
    parser.add_argument(
        "--occurred-at", type=_parse_datetime,
        help="Backdate the movement (ISO timestamp)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inventory-kernel",
        description="Multi-warehouse stock ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="YAML configuration file (default: $INVENTORY_CONFIG)")
    parser.add_argument("--db-url", help="Database URL (overrides configuration)")
    parser.add_argument("--log-level", help="Log level (overrides configuration)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables")

    p = sub.add_parser("warehouse-add", help="Register a warehouse")
    p.add_argument("slug")
    p.add_argument("name")
    p.add_argument("--type", choices=[t.value for t in WarehouseType], default="central")

    p = sub.add_parser("item-add", help="Register an item, optionally with opening stock")
    p.add_argument("sku")
    p.add_argument("name")
    p.add_argument("--unit")
    p.add_argument("--barcode")
    p.add_argument("--description")
    p.add_argument("--price", help="Unit price stored in the item metadata")
    p.add_argument("--shop", help="Shop tag")
    p.add_argument("--initial-stock")
    p.add_argument("--warehouse", help="Warehouse receiving the opening stock")
    p.add_argument("--by", dest="performed_by")

    p = sub.add_parser("item-deactivate", help="Deactivate an item (history is kept)")
    p.add_argument("item")

    p = sub.add_parser("thresholds", help="Set reorder point / safety stock")
    p.add_argument("item")
    p.add_argument("warehouse")
    p.add_argument("--reorder-point")
    p.add_argument("--safety-stock")

    p = sub.add_parser("inbound", help="Receive goods")
    p.add_argument("item")
    p.add_argument("warehouse")
    p.add_argument("quantity")
    _add_movement_options(p)

    p = sub.add_parser("transfer", help="Move stock between warehouses")
    p.add_argument("item")
    p.add_argument("warehouse", help="Source warehouse")
    p.add_argument("target", help="Target warehouse")
    p.add_argument("quantity")
    _add_movement_options(p)

    for name in DEBIT_COMMANDS:
        p = sub.add_parser(name, help=f"Book a {name}")
        p.add_argument("item")
        p.add_argument("warehouse")
        p.add_argument("quantity")
        _add_movement_options(p)

    p = sub.add_parser("return", help="Book a customer return against a sale reference")
    p.add_argument("item")
    p.add_argument("warehouse")
    p.add_argument("quantity")
    p.add_argument("--reason")
    _add_movement_options(p)

    p = sub.add_parser("adjust", help="Correct stock by a signed delta")
    p.add_argument("item")
    p.add_argument("warehouse")
    p.add_argument("quantity", metavar="delta")
    _add_movement_options(p)

    p = sub.add_parser("history", help="Ledger history of one item")
    p.add_argument("item")
    p.add_argument("--type", action="append", help="Movement kind (repeatable)")
    p.add_argument("--warehouse")
    p.add_argument("--from", dest="occurred_from", type=_parse_datetime)
    p.add_argument("--to", dest="occurred_to", type=_parse_datetime)
    p.add_argument("--limit", type=int)
    p.add_argument("--offset", type=int, default=0)

    p = sub.add_parser("receipt", help="Sale lines recorded under a reference")
    p.add_argument("reference")

    p = sub.add_parser("snapshot", help="Inventory snapshot")
    p.add_argument("--shop")
    p.add_argument("--warehouse", action="append")

    p = sub.add_parser("item-stats", help="Velocity, cover and inbound coverage of an item")
    p.add_argument("item")
    p.add_argument("--warehouse")
    p.add_argument("--range-days", type=int)

    p = sub.add_parser("sales-report", help="Sales delta and bucketed totals")
    p.add_argument("--shop")
    p.add_argument("--warehouse", action="append")
    p.add_argument("--range-days", type=int)
    p.add_argument("--metric", choices=[m.value for m in SalesMetric], default="units")
    p.add_argument("--interval", choices=[i.value for i in BucketInterval], default="day")
    p.add_argument("--start", type=_parse_datetime)
    p.add_argument("--end", type=_parse_datetime)

    p = sub.add_parser("dashboard", help="Dashboard overview")
    p.add_argument("--shop")
    p.add_argument("--warehouse", action="append")
    p.add_argument("--range-days", type=int)

    return parser


HANDLERS = {
    "init-db": Commands.init_db,
    "warehouse-add": Commands.warehouse_add,
    "item-add": Commands.item_add,
    "item-deactivate": Commands.item_deactivate,
    "thresholds": Commands.thresholds,
    "inbound": Commands.movement,
    "transfer": Commands.movement,
    "sale": Commands.movement,
    "writeoff": Commands.movement,
    "donation": Commands.movement,
    "return": Commands.movement,
    "adjust": Commands.movement,
    "history": Commands.history,
    "receipt": Commands.receipt,
    "snapshot": Commands.snapshot,
    "item-stats": Commands.item_stats,
    "sales-report": Commands.sales_report,
    "dashboard": Commands.dashboard,
}


# =============================================================================
# Main
# =============================================================================


def main(argv=None, out=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    configure_logging(level=args.log_level or settings.logging.level, stream=sys.stderr)

    database = settings.database
    init_engine_from_url(
        args.db_url or database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
    )

    commands = Commands(settings, out)
    try:
        return HANDLERS[args.command](commands, args)
    except ConcurrencyError as exc:
        logger.error("cli_command_conflict", extra={"command": args.command, "error_code": exc.code})
        emit({"status": "error", "error_code": exc.code, "message": str(exc)}, commands.out)
        return EXIT_FAILURE
    except InventoryKernelError as exc:
        emit({"status": "rejected", "error_code": exc.code, "message": str(exc)}, commands.out)
        return EXIT_REJECTED
    except Exception as exc:
        logger.error("cli_command_failed", extra={"command": args.command}, exc_info=True)
        emit({"status": "error", "message": str(exc)}, commands.out)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
