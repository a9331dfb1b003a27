"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                  | Why
------------------|---------------------------------|------------------------------
StockTransaction  | ALWAYS (from creation)          | The ledger is append-only
Item              | Delete blocked while referenced | Purging would erase history

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_flush]   --> _check_item_deletion_before_flush() --> ItemReferencedError
         |
         v
    [before_update]  --> _check_stock_transaction_update()   --> ImmutabilityViolationError
    [before_delete]  --> _check_stock_transaction_delete()   --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Item deletion is checked in SessionEvents.before_flush because mapper-level
delete events fire after the flush plan is fixed.

Bulk ``session.execute(update(...))`` statements bypass mapper events; the
kernel never issues them against the ledger table.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called by create_tables()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from inventory_kernel.exceptions import ImmutabilityViolationError, ItemReferencedError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_item_deletion_before_flush(session, flush_context, instances):
    """Refuse to delete an item that still has ledger rows."""
    from inventory_kernel.models.item import Item
    from inventory_kernel.models.stock_transaction import StockTransaction

    for obj in list(session.deleted):
        if not isinstance(obj, Item):
            continue

        with session.no_autoflush:
            count = session.execute(
                select(func.count(StockTransaction.id)).where(
                    StockTransaction.item_id == obj.id
                )
            ).scalar_one()

        if count:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Item",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "item_has_ledger_rows",
                    "transaction_count": count,
                },
            )
            raise ItemReferencedError(item_id=str(obj.id), transaction_count=count)


def _check_stock_transaction_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockTransaction",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions are append-only and cannot be modified",
    )


def _check_stock_transaction_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockTransaction",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions are append-only and cannot be deleted",
    )


def _listeners():
    from inventory_kernel.models.stock_transaction import StockTransaction

    return (
        (Session, "before_flush", _check_item_deletion_before_flush),
        (StockTransaction, "before_update", _check_stock_transaction_update),
        (StockTransaction, "before_delete", _check_stock_transaction_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
