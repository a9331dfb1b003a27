"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger must be able to tell "the shelf is empty" apart from
"the request was malformed" and from "the database went away". Parsing
messages for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    result = ledger.record_sale(item_id, warehouse_id, 2)
    if not result.is_success:
        api_response(code=result.error.code, message=result.message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidMovementError
    |   +-- NotFoundError
    |   |   +-- ItemNotFoundError
    |   |   +-- WarehouseNotFoundError
    |   +-- DuplicateSkuError
    |   +-- DuplicateWarehouseError
    |
    +-- InsufficientStockError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- ConcurrencyRetryExhaustedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- ItemReferencedError

===============================================================================
PROPAGATION
===============================================================================

    - ValidationError / InsufficientStockError -> recovered into MovementResult
      by the ledger, never retried
    - ConcurrencyError -> retried inside the ledger, surfaced only once the
      retry budget is spent
    - Anything else (SQLAlchemyError, OSError) -> logged and propagated unchanged
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Validation-class exceptions


class ValidationError(InventoryKernelError):
    """Malformed or out-of-range input, rejected before any stock changes."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """A quantity could not be parsed, was non-finite, or was out of range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid quantity {value!r}: {reason}")


class InvalidMovementError(ValidationError):
    """A movement request violates the rules of its kind."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid {kind} movement: {reason}")


class NotFoundError(ValidationError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Item ID doesn't exist."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class WarehouseNotFoundError(NotFoundError):
    """Warehouse ID or slug doesn't exist."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_ref: str):
        self.warehouse_ref = warehouse_ref
        super().__init__(f"Warehouse not found: {warehouse_ref}")


class DuplicateSkuError(ValidationError):
    """An item with this SKU already exists."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU already exists: {sku}")


class DuplicateWarehouseError(ValidationError):
    """A warehouse with this slug already exists."""

    code: str = "DUPLICATE_WAREHOUSE"

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Warehouse slug already exists: {slug}")


# Stock-related exceptions


class InsufficientStockError(InventoryKernelError):
    """
    A debit would drive on-hand stock below zero.

    Distinct from ValidationError: the request itself is well-formed,
    the shelf simply does not hold enough units.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: str,
        warehouse_id: str,
        available: Decimal,
        requested: Decimal,
    ):
        self.item_id = item_id
        self.warehouse_id = warehouse_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id} at warehouse {warehouse_id}: "
            f"available {available}, requested {requested}"
        )


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class ConcurrencyRetryExhaustedError(ConcurrencyError):
    """A movement kept conflicting with concurrent writers and was given up."""

    code: str = "CONCURRENCY_RETRY_EXHAUSTED"

    def __init__(self, kind: str, attempts: int):
        self.kind = kind
        self.attempts = attempts
        super().__init__(
            f"{kind} movement abandoned after {attempts} conflicting attempts"
        )


# Immutability-related exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Stock transactions are append-only from the moment they are written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ItemReferencedError(ImmutabilityError):
    """Item cannot be purged because ledger rows reference it."""

    code: str = "ITEM_REFERENCED"

    def __init__(self, item_id: str, transaction_count: int):
        self.item_id = item_id
        self.transaction_count = transaction_count
        super().__init__(
            f"Item {item_id} cannot be purged: referenced by "
            f"{transaction_count} stock transaction(s)"
        )
