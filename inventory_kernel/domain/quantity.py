"""
Module: inventory_kernel.domain.quantity
Responsibility: Fixed-scale quantity arithmetic.  Every stock count in the
    kernel is a Decimal quantized to three fractional digits; this module is
    the only place that parses caller input into that representation and
    formats it back out.
Architecture position: Kernel > Domain.  Pure functions, zero I/O.  Imported
    by db/types.py (storage), services/ and selectors/.

Invariants enforced:
    - QUANTITY_SCALE is 3.  to_storage() is the ONLY sanctioned way to turn
      caller input into a stock quantity; it rounds ROUND_HALF_UP.
    - Binary floats never take part in stock math.  A float argument is
      converted through its shortest repr (``str(0.1) == "0.1"``), and
      to_number() is only used at output boundaries.
    - NaN, infinities, booleans and non-numeric strings are rejected.
    - Magnitudes above MAX_QUANTITY are rejected; storage is a signed
      64-bit count of thousandths.

Failure modes:
    - InvalidQuantityError on anything that is not a finite number in range.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from inventory_kernel.exceptions import InvalidQuantityError

QUANTITY_SCALE = 3
QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_SCALE)
MILLI_FACTOR = 10**QUANTITY_SCALE
ZERO = Decimal("0.000")
MAX_QUANTITY = Decimal(2**63 - 1).scaleb(-QUANTITY_SCALE)


def to_storage(value: object) -> Decimal:
    """
    Parse a caller-supplied quantity into the fixed-scale representation.

    Accepts int, Decimal, numeric strings and floats.

    Raises:
        InvalidQuantityError: value is not a finite number, or its
            magnitude exceeds MAX_QUANTITY.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidQuantityError(value, "not a number")

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        parsed = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantityError(value, "not a number") from None
    else:
        raise InvalidQuantityError(value, f"unsupported type {type(value).__name__}")

    if not parsed.is_finite():
        raise InvalidQuantityError(value, "not finite")

    try:
        quantized = parsed.quantize(QUANTITY_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidQuantityError(value, "out of range") from None
    if abs(quantized) > MAX_QUANTITY:
        raise InvalidQuantityError(value, f"exceeds the maximum of {MAX_QUANTITY}")
    return quantized


def to_number(stored: Decimal | int | None) -> float:
    """Format a stored quantity as a float for output; ``None`` is zero."""
    if stored is None:
        return 0.0
    return float(Decimal(stored).quantize(QUANTITY_QUANTUM, rounding=ROUND_HALF_UP))


def to_milli(value: Decimal) -> int:
    """Scaled Decimal -> integer thousandths (storage form)."""
    return int(value.quantize(QUANTITY_QUANTUM, rounding=ROUND_HALF_UP).scaleb(QUANTITY_SCALE))


def from_milli(milli: int) -> Decimal:
    """Integer thousandths -> scaled Decimal."""
    return Decimal(milli).scaleb(-QUANTITY_SCALE).quantize(QUANTITY_QUANTUM)


def require_positive(value: object, field: str = "quantity") -> Decimal:
    """
    Parse and require a strictly positive quantity.

    Values that round to zero at scale 3 (e.g. 0.0004) are rejected.
    """
    parsed = to_storage(value)
    if parsed <= 0:
        raise InvalidQuantityError(value, f"{field} must be greater than zero")
    return parsed


def require_non_negative(value: object, field: str = "quantity") -> Decimal:
    parsed = to_storage(value)
    if parsed < 0:
        raise InvalidQuantityError(value, f"{field} must not be negative")
    return parsed
