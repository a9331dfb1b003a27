"""Human-readable receipt references for POS sales."""

import re
import secrets
import string
from datetime import datetime

from inventory_kernel.domain.movements import REFERENCE_MAX_LENGTH

_ALPHABET = string.ascii_uppercase + string.digits
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

DEFAULT_PREFIX = "POS"
ITEM_INIT_REFERENCE = "ITEM_INIT"

# "-YYYYMMDD-HHMMSS-XXXX"
_SUFFIX_LENGTH = 21


def sale_reference_prefix(warehouse_slug: str | None) -> str:
    if not warehouse_slug:
        return DEFAULT_PREFIX
    prefix = _NON_ALNUM.sub("", warehouse_slug).upper() or DEFAULT_PREFIX
    return prefix[: REFERENCE_MAX_LENGTH - _SUFFIX_LENGTH]


def generate_sale_reference(warehouse_slug: str | None, now: datetime) -> str:
    """
    Build ``<PREFIX>-YYYYMMDD-HHMMSS-XXXX``.

    The prefix is the warehouse slug reduced to upper-case alphanumerics,
    or ``POS`` without a slug, cut so the reference fits its column.  The
    suffix is four random alphanumerics.
    """
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"{sale_reference_prefix(warehouse_slug)}-{now:%Y%m%d-%H%M%S}-{suffix}"
