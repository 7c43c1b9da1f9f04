"""Money helpers — subunit arithmetic, half-up rounding, INR formatting.

Every monetary figure inside the engine is a ``Decimal`` count of the lowest
currency subunit (paise).  Conversion back to whole rupees happens only at
the output boundary, using ROUND_HALF_UP.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from app.config import CURRENCY_SUBUNITS

_ONE = Decimal("1")
_SUBUNITS = Decimal(CURRENCY_SUBUNITS)


def to_decimal(value: Any) -> Decimal:
    """Coerce int / float / str / Decimal to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        parsed = parse_amount(value)
        if parsed is None:
            raise ValueError(f"Not a numeric amount: {value!r}")
        return parsed
    raise TypeError(f"Unsupported amount type: {type(value).__name__}")


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a monetary amount from various formats.

    Handles:
      - Numeric types (int, float, Decimal)
      - Strings with Rs, ₹, INR prefixes
      - Lakh/crore text multipliers
      - Comma-separated numbers (Indian or western grouping)
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    for prefix in ("Rs.", "Rs", "₹", "INR"):
        s = s.replace(prefix, "")
    s = s.replace(",", "").strip()
    multiplier = 1
    s_lower = s.lower()
    if "crore" in s_lower or "cr" in s_lower:
        s = re.sub(r'(?i)\s*(crores?|crs?)\.?', '', s)
        multiplier = 10_000_000
    elif "lakh" in s_lower or "lac" in s_lower:
        s = re.sub(r'(?i)\s*(lakhs?|lacs?)\.?', '', s)
        multiplier = 100_000
    s = s.replace(" ", "").strip()
    try:
        return Decimal(s) * multiplier
    except InvalidOperation:
        return None


def to_subunits(amount: Any) -> Decimal:
    """Whole-currency amount → exact subunit count (not rounded)."""
    return to_decimal(amount) * _SUBUNITS


def quantize_subunits(subunits: Decimal) -> Decimal:
    """Round a subunit count to a whole subunit, half-up."""
    return subunits.quantize(_ONE, rounding=ROUND_HALF_UP)


def to_units(subunits: Decimal) -> int:
    """Subunits → whole currency units, half-up.  The output boundary."""
    return int((subunits / _SUBUNITS).quantize(_ONE, rounding=ROUND_HALF_UP))


def round_half_up(amount: Any) -> int:
    """Round a whole-currency amount to an integer, half-up."""
    return int(to_decimal(amount).quantize(_ONE, rounding=ROUND_HALF_UP))


def format_inr(amount) -> str:
    """Format a number as ₹ with Indian comma grouping."""
    if amount is None or amount == "":
        return ""
    try:
        n = round_half_up(amount)
    except (ValueError, TypeError):
        return str(amount)
    sign = "-" if n < 0 else ""
    # Indian grouping: last 3 digits, then groups of 2
    s = str(abs(n))
    if len(s) <= 3:
        return f"{sign}₹{s}"
    last3 = s[-3:]
    rest = s[:-3]
    groups = []
    while rest:
        groups.insert(0, rest[-2:])
        rest = rest[:-2]
    return f"{sign}₹{','.join(groups)},{last3}"
