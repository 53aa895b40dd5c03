from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# Debits and credits closer than this are considered equal.
# Shared by posting, payments, reports and bank matching.
BALANCE_TOLERANCE = Decimal("0.01")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value, default=ZERO):
    """Coerce ints, floats, strings and None into a Decimal.

    Floats go through str() first so 0.1 stays 0.1 and not its binary expansion.
    Raises InvalidOperation for values that are not numbers, NaN and
    infinities included (JSON bodies may carry NaN).
    """
    if value is None or value == "":
        return default
    if isinstance(value, float):
        value = str(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidOperation(f"Not a number: {value!r}")
    if not result.is_finite():
        raise InvalidOperation(f"Not a number: {value!r}")
    return result


def quantize_money(value):
    """Round to whole cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_equal(a, b):
    return abs(to_decimal(a) - to_decimal(b)) < BALANCE_TOLERANCE
