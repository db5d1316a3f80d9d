from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_EVEN

CENT = Decimal("0.01")


def to_decimal(value, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce ints, floats, strings and Decimals to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Anything unparseable
    returns ``default``.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return default
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default


def round_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_EVEN)


def floor_cents(amount: Decimal) -> Decimal:
    # truncate, never round up a refund
    return amount.quantize(CENT, rounding=ROUND_FLOOR)


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_FLOOR))
