# utils/units.py
"""Fixed-point helpers. Every amount inside the engine is an int of 1e-8 units."""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

COIN = 100_000_000
DECIMALS = 8
_QUANT = Decimal(1).scaleb(-DECIMALS)

Number = Union[int, str, Decimal]

def to_units(amount: Number, rounding: str = ROUND_HALF_UP) -> int:
    """Convert a coin amount ("15.5", Decimal, int coins) to integer units."""
    try:
        value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int((value * COIN).quantize(Decimal(1), rounding=rounding))

def from_units(units: int) -> Decimal:
    """Convert integer units to a Decimal coin amount with 8 places."""
    return (Decimal(units) / COIN).quantize(_QUANT)

def format_units(units: int) -> str:
    """Format integer units for display, e.g. 1500000000 -> '15.00000000'."""
    return f"{from_units(units):.{DECIMALS}f}"

def mul_div(units: int, numerator: Decimal, denominator: Decimal) -> int:
    """units * numerator / denominator rounded half-up to a whole unit."""
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")
    exact = Decimal(units) * Decimal(numerator) / Decimal(denominator)
    return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))

def units_value(units: int, price: Decimal) -> Decimal:
    """Exact quote-currency value of an amount of units at a given price."""
    return from_units(units) * Decimal(price)
