"""
Money Utilities - Decimal arithmetic for cart prices.

Prices are kept as Decimal inside the core and only turned into floats at
the event/API boundary.
"""
from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

Number = Union[str, int, float, Decimal]


def to_decimal(value: Union[Number, None]) -> Decimal:
    """
    Convert a value to Decimal.

    Floats go through their string form so 0.1 stays 0.1.

    Raises:
        ValueError: If the value is not numeric
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    if isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")

    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Not a monetary value: {value!r}") from e


def multiply(value: Number, factor: Number) -> Decimal:
    """Safe multiplication of a monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def total(values: Iterable[Number]) -> Decimal:
    """Sum monetary values, starting from Decimal zero."""
    result = Decimal("0")
    for value in values:
        result += to_decimal(value)
    return result


def to_float(value: Number) -> float:
    """
    Convert to float for JSON payloads.

    Use only at boundaries, never for internal calculations.
    """
    return float(to_decimal(value))
