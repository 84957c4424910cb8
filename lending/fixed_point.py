"""
fixed_point.py - Overflow-checked integer arithmetic

Every amount and share computation in the lending ledger goes through these
functions. They operate on non-negative integers, bound stored results to
u64, allow a 256-bit intermediate in multiply-divide, and round explicitly.

Rounding modes are the Decimal module constants ROUND_DOWN and ROUND_UP so
that callers state the direction the same way valuation code does.

Failures:
    MathOverflow   - result above the limit, or below zero
    DivisionByZero - zero denominator
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Union

from .core import U64_MAX, U256_MAX, WAD, MathOverflow, DivisionByZero


Number = Union[int, Decimal]


def _require_uint(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise MathOverflow(f"{name} is negative: {value}")


def checked_add(a: int, b: int, limit: int = U64_MAX) -> int:
    """Return a + b, raising MathOverflow if the sum exceeds limit."""
    _require_uint(a, "a")
    _require_uint(b, "b")
    result = a + b
    if result > limit:
        raise MathOverflow(f"{a} + {b} overflows {limit}")
    return result


def checked_sub(a: int, b: int) -> int:
    """Return a - b, raising MathOverflow on underflow."""
    _require_uint(a, "a")
    _require_uint(b, "b")
    if b > a:
        raise MathOverflow(f"{a} - {b} underflows")
    return a - b


def checked_mul(a: int, b: int, limit: int = U64_MAX) -> int:
    """Return a * b, raising MathOverflow if the product exceeds limit."""
    _require_uint(a, "a")
    _require_uint(b, "b")
    result = a * b
    if result > limit:
        raise MathOverflow(f"{a} * {b} overflows {limit}")
    return result


def checked_mul_div(
    a: int,
    b: int,
    c: int,
    rounding: str = ROUND_DOWN,
    limit: int = U64_MAX,
) -> int:
    """
    Compute a * b / c without intermediate overflow.

    The product a * b may use up to 256 bits; the quotient must fit limit.

    Args:
        a, b: Non-negative factors
        c: Positive divisor
        rounding: ROUND_DOWN (floor) or ROUND_UP (ceiling)
        limit: Upper bound of the result (default u64)

    Raises:
        DivisionByZero: If c == 0
        MathOverflow: If the product or the result exceeds its bound
    """
    _require_uint(a, "a")
    _require_uint(b, "b")
    _require_uint(c, "c")
    if c == 0:
        raise DivisionByZero(f"{a} * {b} / 0")
    product = a * b
    if product > U256_MAX:
        raise MathOverflow(f"{a} * {b} overflows the 256-bit intermediate")
    if rounding == ROUND_DOWN:
        result = product // c
    elif rounding == ROUND_UP:
        result = -(-product // c)
    else:
        raise ValueError(f"Unsupported rounding mode: {rounding}")
    if result > limit:
        raise MathOverflow(f"{a} * {b} / {c} = {result} overflows {limit}")
    return result


def ratio(numerator: Number, denominator: Number) -> Decimal:
    """
    Return numerator / denominator as a Decimal.

    Raises:
        DivisionByZero: If denominator == 0
    """
    if denominator == 0:
        raise DivisionByZero(f"ratio {numerator} / 0")
    return Decimal(numerator) / Decimal(denominator)


def to_wad(value: Decimal) -> int:
    """
    Convert a non-negative Decimal fraction to an integer scaled by WAD.

    Truncates toward zero; 0.05 becomes 5 * 10**16.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        raise MathOverflow(f"cannot scale negative value {value}")
    return int((value * WAD).to_integral_value(rounding=ROUND_DOWN))


def to_units(value: Decimal, rounding: str = ROUND_DOWN) -> int:
    """
    Round a non-negative Decimal quantity to whole base units.

    Raises:
        MathOverflow: If the value is negative or exceeds u64
    """
    if value < 0:
        raise MathOverflow(f"cannot convert negative value {value} to units")
    result = int(value.to_integral_value(rounding=rounding))
    if result > U64_MAX:
        raise MathOverflow(f"{value} overflows u64")
    return result


def value_of(amount: int, price: Decimal, decimals: int) -> Decimal:
    """Common-unit value of amount base units: amount * price / 10**decimals."""
    _require_uint(amount, "amount")
    return Decimal(amount) * price / (Decimal(10) ** decimals)


def amount_for_value(value: Decimal, price: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> int:
    """
    Base units of an asset worth value at price (inverse of value_of).

    Raises:
        DivisionByZero: If price is zero
    """
    if price == 0:
        raise DivisionByZero("price is zero")
    return to_units(value * (Decimal(10) ** decimals) / price, rounding)
