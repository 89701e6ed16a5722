"""
fixed_point.py - 18-decimal ratios and 256-bit unsigned integers.

Ratios are Decimal values with at most 18 fractional digits; integers are
Python ints in [0, 2**256 - 1]. Every operation works on the raw integer
(value * 10**18), so results are exact and independent of the Decimal
context, and they truncate exactly where 256-bit fixed-point contracts do:

    ratio * ratio   = raw(a) * raw(b) // 10**18
    ratio / ratio   = raw(a) * 10**18 // raw(b)
    uint  * ratio   = u * raw(r) // 10**18
    uint  / ratio   = u * 10**18 // raw(r)

Nothing rounds up. Subtraction below zero and results above the 256-bit
range raise FixedPointOverflow; division by zero raises DivideByZero.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

from .core import DivideByZero, FixedPointOverflow


DECIMAL_PLACES = 18
DECIMAL_FRACTIONAL = 10 ** DECIMAL_PLACES
MAX_UINT256 = 2 ** 256 - 1

RATIO_ZERO = Decimal(0)
RATIO_ONE = Decimal(1)

_QUANTUM = Decimal(1).scaleb(-DECIMAL_PLACES)

# Wide enough for the raw product of two 256-bit values.
_WIDE_PREC = 200

Number = Union[int, str, Decimal]


def _check_uint(value: int) -> int:
    if value < 0:
        raise FixedPointOverflow(f"negative result: {value}")
    if value > MAX_UINT256:
        raise FixedPointOverflow(f"result exceeds 256 bits: {value}")
    return value


def raw(value: Decimal) -> int:
    """Scaled integer representation (value * 10**18, truncated)."""
    with localcontext() as ctx:
        ctx.prec = _WIDE_PREC
        return int((value * DECIMAL_FRACTIONAL).to_integral_value(rounding=ROUND_DOWN))


def from_raw(raw_value: int) -> Decimal:
    """Ratio from its scaled integer representation."""
    _check_uint(raw_value)
    with localcontext() as ctx:
        ctx.prec = _WIDE_PREC
        return Decimal(raw_value).scaleb(-DECIMAL_PLACES)


def to_ratio(value: Number) -> Decimal:
    """
    Convert an int, string or Decimal into a ratio, truncating past 18 places.

    Raises:
        FixedPointOverflow: value is negative or exceeds the 256-bit raw range
    """
    with localcontext() as ctx:
        ctx.prec = _WIDE_PREC
        d = Decimal(value).quantize(_QUANTUM, rounding=ROUND_DOWN)
    return from_raw(raw(d))


def ratio_from_uint(value: int) -> Decimal:
    return from_raw(_check_uint(value) * DECIMAL_FRACTIONAL)


def permille(value: int) -> Decimal:
    """value / 1000 as a ratio."""
    return from_raw(value * DECIMAL_FRACTIONAL // 1000)


def percent(value: int) -> Decimal:
    """value / 100 as a ratio."""
    return from_raw(value * DECIMAL_FRACTIONAL // 100)


# ============================================================================
# RATIO ARITHMETIC
# ============================================================================

def ratio_add(a: Decimal, b: Decimal) -> Decimal:
    return from_raw(raw(a) + raw(b))


def ratio_sub(a: Decimal, b: Decimal) -> Decimal:
    """a - b; raises FixedPointOverflow when b > a."""
    return from_raw(raw(a) - raw(b))


def ratio_mul(a: Decimal, b: Decimal) -> Decimal:
    product = raw(a) * raw(b)
    _check_uint(product)
    return from_raw(product // DECIMAL_FRACTIONAL)


def ratio_div(a: Decimal, b: Decimal) -> Decimal:
    denominator = raw(b)
    if denominator == 0:
        raise DivideByZero(f"division of {a} by zero")
    numerator = raw(a) * DECIMAL_FRACTIONAL
    _check_uint(numerator)
    return from_raw(numerator // denominator)


def ratio_abs_diff(a: Decimal, b: Decimal) -> Decimal:
    return ratio_sub(a, b) if a >= b else ratio_sub(b, a)


def ratio_min(a: Decimal, b: Decimal) -> Decimal:
    return a if a <= b else b


# ============================================================================
# INTEGER ARITHMETIC
# ============================================================================

def uint_add(a: int, b: int) -> int:
    return _check_uint(a + b)


def uint_sub(a: int, b: int) -> int:
    """a - b; raises FixedPointOverflow when b > a."""
    return _check_uint(a - b)


def uint_mul(a: int, b: int) -> int:
    return _check_uint(a * b)


def uint_mul_ratio(value: int, ratio: Decimal) -> int:
    """floor(value * ratio)."""
    _check_uint(value)
    if value == 0:
        return 0
    product = value * raw(ratio)
    return _check_uint(product // DECIMAL_FRACTIONAL)


def uint_div_ratio(value: int, ratio: Decimal) -> int:
    """floor(value / ratio)."""
    denominator = raw(ratio)
    if denominator == 0:
        raise DivideByZero(f"division of {value} by zero")
    return _check_uint(_check_uint(value) * DECIMAL_FRACTIONAL // denominator)
