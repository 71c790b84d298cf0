"""Checked 18-decimal fixed-point helpers.

All ledgers store plain ``int`` values scaled by :data:`WAD`.  Python integers
never wrap, so the helpers below enforce the ``[0, MAX_UINT256]`` range
explicitly and raise instead of silently producing out-of-range balances.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero
from .constants import BPS, MAX_UINT256, WAD


def _check(value: int) -> int:
    if value < 0:
        raise ArithmeticUnderflow(f"result {value} is negative")
    if value > MAX_UINT256:
        raise ArithmeticOverflow("result exceeds uint256 range")
    return value


def checked_add(a: int, b: int) -> int:
    return _check(a + b)


def checked_sub(a: int, b: int) -> int:
    return _check(a - b)


def checked_mul(a: int, b: int) -> int:
    return _check(a * b)


def mul_div(a: int, b: int, denominator: int) -> int:
    """Return ``floor(a * b / denominator)`` with full-precision intermediate."""

    if denominator == 0:
        raise DivisionByZero("mul_div denominator is zero")
    _check(a)
    _check(b)
    return _check((a * b) // denominator)


def wad_mul(a: int, b: int) -> int:
    return mul_div(a, b, WAD)


def wad_div(a: int, b: int) -> int:
    return mul_div(a, WAD, b)


def bps_of(amount: int, bps: int) -> int:
    return mul_div(amount, bps, BPS)


def usd_value(amount: int, price: int) -> int:
    """USD value (WAD) of ``amount`` base units at ``price`` USD per token."""

    return wad_mul(amount, price)


def to_wad(value: int | float | str | Decimal) -> int:
    """Convert a human-readable number into WAD base units.

    Floats are routed through ``str`` so that ``to_wad(0.001)`` yields exactly
    ``10**15`` rather than a binary-rounding artefact.
    """

    try:
        dec = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise ValueError(f"cannot convert {value!r} to fixed point") from exc
    return _check(int(dec * WAD))


def from_wad(value: int) -> float:
    """Float view of a WAD value; only for reporting and charts."""

    return float(Decimal(value) / WAD)


__all__ = [
    "checked_add",
    "checked_sub",
    "checked_mul",
    "mul_div",
    "wad_mul",
    "wad_div",
    "bps_of",
    "usd_value",
    "to_wad",
    "from_wad",
]
