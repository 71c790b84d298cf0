import pytest

from dual_stake_lab.core import BPS, MAX_UINT256, WAD
from dual_stake_lab.core.fixed_point import (
    bps_of,
    checked_add,
    checked_sub,
    from_wad,
    mul_div,
    to_wad,
    usd_value,
    wad_div,
    wad_mul,
)
from dual_stake_lab.errors import ArithmeticOverflow, ArithmeticUnderflow, DivisionByZero


def test_mul_div_floors_and_keeps_precision() -> None:
    assert mul_div(10, 3, 4) == 7
    # intermediate product far above uint256 is fine as long as the result fits
    assert mul_div(MAX_UINT256, WAD, WAD) == MAX_UINT256


def test_division_by_zero_raises() -> None:
    with pytest.raises(DivisionByZero):
        mul_div(1, 1, 0)
    with pytest.raises(DivisionByZero):
        wad_div(WAD, 0)


def test_range_checks() -> None:
    with pytest.raises(ArithmeticUnderflow):
        checked_sub(1, 2)
    with pytest.raises(ArithmeticOverflow):
        checked_add(MAX_UINT256, 1)
    assert checked_add(1, 2) == 3


def test_to_wad_is_exact_for_decimal_strings_and_floats() -> None:
    assert to_wad("0.001") == 10**15
    assert to_wad(0.001) == 10**15
    assert to_wad(50_000) == 50_000 * WAD
    with pytest.raises(ValueError):
        to_wad("not a number")


def test_usd_and_bps_helpers() -> None:
    assert usd_value(to_wad(2), to_wad(50_000)) == to_wad(100_000)
    assert wad_mul(to_wad("1.5"), to_wad(2)) == to_wad(3)
    assert bps_of(to_wad(1_000), 30) == to_wad(3)
    assert bps_of(123, BPS) == 123
    assert from_wad(to_wad("2.5")) == pytest.approx(2.5)
