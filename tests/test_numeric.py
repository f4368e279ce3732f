"""Tests for the exact numeric kernel."""

import copy
from decimal import Decimal

import pytest

from vaultfold.constants import HARVEST_PERIODS
from vaultfold.errors import ComputeInconsistency, ValidationError
from vaultfold.numeric import (
    ONE,
    ZERO,
    Accuracy,
    ExactDecimal,
    ExactInt,
    apr_to_apy,
    apy_from_pps,
    dmax,
    dmin,
    normalize,
)


def test_exact_int_parses_hex_and_decimal():
    assert ExactInt("0x10") == 16
    assert ExactInt("-42") == -42
    assert ExactInt("") == 0
    with pytest.raises(ValidationError):
        ExactInt("12abc")


def test_exact_int_division_truncates_toward_zero():
    assert ExactInt(7).div(2) == 3
    assert ExactInt(-7).div(2) == -3
    assert ExactInt(-7) // 2 == -3
    assert ExactInt(-7).mod(2) == -1


def test_exact_int_zero_divisor_yields_zero():
    assert ExactInt(10).div(0) == 0
    assert ExactInt(10).mod(0) == 0


def test_exact_int_is_immutable_but_copyable():
    x = ExactInt(5)
    with pytest.raises(AttributeError):
        x._v = 6
    assert copy.deepcopy(x) == x


def test_exact_int_beyond_double_range_reports_accuracy():
    big = ExactInt(10 ** 18 + 1)
    f, accuracy = big.to_float()
    assert f == 1e18
    assert accuracy is Accuracy.BELOW
    assert ExactInt(2 ** 53).to_float() == (float(2 ** 53), Accuracy.EXACT)


def test_modpow():
    assert ExactInt(3).modpow(4, 5) == 1
    assert ExactInt(3).modpow(0, 5) == 1


def test_decimal_refuses_floats():
    with pytest.raises(ValidationError):
        ExactDecimal(0.1)
    with pytest.raises(ValidationError):
        ExactDecimal("NaN")
    assert ExactDecimal("") == 0


def test_decimal_addition_is_exact():
    assert ExactDecimal("0.1") + ExactDecimal("0.2") == ExactDecimal("0.3")


def test_decimal_zero_divisor_yields_zero():
    assert ExactDecimal("1.5") / 0 == ZERO
    assert ExactDecimal("1.5") / ExactDecimal(0) == ZERO


def test_decimal_undefined_power_raises():
    with pytest.raises(ComputeInconsistency):
        ExactDecimal(-8).pow("0.5")


def test_decimal_comparisons_and_format():
    a = ExactDecimal("1.25")
    assert a.gt(1) and a.gte("1.25") and a.lt(2) and a.lte("1.25") and a.eq("1.250")
    assert a.format(1) == "1.2"
    assert ExactDecimal("1.35").format(1) == "1.4"
    assert str(ExactDecimal("2.500")) == "2.5"
    assert dmin(ONE, a) == ONE
    assert dmax(ONE, a) == a


def test_decimal_equality_with_text():
    assert ExactDecimal("1") == "1.0"
    assert ExactDecimal("1") != "n/a"
    assert not ExactDecimal("1") == "abc"
    assert ExactDecimal("1") not in ["abc", None]
    with pytest.raises(ValidationError):
        ExactDecimal("1") < "abc"


def test_normalize_shifts_without_rounding():
    assert normalize(1234567890123456789, 18) == ExactDecimal("1.234567890123456789")
    assert normalize(ExactInt(5), 0) == 5
    assert normalize(10 ** 30, 18).value == Decimal(10 ** 12)
    with pytest.raises(ValidationError):
        normalize(1, -1)


def test_apr_to_apy_weekly_compounding():
    apy = apr_to_apy(ExactDecimal("0.10"), 52)
    assert apy.format(6) == "0.105065"
    assert apr_to_apy(ExactDecimal("0.10"), 0) == ExactDecimal("0.10")
    assert apr_to_apy(ZERO, 52) == ZERO


def test_apr_to_apy_fractional_periods():
    closed_form = (1 + 0.1 / (365 / 15)) ** (365 / 15) - 1
    apy, _ = apr_to_apy(ExactDecimal("0.1"), HARVEST_PERIODS).to_float()
    assert apy == pytest.approx(closed_form, abs=1e-12)
    truncated, _ = apr_to_apy(ExactDecimal("0.1"), 24).to_float()
    assert abs(apy - truncated) > 1e-6


def test_apy_from_pps():
    assert apy_from_pps(ExactDecimal("1.01"), ExactDecimal("1.00"), 1) == ExactDecimal("3.65")
    assert apy_from_pps(ExactDecimal("1.01"), ZERO, 7) == ZERO
    assert apy_from_pps(ONE, ONE, 30) == ZERO
