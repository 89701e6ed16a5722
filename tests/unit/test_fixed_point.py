"""
test_fixed_point.py - Unit tests for 18-decimal ratios and 256-bit integers

Tests:
- Conversions (to_ratio, permille, percent) truncate past 18 places
- Every multiplication and division truncates, never rounds up
- Underflow and 256-bit overflow raise FixedPointOverflow
- Division by zero raises DivideByZero
"""

import pytest
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from moneymarket import (
    MAX_UINT256, RATIO_ONE, RATIO_ZERO, DivideByZero, FixedPointError,
    FixedPointOverflow, MoneyMarketError, percent, permille, ratio_add, ratio_div,
    ratio_from_uint, ratio_mul, ratio_sub, to_ratio, uint_add, uint_div_ratio,
    uint_mul, uint_mul_ratio, uint_sub,
)
from moneymarket.fixed_point import from_raw, ratio_abs_diff, ratio_min, raw


ONE_ATOM = Decimal("0.000000000000000001")


class TestConversions:

    def test_to_ratio_truncates_past_18_places(self):
        assert to_ratio("1.1234567890123456789") == Decimal("1.123456789012345678")

    def test_to_ratio_accepts_int_and_decimal(self):
        assert to_ratio(3) == Decimal(3)
        assert to_ratio(Decimal("0.5")) == Decimal("0.5")

    def test_negative_ratio_rejected(self):
        with pytest.raises(FixedPointOverflow):
            to_ratio(-1)

    def test_permille_and_percent(self):
        assert permille(3) == Decimal("0.003")
        assert percent(1) == Decimal("0.01")
        assert percent(100) == RATIO_ONE

    def test_raw_round_trip(self):
        assert raw(ONE_ATOM) == 1
        assert from_raw(10 ** 18) == RATIO_ONE

    def test_ratio_from_uint_range(self):
        with pytest.raises(FixedPointOverflow):
            ratio_from_uint(MAX_UINT256)


class TestRatioArithmetic:

    def test_mul_truncates(self):
        assert ratio_mul(ONE_ATOM, Decimal("0.5")) == RATIO_ZERO
        assert ratio_mul(Decimal("1.5"), Decimal("1.5")) == Decimal("2.25")

    def test_div_truncates(self):
        assert ratio_div(RATIO_ONE, Decimal(3)) == Decimal("0.333333333333333333")
        assert ratio_div(Decimal(2), Decimal(3)) == Decimal("0.666666666666666666")

    def test_div_by_zero(self):
        with pytest.raises(DivideByZero):
            ratio_div(RATIO_ONE, RATIO_ZERO)

    def test_sub_underflow(self):
        with pytest.raises(FixedPointOverflow):
            ratio_sub(RATIO_ZERO, ONE_ATOM)

    def test_abs_diff_and_min(self):
        assert ratio_abs_diff(Decimal("0.2"), Decimal("0.5")) == Decimal("0.3")
        assert ratio_abs_diff(Decimal("0.5"), Decimal("0.2")) == Decimal("0.3")
        assert ratio_min(Decimal("0.2"), Decimal("0.5")) == Decimal("0.2")

    def test_add(self):
        assert ratio_add(Decimal("0.1"), Decimal("0.2")) == Decimal("0.3")


class TestIntegerArithmetic:

    def test_mul_ratio_floors(self):
        assert uint_mul_ratio(10, Decimal("0.15")) == 1
        assert uint_mul_ratio(80, Decimal("0.5")) == 40
        assert uint_mul_ratio(0, Decimal("123.4")) == 0

    def test_div_ratio_floors(self):
        assert uint_div_ratio(10, Decimal(3)) == 3
        assert uint_div_ratio(1_000_000, Decimal("1.01")) == 990_099

    def test_div_ratio_by_zero(self):
        with pytest.raises(DivideByZero):
            uint_div_ratio(1, RATIO_ZERO)

    def test_sub_underflow(self):
        with pytest.raises(FixedPointOverflow):
            uint_sub(1, 2)

    def test_add_overflow(self):
        with pytest.raises(FixedPointOverflow):
            uint_add(MAX_UINT256, 1)

    def test_mul_overflow(self):
        with pytest.raises(FixedPointOverflow):
            uint_mul(MAX_UINT256, 2)


class TestErrorHierarchy:

    def test_fixed_point_errors_are_arithmetic_and_protocol_errors(self):
        assert issubclass(FixedPointOverflow, FixedPointError)
        assert issubclass(DivideByZero, FixedPointError)
        assert issubclass(FixedPointError, ArithmeticError)
        assert issubclass(FixedPointError, MoneyMarketError)


class TestTruncationProperties:

    @given(
        st.integers(min_value=0, max_value=10 ** 30),
        st.integers(min_value=0, max_value=10 ** 24),
    )
    @settings(max_examples=200)
    def test_mul_ratio_never_rounds_up(self, value, ratio_raw):
        """
        PROPERTY: uint_mul_ratio(v, r) == floor(v * raw(r) / 10**18).
        """
        ratio = from_raw(ratio_raw)
        assert uint_mul_ratio(value, ratio) == value * ratio_raw // 10 ** 18

    @given(
        st.integers(min_value=0, max_value=10 ** 30),
        st.integers(min_value=1, max_value=10 ** 24),
    )
    @settings(max_examples=200)
    def test_div_ratio_never_rounds_up(self, value, ratio_raw):
        ratio = from_raw(ratio_raw)
        assert uint_div_ratio(value, ratio) == value * 10 ** 18 // ratio_raw
