"""
test_dynrate.py - Unit tests for the dynamic rate adjuster

Tests:
- update_rate rising / falling / clamped-at-delta behavior
- adjust() for a rising and a falling reserve
- Changes below the threshold leave rates alone but refresh the snapshot
- Expectation floor when the change is within the expectation
- Window gating and the first reserve snapshot
"""

import pytest
from decimal import Decimal

from moneymarket import (
    DivideByZero, DynrateConfig, DynrateState, RATIO_ZERO, adjust, is_window_open,
    seed_state, to_ratio, update_rate,
)
from moneymarket.dynrate import initial_dynrate_state


TARGET = Decimal("0.00002")
THRESHOLD = Decimal("0.000015")


def dynrate_config(**overrides) -> DynrateConfig:
    fields = dict(
        dyn_rate_epoch=100,
        dyn_rate_threshold=Decimal("0.01"),
        dyn_rate_maxchange=Decimal("0.0001"),
        dyn_rate_yr_increase_expectation=Decimal("0.001"),
    )
    fields.update(overrides)
    return DynrateConfig(**fields)


def snapshot(prev_yield_reserve: int, last_executed_height: int = 0) -> DynrateState:
    return DynrateState(
        last_executed_height=last_executed_height,
        prev_yield_reserve=to_ratio(prev_yield_reserve),
        rate_delta=RATIO_ZERO,
        update_vector=True,
    )


class TestUpdateRate:

    def test_rising_adds(self):
        assert update_rate(Decimal("0.5"), Decimal("0.1"), True) == Decimal("0.6")

    def test_falling_subtracts(self):
        assert update_rate(Decimal("0.5"), Decimal("0.1"), False) == Decimal("0.4")

    def test_falling_below_delta_keeps_rate(self):
        assert update_rate(Decimal("0.1"), Decimal("0.5"), False) == Decimal("0.1")
        assert update_rate(Decimal("0.1"), Decimal("0.1"), False) == Decimal("0.1")


class TestAdjust:

    def test_rising_reserve_raises_both_rates(self):
        result = adjust(dynrate_config(), snapshot(1_000_000), 1_100_000, 200, TARGET, THRESHOLD)

        # change 0.1 - 0.001 = 0.099, capped to 0.0001, over 200 blocks
        assert result.rate_changed
        assert result.state.rate_delta == Decimal("0.0000005")
        assert result.target_deposit_rate == Decimal("0.0000205")
        assert result.threshold_deposit_rate == Decimal("0.0000205")
        assert result.state.update_vector is True
        assert result.state.prev_yield_reserve == Decimal(1_100_000)
        assert result.state.last_executed_height == 200

    def test_falling_reserve_lowers_both_rates(self):
        result = adjust(dynrate_config(), snapshot(1_000_000), 900_000, 200, TARGET, THRESHOLD)

        assert result.rate_changed
        assert result.state.update_vector is False
        assert result.target_deposit_rate == Decimal("0.0000195")
        assert result.threshold_deposit_rate == Decimal("0.0000195")

    def test_change_below_threshold_keeps_rates(self):
        result = adjust(dynrate_config(), snapshot(1_000_000), 1_005_000, 200, TARGET, THRESHOLD)

        assert not result.rate_changed
        assert result.target_deposit_rate == TARGET
        assert result.threshold_deposit_rate == THRESHOLD
        assert result.state.rate_delta == RATIO_ZERO
        assert result.state.prev_yield_reserve == Decimal(1_005_000)
        assert result.state.last_executed_height == 200

    def test_change_within_expectation_uses_expectation(self):
        config = dynrate_config(dyn_rate_yr_increase_expectation=Decimal("0.02"))
        result = adjust(config, snapshot(1_000_000), 1_010_000, 200, TARGET, THRESHOLD)

        # raw change 0.01 <= 0.02, so the expectation itself is the change
        assert result.rate_changed
        assert result.state.rate_delta == Decimal("0.0000005")

    def test_small_change_is_not_capped(self):
        config = dynrate_config(dyn_rate_maxchange=Decimal("1"))
        result = adjust(config, snapshot(1_000_000), 1_101_000, 100, TARGET, THRESHOLD)

        # (0.101 - 0.001) / 100
        assert result.state.rate_delta == Decimal("0.001")

    def test_zero_previous_reserve(self):
        with pytest.raises(DivideByZero):
            adjust(dynrate_config(), initial_dynrate_state(0), 1_000, 200, TARGET, THRESHOLD)


class TestWindow:

    def test_closed_without_snapshot(self):
        assert not is_window_open(dynrate_config(), initial_dynrate_state(0), 10_000)

    def test_closed_until_epoch_passed(self):
        state = snapshot(1_000, last_executed_height=50)
        assert not is_window_open(dynrate_config(), state, 150)
        assert is_window_open(dynrate_config(), state, 151)

    def test_seed_state(self):
        state = seed_state(5_000, 321)
        assert state.prev_yield_reserve == Decimal(5_000)
        assert state.last_executed_height == 321
        assert state.rate_delta == RATIO_ZERO
        assert state.update_vector is True
