"""
Dynamic Rate Bound Conformance Tests

INVARIANT: A window moves the deposit rates by a bounded, signed step.

    ∀ window W over n blocks with reserves R₀ → R₁:
        rate_delta × n ≤ dyn_rate_maxchange
        update_vector = (R₁ > R₀)
        rates changed ⟹ target' = threshold' = target ± rate_delta
        rates unchanged ⟹ target' = target, threshold' = threshold, rate_delta = 0
        prev_yield_reserve' = R₁ and last_executed_height' = current height

A falling step larger than the rate leaves the rate where it was, so rates
never go negative.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from moneymarket import DynrateConfig, DynrateState, RATIO_ZERO, adjust, update_rate
from moneymarket.fixed_point import from_raw, ratio_add, ratio_from_uint, ratio_mul, ratio_sub


ratios = st.integers(min_value=0, max_value=10**16).map(from_raw)


@st.composite
def configs(draw):
    return DynrateConfig(
        dyn_rate_epoch=draw(st.integers(min_value=0, max_value=1_000)),
        dyn_rate_threshold=draw(st.integers(min_value=0, max_value=10**17).map(from_raw)),
        dyn_rate_maxchange=draw(ratios),
        dyn_rate_yr_increase_expectation=draw(st.integers(min_value=0, max_value=10**16).map(from_raw)),
    )


class TestDynrateProperties:
    """Property-based dynamic rate tests."""

    @given(
        configs(),
        st.integers(min_value=1, max_value=10**12),
        st.integers(min_value=0, max_value=10**12),
        st.integers(min_value=1, max_value=100_000),
        ratios,
    )
    @settings(max_examples=300)
    def test_window_step_is_bounded(self, config, prev_reserve, reserve, blocks, target):
        """
        PROPERTY: The step over a window never exceeds dyn_rate_maxchange, and
        the rates move together in the direction of the reserve.
        """
        state = DynrateState(
            last_executed_height=1_000,
            prev_yield_reserve=ratio_from_uint(prev_reserve),
            rate_delta=RATIO_ZERO,
            update_vector=True,
        )
        threshold = ratio_mul(target, from_raw(5 * 10**17))

        result = adjust(config, state, reserve, 1_000 + blocks, target, threshold)

        assert ratio_mul(result.state.rate_delta, ratio_from_uint(blocks)) <= config.dyn_rate_maxchange
        assert result.state.update_vector == (reserve > prev_reserve)
        assert result.state.prev_yield_reserve == ratio_from_uint(reserve)
        assert result.state.last_executed_height == 1_000 + blocks

        if result.rate_changed:
            assert result.target_deposit_rate == result.threshold_deposit_rate
            assert result.target_deposit_rate == update_rate(
                target, result.state.rate_delta, result.state.update_vector,
            )
        else:
            assert result.target_deposit_rate == target
            assert result.threshold_deposit_rate == threshold
            assert result.state.rate_delta == RATIO_ZERO

    @given(ratios, ratios, st.booleans())
    @settings(max_examples=300)
    def test_update_rate_never_negative(self, rate, delta, rising):
        """
        PROPERTY: update_rate adds when rising, subtracts only when the rate
        covers the step, and otherwise keeps the rate.
        """
        new = update_rate(rate, delta, rising)

        if rising:
            assert new == ratio_add(rate, delta)
        elif rate > delta:
            assert new == ratio_sub(rate, delta)
        else:
            assert new == rate
        assert new >= RATIO_ZERO


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
