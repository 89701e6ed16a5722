"""
Epoch Gate Conformance Tests

INVARIANT: Epoch operations run at most once per epoch period.

    ∀ call C to execute_epoch_operations at height h:
        h ≥ last_executed_height + epoch_period ⟹ C applies and
            last_executed_height' = h
        otherwise ⟹ C is rejected with EpochNotPassed(last_executed_height)
            and last_executed_height' = last_executed_height

Whoever sends the call makes no difference.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from moneymarket import (
    EpochNotPassed, Host, ProtocolParams, check_epoch_passed, deploy_protocol,
)
from tests.unit.test_epoch import epoch_state


class TestEpochGateProperties:
    """Property-based gate tests."""

    @given(
        st.integers(min_value=0, max_value=1_000),
        st.integers(min_value=0, max_value=10_000),
        st.integers(min_value=0, max_value=20_000),
    )
    @settings(max_examples=300)
    def test_gate_boundary(self, epoch_period, last_height, height):
        """
        PROPERTY: check_epoch_passed accepts exactly the heights at or after
        last_executed_height + epoch_period.
        """
        state = epoch_state(last_executed_height=last_height)
        if height >= last_height + epoch_period:
            check_epoch_passed(state, epoch_period, height)
        else:
            with pytest.raises(EpochNotPassed) as exc:
                check_epoch_passed(state, epoch_period, height)
            assert exc.value.last_executed_height == last_height

    @given(
        st.lists(st.integers(min_value=0, max_value=60), min_size=1, max_size=12),
        st.sampled_from(["keeper", "alice", "owner"]),
    )
    @settings(max_examples=25, deadline=None)
    def test_calls_follow_the_gate(self, gaps, sender):
        """
        PROPERTY: Over any sequence of calls, exactly those at or after the
        next due height apply, and only they move last_executed_height.
        """
        host = Host("test", verbose=False, test_mode=True)
        p = deploy_protocol(host, ProtocolParams(epoch_period=50))
        last = host.query(p.overseer, "epoch_state").last_executed_height

        for gap in gaps:
            host.advance_blocks(gap)
            result = host.execute(p.overseer, sender, "execute_epoch_operations")

            if host.block_height >= last + 50:
                assert result.applied
                last = host.block_height
            else:
                assert isinstance(result.error, EpochNotPassed)
                assert result.error.last_executed_height == last
            assert host.query(p.overseer, "epoch_state").last_executed_height == last


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
