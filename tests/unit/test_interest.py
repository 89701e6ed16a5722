"""
test_interest.py - Unit tests for interest accrual and liability projection

Tests:
- calculate_interest accrues index, liabilities and reserves exactly
- No-op when no blocks have elapsed
- compute_interest prices the borrow rate on the balance net of the deposit
- project_liability / compute_loan re-base loans to the global index
- Exchange rate calculation
"""

import pytest
from decimal import Decimal

from moneymarket import (
    FixedPointOverflow, Liability, MarketConfig, MarketState, QueryError, RATIO_ONE,
    RATIO_ZERO, calculate_exchange_rate, calculate_interest, compute_interest,
    compute_loan, percent, permille, project_liability, to_ratio,
)
from moneymarket.interest import initial_market_state
from tests.fake_querier import FakeQuerier


def market_config(**overrides) -> MarketConfig:
    fields = dict(
        contract_addr="market",
        owner_addr="owner",
        aterra_contract="aterra",
        interest_model="interest",
        overseer_contract="overseer",
        collector_contract="collector",
        stable_denom="uusd",
        reserve_factor=permille(3),
        max_borrow_factor=RATIO_ONE,
    )
    fields.update(overrides)
    return MarketConfig(**fields)


# ============================================================================
# CALCULATE INTEREST
# ============================================================================

class TestCalculateInterest:

    def test_accrues_over_100_blocks(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0)
        new = calculate_interest(state, percent(1), 100, permille(3))

        assert new.global_interest_index == Decimal(2)
        assert new.total_liabilities == Decimal(2_000_000)
        assert new.total_reserves == Decimal(3_000)
        assert new.last_interest_updated == 100

    def test_no_blocks_elapsed_is_noop(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 100)
        assert calculate_interest(state, percent(1), 100, permille(3)) is state

    def test_height_before_last_update_is_noop(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 100)
        assert calculate_interest(state, percent(1), 50, permille(3)) is state

    def test_zero_rate_keeps_index(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0)
        new = calculate_interest(state, RATIO_ZERO, 100, permille(3))
        assert new.global_interest_index == RATIO_ONE
        assert new.total_liabilities == Decimal(1_000_000)
        assert new.last_interest_updated == 100

    def test_compounds_on_index(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0, global_interest_index=Decimal(2))
        new = calculate_interest(state, percent(1), 100, RATIO_ZERO)
        assert new.global_interest_index == Decimal(4)

    def test_initial_state(self):
        state = initial_market_state(7)
        assert state.global_interest_index == RATIO_ONE
        assert state.total_liabilities == RATIO_ZERO
        assert state.last_interest_updated == 7


class TestComputeInterest:

    def test_prices_rate_on_balance_net_of_deposit(self):
        querier = FakeQuerier(
            balances={("market", "uusd"): 2_000_000},
            responses={("interest", "borrow_rate"): percent(1)},
        )
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0)

        new = compute_interest(querier, market_config(), state, 100, deposit_amount=1_000)

        assert new.global_interest_index == Decimal(2)
        assert new.total_liabilities == Decimal(2_000_000)
        assert new.total_reserves == Decimal(3_000)
        (_, query, params), = querier.calls
        assert query == "borrow_rate"
        assert params["market_balance"] == 1_999_000

    def test_no_query_when_no_blocks_elapsed(self):
        querier = FakeQuerier()
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 100)
        assert compute_interest(querier, market_config(), state, 100, 1_000) is state
        assert querier.calls == []

    def test_missing_interest_model_is_query_error(self):
        querier = FakeQuerier(balances={("market", "uusd"): 10})
        state = MarketState(to_ratio(1), RATIO_ZERO, 0)
        with pytest.raises(QueryError):
            compute_interest(querier, market_config(), state, 1)

    def test_wrong_response_type_is_query_error(self):
        querier = FakeQuerier(
            balances={("market", "uusd"): 10},
            responses={("interest", "borrow_rate"): "0.01"},
        )
        state = MarketState(to_ratio(1), RATIO_ZERO, 0)
        with pytest.raises(QueryError):
            compute_interest(querier, market_config(), state, 1)

    def test_deposit_larger_than_balance_overflows(self):
        querier = FakeQuerier(
            balances={("market", "uusd"): 10},
            responses={("interest", "borrow_rate"): percent(1)},
        )
        state = MarketState(to_ratio(1), RATIO_ZERO, 0)
        with pytest.raises(FixedPointOverflow):
            compute_interest(querier, market_config(), state, 1, deposit_amount=11)


# ============================================================================
# LIABILITY PROJECTION
# ============================================================================

class TestComputeLoan:

    def test_zero_loan_stays_zero(self):
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0, global_interest_index=RATIO_ONE)
        liability = compute_loan(state, Liability(RATIO_ONE, 0))
        assert liability == Liability(RATIO_ONE, 0)

    def test_rebases_to_global_index(self):
        state = MarketState(to_ratio(300_000), to_ratio(1_000), 0, global_interest_index=Decimal(2))
        liability = compute_loan(state, Liability(Decimal(4), 80))
        assert liability == Liability(Decimal(2), 40)

    def test_projection_grows_with_index(self):
        state = MarketState(RATIO_ZERO, RATIO_ZERO, 0, global_interest_index=Decimal("1.5"))
        amount, liability = project_liability(state, Liability(RATIO_ONE, 1_000))
        assert amount == 1_500
        assert liability.interest_index == Decimal("1.5")

    def test_projection_truncates(self):
        state = MarketState(RATIO_ZERO, RATIO_ZERO, 0, global_interest_index=Decimal("1.0015"))
        amount, _ = project_liability(state, Liability(RATIO_ONE, 999))
        assert amount == 1_000  # floor(1000.4985)

    def test_projection_idempotent_at_same_index(self):
        state = MarketState(RATIO_ZERO, RATIO_ZERO, 0, global_interest_index=Decimal("1.37"))
        _, once = project_liability(state, Liability(RATIO_ONE, 12_345))
        _, twice = project_liability(state, once)
        assert once == twice


class TestExchangeRate:

    def test_one_before_first_deposit(self):
        state = MarketState(to_ratio(100), RATIO_ZERO, 0)
        assert calculate_exchange_rate(state, 1_000, 0) == RATIO_ONE

    def test_includes_liabilities_net_of_reserves(self):
        state = MarketState(to_ratio(100_011_000), to_ratio(550), 0)
        rate = calculate_exchange_rate(state, 900_000_000, 1_000_000_000)
        assert rate == Decimal("1.00001045")
