"""
interest.py - Interest Accrual Engine and Liability Projector

The market never touches individual borrowers when interest accrues. It
advances one global interest index, and every borrower's debt is projected
lazily from the index it was last touched at:

    interest_factor      = borrow_rate * elapsed_blocks
    accrued_interest     = total_liabilities * interest_factor
    global_index'        = global_index * (1 + interest_factor)
    total_liabilities'   = total_liabilities + accrued_interest
    total_reserves'      = total_reserves + accrued_interest * reserve_factor

    loan_amount'         = loan_amount * (global_index / liability_index)

Every multiplication truncates to 18 decimal places; nothing rounds up.

ARCHITECTURE:
    - MarketConfig, MarketState, Liability: frozen inputs
    - calculate_interest, project_liability: pure functions
    - compute_interest: queries the market balance and the interest model,
      then delegates to calculate_interest

ORDERING: project_liability must be given a state that has already been
accrued to the current height. Projecting against a stale index understates
the debt.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Tuple

from .core import Address, QuerierLike
from .fixed_point import (
    RATIO_ONE, RATIO_ZERO, ratio_add, ratio_div, ratio_from_uint, ratio_mul,
    ratio_sub, uint_mul_ratio, uint_sub,
)
from .querier import query_balance, query_borrow_rate


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Lending market configuration.

    reserve_factor is the share of accrued interest kept as reserves;
    max_borrow_factor caps total liabilities as a share of deposits.
    """
    contract_addr: Address
    owner_addr: Address
    aterra_contract: Address
    interest_model: Address
    overseer_contract: Address
    collector_contract: Address
    stable_denom: str
    reserve_factor: Decimal
    max_borrow_factor: Decimal


@dataclass(frozen=True, slots=True)
class MarketState:
    """Aggregate market state; global_interest_index never decreases."""
    total_liabilities: Decimal
    total_reserves: Decimal
    last_interest_updated: int
    global_interest_index: Decimal = RATIO_ONE
    prev_aterra_supply: int = 0
    prev_exchange_rate: Decimal = RATIO_ONE


@dataclass(frozen=True, slots=True)
class Liability:
    """A borrower's loan, valid at interest_index."""
    interest_index: Decimal
    loan_amount: int


def initial_market_state(block_height: int) -> MarketState:
    return MarketState(
        total_liabilities=RATIO_ZERO,
        total_reserves=RATIO_ZERO,
        last_interest_updated=block_height,
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_interest(
    state: MarketState,
    borrow_rate: Decimal,
    block_height: int,
    reserve_factor: Decimal,
) -> MarketState:
    """
    Accrue interest from state.last_interest_updated to block_height.

    PURE FUNCTION - All inputs explicit.

    Args:
        state: Market state before accrual
        borrow_rate: Per-block borrow rate
        block_height: Height to accrue to
        reserve_factor: Share of accrued interest added to reserves

    Returns:
        New MarketState. The same instance when no blocks have elapsed.

    Example:
        state = MarketState(to_ratio(1_000_000), RATIO_ZERO, 0)
        new = calculate_interest(state, percent(1), 100, permille(3))
        # index 2, liabilities 2,000,000, reserves 3,000
    """
    if state.last_interest_updated >= block_height:
        return state

    passed_blocks = ratio_from_uint(block_height - state.last_interest_updated)
    interest_factor = ratio_mul(passed_blocks, borrow_rate)
    interest_accrued = ratio_mul(state.total_liabilities, interest_factor)

    return replace(
        state,
        global_interest_index=ratio_mul(
            state.global_interest_index, ratio_add(RATIO_ONE, interest_factor)
        ),
        total_liabilities=ratio_add(state.total_liabilities, interest_accrued),
        total_reserves=ratio_add(
            state.total_reserves, ratio_mul(interest_accrued, reserve_factor)
        ),
        last_interest_updated=block_height,
    )


def project_liability(state: MarketState, liability: Liability) -> Tuple[int, Liability]:
    """
    Project a liability to the state's global interest index.

    PURE FUNCTION - All inputs explicit.

    Returns:
        Tuple of (new_loan_amount, liability re-based to the global index)
    """
    growth = ratio_div(state.global_interest_index, liability.interest_index)
    new_loan_amount = uint_mul_ratio(liability.loan_amount, growth)
    return new_loan_amount, Liability(
        interest_index=state.global_interest_index,
        loan_amount=new_loan_amount,
    )


def compute_loan(state: MarketState, liability: Liability) -> Liability:
    """project_liability, keeping only the re-based liability."""
    return project_liability(state, liability)[1]


def calculate_exchange_rate(
    state: MarketState,
    contract_balance: int,
    aterra_supply: int,
) -> Decimal:
    """
    Stable coins redeemable per aterra.

    (balance + liabilities - reserves) / supply, or 1 before the first deposit.
    """
    if aterra_supply == 0:
        return RATIO_ONE
    return ratio_div(
        ratio_sub(
            ratio_add(ratio_from_uint(contract_balance), state.total_liabilities),
            state.total_reserves,
        ),
        ratio_from_uint(aterra_supply),
    )


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_interest(
    querier: QuerierLike,
    config: MarketConfig,
    state: MarketState,
    block_height: int,
    deposit_amount: Optional[int] = None,
) -> MarketState:
    """
    Accrue interest to block_height using the interest model's current rate.

    deposit_amount is stable coin already credited to the market by the
    message being processed; it is excluded from the balance the borrow rate
    is priced on. No query is issued when no blocks have elapsed.

    Raises:
        QueryError: the interest model is unreachable or answers malformed
        FixedPointOverflow: deposit_amount exceeds the market balance
    """
    if state.last_interest_updated >= block_height:
        return state

    balance = uint_sub(
        query_balance(querier, config.contract_addr, config.stable_denom),
        deposit_amount or 0,
    )
    borrow_rate = query_borrow_rate(
        querier,
        config.interest_model,
        balance,
        state.total_liabilities,
        state.total_reserves,
    )
    return calculate_interest(state, borrow_rate, block_height, config.reserve_factor)
