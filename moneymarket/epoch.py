"""
epoch.py - Epoch settlement calculations

Pure half of the Epoch Operations Controller. The overseer contract loads its
state, queries the market, and hands everything to plan_epoch; the returned
EpochPlan says how much of the interest buffer to spend on the token purchase
and how much to distribute to depositors. Turning the plan into transfers
(and applying transfer tax) stays in the overseer.

Key Formulas:
    deposit_rate        = (exchange_rate / prev_exchange_rate - 1) / blocks
    accrued_buffer      = interest_buffer - prev_interest_buffer
    purchase_amount     = accrued_buffer * anc_purchase_factor
    missing_deposits    = prev_aterra_supply * prev_exchange_rate
                          * blocks * (threshold_deposit_rate - deposit_rate)
    distribution_buffer = interest_buffer * buffer_distribution_factor
    distributed         = min(missing_deposits, distribution_buffer)
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import Address, EpochNotPassed
from .dynrate import DynrateState, update_rate
from .fixed_point import (
    RATIO_ONE, RATIO_ZERO, ratio_div, ratio_from_uint, ratio_sub, uint_mul,
    uint_mul_ratio, uint_sub,
)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class OverseerConfig:
    """
    Overseer configuration, threaded explicitly through every handler.

    Rates are per block. price_timeframe is the oracle staleness window in
    seconds used for borrow limits.
    """
    owner_addr: Address
    oracle_contract: Address
    market_contract: Address
    liquidation_contract: Address
    collector_contract: Address
    stable_denom: str
    epoch_period: int
    threshold_deposit_rate: Decimal
    target_deposit_rate: Decimal
    buffer_distribution_factor: Decimal
    anc_purchase_factor: Decimal
    price_timeframe: int


@dataclass(frozen=True, slots=True)
class EpochState:
    """Snapshot taken by the last completed epoch; replaced as a whole."""
    deposit_rate: Decimal
    prev_aterra_supply: int
    prev_interest_buffer: int
    prev_exchange_rate: Decimal
    last_executed_height: int


@dataclass(frozen=True, slots=True)
class EpochPlan:
    """
    What one epoch does with the interest buffer.

    anc_purchase_amount and distributed_interest are gross amounts; tax is
    deducted when they are sent. interest_buffer is what remains after both.
    """
    blocks: int
    deposit_rate: Decimal
    anc_purchase_amount: int
    distributed_interest: int
    interest_buffer: int


def initial_epoch_state(block_height: int) -> EpochState:
    return EpochState(
        deposit_rate=RATIO_ZERO,
        prev_aterra_supply=0,
        prev_interest_buffer=0,
        prev_exchange_rate=RATIO_ONE,
        last_executed_height=block_height,
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def check_epoch_passed(state: EpochState, epoch_period: int, block_height: int) -> None:
    """Raise EpochNotPassed until epoch_period blocks have passed."""
    if block_height < state.last_executed_height + epoch_period:
        raise EpochNotPassed(state.last_executed_height)


def calculate_deposit_rate(
    exchange_rate: Decimal,
    prev_exchange_rate: Decimal,
    blocks: int,
) -> Decimal:
    """
    Realized per-block deposit rate since the previous epoch.

    Raises:
        FixedPointOverflow: the exchange rate fell below the previous one
        DivideByZero: no blocks have passed
    """
    effective_deposit_rate = ratio_div(exchange_rate, prev_exchange_rate)
    return ratio_div(
        ratio_sub(effective_deposit_rate, RATIO_ONE),
        ratio_from_uint(blocks),
    )


def calculate_purchase_amount(
    interest_buffer: int,
    prev_interest_buffer: int,
    anc_purchase_factor: Decimal,
) -> int:
    """Share of the buffer growth since the last epoch sent to the collector."""
    accrued_buffer = uint_sub(interest_buffer, prev_interest_buffer)
    return uint_mul_ratio(accrued_buffer, anc_purchase_factor)


def calculate_distribution(
    interest_buffer: int,
    deposit_rate: Decimal,
    threshold_deposit_rate: Decimal,
    prev_aterra_supply: int,
    prev_exchange_rate: Decimal,
    blocks: int,
    buffer_distribution_factor: Decimal,
) -> int:
    """
    Interest paid from the buffer to lift depositors to the threshold rate.

    Zero when the deposit rate already meets the threshold. Otherwise the
    deposits missed since the last epoch, capped at the distributable part
    of the buffer.
    """
    if deposit_rate >= threshold_deposit_rate:
        return 0
    missing_deposit_rate = ratio_sub(threshold_deposit_rate, deposit_rate)
    prev_deposits = uint_mul_ratio(prev_aterra_supply, prev_exchange_rate)
    missing_deposits = uint_mul_ratio(uint_mul(prev_deposits, blocks), missing_deposit_rate)
    distribution_buffer = uint_mul_ratio(interest_buffer, buffer_distribution_factor)
    return min(missing_deposits, distribution_buffer)


def plan_epoch(
    config: OverseerConfig,
    state: EpochState,
    dynrate_state: DynrateState,
    interest_buffer: int,
    exchange_rate: Decimal,
    block_height: int,
) -> EpochPlan:
    """
    Plan one epoch's settlement.

    PURE FUNCTION - All inputs explicit.

    Args:
        config: Overseer configuration (after any dynamic rate update)
        state: Previous epoch snapshot
        dynrate_state: Latest dynamic rate snapshot; its rate_delta is applied
            to the measured deposit rate in the direction of update_vector
        interest_buffer: Overseer's current stable balance
        exchange_rate: Market exchange rate at block_height
        block_height: Current height

    Returns:
        EpochPlan with gross purchase and distribution amounts

    Raises:
        EpochNotPassed: epoch_period has not passed since the last epoch
    """
    check_epoch_passed(state, config.epoch_period, block_height)
    blocks = block_height - state.last_executed_height

    deposit_rate = update_rate(
        calculate_deposit_rate(exchange_rate, state.prev_exchange_rate, blocks),
        dynrate_state.rate_delta,
        dynrate_state.update_vector,
    )

    anc_purchase_amount = calculate_purchase_amount(
        interest_buffer, state.prev_interest_buffer, config.anc_purchase_factor,
    )
    interest_buffer = uint_sub(interest_buffer, anc_purchase_amount)

    distributed_interest = calculate_distribution(
        interest_buffer,
        deposit_rate,
        config.threshold_deposit_rate,
        state.prev_aterra_supply,
        state.prev_exchange_rate,
        blocks,
        config.buffer_distribution_factor,
    )
    interest_buffer = uint_sub(interest_buffer, distributed_interest)

    return EpochPlan(
        blocks=blocks,
        deposit_rate=deposit_rate,
        anc_purchase_amount=anc_purchase_amount,
        distributed_interest=distributed_interest,
        interest_buffer=interest_buffer,
    )


def next_epoch_state(
    interest_buffer: int,
    aterra_supply: int,
    exchange_rate: Decimal,
    prev_state: EpochState,
    block_height: int,
) -> EpochState:
    """
    Snapshot committed by the deferred second phase of an epoch.

    The deposit rate here is the raw measurement; the dynamic rate delta is
    only applied while planning.
    """
    blocks = block_height - prev_state.last_executed_height
    return EpochState(
        deposit_rate=calculate_deposit_rate(exchange_rate, prev_state.prev_exchange_rate, blocks),
        prev_aterra_supply=aterra_supply,
        prev_interest_buffer=interest_buffer,
        prev_exchange_rate=exchange_rate,
        last_executed_height=block_height,
    )
