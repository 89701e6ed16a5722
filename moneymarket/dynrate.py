"""
dynrate.py - Dynamic Rate Adjuster

A slow control loop on top of the per-epoch settlement. Once every
dyn_rate_epoch blocks it compares the overseer's yield reserve (its interest
buffer) with the previous snapshot and nudges the target and threshold
deposit rates in the direction the reserve moved:

    yield_reserve   = interest_buffer
    rising          = yield_reserve > prev_yield_reserve
    raw_change      = |yield_reserve - prev_yield_reserve| / prev_yield_reserve
    adjusted_change = raw_change - expectation   if raw_change > expectation
                      expectation                otherwise
    rate_delta      = min(maxchange, adjusted_change) / elapsed_blocks
                      (only when adjusted_change >= threshold, else 0)
    target'         = threshold' = update_rate(target, rate_delta, rising)

The resulting rate_delta is also applied, every epoch, to the measured
deposit rate until the next window replaces it.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .fixed_point import (
    RATIO_ZERO, ratio_abs_diff, ratio_add, ratio_div, ratio_from_uint, ratio_min,
    ratio_sub,
)


@dataclass(frozen=True, slots=True)
class DynrateConfig:
    """Dynamic rate window configuration; every field is non-negative."""
    dyn_rate_epoch: int
    dyn_rate_threshold: Decimal
    dyn_rate_maxchange: Decimal
    dyn_rate_yr_increase_expectation: Decimal


@dataclass(frozen=True, slots=True)
class DynrateState:
    """
    Snapshot taken at the last dynamic rate window.

    rate_delta is per block; update_vector is True when the yield reserve
    was rising.
    """
    last_executed_height: int
    prev_yield_reserve: Decimal
    rate_delta: Decimal
    update_vector: bool


@dataclass(frozen=True, slots=True)
class RateAdjustment:
    """Outcome of one dynamic rate window."""
    state: DynrateState
    target_deposit_rate: Decimal
    threshold_deposit_rate: Decimal
    rate_changed: bool


def initial_dynrate_state(block_height: int) -> DynrateState:
    return DynrateState(
        last_executed_height=block_height,
        prev_yield_reserve=RATIO_ZERO,
        rate_delta=RATIO_ZERO,
        update_vector=True,
    )


def update_rate(old_rate: Decimal, rate_delta: Decimal, rising: bool) -> Decimal:
    """
    Move a rate by rate_delta.

    Rising adds. Falling subtracts only when the rate is larger than the
    delta; otherwise the rate is left where it was.
    """
    if rising:
        return ratio_add(old_rate, rate_delta)
    if old_rate > rate_delta:
        return ratio_sub(old_rate, rate_delta)
    return old_rate


def is_window_open(
    config: DynrateConfig,
    state: DynrateState,
    block_height: int,
) -> bool:
    """A window runs once a reserve snapshot exists and dyn_rate_epoch has passed."""
    return (
        state.prev_yield_reserve != RATIO_ZERO
        and block_height > state.last_executed_height + config.dyn_rate_epoch
    )


def seed_state(interest_buffer: int, block_height: int) -> DynrateState:
    """
    First reserve snapshot, taken when a window elapses without one.

    Carries no rate delta, so the next epochs measure deposit rates unchanged.
    """
    return DynrateState(
        last_executed_height=block_height,
        prev_yield_reserve=ratio_from_uint(interest_buffer),
        rate_delta=RATIO_ZERO,
        update_vector=True,
    )


def adjust(
    config: DynrateConfig,
    state: DynrateState,
    interest_buffer: int,
    block_height: int,
    target_deposit_rate: Decimal,
    threshold_deposit_rate: Decimal,
) -> RateAdjustment:
    """
    Run one dynamic rate window.

    PURE FUNCTION - All inputs explicit.

    Args:
        config: Window configuration
        state: Snapshot from the previous window
        interest_buffer: Current yield reserve in stable units
        block_height: Current height; must be above state.last_executed_height
        target_deposit_rate: Current target deposit rate
        threshold_deposit_rate: Current threshold deposit rate

    Returns:
        RateAdjustment carrying the new snapshot (always to be persisted) and
        the target/threshold rates, which are equal when rate_changed.

    Raises:
        DivideByZero: prev_yield_reserve is zero; callers gate on is_window_open
    """
    yield_reserve = ratio_from_uint(interest_buffer)
    rising = yield_reserve > state.prev_yield_reserve

    change = ratio_div(
        ratio_abs_diff(yield_reserve, state.prev_yield_reserve),
        state.prev_yield_reserve,
    )
    expectation = config.dyn_rate_yr_increase_expectation
    if change > expectation:
        change = ratio_sub(change, expectation)
    else:
        change = expectation

    rate_delta = RATIO_ZERO
    rate_changed = False
    if change >= config.dyn_rate_threshold:
        elapsed = ratio_from_uint(block_height - state.last_executed_height)
        rate_delta = ratio_div(ratio_min(config.dyn_rate_maxchange, change), elapsed)
        target_deposit_rate = update_rate(target_deposit_rate, rate_delta, rising)
        threshold_deposit_rate = target_deposit_rate
        rate_changed = True

    return RateAdjustment(
        state=DynrateState(
            last_executed_height=block_height,
            prev_yield_reserve=yield_reserve,
            rate_delta=rate_delta,
            update_vector=rising,
        ),
        target_deposit_rate=target_deposit_rate,
        threshold_deposit_rate=threshold_deposit_rate,
        rate_changed=rate_changed,
    )
