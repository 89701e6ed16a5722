"""
custody.py - Rebasing collateral custody contract

Holds one collateral token on behalf of borrowers. Each borrower has a
balance (everything deposited) and a spendable part (not locked by the
overseer). Locking and unlocking are driven by the overseer only.

The collateral is a rebasing token whose value tracks an underlying token.
Every deposit first runs the Rebase Reward Accumulator:

    new_index = collateral_price / underlying_price
    old_index = stored index (new_index on first use)
    reward    = (new_index - old_index) * underlying_price * total_collateral

where total_collateral is the custody's collateral balance before the
deposit. The reward is only tallied (total_cumulative_rewards); rewards are
never paid out, and distribute_rewards is rejected.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    Address, Contract, ExecutionContext, HOOK_DEPOSIT_COLLATERAL, InvalidRequest,
    MissingDepositCollateralHook, Response, RewardDistributionNotSupported,
    Unauthorized, UnlockTooLarge, WithdrawTooLarge, build_response, contract_call,
    require_sender,
)
from .fixed_point import ratio_div, ratio_mul, ratio_sub, uint_add, uint_mul_ratio, uint_sub
from .querier import query_price, query_token_balance
from .store import Bucket, Singleton, paginate


KEY_CONFIG = b"config"
KEY_TOTAL_CUMULATIVE_REWARDS = b"total_cumulative_rewards"
KEY_CURRENT_REBASE_INDEX = b"current_rebase_index"
PREFIX_BORROWER = b"borrower"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BAssetInfo:
    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True, slots=True)
class CustodyConfig:
    owner: Address
    oracle: Address
    collateral_token: Address
    underlying_token: Address
    overseer_contract: Address
    market_contract: Address
    liquidation_contract: Address
    stable_denom: str
    basset_info: BAssetInfo


@dataclass(frozen=True, slots=True)
class BorrowerInfo:
    """Collateral held for one borrower; spendable <= balance."""
    balance: int
    spendable: int


@dataclass(frozen=True, slots=True)
class BorrowerResponse:
    borrower: Address
    balance: int
    spendable: int


@dataclass(frozen=True, slots=True)
class RebaseStateResponse:
    current_rebase_index: Optional[Decimal]
    total_cumulative_rewards: int


EMPTY_BORROWER = BorrowerInfo(balance=0, spendable=0)


# ============================================================================
# STATE
# ============================================================================

def read_config(storage) -> CustodyConfig:
    return Singleton(storage, KEY_CONFIG).load()


def store_config(storage, config: CustodyConfig) -> None:
    Singleton(storage, KEY_CONFIG).save(config)


def read_borrower_info(storage, borrower: Address) -> BorrowerInfo:
    return Bucket(storage, PREFIX_BORROWER).may_load(borrower.encode()) or EMPTY_BORROWER


def store_borrower_info(storage, borrower: Address, info: BorrowerInfo) -> None:
    bucket = Bucket(storage, PREFIX_BORROWER)
    if info.balance == 0:
        bucket.remove(borrower.encode())
    else:
        bucket.save(borrower.encode(), info)


def read_current_rebase_index(storage) -> Optional[Decimal]:
    return Singleton(storage, KEY_CURRENT_REBASE_INDEX).may_load()


def read_total_cumulative_rewards(storage) -> int:
    return Singleton(storage, KEY_TOTAL_CUMULATIVE_REWARDS).may_load() or 0


# ============================================================================
# REBASE REWARDS
# ============================================================================

def calculate_rebase_reward(
    collateral_price: Decimal,
    underlying_price: Decimal,
    old_index: Optional[Decimal],
    total_collateral: int,
) -> Tuple[int, Decimal]:
    """
    Reward accrued by the custody's collateral since the last rebase index.

    PURE FUNCTION - All inputs explicit.

    Args:
        collateral_price: Oracle price of the collateral token
        underlying_price: Oracle price of the underlying token
        old_index: Stored rebase index, None before the first deposit
        total_collateral: Collateral held before the current deposit

    Returns:
        Tuple of (reward in stable units, new rebase index)

    Raises:
        DivideByZero: underlying_price is zero
        FixedPointOverflow: the index fell since the last deposit

    Example:
        reward, index = calculate_rebase_reward(to_ratio(3), RATIO_ONE, to_ratio(2), 100)
        # reward 100, index 3
    """
    new_index = ratio_div(collateral_price, underlying_price)
    if old_index is None:
        old_index = new_index
    reward = uint_mul_ratio(
        total_collateral,
        ratio_mul(ratio_sub(new_index, old_index), underlying_price),
    )
    return reward, new_index


def accrue_rebase_rewards(
    ctx: ExecutionContext,
    config: CustodyConfig,
    total_collateral: int,
) -> int:
    """Price both tokens, add the rebase reward to the tally and store the new index."""
    collateral_price = query_price(
        ctx.querier, config.oracle, config.collateral_token, config.stable_denom,
    )
    underlying_price = query_price(
        ctx.querier, config.oracle, config.underlying_token, config.stable_denom,
    )
    reward, new_index = calculate_rebase_reward(
        collateral_price.rate,
        underlying_price.rate,
        read_current_rebase_index(ctx.storage),
        total_collateral,
    )
    Singleton(ctx.storage, KEY_TOTAL_CUMULATIVE_REWARDS).save(
        uint_add(read_total_cumulative_rewards(ctx.storage), reward)
    )
    Singleton(ctx.storage, KEY_CURRENT_REBASE_INDEX).save(new_index)
    return reward


# ============================================================================
# HANDLERS
# ============================================================================

def instantiate(
    ctx: ExecutionContext,
    owner: Address,
    oracle: Address,
    collateral_token: Address,
    underlying_token: Address,
    overseer_contract: Address,
    market_contract: Address,
    liquidation_contract: Address,
    stable_denom: str,
    basset_info: BAssetInfo,
) -> Response:
    store_config(ctx.storage, CustodyConfig(
        owner=owner,
        oracle=oracle,
        collateral_token=collateral_token,
        underlying_token=underlying_token,
        overseer_contract=overseer_contract,
        market_contract=market_contract,
        liquidation_contract=liquidation_contract,
        stable_denom=stable_denom,
        basset_info=basset_info,
    ))
    return build_response("instantiate", contract="custody")


def update_config(
    ctx: ExecutionContext,
    owner: Optional[Address] = None,
    liquidation_contract: Optional[Address] = None,
) -> Response:
    config = read_config(ctx.storage)
    require_sender(ctx.info, config.owner)
    if owner is not None:
        config = replace(config, owner=owner)
    if liquidation_contract is not None:
        config = replace(config, liquidation_contract=liquidation_contract)
    store_config(ctx.storage, config)
    return build_response("update_config")


def receive(ctx: ExecutionContext, sender: Address, amount: int, msg: str) -> Response:
    """
    Collateral token receive hook.

    Raises:
        Unauthorized: called by anything but the collateral token
        MissingDepositCollateralHook: msg is not deposit_collateral
    """
    if msg != HOOK_DEPOSIT_COLLATERAL:
        raise MissingDepositCollateralHook("Deposit collateral hook is missing")
    config = read_config(ctx.storage)
    if ctx.info.sender != config.collateral_token:
        raise Unauthorized("Only the collateral token can deposit collateral")

    # tokens are already credited to the custody
    total_collateral = uint_sub(
        query_token_balance(ctx.querier, config.collateral_token, ctx.env.contract_address),
        amount,
    )
    reward = accrue_rebase_rewards(ctx, config, total_collateral)
    return deposit_collateral(ctx, sender, amount, reward)


def deposit_collateral(
    ctx: ExecutionContext,
    borrower: Address,
    amount: int,
    rebase_reward: int = 0,
) -> Response:
    info = read_borrower_info(ctx.storage, borrower)
    store_borrower_info(ctx.storage, borrower, BorrowerInfo(
        balance=uint_add(info.balance, amount),
        spendable=uint_add(info.spendable, amount),
    ))
    return build_response(
        "deposit_collateral",
        borrower=borrower,
        amount=amount,
        rebase_reward=rebase_reward,
    )


def withdraw_collateral(ctx: ExecutionContext, amount: Optional[int] = None) -> Response:
    """Withdraw spendable collateral; all of it when amount is omitted."""
    config = read_config(ctx.storage)
    borrower = ctx.info.sender
    info = read_borrower_info(ctx.storage, borrower)
    amount = info.spendable if amount is None else amount
    if amount > info.spendable:
        raise WithdrawTooLarge(
            f"Withdraw amount cannot exceed the user's spendable amount: {info.spendable}"
        )
    store_borrower_info(ctx.storage, borrower, BorrowerInfo(
        balance=uint_sub(info.balance, amount),
        spendable=uint_sub(info.spendable, amount),
    ))
    return build_response(
        "withdraw_collateral",
        [contract_call(config.collateral_token, "transfer", recipient=borrower, amount=amount)],
        borrower=borrower,
        amount=amount,
    )


def lock_collateral(ctx: ExecutionContext, borrower: Address, amount: int) -> Response:
    config = read_config(ctx.storage)
    require_sender(ctx.info, config.overseer_contract)
    info = read_borrower_info(ctx.storage, borrower)
    if amount > info.spendable:
        raise InvalidRequest(
            f"Lock amount cannot exceed the user's spendable amount: {info.spendable}"
        )
    store_borrower_info(ctx.storage, borrower, replace(
        info, spendable=uint_sub(info.spendable, amount),
    ))
    return build_response("lock_collateral", borrower=borrower, amount=amount)


def unlock_collateral(ctx: ExecutionContext, borrower: Address, amount: int) -> Response:
    config = read_config(ctx.storage)
    require_sender(ctx.info, config.overseer_contract)
    info = read_borrower_info(ctx.storage, borrower)
    locked = uint_sub(info.balance, info.spendable)
    if amount > locked:
        raise UnlockTooLarge(f"Unlock amount cannot exceed locked amount: {locked}")
    store_borrower_info(ctx.storage, borrower, replace(
        info, spendable=uint_add(info.spendable, amount),
    ))
    return build_response("unlock_collateral", borrower=borrower, amount=amount)


def distribute_rewards(ctx: ExecutionContext) -> Response:
    raise RewardDistributionNotSupported("Rebasing collateral does not distribute rewards")


# ============================================================================
# QUERIES
# ============================================================================

def query_config(ctx: ExecutionContext) -> CustodyConfig:
    return read_config(ctx.storage)


def query_borrower(ctx: ExecutionContext, address: Address) -> BorrowerResponse:
    info = read_borrower_info(ctx.storage, address)
    return BorrowerResponse(borrower=address, balance=info.balance, spendable=info.spendable)


def query_borrowers(
    ctx: ExecutionContext,
    start_after: Optional[Address] = None,
    limit: Optional[int] = None,
) -> Tuple[BorrowerResponse, ...]:
    page = paginate(
        Bucket(ctx.storage, PREFIX_BORROWER),
        start_after.encode() if start_after is not None else None,
        limit,
    )
    return tuple(
        BorrowerResponse(borrower=key.decode(), balance=info.balance, spendable=info.spendable)
        for key, info in page
    )


def query_rebase_state(ctx: ExecutionContext) -> RebaseStateResponse:
    return RebaseStateResponse(
        current_rebase_index=read_current_rebase_index(ctx.storage),
        total_cumulative_rewards=read_total_cumulative_rewards(ctx.storage),
    )


custody_contract = Contract(
    name="custody",
    instantiate_handler=instantiate,
    execute_handlers={
        "update_config": update_config,
        "receive": receive,
        "withdraw_collateral": withdraw_collateral,
        "lock_collateral": lock_collateral,
        "unlock_collateral": unlock_collateral,
        "distribute_rewards": distribute_rewards,
    },
    query_handlers={
        "config": query_config,
        "borrower": query_borrower,
        "borrowers": query_borrowers,
        "rebase_state": query_rebase_state,
    },
)
