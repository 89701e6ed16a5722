"""
overseer.py - Overseer contract

Owns the protocol's monetary policy and collateral registry:

    - Epoch operations: gated periodic settlement of the interest buffer,
      committed in two phases (execute_epoch_operations plans and emits the
      transfers, update_epoch_state runs afterwards and stores the snapshot)
    - Dynamic rate windows that move the target/threshold deposit rates
    - Collateral whitelist and per-borrower collateral book
    - Borrow limits priced through the oracle

Handlers are plain functions (ctx, **params) -> Response; queries return
frozen dataclasses. overseer_contract binds them for the host.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .core import (
    Address, Contract, ExecutionContext, InvalidRequest, Response,
    TokenAlreadyRegistered, TokenNotRegistered, Unauthorized, UnlockTooLarge,
    bank_send, build_response, contract_call, require_sender,
)
from .dynrate import (
    DynrateConfig, DynrateState, adjust, initial_dynrate_state, is_window_open,
    seed_state,
)
from .epoch import (
    EpochState, OverseerConfig, check_epoch_passed, initial_epoch_state,
    next_epoch_state, plan_epoch,
)
from .fixed_point import RATIO_ZERO, to_ratio, uint_add, uint_mul_ratio
from .querier import (
    BorrowLimitResponse, deduct_tax, query_balance, query_epoch_state,
    query_loan_amount, query_price,
)
from .store import Bucket, Singleton, paginate


KEY_CONFIG = b"config"
KEY_DYNRATE_CONFIG = b"dynrate_config"
KEY_EPOCH_STATE = b"epoch_state"
KEY_DYNRATE_STATE = b"dynrate_state"
PREFIX_WHITELIST = b"whitelist"
PREFIX_COLLATERALS = b"collateral"

# (collateral_token, amount) pairs sorted by token
Tokens = Tuple[Tuple[Address, int], ...]


@dataclass(frozen=True, slots=True)
class WhitelistElem:
    name: str
    symbol: str
    custody_contract: Address
    max_ltv: Decimal


@dataclass(frozen=True, slots=True)
class WhitelistResponseElem:
    name: str
    symbol: str
    max_ltv: Decimal
    custody_contract: Address
    collateral_token: Address


@dataclass(frozen=True, slots=True)
class CollateralsResponse:
    borrower: Address
    collaterals: Tokens


# ============================================================================
# STATE
# ============================================================================

def read_config(storage) -> OverseerConfig:
    return Singleton(storage, KEY_CONFIG).load()


def store_config(storage, config: OverseerConfig) -> None:
    Singleton(storage, KEY_CONFIG).save(config)


def read_dynrate_config(storage) -> DynrateConfig:
    return Singleton(storage, KEY_DYNRATE_CONFIG).load()


def store_dynrate_config(storage, config: DynrateConfig) -> None:
    Singleton(storage, KEY_DYNRATE_CONFIG).save(config)


def read_epoch_state(storage) -> EpochState:
    return Singleton(storage, KEY_EPOCH_STATE).load()


def store_epoch_state(storage, state: EpochState) -> None:
    Singleton(storage, KEY_EPOCH_STATE).save(state)


def read_dynrate_state(storage) -> DynrateState:
    return Singleton(storage, KEY_DYNRATE_STATE).load()


def store_dynrate_state(storage, state: DynrateState) -> None:
    Singleton(storage, KEY_DYNRATE_STATE).save(state)


def read_whitelist_elem(storage, collateral_token: Address) -> WhitelistElem:
    elem = Bucket(storage, PREFIX_WHITELIST).may_load(collateral_token.encode())
    if elem is None:
        raise TokenNotRegistered(f"Token is not registered as collateral: {collateral_token}")
    return elem


def read_whitelist(
    storage,
    start_after: Optional[Address] = None,
    limit: Optional[int] = None,
) -> List[WhitelistResponseElem]:
    page = paginate(
        Bucket(storage, PREFIX_WHITELIST),
        start_after.encode() if start_after is not None else None,
        limit,
    )
    return [
        WhitelistResponseElem(
            name=elem.name,
            symbol=elem.symbol,
            max_ltv=elem.max_ltv,
            custody_contract=elem.custody_contract,
            collateral_token=key.decode(),
        )
        for key, elem in page
    ]


def iter_whitelist(storage):
    """Every whitelist entry in token order, without paging."""
    for key, elem in Bucket(storage, PREFIX_WHITELIST).range():
        yield key.decode(), elem


def read_collaterals(storage, borrower: Address) -> Tokens:
    return Bucket(storage, PREFIX_COLLATERALS).may_load(borrower.encode()) or ()


def store_collaterals(storage, borrower: Address, collaterals: Tokens) -> None:
    bucket = Bucket(storage, PREFIX_COLLATERALS)
    if collaterals:
        bucket.save(borrower.encode(), collaterals)
    else:
        bucket.remove(borrower.encode())


# ============================================================================
# PURE HELPERS
# ============================================================================

def check_periods(**periods: Optional[int]) -> None:
    """Raise InvalidRequest if any given block or time period is negative."""
    negative = sorted(name for name, value in periods.items() if value is not None and value < 0)
    if negative:
        raise InvalidRequest(f"Periods cannot be negative: {negative}")


def apply_config_update(
    config: OverseerConfig,
    sender: Address,
    **changes: Any,
) -> OverseerConfig:
    """
    Owner-authorized config update returning a new config.

    Only fields passed with a non-None value change. market_contract,
    collector_contract and stable_denom are fixed at instantiation.
    """
    if sender != config.owner_addr:
        raise Unauthorized("Only the owner can update the config")
    allowed = {
        "owner_addr", "oracle_contract", "liquidation_contract",
        "threshold_deposit_rate", "target_deposit_rate",
        "buffer_distribution_factor", "anc_purchase_factor",
        "epoch_period", "price_timeframe",
    }
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidRequest(f"Config fields cannot be updated: {sorted(unknown)}")
    updates = {k: v for k, v in changes.items() if v is not None}
    check_periods(epoch_period=updates.get("epoch_period"),
                  price_timeframe=updates.get("price_timeframe"))
    for name in ("threshold_deposit_rate", "target_deposit_rate",
                 "buffer_distribution_factor", "anc_purchase_factor"):
        if name in updates:
            updates[name] = to_ratio(updates[name])
    return replace(config, **updates)


def apply_dynrate_config_update(
    config: DynrateConfig,
    **changes: Any,
) -> DynrateConfig:
    updates = {k: v for k, v in changes.items() if v is not None}
    check_periods(dyn_rate_epoch=updates.get("dyn_rate_epoch"))
    for name in ("dyn_rate_threshold", "dyn_rate_maxchange", "dyn_rate_yr_increase_expectation"):
        if name in updates:
            updates[name] = to_ratio(updates[name])
    return replace(config, **updates)


def add_tokens(current: Tokens, added: Sequence[Tuple[Address, int]]) -> Tokens:
    book: Dict[Address, int] = dict(current)
    for token, amount in added:
        book[token] = uint_add(book.get(token, 0), amount)
    return tuple(sorted(book.items()))


def sub_tokens(current: Tokens, removed: Sequence[Tuple[Address, int]]) -> Tokens:
    """Remove amounts from a collateral book; tokens reaching zero drop out."""
    book: Dict[Address, int] = dict(current)
    for token, amount in removed:
        locked = book.get(token, 0)
        if amount > locked:
            raise InvalidRequest(
                f"Unlock amount cannot exceed locked amount: {token} {amount} > {locked}"
            )
        book[token] = locked - amount
    return tuple(sorted((t, a) for t, a in book.items() if a > 0))


def _normalize_tokens(collaterals: Sequence[Tuple[Address, int]]) -> List[Tuple[Address, int]]:
    if not collaterals:
        raise InvalidRequest("No collaterals given")
    result = []
    for token, amount in collaterals:
        if amount <= 0:
            raise InvalidRequest(f"Collateral amount must be positive: {token} {amount}")
        result.append((token, int(amount)))
    return result


def compute_borrow_limit(
    ctx: ExecutionContext,
    config: OverseerConfig,
    collaterals: Tokens,
    block_time: Optional[datetime] = None,
) -> int:
    """
    Sum of floor(floor(amount * price) * max_ltv) over a collateral book.

    Prices are checked against price_timeframe only when block_time is given.
    """
    borrow_limit = 0
    for token, amount in collaterals:
        elem = read_whitelist_elem(ctx.storage, token)
        price = query_price(
            ctx.querier,
            config.oracle_contract,
            token,
            config.stable_denom,
            config.price_timeframe if block_time is not None else None,
            block_time,
        )
        collateral_value = uint_mul_ratio(amount, price.rate)
        borrow_limit = uint_add(borrow_limit, uint_mul_ratio(collateral_value, elem.max_ltv))
    return borrow_limit


# ============================================================================
# INSTANTIATE
# ============================================================================

def instantiate(
    ctx: ExecutionContext,
    owner_addr: Address,
    oracle_contract: Address,
    market_contract: Address,
    liquidation_contract: Address,
    collector_contract: Address,
    stable_denom: str,
    epoch_period: int,
    threshold_deposit_rate: Decimal,
    target_deposit_rate: Decimal,
    buffer_distribution_factor: Decimal,
    anc_purchase_factor: Decimal,
    price_timeframe: int,
    dyn_rate_epoch: int,
    dyn_rate_threshold: Decimal,
    dyn_rate_maxchange: Decimal,
    dyn_rate_yr_increase_expectation: Decimal,
) -> Response:
    check_periods(epoch_period=epoch_period, dyn_rate_epoch=dyn_rate_epoch,
                  price_timeframe=price_timeframe)
    height = ctx.env.block_height
    store_config(ctx.storage, OverseerConfig(
        owner_addr=owner_addr,
        oracle_contract=oracle_contract,
        market_contract=market_contract,
        liquidation_contract=liquidation_contract,
        collector_contract=collector_contract,
        stable_denom=stable_denom,
        epoch_period=epoch_period,
        threshold_deposit_rate=to_ratio(threshold_deposit_rate),
        target_deposit_rate=to_ratio(target_deposit_rate),
        buffer_distribution_factor=to_ratio(buffer_distribution_factor),
        anc_purchase_factor=to_ratio(anc_purchase_factor),
        price_timeframe=price_timeframe,
    ))
    store_dynrate_config(ctx.storage, DynrateConfig(
        dyn_rate_epoch=dyn_rate_epoch,
        dyn_rate_threshold=to_ratio(dyn_rate_threshold),
        dyn_rate_maxchange=to_ratio(dyn_rate_maxchange),
        dyn_rate_yr_increase_expectation=to_ratio(dyn_rate_yr_increase_expectation),
    ))
    store_epoch_state(ctx.storage, initial_epoch_state(height))
    store_dynrate_state(ctx.storage, initial_dynrate_state(height))
    return build_response("instantiate", contract="overseer")


# ============================================================================
# CONFIG AND WHITELIST
# ============================================================================

def update_config(ctx: ExecutionContext, **changes: Any) -> Response:
    config = apply_config_update(read_config(ctx.storage), ctx.info.sender, **changes)
    store_config(ctx.storage, config)
    return build_response("update_config")


def update_dynrate_config(
    ctx: ExecutionContext,
    dyn_rate_epoch: Optional[int] = None,
    dyn_rate_threshold: Optional[Decimal] = None,
    dyn_rate_maxchange: Optional[Decimal] = None,
    dyn_rate_yr_increase_expectation: Optional[Decimal] = None,
) -> Response:
    require_sender(ctx.info, read_config(ctx.storage).owner_addr)
    store_dynrate_config(ctx.storage, apply_dynrate_config_update(
        read_dynrate_config(ctx.storage),
        dyn_rate_epoch=dyn_rate_epoch,
        dyn_rate_threshold=dyn_rate_threshold,
        dyn_rate_maxchange=dyn_rate_maxchange,
        dyn_rate_yr_increase_expectation=dyn_rate_yr_increase_expectation,
    ))
    return build_response("update_dynrate_config")


def register_whitelist(
    ctx: ExecutionContext,
    name: str,
    symbol: str,
    collateral_token: Address,
    custody_contract: Address,
    max_ltv: Decimal,
) -> Response:
    require_sender(ctx.info, read_config(ctx.storage).owner_addr)
    bucket = Bucket(ctx.storage, PREFIX_WHITELIST)
    if bucket.may_load(collateral_token.encode()) is not None:
        raise TokenAlreadyRegistered(f"Token is already registered as collateral: {collateral_token}")
    max_ltv = to_ratio(max_ltv)
    bucket.save(collateral_token.encode(), WhitelistElem(
        name=name,
        symbol=symbol,
        custody_contract=custody_contract,
        max_ltv=max_ltv,
    ))
    return build_response(
        "register_whitelist",
        name=name,
        symbol=symbol,
        collateral_token=collateral_token,
        custody_contract=custody_contract,
        LTV=max_ltv,
    )


def update_whitelist(
    ctx: ExecutionContext,
    collateral_token: Address,
    custody_contract: Optional[Address] = None,
    max_ltv: Optional[Decimal] = None,
) -> Response:
    require_sender(ctx.info, read_config(ctx.storage).owner_addr)
    elem = read_whitelist_elem(ctx.storage, collateral_token)
    if custody_contract is not None:
        elem = replace(elem, custody_contract=custody_contract)
    if max_ltv is not None:
        elem = replace(elem, max_ltv=to_ratio(max_ltv))
    Bucket(ctx.storage, PREFIX_WHITELIST).save(collateral_token.encode(), elem)
    return build_response(
        "update_whitelist",
        collateral_token=collateral_token,
        custody_contract=elem.custody_contract,
        LTV=elem.max_ltv,
    )


# ============================================================================
# EPOCH OPERATIONS
# ============================================================================

def execute_epoch_operations(ctx: ExecutionContext) -> Response:
    """
    Phase one of an epoch: settle the interest buffer.

    Anyone may call this once epoch_period blocks have passed. It runs the
    dynamic rate window when due, plans the purchase and distribution from
    the interest buffer and returns the transfers, a distribute_rewards call
    to every whitelisted custody (fire-and-forget) and, last, the
    update_epoch_state continuation addressed to this contract. The new
    EpochState is written by that continuation, after the transfers landed.

    Raises:
        EpochNotPassed: epoch_period has not passed since the last epoch
    """
    config = read_config(ctx.storage)
    dynrate_config = read_dynrate_config(ctx.storage)
    state = read_epoch_state(ctx.storage)
    dynrate_state = read_dynrate_state(ctx.storage)
    height = ctx.env.block_height
    contract_addr = ctx.env.contract_address

    check_epoch_passed(state, config.epoch_period, height)

    interest_buffer = query_balance(ctx.querier, contract_addr, config.stable_denom)

    if is_window_open(dynrate_config, dynrate_state, height):
        adjustment = adjust(
            dynrate_config,
            dynrate_state,
            interest_buffer,
            height,
            config.target_deposit_rate,
            config.threshold_deposit_rate,
        )
        if adjustment.rate_changed:
            config = replace(
                config,
                target_deposit_rate=adjustment.target_deposit_rate,
                threshold_deposit_rate=adjustment.threshold_deposit_rate,
            )
            store_config(ctx.storage, config)
        dynrate_state = adjustment.state
        store_dynrate_state(ctx.storage, dynrate_state)
    elif (dynrate_state.prev_yield_reserve == RATIO_ZERO
          and interest_buffer > 0
          and height > dynrate_state.last_executed_height + dynrate_config.dyn_rate_epoch):
        dynrate_state = seed_state(interest_buffer, height)
        store_dynrate_state(ctx.storage, dynrate_state)

    epoch_state = query_epoch_state(ctx.querier, config.market_contract, height, None)
    plan = plan_epoch(config, state, dynrate_state, interest_buffer,
                      epoch_state.exchange_rate, height)

    instructions = []
    if plan.anc_purchase_amount:
        instructions.append(bank_send(
            config.collector_contract,
            config.stable_denom,
            deduct_tax(ctx.querier, config.stable_denom, plan.anc_purchase_amount),
        ))

    distributed_interest = plan.distributed_interest
    if distributed_interest:
        distributed_interest = deduct_tax(ctx.querier, config.stable_denom, distributed_interest)
        instructions.append(bank_send(
            config.market_contract, config.stable_denom, distributed_interest,
        ))

    for _, elem in iter_whitelist(ctx.storage):
        instructions.append(contract_call(
            elem.custody_contract, "distribute_rewards", fire_and_forget=True,
        ))

    instructions.append(contract_call(
        contract_addr,
        "update_epoch_state",
        interest_buffer=plan.interest_buffer,
        distributed_interest=distributed_interest,
    ))

    return build_response(
        "epoch_operations",
        instructions,
        deposit_rate=plan.deposit_rate,
        exchange_rate=epoch_state.exchange_rate,
        aterra_supply=epoch_state.aterra_supply,
        distributed_interest=distributed_interest,
        anc_purchase_amount=plan.anc_purchase_amount,
    )


def update_epoch_state(
    ctx: ExecutionContext,
    interest_buffer: int,
    distributed_interest: int,
) -> Response:
    """
    Phase two of an epoch: commit the new EpochState.

    Only the overseer itself may call this. The market is queried again so
    the snapshot reflects the interest distributed in phase one; the market
    is then told the epoch's final rates.
    """
    config = read_config(ctx.storage)
    prev_state = read_epoch_state(ctx.storage)
    require_sender(ctx.info, ctx.env.contract_address)
    height = ctx.env.block_height

    market_epoch_state = query_epoch_state(
        ctx.querier, config.market_contract, height, distributed_interest,
    )
    state = next_epoch_state(
        interest_buffer,
        market_epoch_state.aterra_supply,
        market_epoch_state.exchange_rate,
        prev_state,
        height,
    )
    store_epoch_state(ctx.storage, state)

    return build_response(
        "update_epoch_state",
        [contract_call(
            config.market_contract,
            "execute_epoch_operations",
            deposit_rate=state.deposit_rate,
            target_deposit_rate=config.target_deposit_rate,
            threshold_deposit_rate=config.threshold_deposit_rate,
            distributed_interest=distributed_interest,
        )],
        deposit_rate=state.deposit_rate,
        aterra_supply=state.prev_aterra_supply,
        exchange_rate=state.prev_exchange_rate,
        interest_buffer=interest_buffer,
    )


# ============================================================================
# COLLATERAL
# ============================================================================

def lock_collateral(
    ctx: ExecutionContext,
    collaterals: Sequence[Tuple[Address, int]],
) -> Response:
    """Lock deposited collateral in its custody so it backs the sender's loans."""
    borrower = ctx.info.sender
    collaterals = _normalize_tokens(collaterals)
    instructions = []
    for token, amount in collaterals:
        elem = read_whitelist_elem(ctx.storage, token)
        instructions.append(contract_call(
            elem.custody_contract, "lock_collateral", borrower=borrower, amount=amount,
        ))
    store_collaterals(
        ctx.storage, borrower, add_tokens(read_collaterals(ctx.storage, borrower), collaterals),
    )
    return build_response(
        "lock_collateral",
        instructions,
        borrower=borrower,
        collaterals=",".join(f"{amount}{token}" for token, amount in collaterals),
    )


def unlock_collateral(
    ctx: ExecutionContext,
    collaterals: Sequence[Tuple[Address, int]],
) -> Response:
    """
    Unlock collateral as long as the remaining book still covers the loan.

    Raises:
        UnlockTooLarge: the remaining borrow limit is below the projected loan
    """
    config = read_config(ctx.storage)
    borrower = ctx.info.sender
    collaterals = _normalize_tokens(collaterals)

    remaining = sub_tokens(read_collaterals(ctx.storage, borrower), collaterals)
    borrow_limit = compute_borrow_limit(ctx, config, remaining, ctx.env.block_time)
    loan_amount = query_loan_amount(
        ctx.querier, config.market_contract, borrower, ctx.env.block_height,
    )
    if borrow_limit < loan_amount:
        raise UnlockTooLarge(
            f"Unlock amount too high; loan {loan_amount} exceeds remaining limit {borrow_limit}"
        )
    store_collaterals(ctx.storage, borrower, remaining)

    instructions = []
    for token, amount in collaterals:
        elem = read_whitelist_elem(ctx.storage, token)
        instructions.append(contract_call(
            elem.custody_contract, "unlock_collateral", borrower=borrower, amount=amount,
        ))
    return build_response(
        "unlock_collateral",
        instructions,
        borrower=borrower,
        collaterals=",".join(f"{amount}{token}" for token, amount in collaterals),
    )


# ============================================================================
# QUERIES
# ============================================================================

def query_config(ctx: ExecutionContext) -> OverseerConfig:
    return read_config(ctx.storage)


def query_dynrate_config(ctx: ExecutionContext) -> DynrateConfig:
    return read_dynrate_config(ctx.storage)


def query_state(ctx: ExecutionContext) -> EpochState:
    return read_epoch_state(ctx.storage)


def query_dynrate_state(ctx: ExecutionContext) -> DynrateState:
    return read_dynrate_state(ctx.storage)


def query_whitelist(
    ctx: ExecutionContext,
    collateral_token: Optional[Address] = None,
    start_after: Optional[Address] = None,
    limit: Optional[int] = None,
) -> Tuple[WhitelistResponseElem, ...]:
    if collateral_token is not None:
        elem = read_whitelist_elem(ctx.storage, collateral_token)
        return (WhitelistResponseElem(
            name=elem.name,
            symbol=elem.symbol,
            max_ltv=elem.max_ltv,
            custody_contract=elem.custody_contract,
            collateral_token=collateral_token,
        ),)
    return tuple(read_whitelist(ctx.storage, start_after, limit))


def query_collaterals(ctx: ExecutionContext, borrower: Address) -> CollateralsResponse:
    return CollateralsResponse(borrower=borrower, collaterals=read_collaterals(ctx.storage, borrower))


def query_all_collaterals(
    ctx: ExecutionContext,
    start_after: Optional[Address] = None,
    limit: Optional[int] = None,
) -> Tuple[CollateralsResponse, ...]:
    page = paginate(
        Bucket(ctx.storage, PREFIX_COLLATERALS),
        start_after.encode() if start_after is not None else None,
        limit,
    )
    return tuple(CollateralsResponse(borrower=k.decode(), collaterals=v) for k, v in page)


def query_borrow_limit(
    ctx: ExecutionContext,
    borrower: Address,
    block_time: Optional[datetime] = None,
) -> BorrowLimitResponse:
    config = read_config(ctx.storage)
    collaterals = read_collaterals(ctx.storage, borrower)
    return BorrowLimitResponse(
        borrower=borrower,
        borrow_limit=compute_borrow_limit(ctx, config, collaterals, block_time),
    )


overseer_contract = Contract(
    name="overseer",
    instantiate_handler=instantiate,
    execute_handlers={
        "update_config": update_config,
        "update_dynrate_config": update_dynrate_config,
        "whitelist": register_whitelist,
        "update_whitelist": update_whitelist,
        "execute_epoch_operations": execute_epoch_operations,
        "update_epoch_state": update_epoch_state,
        "lock_collateral": lock_collateral,
        "unlock_collateral": unlock_collateral,
    },
    query_handlers={
        "config": query_config,
        "dynrate_config": query_dynrate_config,
        "epoch_state": query_state,
        "dynrate_state": query_dynrate_state,
        "whitelist": query_whitelist,
        "collaterals": query_collaterals,
        "all_collaterals": query_all_collaterals,
        "borrow_limit": query_borrow_limit,
    },
)
