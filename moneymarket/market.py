"""
market.py - Lending market contract

Takes stable deposits against aterra (minted at the market exchange rate),
lends stable coin to borrowers up to the overseer's borrow limit and accrues
interest through the global interest index (see interest.py).

Every handler first brings MarketState up to the current height with
compute_interest, then projects the borrower's liability against the fresh
index. Stable coin already credited to the market by the message being
processed (a deposit, a repayment, the epoch's distributed interest) is
excluded from the balance used to price the borrow rate and the exchange
rate.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    Address, BorrowExceedsLimit, Contract, ExecutionContext, HOOK_REDEEM_STABLE,
    InvalidRequest, NoStableAvailable, Response, Unauthorized, bank_send,
    build_response, contract_call, require_sender,
)
from .fixed_point import (
    RATIO_ONE, RATIO_ZERO, ratio_add, ratio_from_uint, ratio_mul, ratio_sub,
    to_ratio, uint_add, uint_div_ratio, uint_mul_ratio, uint_sub,
)
from .interest import (
    Liability, MarketConfig, MarketState, calculate_exchange_rate, compute_interest,
    initial_market_state, project_liability,
)
from .querier import (
    EpochStateResponse, deduct_tax, query_balance, query_borrow_limit, query_supply,
)
from .store import Bucket, Singleton, paginate


KEY_CONFIG = b"config"
KEY_STATE = b"state"
KEY_EPOCH_RATES = b"epoch_rates"
PREFIX_LIABILITY = b"liability"


@dataclass(frozen=True, slots=True)
class EpochRates:
    """Rates reported by the overseer at the last epoch."""
    deposit_rate: Decimal
    target_deposit_rate: Decimal
    threshold_deposit_rate: Decimal


@dataclass(frozen=True, slots=True)
class LiabilityResponse:
    borrower: Address
    interest_index: Decimal
    loan_amount: int


# ============================================================================
# STATE
# ============================================================================

def read_config(storage) -> MarketConfig:
    return Singleton(storage, KEY_CONFIG).load()


def store_config(storage, config: MarketConfig) -> None:
    Singleton(storage, KEY_CONFIG).save(config)


def read_state(storage) -> MarketState:
    return Singleton(storage, KEY_STATE).load()


def store_state(storage, state: MarketState) -> None:
    Singleton(storage, KEY_STATE).save(state)


def read_liability(storage, borrower: Address, state: MarketState) -> Liability:
    """Stored liability, or an empty one at the current global index."""
    liability = Bucket(storage, PREFIX_LIABILITY).may_load(borrower.encode())
    if liability is None:
        return Liability(interest_index=state.global_interest_index, loan_amount=0)
    return liability


def store_liability(storage, borrower: Address, liability: Liability) -> None:
    bucket = Bucket(storage, PREFIX_LIABILITY)
    if liability.loan_amount == 0:
        bucket.remove(borrower.encode())
    else:
        bucket.save(borrower.encode(), liability)


# ============================================================================
# HELPERS
# ============================================================================

def _reduce_liabilities(state: MarketState, amount: int) -> MarketState:
    """Subtract a repayment from total_liabilities, flooring at zero."""
    repaid = ratio_from_uint(amount)
    if state.total_liabilities < repaid:
        return replace(state, total_liabilities=RATIO_ZERO)
    return replace(state, total_liabilities=ratio_sub(state.total_liabilities, repaid))


def _exchange_rate(
    ctx: ExecutionContext,
    config: MarketConfig,
    state: MarketState,
    excluded_amount: int = 0,
) -> Tuple[Decimal, int]:
    """Current (exchange_rate, aterra_supply), ignoring excluded_amount of the balance."""
    aterra_supply = query_supply(ctx.querier, config.aterra_contract)
    balance = uint_sub(
        query_balance(ctx.querier, config.contract_addr, config.stable_denom),
        excluded_amount,
    )
    return calculate_exchange_rate(state, balance, aterra_supply), aterra_supply


# ============================================================================
# INSTANTIATE
# ============================================================================

def instantiate(
    ctx: ExecutionContext,
    owner_addr: Address,
    stable_denom: str,
    aterra_contract: Address,
    interest_model: Address,
    overseer_contract: Address,
    collector_contract: Address,
    reserve_factor: Decimal,
    max_borrow_factor: Decimal = RATIO_ONE,
) -> Response:
    height = ctx.env.block_height
    store_config(ctx.storage, MarketConfig(
        contract_addr=ctx.env.contract_address,
        owner_addr=owner_addr,
        aterra_contract=aterra_contract,
        interest_model=interest_model,
        overseer_contract=overseer_contract,
        collector_contract=collector_contract,
        stable_denom=stable_denom,
        reserve_factor=to_ratio(reserve_factor),
        max_borrow_factor=to_ratio(max_borrow_factor),
    ))
    store_state(ctx.storage, initial_market_state(height))
    Singleton(ctx.storage, KEY_EPOCH_RATES).save(
        EpochRates(RATIO_ZERO, RATIO_ZERO, RATIO_ZERO)
    )
    return build_response("instantiate", contract="market")


def update_config(
    ctx: ExecutionContext,
    owner_addr: Optional[Address] = None,
    interest_model: Optional[Address] = None,
    reserve_factor: Optional[Decimal] = None,
    max_borrow_factor: Optional[Decimal] = None,
) -> Response:
    """Owner-only; the interest model switch accrues at the old rate first."""
    config = read_config(ctx.storage)
    require_sender(ctx.info, config.owner_addr)

    if interest_model is not None:
        state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                                 ctx.env.block_height)
        store_state(ctx.storage, state)
        config = replace(config, interest_model=interest_model)
    if owner_addr is not None:
        config = replace(config, owner_addr=owner_addr)
    if reserve_factor is not None:
        config = replace(config, reserve_factor=to_ratio(reserve_factor))
    if max_borrow_factor is not None:
        config = replace(config, max_borrow_factor=to_ratio(max_borrow_factor))
    store_config(ctx.storage, config)
    return build_response("update_config")


# ============================================================================
# DEPOSIT AND REDEEM
# ============================================================================

def deposit_stable(ctx: ExecutionContext) -> Response:
    """Mint aterra for the stable coin attached to the message."""
    config = read_config(ctx.storage)
    deposit_amount = ctx.info.amount_of(config.stable_denom)
    if deposit_amount == 0:
        raise InvalidRequest(f"Deposit amount must be greater than 0 {config.stable_denom}")

    state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                             ctx.env.block_height, deposit_amount)
    store_state(ctx.storage, state)

    exchange_rate, _ = _exchange_rate(ctx, config, state, deposit_amount)
    mint_amount = uint_div_ratio(deposit_amount, exchange_rate)

    return build_response(
        "deposit_stable",
        [contract_call(
            config.aterra_contract, "mint",
            recipient=ctx.info.sender, amount=mint_amount,
        )],
        depositor=ctx.info.sender,
        mint_amount=mint_amount,
        deposit_amount=deposit_amount,
    )


def receive(ctx: ExecutionContext, sender: Address, amount: int, msg: str) -> Response:
    """Token receive hook; aterra sent with redeem_stable is redeemed."""
    config = read_config(ctx.storage)
    if ctx.info.sender != config.aterra_contract:
        raise Unauthorized("Only the aterra token can call the receive hook")
    if msg != HOOK_REDEEM_STABLE:
        raise InvalidRequest(f"Unsupported receive hook: {msg!r}")
    return redeem_stable(ctx, config, sender, amount)


def redeem_stable(
    ctx: ExecutionContext,
    config: MarketConfig,
    sender: Address,
    burn_amount: int,
) -> Response:
    state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                             ctx.env.block_height)
    store_state(ctx.storage, state)

    exchange_rate, _ = _exchange_rate(ctx, config, state)
    redeem_amount = uint_mul_ratio(burn_amount, exchange_rate)
    current_balance = query_balance(ctx.querier, config.contract_addr, config.stable_denom)
    if redeem_amount > current_balance:
        raise NoStableAvailable(
            f"Not enough {config.stable_denom} available; "
            f"redeem {redeem_amount} > balance {current_balance}"
        )

    return build_response(
        "redeem_stable",
        [
            contract_call(config.aterra_contract, "burn", amount=burn_amount),
            bank_send(sender, config.stable_denom,
                      deduct_tax(ctx.querier, config.stable_denom, redeem_amount)),
        ],
        burn_amount=burn_amount,
        redeem_amount=redeem_amount,
    )


# ============================================================================
# BORROW AND REPAY
# ============================================================================

def borrow_stable(
    ctx: ExecutionContext,
    borrow_amount: int,
    to: Optional[Address] = None,
) -> Response:
    """
    Borrow stable coin against collateral locked in the overseer.

    Raises:
        BorrowExceedsLimit: projected loan plus borrow_amount exceeds the limit
        NoStableAvailable: the market cannot fund the loan
    """
    config = read_config(ctx.storage)
    borrower = ctx.info.sender
    if borrow_amount <= 0:
        raise InvalidRequest("Borrow amount must be greater than 0")

    state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                             ctx.env.block_height)
    loan_amount, liability = project_liability(state, read_liability(ctx.storage, borrower, state))

    borrow_limit = query_borrow_limit(
        ctx.querier, config.overseer_contract, borrower, ctx.env.block_time,
    )
    if uint_add(loan_amount, borrow_amount) > borrow_limit:
        raise BorrowExceedsLimit(
            f"Borrow amount exceeds the borrow limit of {borrow_limit}"
        )

    current_balance = query_balance(ctx.querier, config.contract_addr, config.stable_denom)
    if borrow_amount > current_balance:
        raise NoStableAvailable(
            f"Not enough {config.stable_denom} available; balance {current_balance}"
        )
    total_deposits = ratio_sub(
        ratio_add(ratio_from_uint(current_balance), state.total_liabilities),
        state.total_reserves,
    )
    borrowed_after = ratio_add(state.total_liabilities, ratio_from_uint(borrow_amount))
    if borrowed_after > ratio_mul(total_deposits, config.max_borrow_factor):
        raise NoStableAvailable(
            f"Borrowing {borrow_amount} would exceed the max borrow factor"
        )

    liability = replace(liability, loan_amount=uint_add(liability.loan_amount, borrow_amount))
    store_liability(ctx.storage, borrower, liability)
    store_state(ctx.storage, replace(state, total_liabilities=borrowed_after))

    return build_response(
        "borrow_stable",
        [bank_send(to or borrower, config.stable_denom,
                   deduct_tax(ctx.querier, config.stable_denom, borrow_amount))],
        borrower=borrower,
        borrow_amount=borrow_amount,
    )


def repay_stable(ctx: ExecutionContext, borrower: Optional[Address] = None) -> Response:
    """
    Repay with the stable coin attached to the message.

    Paying more than the projected loan clears it and refunds the excess
    (net of tax) to the sender. borrower defaults to the sender.
    """
    config = read_config(ctx.storage)
    sender = ctx.info.sender
    borrower = borrower or sender
    amount = ctx.info.amount_of(config.stable_denom)
    if amount == 0:
        raise InvalidRequest(f"Repay amount must be greater than 0 {config.stable_denom}")

    state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                             ctx.env.block_height, amount)
    loan_amount, liability = project_liability(state, read_liability(ctx.storage, borrower, state))

    instructions = []
    if amount < loan_amount:
        repay_amount = amount
        liability = replace(liability, loan_amount=uint_sub(loan_amount, amount))
    else:
        repay_amount = loan_amount
        liability = replace(liability, loan_amount=0)
        refund_amount = uint_sub(amount, loan_amount)
        if refund_amount:
            instructions.append(bank_send(
                sender, config.stable_denom,
                deduct_tax(ctx.querier, config.stable_denom, refund_amount),
            ))

    store_liability(ctx.storage, borrower, liability)
    store_state(ctx.storage, _reduce_liabilities(state, repay_amount))

    return build_response(
        "repay_stable",
        instructions,
        borrower=borrower,
        repay_amount=repay_amount,
    )


# ============================================================================
# EPOCH OPERATIONS
# ============================================================================

def execute_epoch_operations(
    ctx: ExecutionContext,
    deposit_rate: Decimal,
    target_deposit_rate: Decimal,
    threshold_deposit_rate: Decimal,
    distributed_interest: int,
) -> Response:
    """
    Overseer-only. Accrues with the just-distributed interest excluded, then
    records the epoch's rates and the post-distribution exchange rate.
    """
    config = read_config(ctx.storage)
    require_sender(ctx.info, config.overseer_contract)

    state = compute_interest(ctx.querier, config, read_state(ctx.storage),
                             ctx.env.block_height, distributed_interest)
    exchange_rate, aterra_supply = _exchange_rate(ctx, config, state)
    store_state(ctx.storage, replace(
        state,
        prev_aterra_supply=aterra_supply,
        prev_exchange_rate=exchange_rate,
    ))
    Singleton(ctx.storage, KEY_EPOCH_RATES).save(EpochRates(
        deposit_rate=to_ratio(deposit_rate),
        target_deposit_rate=to_ratio(target_deposit_rate),
        threshold_deposit_rate=to_ratio(threshold_deposit_rate),
    ))
    return build_response(
        "execute_epoch_operations",
        deposit_rate=deposit_rate,
        exchange_rate=exchange_rate,
        total_liabilities=state.total_liabilities,
        total_reserves=state.total_reserves,
    )


# ============================================================================
# QUERIES
# ============================================================================

def _accrued_state(ctx: ExecutionContext, config: MarketConfig,
                   block_height: Optional[int], excluded_amount: int = 0) -> MarketState:
    state = read_state(ctx.storage)
    if block_height is None:
        return state
    if block_height < state.last_interest_updated:
        raise InvalidRequest(
            f"block_height {block_height} is before the last interest update "
            f"{state.last_interest_updated}"
        )
    return compute_interest(ctx.querier, config, state, block_height, excluded_amount)


def query_config(ctx: ExecutionContext) -> MarketConfig:
    return read_config(ctx.storage)


def query_state(ctx: ExecutionContext, block_height: Optional[int] = None) -> MarketState:
    return _accrued_state(ctx, read_config(ctx.storage), block_height)


def query_epoch_rates(ctx: ExecutionContext) -> EpochRates:
    return Singleton(ctx.storage, KEY_EPOCH_RATES).load()


def query_epoch_state(
    ctx: ExecutionContext,
    block_height: Optional[int] = None,
    distributed_interest: Optional[int] = None,
) -> EpochStateResponse:
    """
    Exchange rate and aterra supply as seen by epoch operations.

    distributed_interest is stable coin already sent to the market in the
    current epoch; it is excluded from the balance so the snapshot matches
    the market before the distribution.
    """
    config = read_config(ctx.storage)
    excluded = distributed_interest or 0
    state = _accrued_state(ctx, config, block_height, excluded)
    exchange_rate, aterra_supply = _exchange_rate(ctx, config, state, excluded)
    return EpochStateResponse(exchange_rate=exchange_rate, aterra_supply=aterra_supply)


def query_liability(
    ctx: ExecutionContext,
    borrower: Address,
    block_height: Optional[int] = None,
) -> LiabilityResponse:
    """Borrower's liability, projected to block_height when given."""
    config = read_config(ctx.storage)
    state = _accrued_state(ctx, config, block_height)
    liability = read_liability(ctx.storage, borrower, state)
    if block_height is not None:
        _, liability = project_liability(state, liability)
    return LiabilityResponse(
        borrower=borrower,
        interest_index=liability.interest_index,
        loan_amount=liability.loan_amount,
    )


def query_loan_amount(
    ctx: ExecutionContext,
    borrower: Address,
    block_height: Optional[int] = None,
) -> int:
    return query_liability(ctx, borrower, block_height).loan_amount


def query_liabilities(
    ctx: ExecutionContext,
    start_after: Optional[Address] = None,
    limit: Optional[int] = None,
) -> Tuple[LiabilityResponse, ...]:
    page = paginate(
        Bucket(ctx.storage, PREFIX_LIABILITY),
        start_after.encode() if start_after is not None else None,
        limit,
    )
    return tuple(
        LiabilityResponse(
            borrower=key.decode(),
            interest_index=liability.interest_index,
            loan_amount=liability.loan_amount,
        )
        for key, liability in page
    )


market_contract = Contract(
    name="market",
    instantiate_handler=instantiate,
    execute_handlers={
        "update_config": update_config,
        "deposit_stable": deposit_stable,
        "receive": receive,
        "borrow_stable": borrow_stable,
        "repay_stable": repay_stable,
        "execute_epoch_operations": execute_epoch_operations,
    },
    query_handlers={
        "config": query_config,
        "state": query_state,
        "epoch_rates": query_epoch_rates,
        "epoch_state": query_epoch_state,
        "liability": query_liability,
        "loan_amount": query_loan_amount,
        "liabilities": query_liabilities,
    },
)
