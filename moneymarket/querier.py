"""
querier.py - Upstream queries consumed by the contracts.

Contracts read other contracts only through the functions in this module.
Each helper issues one query through the context's querier and checks the
shape of the answer, so a missing contract, a failing handler or a
malformed response all surface as QueryError and abort the transaction.

Also home of the network transfer tax rules: transfer_tax is what the host
bank charges on top of a send, deduct_tax is what a contract applies to a
gross budget so that the amount sent plus its tax fits the budget.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Type

from .core import Address, PriceTooOld, QueryError, QuerierLike
from .fixed_point import (
    RATIO_ONE, RATIO_ZERO, ratio_add, to_ratio, uint_div_ratio, uint_mul_ratio,
    uint_sub,
)


# ============================================================================
# RESPONSE TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceResponse:
    """Oracle price of base in quote units, with the age of both legs."""
    rate: Decimal
    last_updated_base: datetime
    last_updated_quote: datetime


@dataclass(frozen=True, slots=True)
class EpochStateResponse:
    """Market snapshot used by epoch operations."""
    exchange_rate: Decimal
    aterra_supply: int


@dataclass(frozen=True, slots=True)
class BorrowLimitResponse:
    borrower: Address
    borrow_limit: int


@dataclass(frozen=True, slots=True)
class TokenInfo:
    name: str
    symbol: str
    decimals: int
    total_supply: int


# ============================================================================
# TAX POLICY
# ============================================================================

@dataclass(frozen=True)
class TaxPolicy:
    """
    Network transfer tax: rate on every native send, capped per denomination.

    Denominations without a cap are taxed uncapped.
    """
    rate: Decimal = RATIO_ZERO
    caps: Mapping[str, int] = field(default_factory=dict)

    def cap_for(self, denom: str) -> Optional[int]:
        return self.caps.get(denom)


def compute_tax(querier: QuerierLike, denom: str, amount: int) -> int:
    """
    Tax included in a gross amount: min(amount - amount / (1 + rate), cap).
    """
    rate = querier.tax_rate()
    if rate == RATIO_ZERO or amount == 0:
        return 0
    tax = uint_sub(amount, uint_div_ratio(amount, ratio_add(RATIO_ONE, rate)))
    cap = querier.tax_cap(denom)
    return tax if cap is None else min(tax, cap)


def deduct_tax(querier: QuerierLike, denom: str, amount: int) -> int:
    """Amount that can be sent out of a gross budget once tax is paid."""
    return uint_sub(amount, compute_tax(querier, denom, amount))


def transfer_tax(querier: QuerierLike, denom: str, amount: int) -> int:
    """Tax charged on top of a send of amount: min(amount * rate, cap)."""
    tax = uint_mul_ratio(amount, querier.tax_rate())
    cap = querier.tax_cap(denom)
    return tax if cap is None else min(tax, cap)


# ============================================================================
# QUERY HELPERS
# ============================================================================

def _query(
    querier: QuerierLike,
    contract: Address,
    query: str,
    expected: Type,
    **params: Any,
) -> Any:
    response = querier.query(contract, query, **params)
    if not isinstance(response, expected):
        raise QueryError(
            f"{query} query to {contract} returned {type(response).__name__}, "
            f"expected {expected.__name__}"
        )
    return response


def query_balance(querier: QuerierLike, address: Address, denom: str) -> int:
    """Native balance of an account."""
    return querier.query_balance(address, denom)


def query_token_balance(querier: QuerierLike, token: Address, holder: Address) -> int:
    return _query(querier, token, "balance", int, address=holder)


def query_supply(querier: QuerierLike, token: Address) -> int:
    return _query(querier, token, "token_info", TokenInfo).total_supply


def query_price(
    querier: QuerierLike,
    oracle: Address,
    base: str,
    quote: str,
    time_frame: Optional[int] = None,
    current_time: Optional[datetime] = None,
) -> PriceResponse:
    """
    Price of base in quote units.

    Args:
        time_frame: staleness window in seconds; when given, both legs must
            have been updated within time_frame of current_time
        current_time: block time the window is measured from

    Raises:
        PriceTooOld: a leg was last updated before the window
        QueryError: the oracle failed or answered with something else
    """
    price = _query(querier, oracle, "price", PriceResponse, base=base, quote=quote)
    if time_frame is not None:
        if current_time is None:
            raise QueryError("staleness check requires the current block time")
        valid_since = current_time - timedelta(seconds=time_frame)
        if price.last_updated_base < valid_since or price.last_updated_quote < valid_since:
            raise PriceTooOld(f"Price is too old: {base}/{quote}")
    return price


def query_borrow_rate(
    querier: QuerierLike,
    interest_model: Address,
    market_balance: int,
    total_liabilities: Decimal,
    total_reserves: Decimal,
) -> Decimal:
    """Per-block borrow rate for the given market balances."""
    rate = _query(
        querier, interest_model, "borrow_rate", Decimal,
        market_balance=market_balance,
        total_liabilities=total_liabilities,
        total_reserves=total_reserves,
    )
    return to_ratio(rate)


def query_epoch_state(
    querier: QuerierLike,
    market: Address,
    block_height: Optional[int] = None,
    distributed_interest: Optional[int] = None,
) -> EpochStateResponse:
    return _query(
        querier, market, "epoch_state", EpochStateResponse,
        block_height=block_height,
        distributed_interest=distributed_interest,
    )


def query_borrow_limit(
    querier: QuerierLike,
    overseer: Address,
    borrower: Address,
    block_time: Optional[datetime] = None,
) -> int:
    return _query(
        querier, overseer, "borrow_limit", BorrowLimitResponse,
        borrower=borrower, block_time=block_time,
    ).borrow_limit


def query_loan_amount(
    querier: QuerierLike,
    market: Address,
    borrower: Address,
    block_height: Optional[int] = None,
) -> int:
    """Borrower's loan projected to block_height (0 when there is none)."""
    return _query(
        querier, market, "loan_amount", int,
        borrower=borrower, block_height=block_height,
    )
