"""
interest_model.py - Linear borrow-rate model

    utilization = total_liabilities / (market_balance + total_liabilities - total_reserves)
    borrow_rate = base_rate + utilization * interest_multiplier

Both rates are per block. Utilization is 0 when the market holds nothing.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from .core import Address, Contract, ExecutionContext, Response, build_response, require_sender
from .fixed_point import (
    RATIO_ZERO, ratio_add, ratio_div, ratio_from_uint, ratio_mul, ratio_sub, to_ratio,
)
from .store import Singleton


KEY_CONFIG = b"config"


@dataclass(frozen=True, slots=True)
class InterestModelConfig:
    owner: Address
    base_rate: Decimal
    interest_multiplier: Decimal


def calculate_borrow_rate(
    config: InterestModelConfig,
    market_balance: int,
    total_liabilities: Decimal,
    total_reserves: Decimal,
) -> Decimal:
    total_value_in_market = ratio_sub(
        ratio_add(ratio_from_uint(market_balance), total_liabilities),
        total_reserves,
    )
    if total_value_in_market == RATIO_ZERO:
        utilization_ratio = RATIO_ZERO
    else:
        utilization_ratio = ratio_div(total_liabilities, total_value_in_market)
    return ratio_add(config.base_rate, ratio_mul(utilization_ratio, config.interest_multiplier))


def instantiate(
    ctx: ExecutionContext,
    owner: Address,
    base_rate: Decimal,
    interest_multiplier: Decimal,
) -> Response:
    Singleton(ctx.storage, KEY_CONFIG).save(InterestModelConfig(
        owner=owner,
        base_rate=to_ratio(base_rate),
        interest_multiplier=to_ratio(interest_multiplier),
    ))
    return build_response("instantiate", contract="interest_model")


def update_config(
    ctx: ExecutionContext,
    owner: Optional[Address] = None,
    base_rate: Optional[Decimal] = None,
    interest_multiplier: Optional[Decimal] = None,
) -> Response:
    config = Singleton(ctx.storage, KEY_CONFIG).load()
    require_sender(ctx.info, config.owner)
    if owner is not None:
        config = replace(config, owner=owner)
    if base_rate is not None:
        config = replace(config, base_rate=to_ratio(base_rate))
    if interest_multiplier is not None:
        config = replace(config, interest_multiplier=to_ratio(interest_multiplier))
    Singleton(ctx.storage, KEY_CONFIG).save(config)
    return build_response("update_config")


def query_config(ctx: ExecutionContext) -> InterestModelConfig:
    return Singleton(ctx.storage, KEY_CONFIG).load()


def query_borrow_rate(
    ctx: ExecutionContext,
    market_balance: int,
    total_liabilities: Decimal,
    total_reserves: Decimal,
) -> Decimal:
    return calculate_borrow_rate(
        query_config(ctx), market_balance, total_liabilities, total_reserves,
    )


interest_model_contract = Contract(
    name="interest_model",
    instantiate_handler=instantiate,
    execute_handlers={"update_config": update_config},
    query_handlers={
        "config": query_config,
        "borrow_rate": query_borrow_rate,
    },
)
