"""
oracle.py - Price oracle contract

Prices are quoted against one base asset (the stable denom), whose price is
always 1. The owner registers one feeder per asset; only that feeder may
publish the asset's price. A price query for base/quote divides the two
legs and reports when each was last updated.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from .core import (
    Address, Contract, ExecutionContext, InvalidRequest, NotFound, Response,
    Unauthorized, build_response, require_sender,
)
from .fixed_point import RATIO_ONE, RATIO_ZERO, ratio_div, to_ratio
from .querier import PriceResponse
from .store import Bucket, Singleton


KEY_CONFIG = b"config"
PREFIX_FEEDER = b"feeder"
PREFIX_PRICE = b"price"


@dataclass(frozen=True, slots=True)
class OracleConfig:
    owner: Address
    base_asset: str


@dataclass(frozen=True, slots=True)
class PriceInfo:
    price: Decimal
    last_updated_time: datetime


def read_price(storage, config: OracleConfig, asset: str) -> PriceInfo:
    if asset == config.base_asset:
        return PriceInfo(price=RATIO_ONE, last_updated_time=datetime.max)
    info = Bucket(storage, PREFIX_PRICE).may_load(asset.encode())
    if info is None:
        raise NotFound(f"No price data for {asset}")
    return info


def instantiate(ctx: ExecutionContext, owner: Address, base_asset: str) -> Response:
    Singleton(ctx.storage, KEY_CONFIG).save(OracleConfig(owner=owner, base_asset=base_asset))
    return build_response("instantiate", contract="oracle")


def update_config(ctx: ExecutionContext, owner: Optional[Address] = None) -> Response:
    config = Singleton(ctx.storage, KEY_CONFIG).load()
    require_sender(ctx.info, config.owner)
    if owner is not None:
        config = replace(config, owner=owner)
    Singleton(ctx.storage, KEY_CONFIG).save(config)
    return build_response("update_config")


def register_feeder(ctx: ExecutionContext, asset: str, feeder: Address) -> Response:
    config = Singleton(ctx.storage, KEY_CONFIG).load()
    require_sender(ctx.info, config.owner)
    Bucket(ctx.storage, PREFIX_FEEDER).save(asset.encode(), feeder)
    return build_response("register_feeder", asset=asset, feeder=feeder)


def feed_price(ctx: ExecutionContext, prices: Sequence[Tuple[str, Decimal]]) -> Response:
    """Publish prices stamped with the current block time."""
    feeders = Bucket(ctx.storage, PREFIX_FEEDER)
    bucket = Bucket(ctx.storage, PREFIX_PRICE)
    for asset, price in prices:
        if feeders.may_load(asset.encode()) != ctx.info.sender:
            raise Unauthorized(f"{ctx.info.sender} is not the feeder of {asset}")
        price = to_ratio(price)
        if price == RATIO_ZERO:
            raise InvalidRequest(f"Price of {asset} cannot be zero")
        bucket.save(asset.encode(), PriceInfo(price=price, last_updated_time=ctx.env.block_time))
    return build_response("feed_price", count=len(prices))


def query_config(ctx: ExecutionContext) -> OracleConfig:
    return Singleton(ctx.storage, KEY_CONFIG).load()


def query_feeder(ctx: ExecutionContext, asset: str) -> Address:
    return Bucket(ctx.storage, PREFIX_FEEDER).load(asset.encode())


def query_price(ctx: ExecutionContext, base: str, quote: str) -> PriceResponse:
    config = query_config(ctx)
    base_info = read_price(ctx.storage, config, base)
    quote_info = read_price(ctx.storage, config, quote)
    return PriceResponse(
        rate=ratio_div(base_info.price, quote_info.price),
        last_updated_base=base_info.last_updated_time,
        last_updated_quote=quote_info.last_updated_time,
    )


oracle_contract = Contract(
    name="oracle",
    instantiate_handler=instantiate,
    execute_handlers={
        "update_config": update_config,
        "register_feeder": register_feeder,
        "feed_price": feed_price,
    },
    query_handlers={
        "config": query_config,
        "feeder": query_feeder,
        "price": query_price,
    },
)
