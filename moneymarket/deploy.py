"""
deploy.py - Deploy a complete protocol onto a Host.

deploy_protocol() instantiates the oracle, interest model, aterra and
collateral tokens, market, overseer and one rebasing custody at fixed
addresses, whitelists the collateral and registers the price feeder.
Addresses are known up front, so contracts can reference each other before
they exist.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple

from .core import Address, MoneyMarketError
from .custody import BAssetInfo, custody_contract
from .host import Host, TransactionResult
from .interest_model import interest_model_contract
from .market import market_contract
from .oracle import oracle_contract
from .overseer import overseer_contract
from .token import token_contract


@dataclass(frozen=True, slots=True)
class ProtocolParams:
    """
    Deployment parameters. Rates are per block.

    collateral_holders seeds the collateral token's initial balances.
    """
    stable_denom: str = "uusd"
    epoch_period: int = 100
    threshold_deposit_rate: Decimal = Decimal("0.000001")
    target_deposit_rate: Decimal = Decimal("0.000002")
    buffer_distribution_factor: Decimal = Decimal("0.1")
    anc_purchase_factor: Decimal = Decimal("0.1")
    price_timeframe: int = 86_400
    dyn_rate_epoch: int = 1_000
    dyn_rate_threshold: Decimal = Decimal("0.01")
    dyn_rate_maxchange: Decimal = Decimal("0.0000005")
    dyn_rate_yr_increase_expectation: Decimal = Decimal("0.001")
    base_rate: Decimal = Decimal("0.0000001")
    interest_multiplier: Decimal = Decimal("0.00001")
    reserve_factor: Decimal = Decimal("0.05")
    max_borrow_factor: Decimal = Decimal("0.95")
    max_ltv: Decimal = Decimal("0.5")
    collateral_holders: Tuple[Tuple[Address, int], ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class Protocol:
    """Addresses of a deployed protocol."""
    owner: Address = "owner"
    feeder: Address = "feeder"
    oracle: Address = "oracle"
    interest_model: Address = "interest_model"
    aterra: Address = "aterra"
    collateral_token: Address = "bluna"
    underlying_token: Address = "luna"
    market: Address = "market"
    overseer: Address = "overseer"
    custody: Address = "custody_bluna"
    liquidation: Address = "liquidation"
    collector: Address = "collector"
    stable_denom: str = "uusd"
    epoch_period: int = 0


def _check(result: TransactionResult) -> TransactionResult:
    if not result.applied:
        raise MoneyMarketError(
            f"Deployment step {result.contract_address}.{result.action} failed: {result.error}"
        )
    return result


def deploy_protocol(host: Host, params: ProtocolParams = ProtocolParams()) -> Protocol:
    """
    Deploy every contract and wire them together.

    Raises:
        MoneyMarketError: if any deployment step is rejected
    """
    p = Protocol(stable_denom=params.stable_denom, epoch_period=params.epoch_period)

    _check(host.instantiate(oracle_contract, p.oracle, p.owner,
                            owner=p.owner, base_asset=params.stable_denom))
    _check(host.instantiate(interest_model_contract, p.interest_model, p.owner,
                            owner=p.owner,
                            base_rate=params.base_rate,
                            interest_multiplier=params.interest_multiplier))
    _check(host.instantiate(token_contract, p.aterra, p.owner,
                            name="Anchor Terra USD", symbol="aUST", decimals=6,
                            minter=p.market))
    _check(host.instantiate(token_contract, p.collateral_token, p.owner,
                            name="Bonded Luna", symbol="BLUNA", decimals=6,
                            initial_balances=params.collateral_holders))
    _check(host.instantiate(token_contract, p.underlying_token, p.owner,
                            name="Luna", symbol="LUNA", decimals=6))

    _check(host.instantiate(market_contract, p.market, p.owner,
                            owner_addr=p.owner,
                            stable_denom=params.stable_denom,
                            aterra_contract=p.aterra,
                            interest_model=p.interest_model,
                            overseer_contract=p.overseer,
                            collector_contract=p.collector,
                            reserve_factor=params.reserve_factor,
                            max_borrow_factor=params.max_borrow_factor))
    _check(host.instantiate(overseer_contract, p.overseer, p.owner,
                            owner_addr=p.owner,
                            oracle_contract=p.oracle,
                            market_contract=p.market,
                            liquidation_contract=p.liquidation,
                            collector_contract=p.collector,
                            stable_denom=params.stable_denom,
                            epoch_period=params.epoch_period,
                            threshold_deposit_rate=params.threshold_deposit_rate,
                            target_deposit_rate=params.target_deposit_rate,
                            buffer_distribution_factor=params.buffer_distribution_factor,
                            anc_purchase_factor=params.anc_purchase_factor,
                            price_timeframe=params.price_timeframe,
                            dyn_rate_epoch=params.dyn_rate_epoch,
                            dyn_rate_threshold=params.dyn_rate_threshold,
                            dyn_rate_maxchange=params.dyn_rate_maxchange,
                            dyn_rate_yr_increase_expectation=params.dyn_rate_yr_increase_expectation))
    _check(host.instantiate(custody_contract, p.custody, p.owner,
                            owner=p.owner,
                            oracle=p.oracle,
                            collateral_token=p.collateral_token,
                            underlying_token=p.underlying_token,
                            overseer_contract=p.overseer,
                            market_contract=p.market,
                            liquidation_contract=p.liquidation,
                            stable_denom=params.stable_denom,
                            basset_info=BAssetInfo("Bonded Luna", "BLUNA", 6)))

    _check(host.execute(p.overseer, p.owner, "whitelist",
                        name="Bonded Luna", symbol="BLUNA",
                        collateral_token=p.collateral_token,
                        custody_contract=p.custody,
                        max_ltv=params.max_ltv))
    for asset in (p.collateral_token, p.underlying_token):
        _check(host.execute(p.oracle, p.owner, "register_feeder", asset=asset, feeder=p.feeder))
    return p
