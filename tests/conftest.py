"""
conftest.py - Shared pytest fixtures for moneymarket tests

Provides common fixtures used across unit and functional tests:
- A quiet test-mode Host
- A deployed protocol (oracle, interest model, tokens, market, overseer, custody)
- A funded protocol: prices fed, stable deposited, collateral locked
- ProtocolOps, a thin helper for the usual user actions
"""

import pytest
from decimal import Decimal

from moneymarket import (
    Coin, Host, HOOK_DEPOSIT_COLLATERAL, Protocol, ProtocolParams,
    TransactionResult, deploy_protocol,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

DEPOSITOR = "alice"
BORROWER = "bob"
KEEPER = "keeper"

COLLATERAL_SUPPLY = 1_000_000_000
DEPOSIT_AMOUNT = 1_000_000_000
COLLATERAL_AMOUNT = 100_000_000


class ProtocolOps:
    """User actions against a deployed protocol; every step must succeed."""

    def __init__(self, host: Host, protocol: Protocol):
        self.host = host
        self.p = protocol

    def fund(self, address: str, amount: int) -> None:
        current = self.host.get_balance(address, self.p.stable_denom)
        self.host.set_balance(address, self.p.stable_denom, current + amount)

    def feed_prices(self, collateral: Decimal = Decimal("10"),
                    underlying: Decimal = Decimal("10")) -> TransactionResult:
        return self.host.execute_or_raise(
            self.p.oracle, self.p.feeder, "feed_price",
            prices=((self.p.collateral_token, collateral), (self.p.underlying_token, underlying)),
        )

    def deposit_stable(self, depositor: str, amount: int) -> TransactionResult:
        self.fund(depositor, amount)
        return self.host.execute_or_raise(
            self.p.market, depositor, "deposit_stable",
            funds=(Coin(self.p.stable_denom, amount),),
        )

    def deposit_collateral(self, borrower: str, amount: int) -> TransactionResult:
        return self.host.execute_or_raise(
            self.p.collateral_token, borrower, "send",
            contract=self.p.custody, amount=amount, msg=HOOK_DEPOSIT_COLLATERAL,
        )

    def provide_collateral(self, borrower: str, amount: int) -> None:
        self.deposit_collateral(borrower, amount)
        self.host.execute_or_raise(
            self.p.overseer, borrower, "lock_collateral",
            collaterals=((self.p.collateral_token, amount),),
        )

    def borrow(self, borrower: str, amount: int) -> TransactionResult:
        return self.host.execute_or_raise(
            self.p.market, borrower, "borrow_stable", borrow_amount=amount,
        )

    def run_epoch(self, sender: str = KEEPER) -> TransactionResult:
        return self.host.execute(self.p.overseer, sender, "execute_epoch_operations")

    def epoch_state(self):
        return self.host.query(self.p.overseer, "epoch_state")

    def dynrate_state(self):
        return self.host.query(self.p.overseer, "dynrate_state")

    def stable_balance(self, address: str) -> int:
        return self.host.get_balance(address, self.p.stable_denom)


def default_params(**overrides) -> ProtocolParams:
    params = dict(
        collateral_holders=((BORROWER, COLLATERAL_SUPPLY), (DEPOSITOR, COLLATERAL_SUPPLY)),
    )
    params.update(overrides)
    return ProtocolParams(**params)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def host():
    """Quiet test-mode host at height 1."""
    return Host("test", verbose=False, test_mode=True)


@pytest.fixture
def protocol(host):
    """Freshly deployed protocol; no prices, deposits or collateral yet."""
    return deploy_protocol(host, default_params())


@pytest.fixture
def ops(host, protocol):
    return ProtocolOps(host, protocol)


@pytest.fixture
def funded_protocol(host, protocol, ops):
    """
    Prices fed (collateral = underlying = 10 uusd), alice deposited
    1,000,000,000 uusd, bob locked 100,000,000 collateral (limit 500,000,000).
    """
    ops.feed_prices()
    ops.deposit_stable(DEPOSITOR, DEPOSIT_AMOUNT)
    ops.provide_collateral(BORROWER, COLLATERAL_AMOUNT)
    return protocol


@pytest.fixture
def deploy_with(host):
    """Factory deploying a protocol with overridden ProtocolParams."""
    def _deploy(**overrides) -> Protocol:
        return deploy_protocol(host, default_params(**overrides))
    return _deploy
