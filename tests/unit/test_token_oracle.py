"""
test_token_oracle.py - Unit tests for the token, oracle and interest model contracts

Tests:
- Token transfer / send hook / mint authorization / burn
- Oracle feeder authorization, base asset pricing, staleness checks
- Linear borrow-rate model
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from moneymarket import (
    InsufficientFunds, InvalidRequest, NotFound, PriceTooOld,
    QueryError, RATIO_ZERO, TokenInfo, Unauthorized, UnknownMessage, calculate_borrow_rate,
    interest_model_contract, oracle_contract, query_price, to_ratio, token_contract,
)
from moneymarket.interest_model import InterestModelConfig


@pytest.fixture
def token_host(host):
    host.instantiate(token_contract, "tok", "owner", name="Token", symbol="TOK",
                     minter="minter", initial_balances=(("alice", 1_000),))
    return host


class TestToken:

    def test_initial_supply(self, token_host):
        info = token_host.query("tok", "token_info")
        assert info == TokenInfo(name="Token", symbol="TOK", decimals=6, total_supply=1_000)

    def test_transfer(self, token_host):
        token_host.execute_or_raise("tok", "alice", "transfer", recipient="bob", amount=300)
        assert token_host.query("tok", "balance", address="alice") == 700
        assert token_host.query("tok", "balance", address="bob") == 300

    def test_transfer_insufficient(self, token_host):
        result = token_host.execute("tok", "alice", "transfer", recipient="bob", amount=3_000)
        assert isinstance(result.error, InsufficientFunds)

    def test_transfer_zero(self, token_host):
        result = token_host.execute("tok", "alice", "transfer", recipient="bob", amount=0)
        assert isinstance(result.error, InvalidRequest)

    def test_mint_only_by_minter(self, token_host):
        result = token_host.execute("tok", "alice", "mint", recipient="alice", amount=5)
        assert isinstance(result.error, Unauthorized)

        token_host.execute_or_raise("tok", "minter", "mint", recipient="bob", amount=5)
        assert token_host.query("tok", "balance", address="bob") == 5
        assert token_host.query("tok", "token_info").total_supply == 1_005

    def test_burn(self, token_host):
        token_host.execute_or_raise("tok", "alice", "burn", amount=400)
        assert token_host.query("tok", "token_info").total_supply == 600

    @pytest.mark.parametrize("amount", [0, -500])
    def test_burn_rejects_non_positive_amount(self, token_host, amount):
        result = token_host.execute("tok", "alice", "burn", amount=amount)

        assert isinstance(result.error, InvalidRequest)
        assert token_host.query("tok", "balance", address="alice") == 1_000
        assert token_host.query("tok", "token_info").total_supply == 1_000

    def test_mint_rejects_negative_amount(self, token_host):
        token_host.execute_or_raise("tok", "minter", "mint", recipient="alice", amount=5)

        result = token_host.execute("tok", "minter", "mint", recipient="alice", amount=-5)

        assert isinstance(result.error, InvalidRequest)
        assert token_host.query("tok", "balance", address="alice") == 1_005
        assert token_host.query("tok", "token_info").total_supply == 1_005

    def test_send_to_contract_without_hook_rolls_back(self, token_host):
        token_host.instantiate(token_contract, "other", "owner", name="Other", symbol="OTH")
        result = token_host.execute("tok", "alice", "send", contract="other", amount=10, msg="x")
        assert isinstance(result.error, UnknownMessage)
        assert token_host.query("tok", "balance", address="alice") == 1_000


@pytest.fixture
def oracle_host(host):
    host.instantiate(oracle_contract, "oracle", "owner", owner="owner", base_asset="uusd")
    host.execute_or_raise("oracle", "owner", "register_feeder", asset="luna", feeder="feeder")
    return host


class TestOracle:

    def test_feed_and_query(self, oracle_host):
        oracle_host.execute_or_raise("oracle", "feeder", "feed_price",
                                     prices=(("luna", Decimal("80.5")),))
        price = oracle_host.query("oracle", "price", base="luna", quote="uusd")
        assert price.rate == Decimal("80.5")
        assert price.last_updated_base == oracle_host.block_time
        assert price.last_updated_quote == datetime.max

    def test_only_feeder_can_feed(self, oracle_host):
        result = oracle_host.execute("oracle", "mallory", "feed_price",
                                     prices=(("luna", Decimal("1")),))
        assert isinstance(result.error, Unauthorized)

    def test_zero_price_rejected(self, oracle_host):
        result = oracle_host.execute("oracle", "feeder", "feed_price",
                                     prices=(("luna", RATIO_ZERO),))
        assert isinstance(result.error, InvalidRequest)

    def test_register_feeder_owner_only(self, oracle_host):
        result = oracle_host.execute("oracle", "mallory", "register_feeder",
                                     asset="luna", feeder="mallory")
        assert isinstance(result.error, Unauthorized)

    def test_missing_price(self, oracle_host):
        with pytest.raises(QueryError) as exc:
            oracle_host.query("oracle", "price", base="luna", quote="uusd")
        assert isinstance(exc.value.__cause__, NotFound)

    def test_staleness_window(self, oracle_host):
        oracle_host.execute_or_raise("oracle", "feeder", "feed_price",
                                     prices=(("luna", Decimal("80")),))
        fed_at = oracle_host.block_time
        querier = _QueryThrough(oracle_host)

        price = query_price(querier, "oracle", "luna", "uusd", 60, fed_at + timedelta(seconds=60))
        assert price.rate == Decimal("80")

        with pytest.raises(PriceTooOld):
            query_price(querier, "oracle", "luna", "uusd", 60, fed_at + timedelta(seconds=61))


class _QueryThrough:
    """Adapter exposing Host.query as a querier for helper functions."""

    def __init__(self, host):
        self.host = host

    def query(self, contract_address, query, **params):
        return self.host.query(contract_address, query, **params)


class TestInterestModel:

    def test_linear_rate(self):
        config = InterestModelConfig("owner", Decimal("0.0000001"), Decimal("0.00001"))
        rate = calculate_borrow_rate(config, 900_000_000, to_ratio(100_000_000), RATIO_ZERO)
        assert rate == Decimal("0.0000011")

    def test_empty_market_uses_base_rate(self):
        config = InterestModelConfig("owner", Decimal("0.0000001"), Decimal("0.00001"))
        assert calculate_borrow_rate(config, 0, RATIO_ZERO, RATIO_ZERO) == Decimal("0.0000001")

    def test_query_and_update(self, host):
        host.instantiate(interest_model_contract, "im", "owner", owner="owner",
                         base_rate=Decimal("0.01"), interest_multiplier=Decimal("0.1"))
        assert host.query("im", "borrow_rate", market_balance=50,
                          total_liabilities=to_ratio(50), total_reserves=RATIO_ZERO) == Decimal("0.06")

        assert not host.execute("im", "mallory", "update_config", base_rate=Decimal("0")).applied
        host.execute_or_raise("im", "owner", "update_config", base_rate=Decimal("0"))
        assert host.query("im", "config").base_rate == RATIO_ZERO
