"""
token.py - Fungible token contract (aterra and collateral tokens)

Balances live in the token's own storage. send() transfers and then calls
the recipient contract's receive hook with (sender, amount, msg); if the
hook fails, the whole send is rolled back with it.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .core import (
    Address, Contract, ExecutionContext, InsufficientFunds, InvalidRequest,
    Response, build_response, contract_call, require_sender,
)
from .fixed_point import uint_add, uint_sub
from .querier import TokenInfo
from .store import Bucket, Singleton


KEY_CONFIG = b"config"
KEY_TOTAL_SUPPLY = b"total_supply"
PREFIX_BALANCE = b"balance"


@dataclass(frozen=True, slots=True)
class TokenConfig:
    name: str
    symbol: str
    decimals: int
    minter: Optional[Address]


def read_balance(storage, address: Address) -> int:
    return Bucket(storage, PREFIX_BALANCE).may_load(address.encode()) or 0


def _write_balance(storage, address: Address, amount: int) -> None:
    bucket = Bucket(storage, PREFIX_BALANCE)
    if amount == 0:
        bucket.remove(address.encode())
    else:
        bucket.save(address.encode(), amount)


def _move(storage, source: Address, dest: Address, amount: int) -> None:
    if amount <= 0:
        raise InvalidRequest("Amount must be greater than 0")
    available = read_balance(storage, source)
    if available < amount:
        raise InsufficientFunds(f"{source} holds {available}, needs {amount}")
    _write_balance(storage, source, available - amount)
    _write_balance(storage, dest, uint_add(read_balance(storage, dest), amount))


def _total_supply(storage) -> int:
    return Singleton(storage, KEY_TOTAL_SUPPLY).may_load() or 0


def instantiate(
    ctx: ExecutionContext,
    name: str,
    symbol: str,
    decimals: int = 6,
    minter: Optional[Address] = None,
    initial_balances: Sequence[Tuple[Address, int]] = (),
) -> Response:
    Singleton(ctx.storage, KEY_CONFIG).save(TokenConfig(name, symbol, decimals, minter))
    total_supply = 0
    for address, amount in initial_balances:
        _write_balance(ctx.storage, address, uint_add(read_balance(ctx.storage, address), amount))
        total_supply = uint_add(total_supply, amount)
    Singleton(ctx.storage, KEY_TOTAL_SUPPLY).save(total_supply)
    return build_response("instantiate", contract="token", symbol=symbol)


def transfer(ctx: ExecutionContext, recipient: Address, amount: int) -> Response:
    _move(ctx.storage, ctx.info.sender, recipient, amount)
    return build_response("transfer", sender=ctx.info.sender, recipient=recipient, amount=amount)


def send(ctx: ExecutionContext, contract: Address, amount: int, msg: str) -> Response:
    """Transfer to a contract and invoke its receive hook."""
    _move(ctx.storage, ctx.info.sender, contract, amount)
    return build_response(
        "send",
        [contract_call(contract, "receive", sender=ctx.info.sender, amount=amount, msg=msg)],
        sender=ctx.info.sender,
        contract=contract,
        amount=amount,
    )


def mint(ctx: ExecutionContext, recipient: Address, amount: int) -> Response:
    config = Singleton(ctx.storage, KEY_CONFIG).load()
    if config.minter is None:
        raise InvalidRequest(f"{config.symbol} has no minter")
    require_sender(ctx.info, config.minter)
    if amount < 0:
        raise InvalidRequest("Amount must not be negative")
    if amount > 0:
        _write_balance(ctx.storage, recipient, uint_add(read_balance(ctx.storage, recipient), amount))
        Singleton(ctx.storage, KEY_TOTAL_SUPPLY).save(uint_add(_total_supply(ctx.storage), amount))
    return build_response("mint", recipient=recipient, amount=amount)


def burn(ctx: ExecutionContext, amount: int) -> Response:
    if amount <= 0:
        raise InvalidRequest("Amount must be greater than 0")
    sender = ctx.info.sender
    available = read_balance(ctx.storage, sender)
    if available < amount:
        raise InsufficientFunds(f"{sender} holds {available}, cannot burn {amount}")
    _write_balance(ctx.storage, sender, available - amount)
    Singleton(ctx.storage, KEY_TOTAL_SUPPLY).save(uint_sub(_total_supply(ctx.storage), amount))
    return build_response("burn", sender=sender, amount=amount)


def query_balance(ctx: ExecutionContext, address: Address) -> int:
    return read_balance(ctx.storage, address)


def query_token_info(ctx: ExecutionContext) -> TokenInfo:
    config = Singleton(ctx.storage, KEY_CONFIG).load()
    return TokenInfo(
        name=config.name,
        symbol=config.symbol,
        decimals=config.decimals,
        total_supply=_total_supply(ctx.storage),
    )


token_contract = Contract(
    name="token",
    instantiate_handler=instantiate,
    execute_handlers={
        "transfer": transfer,
        "send": send,
        "mint": mint,
        "burn": burn,
    },
    query_handlers={
        "balance": query_balance,
        "token_info": query_token_info,
    },
)
