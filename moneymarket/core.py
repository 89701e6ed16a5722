"""
Core types for the money-market engine.

This module provides the foundational data structures shared by every contract:
1. Decimal context configuration and protocol-wide constants
2. Exceptions: MoneyMarketError and domain-specific error types
3. Execution context: Env, MessageInfo, Coin
4. Immutable instructions: BankSend, ContractCall and the Response that carries them
5. Contract: binding of a contract's instantiate/execute/query handler tables

Contracts never touch each other's state. Every cross-contract effect is an
instruction returned in a Response and applied by the Host after the handler
returns; every cross-contract read goes through the Querier.
"""

from __future__ import annotations
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import (
    Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, Union,
    runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Ratios are 18-decimal fixed-point values that may hold up to 78 digits.
# All protocol arithmetic goes through fixed_point, which computes on the
# scaled integers; the global context only matters for ad-hoc formatting.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_MONEYMARKET_DECIMAL_CONTEXT = getcontext()
_MONEYMARKET_DECIMAL_CONTEXT.prec = 100
_MONEYMARKET_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Account that receives network transfer tax collected by the host bank.
FEE_POOL = "fee_pool"

# Hook names carried in token send messages.
HOOK_DEPOSIT_COLLATERAL = "deposit_collateral"
HOOK_REDEEM_STABLE = "redeem_stable"

# Attribute keys used by every handler response.
ATTR_ACTION = "action"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque contract or account identifier.
Address = str

# Ordered (key, value) pairs describing what a handler did.
Attributes = Tuple[Tuple[str, str], ...]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class MoneyMarketError(Exception):
    """Base exception for all money-market errors."""
    pass


class Unauthorized(MoneyMarketError):
    """Sender is not allowed to perform this operation."""
    pass


class EpochNotPassed(MoneyMarketError):
    """Epoch operations were triggered before the epoch period elapsed."""

    def __init__(self, last_executed_height: int):
        self.last_executed_height = last_executed_height
        super().__init__(
            f"Epoch period is not passed; last executed height {last_executed_height}"
        )


class TokenAlreadyRegistered(MoneyMarketError):
    """Collateral token is already on the whitelist."""
    pass


class TokenNotRegistered(MoneyMarketError):
    """Collateral token is not on the whitelist."""
    pass


class NotFound(MoneyMarketError):
    """Requested storage entry does not exist."""
    pass


class QueryError(MoneyMarketError):
    """Upstream query failed or returned a malformed response."""
    pass


class PriceTooOld(QueryError):
    """Oracle price is older than the accepted staleness window."""
    pass


class InsufficientFunds(MoneyMarketError):
    """Account has insufficient balance for the transfer."""
    pass


class InvalidRequest(MoneyMarketError):
    """Request parameters are invalid (zero amounts, bad denominations, etc.)."""
    pass


class BorrowExceedsLimit(MoneyMarketError):
    """Borrow amount exceeds the borrower's collateral-backed limit."""
    pass


class NoStableAvailable(MoneyMarketError):
    """Market does not hold enough stable coins to serve the request."""
    pass


class UnlockTooLarge(MoneyMarketError):
    """Unlocking collateral would leave the loan under-collateralized."""
    pass


class WithdrawTooLarge(MoneyMarketError):
    """Withdraw amount exceeds the borrower's spendable collateral."""
    pass


class RewardDistributionNotSupported(MoneyMarketError):
    """Custody does not distribute rewards."""
    pass


class MissingDepositCollateralHook(MoneyMarketError):
    """Token send did not carry the deposit_collateral hook."""
    pass


class UnknownMessage(MoneyMarketError):
    """Contract has no handler for the requested action or query."""
    pass


class CallDepthExceeded(MoneyMarketError):
    """Nested contract calls exceeded the host's depth limit."""
    pass


class FixedPointError(MoneyMarketError, ArithmeticError):
    """Base exception for fixed-point arithmetic failures."""
    pass


class FixedPointOverflow(FixedPointError):
    """Result does not fit the 256-bit unsigned range."""
    pass


class DivideByZero(FixedPointError):
    """Fixed-point division by zero."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """Result of executing a top-level message on the host."""
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================================
# EXECUTION CONTEXT
# ============================================================================

@dataclass(frozen=True, slots=True)
class Coin:
    """Amount of a native stable denomination."""
    denom: str
    amount: int

    def __post_init__(self):
        if not self.denom:
            raise InvalidRequest("Coin denom cannot be empty")
        if self.amount < 0:
            raise InvalidRequest(f"Coin amount cannot be negative: {self.amount}")


@dataclass(frozen=True, slots=True)
class Env:
    """Block and contract information visible to a handler."""
    block_height: int
    block_time: datetime
    contract_address: Address


@dataclass(frozen=True, slots=True)
class MessageInfo:
    """Sender and attached native funds of the message being handled."""
    sender: Address
    funds: Tuple[Coin, ...] = ()

    def amount_of(self, denom: str) -> int:
        """Total attached amount of the given denomination."""
        return sum(c.amount for c in self.funds if c.denom == denom)


@runtime_checkable
class QuerierLike(Protocol):
    """Read-only access to other contracts and to the bank."""

    def query(self, contract_address: Address, query: str, /, **params: Any) -> Any:
        ...

    def query_balance(self, address: Address, denom: str) -> int:
        ...

    def tax_rate(self) -> Decimal:
        ...

    def tax_cap(self, denom: str) -> int:
        ...


@dataclass(frozen=True)
class ExecutionContext:
    """
    Everything a handler can see while it runs.

    storage is the contract's own namespace of the transaction's staged
    buffer; querier reads other contracts through the same buffer, so a
    handler observes every effect committed earlier in the transaction.
    """
    storage: Any
    querier: QuerierLike
    env: Env
    info: MessageInfo


# ============================================================================
# INSTRUCTIONS AND RESPONSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BankSend:
    """Transfer native coins from the emitting contract to an address."""
    to_address: Address
    amount: Tuple[Coin, ...]
    fire_and_forget: bool = False


@dataclass(frozen=True, slots=True)
class ContractCall:
    """
    Invoke another contract's execute handler.

    params is stored as a sorted tuple of (name, value) pairs so the
    instruction stays hashable and comparable; use params_dict to read it.
    """
    contract_address: Address
    action: str
    params: Tuple[Tuple[str, Any], ...] = ()
    funds: Tuple[Coin, ...] = ()
    fire_and_forget: bool = False

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)


Instruction = Union[BankSend, ContractCall]


def contract_call(
    contract_address: Address,
    action: str,
    /,
    funds: Tuple[Coin, ...] = (),
    fire_and_forget: bool = False,
    **params: Any,
) -> ContractCall:
    """Build a ContractCall with keyword parameters."""
    return ContractCall(
        contract_address=contract_address,
        action=action,
        params=tuple(sorted(params.items())),
        funds=tuple(funds),
        fire_and_forget=fire_and_forget,
    )


def bank_send(to_address: Address, denom: str, amount: int) -> BankSend:
    """Build a single-coin BankSend."""
    return BankSend(to_address=to_address, amount=(Coin(denom, amount),))


@dataclass(frozen=True, slots=True)
class Response:
    """
    Outcome of a handler: instructions for the host plus descriptive attributes.

    Instructions are applied by the host in order after the handler returns.
    A handler can never observe the result of its own instructions; anything
    that depends on post-effect state must be deferred to a continuation
    instruction addressed back to the contract.
    """
    instructions: Tuple[Instruction, ...] = ()
    attributes: Attributes = ()

    def attribute(self, key: str) -> Optional[str]:
        """Value of the first attribute with the given key, or None."""
        for k, v in self.attributes:
            if k == key:
                return v
        return None


def build_response(
    action: str,
    instructions: Tuple[Instruction, ...] = (),
    /,
    **attributes: Any,
) -> Response:
    """
    Build a Response with an action attribute followed by the given attributes.

    Attribute values are rendered with str() so Decimal ratios and integer
    amounts appear exactly as stored.
    """
    attrs = ((ATTR_ACTION, action),) + tuple((k, str(v)) for k, v in attributes.items())
    return Response(instructions=tuple(instructions), attributes=attrs)


# ============================================================================
# CONTRACTS
# ============================================================================

Handler = Callable[..., Any]


def _call_handler(
    contract_name: str,
    name: str,
    handler: Handler,
    ctx: ExecutionContext,
    params: Dict[str, Any],
) -> Any:
    """
    Call a handler after checking the message parameters against its signature.

    Raises:
        InvalidRequest: If the parameters do not match the handler
    """
    try:
        inspect.signature(handler).bind(ctx, **params)
    except TypeError as e:
        raise InvalidRequest(f"{contract_name}.{name}: {e}") from e
    return handler(ctx, **params)


@dataclass(frozen=True)
class Contract:
    """
    A contract's handler tables.

    Handlers are plain functions taking an ExecutionContext plus keyword
    parameters. Execute handlers return a Response, query handlers return
    any immutable value. Dispatch is by action/query name.
    """
    name: str
    instantiate_handler: Handler
    execute_handlers: Mapping[str, Handler] = field(default_factory=dict)
    query_handlers: Mapping[str, Handler] = field(default_factory=dict)

    def instantiate(self, ctx: ExecutionContext, /, **params: Any) -> Response:
        return _call_handler(self.name, "instantiate", self.instantiate_handler, ctx, params)

    def execute(self, ctx: ExecutionContext, action: str, /, **params: Any) -> Response:
        handler = self.execute_handlers.get(action)
        if handler is None:
            raise UnknownMessage(f"{self.name}: unknown action {action!r}")
        return _call_handler(self.name, action, handler, ctx, params)

    def query(self, ctx: ExecutionContext, query: str, /, **params: Any) -> Any:
        handler = self.query_handlers.get(query)
        if handler is None:
            raise UnknownMessage(f"{self.name}: unknown query {query!r}")
        return _call_handler(self.name, query, handler, ctx, params)


def require_sender(info: MessageInfo, expected: Address) -> None:
    """Raise Unauthorized unless the message was sent by expected."""
    if info.sender != expected:
        raise Unauthorized(f"sender {info.sender!r} is not authorized")
