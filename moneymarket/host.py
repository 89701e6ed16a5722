"""
host.py - Deterministic, single-threaded, transactional execution host.

The Host is the only component that mutates state. It applies one message at
a time and guarantees:

    - Every top-level message runs against a fresh StagedStorage; the
      authoritative Storage is touched only by the final commit.
    - Instructions returned by a handler run after the handler returns, in
      order, depth-first. A ContractCall is a further step of the same
      transaction, so a self-addressed continuation sees every earlier effect.
    - Any MoneyMarketError anywhere in the message discards every staged
      write and the message is REJECTED with its cause.
    - Instructions flagged fire_and_forget run in their own nested buffer:
      a failure rolls back only that instruction and is reported.
    - Always logs: every committed message is appended to transaction_log.

Thread Safety:
    Not thread-safe. One Host per thread.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    Address, Attributes, BankSend, CallDepthExceeded, Coin, Contract,
    ContractCall, Env, ExecuteResult, ExecutionContext, FEE_POOL, Instruction,
    InsufficientFunds, InvalidRequest, MessageInfo, MoneyMarketError,
    QueryError, Response,
)
from .fixed_point import uint_add, uint_sub
from .querier import TaxPolicy, transfer_tax
from .store import Bucket, PrefixedStorage, ReadOnlyStorage, StagedStorage, Storage


# Maximum nesting of contract calls within one message.
MAX_CALL_DEPTH = 10

_BANK_NAMESPACE = b"bank"
_CONTRACT_NAMESPACE = b"contract:"


def _balance_key(address: Address, denom: str) -> bytes:
    return f"{address}\x00{denom}".encode()


@dataclass(frozen=True, slots=True)
class TransactionResult:
    """
    Outcome of one top-level message.

    events lists (contract_address, attributes) for every handler that ran,
    in execution order. failed_instructions lists fire-and-forget
    instructions that were rolled back, with their cause.
    """
    result: ExecuteResult
    sender: Address
    contract_address: Address
    action: str
    block_height: int
    events: Tuple[Tuple[Address, Attributes], ...] = ()
    error: Optional[MoneyMarketError] = None
    failed_instructions: Tuple[Tuple[Instruction, MoneyMarketError], ...] = ()

    @property
    def applied(self) -> bool:
        return self.result == ExecuteResult.APPLIED

    def attribute(self, key: str, contract: Optional[Address] = None) -> Optional[str]:
        """First attribute value with the given key, optionally from one contract."""
        for address, attrs in self.events:
            if contract is not None and address != contract:
                continue
            for k, v in attrs:
                if k == key:
                    return v
        return None


class _HostQuerier:
    """Querier bound to one storage layer of an in-flight transaction."""

    def __init__(self, host: Host, storage):
        self._host = host
        self._storage = storage

    def query(self, contract_address: Address, query: str, /, **params: Any) -> Any:
        contract = self._host.contracts.get(contract_address)
        if contract is None:
            raise QueryError(f"No contract at {contract_address!r}")
        ctx = ExecutionContext(
            storage=ReadOnlyStorage(self._host._contract_storage(self._storage, contract_address)),
            querier=self,
            env=self._host._env(contract_address),
            info=MessageInfo(sender=""),
        )
        try:
            return contract.query(ctx, query, **params)
        except QueryError:
            raise
        except MoneyMarketError as e:
            raise QueryError(
                f"{query} query to {contract_address} failed: {e}"
            ) from e

    def query_balance(self, address: Address, denom: str) -> int:
        return self._host._read_balance(self._storage, address, denom)

    def tax_rate(self) -> Decimal:
        return self._host.tax_policy.rate

    def tax_cap(self, denom: str) -> Optional[int]:
        return self._host.tax_policy.cap_for(denom)


class Host:
    """
    In-process execution host with a native bank and a block clock.

    Example:
        host = Host("localnet", verbose=False, test_mode=True)
        host.set_balance("alice", "uusd", 1_000_000)
        host.instantiate(market_contract, "market", "owner", **market_params)
        result = host.execute("market", "alice", "deposit_stable",
                              funds=(Coin("uusd", 1_000),))
    """

    def __init__(
        self,
        name: str = "localnet",
        initial_height: int = 1,
        initial_time: Optional[datetime] = None,
        block_interval: timedelta = timedelta(seconds=6),
        tax_policy: Optional[TaxPolicy] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a host.

        Args:
            name: Host identifier
            initial_height: Block height of the first block
            initial_time: Block time of the first block (default: 2022-01-01)
            block_interval: Time added per block by advance_blocks()
            tax_policy: Network transfer tax (default: no tax)
            verbose: Print one line per message (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.storage = Storage()
        self.contracts: Dict[Address, Contract] = {}
        self.transaction_log: List[TransactionResult] = []
        self.tax_policy = tax_policy or TaxPolicy()
        self.block_interval = block_interval
        self.verbose = verbose
        self._test_mode = test_mode
        self._block_height = initial_height
        self._block_time = initial_time or datetime(2022, 1, 1)

    # ========================================================================
    # BLOCK CLOCK
    # ========================================================================

    @property
    def block_height(self) -> int:
        return self._block_height

    @property
    def block_time(self) -> datetime:
        return self._block_time

    def advance_blocks(self, blocks: int = 1) -> int:
        """
        Move the clock forward by a number of blocks.

        Returns:
            The new block height

        Raises:
            ValueError: If blocks is negative
        """
        if blocks < 0:
            raise ValueError(f"Cannot move height backwards by {blocks} blocks")
        self._block_height += blocks
        self._block_time += self.block_interval * blocks
        if self.verbose:
            print(f"⏱  {self.name}: height {self._block_height} ({self._block_time.isoformat()})")
        return self._block_height

    def _env(self, contract_address: Address) -> Env:
        return Env(
            block_height=self._block_height,
            block_time=self._block_time,
            contract_address=contract_address,
        )

    # ========================================================================
    # BANK
    # ========================================================================

    def _read_balance(self, storage, address: Address, denom: str) -> int:
        return Bucket(storage, _BANK_NAMESPACE).may_load(_balance_key(address, denom)) or 0

    def _write_balance(self, storage, address: Address, denom: str, amount: int) -> None:
        bucket = Bucket(storage, _BANK_NAMESPACE)
        if amount == 0:
            bucket.remove(_balance_key(address, denom))
        else:
            bucket.save(_balance_key(address, denom), amount)

    def _transfer(self, storage, source: Address, dest: Address, coin: Coin) -> None:
        available = self._read_balance(storage, source, coin.denom)
        if available < coin.amount:
            raise InsufficientFunds(
                f"{source} has {available}{coin.denom}, needs {coin.amount}{coin.denom}"
            )
        self._write_balance(storage, source, coin.denom, uint_sub(available, coin.amount))
        received = self._read_balance(storage, dest, coin.denom)
        self._write_balance(storage, dest, coin.denom, uint_add(received, coin.amount))

    def get_balance(self, address: Address, denom: str) -> int:
        """Committed native balance of an account."""
        return self._read_balance(self.storage, address, denom)

    def set_balance(self, address: Address, denom: str, amount: int) -> None:
        """
        Set an account's native balance directly.

        WARNING: Only available in test mode. It bypasses the transfer rules.

        Raises:
            MoneyMarketError: If called when test_mode is False
        """
        if not self._test_mode:
            raise MoneyMarketError(
                "set_balance() is disabled in production mode. "
                "Set test_mode=True when creating Host for testing."
            )
        if amount < 0:
            raise InvalidRequest(f"Balance cannot be negative: {amount}")
        self._write_balance(self.storage, address, denom, amount)

    # ========================================================================
    # CONTRACT STORAGE
    # ========================================================================

    @staticmethod
    def _contract_storage(storage, contract_address: Address) -> PrefixedStorage:
        return PrefixedStorage(storage, _CONTRACT_NAMESPACE + contract_address.encode())

    def contract_storage(self, contract_address: Address) -> ReadOnlyStorage:
        """Read-only view of a contract's committed storage."""
        return ReadOnlyStorage(self._contract_storage(self.storage, contract_address))

    # ========================================================================
    # MESSAGES
    # ========================================================================

    def instantiate(
        self,
        contract: Contract,
        address: Address,
        sender: Address,
        /,
        funds: Tuple[Coin, ...] = (),
        **params: Any,
    ) -> TransactionResult:
        """
        Deploy a contract at an address and run its instantiate handler.

        Registration is rolled back together with the staged writes when
        instantiation fails.

        Raises:
            ValueError: If the address is already taken
        """
        if address in self.contracts:
            raise ValueError(f"Contract address {address} already in use")
        self.contracts[address] = contract
        try:
            result = self._run(address, sender, "instantiate", tuple(funds), params)
        except Exception:
            del self.contracts[address]
            raise
        if not result.applied:
            del self.contracts[address]
        return result

    def execute(
        self,
        contract_address: Address,
        sender: Address,
        action: str,
        /,
        funds: Tuple[Coin, ...] = (),
        **params: Any,
    ) -> TransactionResult:
        """
        Execute one top-level message atomically.

        funds is attached to the message; every other keyword is passed to
        the handler, including ones named sender or action.

        Returns:
            TransactionResult with ExecuteResult.APPLIED if every step succeeded,
            ExecuteResult.REJECTED (and the error) otherwise
        """
        return self._run(contract_address, sender, action, tuple(funds), params)

    def execute_or_raise(
        self,
        contract_address: Address,
        sender: Address,
        action: str,
        /,
        funds: Tuple[Coin, ...] = (),
        **params: Any,
    ) -> TransactionResult:
        """Like execute(), but raises the rejection cause."""
        result = self.execute(contract_address, sender, action, funds, **params)
        if result.error is not None:
            raise result.error
        return result

    def query(self, contract_address: Address, query: str, /, **params: Any) -> Any:
        """Run a query against committed state."""
        return _HostQuerier(self, self.storage).query(contract_address, query, **params)

    def _run(
        self,
        contract_address: Address,
        sender: Address,
        action: str,
        funds: Tuple[Coin, ...],
        params: Dict[str, Any],
    ) -> TransactionResult:
        staged = StagedStorage(self.storage)
        events: List[Tuple[Address, Attributes]] = []
        failed: List[Tuple[Instruction, MoneyMarketError]] = []
        try:
            self._dispatch(staged, contract_address, sender, action, funds, params,
                           events, failed, depth=0)
        except MoneyMarketError as e:
            staged.discard()
            result = TransactionResult(
                result=ExecuteResult.REJECTED,
                sender=sender,
                contract_address=contract_address,
                action=action,
                block_height=self._block_height,
                error=e,
            )
            if self.verbose:
                print(f"✗ REJECTED: {contract_address}.{action} from {sender}: "
                      f"{type(e).__name__}: {e}")
            return result

        staged.commit()
        result = TransactionResult(
            result=ExecuteResult.APPLIED,
            sender=sender,
            contract_address=contract_address,
            action=action,
            block_height=self._block_height,
            events=tuple(events),
            failed_instructions=tuple(failed),
        )
        self.transaction_log.append(result)
        if self.verbose:
            print(f"✓ APPLIED: {contract_address}.{action} from {sender} "
                  f"@{self._block_height} ({len(events)} steps)")
        return result

    def _dispatch(
        self,
        storage,
        contract_address: Address,
        sender: Address,
        action: str,
        funds: Tuple[Coin, ...],
        params: Dict[str, Any],
        events: List[Tuple[Address, Attributes]],
        failed: List[Tuple[Instruction, MoneyMarketError]],
        depth: int,
    ) -> None:
        if depth > MAX_CALL_DEPTH:
            raise CallDepthExceeded(f"Call depth exceeded at {contract_address}.{action}")
        contract = self.contracts.get(contract_address)
        if contract is None:
            raise InvalidRequest(f"No contract at {contract_address!r}")

        for coin in funds:
            self._transfer(storage, sender, contract_address, coin)

        ctx = ExecutionContext(
            storage=self._contract_storage(storage, contract_address),
            querier=_HostQuerier(self, storage),
            env=self._env(contract_address),
            info=MessageInfo(sender=sender, funds=funds),
        )
        if action == "instantiate":
            response = contract.instantiate(ctx, **params)
        else:
            response = contract.execute(ctx, action, **params)
        if not isinstance(response, Response):
            raise TypeError(f"{contract.name}.{action} returned {type(response).__name__}")
        events.append((contract_address, response.attributes))

        for instruction in response.instructions:
            if not instruction.fire_and_forget:
                self._apply(storage, contract_address, instruction, events, failed, depth)
                continue
            nested = StagedStorage(storage)
            nested_events: List[Tuple[Address, Attributes]] = []
            try:
                self._apply(nested, contract_address, instruction, nested_events, failed, depth)
            except MoneyMarketError as e:
                nested.discard()
                failed.append((instruction, e))
                if self.verbose:
                    print(f"⚠️  FAILED (ignored): {instruction}: {type(e).__name__}: {e}")
                continue
            nested.commit()
            events.extend(nested_events)

    def _apply(
        self,
        storage,
        emitter: Address,
        instruction: Instruction,
        events: List[Tuple[Address, Attributes]],
        failed: List[Tuple[Instruction, MoneyMarketError]],
        depth: int,
    ) -> None:
        if isinstance(instruction, BankSend):
            querier = _HostQuerier(self, storage)
            for coin in instruction.amount:
                tax = transfer_tax(querier, coin.denom, coin.amount)
                self._transfer(storage, emitter, instruction.to_address, coin)
                if tax:
                    self._transfer(storage, emitter, FEE_POOL, Coin(coin.denom, tax))
        elif isinstance(instruction, ContractCall):
            self._dispatch(
                storage,
                instruction.contract_address,
                emitter,
                instruction.action,
                instruction.funds,
                instruction.params_dict,
                events,
                failed,
                depth + 1,
            )
        else:
            raise TypeError(f"Unknown instruction type: {type(instruction).__name__}")
