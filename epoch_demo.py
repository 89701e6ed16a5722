#!/usr/bin/env python3
"""
epoch_demo.py - Interactive Tutorial: A Money Market Epoch by Epoch

A walk-through of the protocol on an in-process Host. Each step builds on
the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3: Setup       - Deploying the contracts, feeding prices, depositing
  4-5: Borrowing   - Locking collateral, borrowing, lazy interest accrual
  6-7: Epochs      - The epoch gate, buffer purchase and distribution
  8:   Atomicity   - A failed epoch leaves every contract untouched
  9:   Dynamic Rates - Reserve growth moving the target deposit rate

Run:
    python epoch_demo.py           # Interactive mode (press Enter for each step)
    python epoch_demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from decimal import Decimal
import sys

from moneymarket import (
    Coin, Host, HOOK_DEPOSIT_COLLATERAL, Protocol, ProtocolParams, deploy_protocol,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    deposit: int = 1_000_000_000
    collateral: int = 100_000_000
    borrow: int = 100_000_000
    collateral_price: Decimal = Decimal("10")
    underlying_price: Decimal = Decimal("10")
    overseer_funding: int = 10_000_000
    epoch_period: int = 100
    dyn_rate_epoch: int = 150


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_epoch(host: Host, p: Protocol):
    state = host.query(p.overseer, "epoch_state")
    print(f"last_executed_height: {state.last_executed_height}")
    print(f"deposit_rate:         {state.deposit_rate}")
    print(f"prev_exchange_rate:   {state.prev_exchange_rate}")
    print(f"prev_aterra_supply:   {state.prev_aterra_supply:,}")
    print(f"prev_interest_buffer: {state.prev_interest_buffer:,}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_deploy():
    """Deploy every contract onto a fresh host."""
    step_header(1, "Deploying the Protocol",
        "See which contracts make up the market and how they are wired.")

    host = Host("tutorial", verbose=True, test_mode=True)
    p = deploy_protocol(host, ProtocolParams(
        epoch_period=CONFIG.epoch_period,
        dyn_rate_epoch=CONFIG.dyn_rate_epoch,
        collateral_holders=(("bob", CONFIG.collateral),),
    ))

    section_header("Contracts")
    for name in ("oracle", "interest_model", "aterra", "collateral_token",
                 "market", "overseer", "custody"):
        print(f"{name:18s} {getattr(p, name)}")
    print(f"\nBlock height: {host.block_height}")
    return host, p


def step_02_prices(host: Host, p: Protocol):
    step_header(2, "Feeding Prices",
        "The oracle prices collateral in the stable denomination.")

    host.execute_or_raise(p.oracle, p.feeder, "feed_price", prices=(
        (p.collateral_token, CONFIG.collateral_price),
        (p.underlying_token, CONFIG.underlying_price),
    ))
    price = host.query(p.oracle, "price", base=p.collateral_token, quote=p.stable_denom)
    print(f"{p.collateral_token}/{p.stable_denom}: {price.rate}")
    return host, p


def step_03_deposit(host: Host, p: Protocol):
    step_header(3, "Depositing Stable Coin",
        "Deposits mint aterra at the market exchange rate.")

    host.set_balance("alice", p.stable_denom, CONFIG.deposit)
    result = host.execute_or_raise(p.market, "alice", "deposit_stable",
                                   funds=(Coin(p.stable_denom, CONFIG.deposit),))
    print(f"Minted: {result.attribute('mint_amount')} aterra")
    print(f"Market balance: {host.get_balance(p.market, p.stable_denom):,}")
    return host, p


# ============================================================================
# PHASE 2: BORROWING (Steps 4-5)
# ============================================================================

def step_04_borrow(host: Host, p: Protocol):
    step_header(4, "Collateral and Borrowing",
        "Lock collateral in the custody, then borrow up to the limit.")

    host.execute_or_raise(p.collateral_token, "bob", "send", contract=p.custody,
                          amount=CONFIG.collateral, msg=HOOK_DEPOSIT_COLLATERAL)
    host.execute_or_raise(p.overseer, "bob", "lock_collateral",
                          collaterals=((p.collateral_token, CONFIG.collateral),))
    limit = host.query(p.overseer, "borrow_limit", borrower="bob")
    print(f"Borrow limit: {limit.borrow_limit:,}")

    host.execute_or_raise(p.market, "bob", "borrow_stable", borrow_amount=CONFIG.borrow)
    print(f"Borrowed:     {host.get_balance('bob', p.stable_denom):,}")
    return host, p


def step_05_accrual(host: Host, p: Protocol):
    step_header(5, "Lazy Interest Accrual",
        "Loans grow with the global index; nothing is written until touched.")

    host.advance_blocks(CONFIG.epoch_period)
    stored = host.query(p.market, "liability", borrower="bob")
    projected = host.query(p.market, "liability", borrower="bob",
                           block_height=host.block_height)
    print(f"Stored loan:    {stored.loan_amount:,} @ index {stored.interest_index}")
    print(f"Projected loan: {projected.loan_amount:,} @ index {projected.interest_index}")
    return host, p


# ============================================================================
# PHASE 3: EPOCHS (Steps 6-7)
# ============================================================================

def step_06_first_epoch(host: Host, p: Protocol):
    step_header(6, "The First Epoch",
        "Anyone may settle an epoch once epoch_period blocks have passed.")

    section_header("Same block, twice: the second call is rejected")
    host.execute(p.overseer, "keeper", "execute_epoch_operations")
    host.execute(p.overseer, "keeper", "execute_epoch_operations")

    section_header("Snapshot")
    show_epoch(host, p)
    return host, p


def step_07_distribution(host: Host, p: Protocol):
    step_header(7, "Buffer Purchase and Distribution",
        "Buffer growth is partly sent to the collector, partly paid to depositors.")

    host.set_balance(p.overseer, p.stable_denom, CONFIG.overseer_funding)
    host.advance_blocks(CONFIG.epoch_period)
    market_before = host.get_balance(p.market, p.stable_denom)
    result = host.execute_or_raise(p.overseer, "keeper", "execute_epoch_operations")

    print(f"Purchased:   {result.attribute('anc_purchase_amount')}")
    print(f"Distributed: {result.attribute('distributed_interest')}")
    print(f"Market got:  {host.get_balance(p.market, p.stable_denom) - market_before:,}")
    section_header("Snapshot")
    show_epoch(host, p)
    return host, p


# ============================================================================
# PHASE 4: ATOMICITY AND DYNAMIC RATES (Steps 8-9)
# ============================================================================

def step_08_failed_epoch(host: Host, p: Protocol):
    step_header(8, "A Failed Epoch",
        "A buffer below the last snapshot aborts the whole epoch.")

    buffer = host.get_balance(p.overseer, p.stable_denom)
    host.set_balance(p.overseer, p.stable_denom, buffer // 2)
    host.advance_blocks(CONFIG.epoch_period)
    result = host.execute(p.overseer, "keeper", "execute_epoch_operations")
    print(f"Result: {result.result.value} ({type(result.error).__name__})")
    show_epoch(host, p)

    host.set_balance(p.overseer, p.stable_denom, buffer)
    return host, p


def step_09_dynamic_rates(host: Host, p: Protocol):
    step_header(9, "Dynamic Rates",
        "Once a reserve snapshot exists, its growth moves the target rate.")

    before = host.query(p.overseer, "config").target_deposit_rate
    for _ in range(2):
        host.set_balance(p.overseer, p.stable_denom,
                         host.get_balance(p.overseer, p.stable_denom) * 2)
        host.advance_blocks(CONFIG.dyn_rate_epoch + 1)
        host.execute_or_raise(p.overseer, "keeper", "execute_epoch_operations")

    dynrate = host.query(p.overseer, "dynrate_state")
    after = host.query(p.overseer, "config").target_deposit_rate
    print(f"Target deposit rate: {before} -> {after}")
    print(f"rate_delta:          {dynrate.rate_delta} (rising={dynrate.update_vector})")
    print(f"Market epoch rates:  {host.query(p.market, 'epoch_rates')}")
    return host, p


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       MONEY MARKET - EPOCH TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    host, p = step_01_deploy()
    for step in (step_02_prices, step_03_deposit, step_04_borrow, step_05_accrual,
                 step_06_first_epoch, step_07_distribution, step_08_failed_epoch,
                 step_09_dynamic_rates):
        wait_for_enter()
        host, p = step(host, p)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print(f"Applied messages: {len(host.transaction_log)}")


if __name__ == "__main__":
    main()
