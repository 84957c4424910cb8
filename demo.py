#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Lending Market Step by Step

A walkthrough of a collateralized lending market. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup           - Oracle and feed registry, custody, pools
  4-6:   Core Mechanics  - Deposits and shares, borrowing, the LTV gate
  7-8:   Time            - Lazy interest accrual, stale prices
  9-10:  Liquidation     - Price drop, partial liquidation, bad debt
  11:    Invariants      - Treasury backing and double entry

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from lending import (
    LendingMarket, Custody, FeedRegistry, StaticPriceOracle,
    LendingError, OperationType,
    max_liquidation_repay, treasury_wallet,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Prices
    sol_price: Decimal = Decimal("150")
    crash_price: Decimal = Decimal("100")
    wipeout_price: Decimal = Decimal("40")

    # Funding (whole tokens)
    alice_sol: int = 10
    bob_usdc: int = 50_000
    liquidator_usdc: int = 50_000

    # Borrowing
    alice_borrow_usdc: int = 1_000


CONFIG = DemoConfig()
SOL = 10 ** 9
USDC = 10 ** 6

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


def publish(oracle: StaticPriceOracle, market: LendingMarket, sol_price: Decimal):
    oracle.set_price("feed:SOL", sol_price, market.current_time)
    oracle.set_price("feed:USDC", Decimal("1"), market.current_time)


def show_position(market: LendingMarket, owner: str):
    snap = market.assess(owner)
    print(f"  {owner:<10} collateral ${snap.collateral_value:>10.2f}   "
          f"debt ${snap.debt_value:>9.2f}   "
          f"health {snap.health_factor:.4f}   {snap.status}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_oracle():
    """Prices come from feeds; the registry maps assets to feeds."""
    step_header(1, "Prices and Feeds",
        "Every risk check values positions with validated oracle prices.")

    print("""
    The market never trusts a raw number. An asset symbol resolves to a feed
    through the FeedRegistry, the oracle returns a quote for that feed, and
    the quote is rejected if it is stale, non-positive or too uncertain.
    """)

    registry = FeedRegistry("admin")
    registry.register("admin", "SOL", "feed:SOL")
    registry.register("admin", "USDC", "feed:USDC")
    oracle = StaticPriceOracle()

    print(">>> registry.register('admin', 'SOL', 'feed:SOL')")
    for binding in registry.bindings():
        print(f"  {binding.symbol:<6} -> {binding.feed_id}")
    return oracle, registry


def step_02_custody():
    """Custody holds tokens; the market only hands it batches of moves."""
    step_header(2, "Custody",
        "Tokens live in wallets; pools keep their liquidity in treasury wallets.")

    custody = Custody("demo", verbose=True)
    for wallet in ("alice", "bob", "liquidator"):
        custody.register_wallet(wallet)

    custody.issue("alice", "SOL", CONFIG.alice_sol * SOL)
    custody.issue("bob", "USDC", CONFIG.bob_usdc * USDC)
    custody.issue("liquidator", "USDC", CONFIG.liquidator_usdc * USDC)

    section_header("Balances (base units)")
    for wallet in ("alice", "bob", "liquidator"):
        print(f"  {wallet:<10} {custody.wallet_balances(wallet)}")
    return custody


def step_03_pools(oracle, registry, custody):
    """One pool per asset, each with its own risk parameters."""
    step_header(3, "Pools",
        "Create SOL and USDC pools with LTV, threshold, bonus, close factor and rate.")

    market = LendingMarket("demo", oracle, registry, custody,
                           initial_time=CONFIG.start_time, verbose=True)
    publish(oracle, market, CONFIG.sol_price)
    market.create_pool("admin", "SOL", 9, Decimal("0.75"), Decimal("0.80"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.03"))
    market.create_pool("admin", "USDC", 6, Decimal("0.80"), Decimal("0.85"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.08"))
    return market


# ============================================================================
# PHASE 2: CORE MECHANICS (Steps 4-6)
# ============================================================================

def step_04_deposits(market: LendingMarket):
    step_header(4, "Deposits Mint Shares",
        "A deposit becomes shares of the pool; shares appreciate as interest accrues.")

    market.deposit("bob", "USDC", CONFIG.bob_usdc * USDC)
    market.deposit("alice", "SOL", CONFIG.alice_sol * SOL)

    section_header("Pool state")
    for asset_id in market.list_pools():
        pool = market.get_pool(asset_id)
        print(f"  {asset_id:<5} deposited {pool.total_deposited:>18,}   "
              f"shares {pool.total_deposit_shares:>18,}")
    return market


def step_05_borrow(market: LendingMarket):
    step_header(5, "Borrowing",
        "Borrow USDC against SOL collateral, up to max_ltv of its value.")

    market.borrow("alice", "USDC", CONFIG.alice_borrow_usdc * USDC)
    section_header("Risk")
    show_position(market, "alice")
    return market


def step_06_ltv_gate(market: LendingMarket):
    step_header(6, "The LTV Gate",
        "A borrow that would push debt above collateral * max_ltv is rejected.")

    snap = market.assess("alice")
    extra = int(snap.available_to_borrow * USDC) + USDC
    print(f">>> market.borrow('alice', 'USDC', {extra})   # ${snap.available_to_borrow:.2f} is available")
    try:
        market.borrow("alice", "USDC", extra)
    except LendingError as e:
        section_header("Rejected")
        print(f"  {type(e).__name__}: nothing changed, no accrual committed")
    return market


# ============================================================================
# PHASE 3: TIME (Steps 7-8)
# ============================================================================

def step_07_interest(market: LendingMarket, oracle: StaticPriceOracle):
    step_header(7, "Lazy Interest",
        "Interest accrues when a pool is touched, added to deposits and debt alike.")

    market.advance_time(market.current_time + timedelta(days=180))
    print(f"  pending USDC interest after 180 days: {market.pending_interest('USDC'):,}")
    market.accrue("USDC")
    publish(oracle, market, CONFIG.sol_price)

    section_header("After accrual")
    print(f"  alice owes   {market.position_balances('alice').borrowed_amount:,}")
    print(f"  bob redeems  {market.position_balances('bob').deposited_amount:,}")
    return market


def step_08_stale_price(market: LendingMarket, oracle: StaticPriceOracle):
    step_header(8, "Stale Prices",
        "Quotes older than max_price_age block every price-dependent operation.")

    market.advance_time(market.current_time + timedelta(minutes=5))
    try:
        market.borrow("alice", "USDC", USDC)
    except LendingError as e:
        print(f"  {type(e).__name__}: {e}")
    publish(oracle, market, CONFIG.sol_price)
    print("  Fresh quotes published.")
    return market


# ============================================================================
# PHASE 4: LIQUIDATION (Steps 9-10)
# ============================================================================

def step_09_liquidation(market: LendingMarket, oracle: StaticPriceOracle):
    step_header(9, "Liquidation",
        "When health drops below 1 a third party repays debt for discounted collateral.")

    publish(oracle, market, CONFIG.crash_price)
    show_position(market, "alice")

    owed = market.position_balances("alice").borrowed_amount
    repay = max_liquidation_repay(owed, market.get_pool("USDC").liquidation_close_factor)
    market.liquidate("liquidator", "alice", repay)
    show_position(market, "alice")
    return market


def step_10_bad_debt(market: LendingMarket, oracle: StaticPriceOracle):
    step_header(10, "Bad Debt",
        "If collateral runs out first, the remaining debt is written off against depositors.")

    publish(oracle, market, CONFIG.wipeout_price)
    while market.get_position("alice").has_debt and market.assess("alice").is_liquidatable:
        owed = market.position_balances("alice").borrowed_amount
        market.liquidate("liquidator", "alice",
                         max_liquidation_repay(owed, market.get_pool("USDC").liquidation_close_factor))

    pool = market.get_pool("USDC")
    section_header("USDC pool")
    print(f"  bad debt written off: {pool.bad_debt:,}")
    print(f"  bob redeems:          {market.position_balances('bob').deposited_amount:,}")
    return market


# ============================================================================
# PHASE 5: INVARIANTS (Step 11)
# ============================================================================

def step_11_invariants(market: LendingMarket):
    step_header(11, "Invariants",
        "Treasuries back every pool and custody nets to zero.")

    for asset_id in market.list_pools():
        pool = market.get_pool(asset_id)
        treasury = market.custody.balance(treasury_wallet(asset_id), asset_id)
        ok = treasury == pool.total_deposited - pool.total_borrowed
        print(f"  {asset_id:<5} treasury {treasury:>18,} = deposited - borrowed: {'✓' if ok else '✗'}")

    check = market.custody.verify_double_entry()
    print(f"\n  Double entry valid: {'✓' if check['valid'] else '✗'}")

    counts = {}
    for record in market.operation_log:
        counts[record.operation] = counts.get(record.operation, 0) + 1
    section_header("Operation log")
    for op in OperationType:
        if op in counts:
            print(f"  {op.value:<12} {counts[op]}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       LENDING MARKET - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    oracle, registry = step_01_oracle()
    wait_for_enter()
    custody = step_02_custody()
    wait_for_enter()
    market = step_03_pools(oracle, registry, custody)
    wait_for_enter()

    market = step_04_deposits(market)
    wait_for_enter()
    market = step_05_borrow(market)
    wait_for_enter()
    market = step_06_ltv_gate(market)
    wait_for_enter()

    market = step_07_interest(market, oracle)
    wait_for_enter()
    market = step_08_stale_price(market, oracle)
    wait_for_enter()

    market = step_09_liquidation(market, oracle)
    wait_for_enter()
    market = step_10_bad_debt(market, oracle)
    wait_for_enter()

    step_11_invariants(market)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - Run tests: pytest tests/
      - Read lending/operations.py and lending/liquidation.py for the math
    """)


if __name__ == "__main__":
    main()
