"""
helpers.py - Shared constants and builders for lending tests

- T0, SOL, USDC: reference time and base-unit scales
- make_pool / seeded_pool: pure-function pool builders
- set_prices / advance: keep oracle quotes fresh as market time moves
- pool_is_consistent: share totals, rounding direction and treasury backing
- make_registry / make_oracle / make_custody / build_market: market setup
  shared by fixtures and by property tests that cannot use fixtures
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Tuple

from lending import (
    LendingMarket, StaticPriceOracle, FeedRegistry, Custody,
    Pool, create_pool, create_position,
    calculate_deposit, calculate_borrow,
    redeemable_amount, owed_amount, treasury_wallet,
)


T0 = datetime(2025, 1, 1)

SOL = 10 ** 9
USDC = 10 ** 6


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_pool(asset_id: str = "USDC", decimals: int = 6, created_at: datetime = T0, **overrides) -> Pool:
    """Create an empty pool with sensible defaults for testing."""
    params = dict(
        authority="admin",
        asset_id=asset_id,
        decimals=decimals,
        max_ltv=Decimal("0.80"),
        liquidation_threshold=Decimal("0.85"),
        liquidation_bonus=Decimal("0.05"),
        liquidation_close_factor=Decimal("0.5"),
        interest_rate=Decimal("0.10"),
        created_at=created_at,
    )
    params.update(overrides)
    return create_pool(**params)


def seeded_pool(deposited: int = 1_000_000, borrowed: int = 0, **overrides) -> Pool:
    """Pool with one depositor ("lender") and optionally one borrower ("borrower")."""
    pool = make_pool(**overrides)
    pool = calculate_deposit(pool, create_position("lender"), deposited, pool.last_updated).pool
    if borrowed:
        pool = calculate_borrow(pool, create_position("borrower"), borrowed, pool.last_updated).pool
    return pool


def set_prices(market: LendingMarket, oracle: StaticPriceOracle, prices: Dict[str, Decimal]) -> None:
    """Publish fresh quotes at the market's current time."""
    for asset_id, price in prices.items():
        oracle.set_price(f"feed:{asset_id}", Decimal(str(price)), market.current_time)


def advance(market: LendingMarket, oracle: StaticPriceOracle, delta: timedelta,
            prices: Dict[str, Decimal]) -> None:
    """Advance the market clock and republish prices so they are not stale."""
    market.advance_time(market.current_time + delta)
    set_prices(market, oracle, prices)


def pool_is_consistent(market: LendingMarket, asset_id: str, owners: Iterable[str]) -> bool:
    """Check share totals, rounding direction and treasury backing for one pool."""
    pool = market.get_pool(asset_id)
    positions = [market.get_position(o) for o in owners]
    deposit_shares = sum(p.deposited_shares for p in positions if p.deposit_asset == asset_id)
    borrow_shares = sum(p.borrowed_shares for p in positions if p.borrow_asset == asset_id)
    redeemable = sum(redeemable_amount(pool, p) for p in positions)
    owed = sum(owed_amount(pool, p) for p in positions)
    treasury = market.custody.balance(treasury_wallet(asset_id), asset_id)
    return (
        deposit_shares == pool.total_deposit_shares
        and borrow_shares == pool.total_borrow_shares
        and redeemable <= pool.total_deposited
        and owed >= pool.total_borrowed
        and pool.total_borrowed <= pool.total_deposited
        and treasury == pool.total_deposited - pool.total_borrowed
    )



# =============================================================================
# MARKET BUILDERS
# =============================================================================

def make_registry() -> FeedRegistry:
    """Feed registry with SOL, USDC, COL and DEBT feeds."""
    registry = FeedRegistry("admin")
    for symbol in ("SOL", "USDC", "COL", "DEBT"):
        registry.register("admin", symbol, f"feed:{symbol}")
    return registry


def make_oracle() -> StaticPriceOracle:
    """Static oracle: SOL $100, USDC $1, COL $1, DEBT $1 published at T0."""
    oracle = StaticPriceOracle()
    oracle.set_price("feed:SOL", Decimal("100"), T0)
    oracle.set_price("feed:USDC", Decimal("1"), T0)
    oracle.set_price("feed:COL", Decimal("1"), T0)
    oracle.set_price("feed:DEBT", Decimal("1"), T0)
    return oracle


def make_custody(wallets: Iterable[str] = ("alice", "bob", "carol", "liquidator")) -> Custody:
    custody = Custody("test")
    for wallet in wallets:
        custody.register_wallet(wallet)
    return custody


def build_market(oracle: StaticPriceOracle, registry: FeedRegistry, custody: Custody) -> LendingMarket:
    """
    SOL/USDC market at T0.

    SOL:  9 decimals, max_ltv 0.75, threshold 0.80, bonus 5%, close 50%, 3% rate
    USDC: 6 decimals, max_ltv 0.80, threshold 0.85, bonus 5%, close 50%, 10% rate

    Funding: alice 10 SOL, bob 100,000 USDC, carol 5 SOL + 1,000 USDC,
    liquidator 100,000 USDC.
    """
    market = LendingMarket("test", oracle, registry, custody, initial_time=T0, verbose=False)
    market.create_pool("admin", "SOL", 9, Decimal("0.75"), Decimal("0.80"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.03"))
    market.create_pool("admin", "USDC", 6, Decimal("0.80"), Decimal("0.85"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.10"))
    custody.issue("alice", "SOL", 10 * SOL)
    custody.issue("bob", "USDC", 100_000 * USDC)
    custody.issue("carol", "SOL", 5 * SOL)
    custody.issue("carol", "USDC", 1_000 * USDC)
    custody.issue("liquidator", "USDC", 100_000 * USDC)
    return market


def fresh_market() -> Tuple[LendingMarket, StaticPriceOracle]:
    """Self-contained SOL/USDC market for property tests (no fixtures)."""
    oracle = make_oracle()
    return build_market(oracle, make_registry(), make_custody()), oracle
