"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, conformance and functional tests:
- Oracle, feed registry and custody collaborators
- A SOL/USDC market with funded wallets
- A unit-priced COL/DEBT market for exact LTV arithmetic
"""

import pytest
from decimal import Decimal
from lending import LendingMarket, create_position

from tests.helpers import T0, USDC, SOL, make_registry, make_oracle, make_custody, build_market


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================

@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def oracle():
    return make_oracle()


@pytest.fixture
def custody():
    return make_custody()


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market(oracle, registry, custody):
    """SOL/USDC market at T0 with funded wallets (see helpers.build_market)."""
    return build_market(oracle, registry, custody)


@pytest.fixture
def lending_market(market):
    """SOL/USDC market where bob supplies 100,000 USDC of liquidity."""
    market.deposit("bob", "USDC", 100_000 * USDC)
    return market


@pytest.fixture
def borrowed_market(lending_market):
    """alice has 10 SOL ($1,000) of collateral and owes 700 USDC."""
    lending_market.deposit("alice", "SOL", 10 * SOL)
    lending_market.borrow("alice", "USDC", 700 * USDC)
    return lending_market


@pytest.fixture
def unit_market(oracle, registry, custody):
    """
    COL/DEBT market with 0 decimals and $1 prices, so amounts are values.

    COL max_ltv 0.8. alice holds 1,000 COL; bob supplies 10,000 DEBT.
    """
    market = LendingMarket("unit", oracle, registry, custody, initial_time=T0, verbose=False)
    market.create_pool("admin", "COL", 0, Decimal("0.8"), Decimal("0.85"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0"))
    market.create_pool("admin", "DEBT", 0, Decimal("0.8"), Decimal("0.85"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0"))
    custody.issue("alice", "COL", 1_000)
    custody.issue("bob", "DEBT", 10_000)
    market.deposit("bob", "DEBT", 10_000)
    return market


@pytest.fixture
def empty_position():
    return create_position("alice")
