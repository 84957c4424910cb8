"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ pools, positions, balances and the log all change
        O fails    ⟹ none of them change, including pending accrual

A rejected operation never commits the accrual it computed on the way.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from lending import (
    LendingError, TransferError, InvalidPriceFeed, OverBorrowableAmount,
    WithdrawAmountExceedsCollateralValue, HealthyAccount,
)
from tests.helpers import SOL, USDC, advance, fresh_market


def snapshot(market):
    """Everything an operation may change."""
    custody = market.custody
    return (
        dict(market.pools),
        dict(market.positions),
        {w: custody.wallet_balances(w) for w in sorted(custody.registered_wallets)},
        len(market.operation_log),
        len(custody.transfer_log),
    )


class TestAtomicityExamples:

    def test_transfer_failure(self, lending_market):
        before = snapshot(lending_market)
        with pytest.raises(TransferError):
            lending_market.deposit("alice", "SOL", 11 * SOL)
        assert snapshot(lending_market) == before

    def test_ltv_failure_commits_no_accrual(self, borrowed_market, oracle):
        advance(borrowed_market, oracle, timedelta(days=30), {"SOL": 100, "USDC": 1})
        before = snapshot(borrowed_market)
        with pytest.raises(OverBorrowableAmount):
            borrowed_market.borrow("alice", "USDC", 100 * USDC)
        assert snapshot(borrowed_market) == before
        assert borrowed_market.get_pool("USDC").total_borrowed == 700 * USDC

    def test_withdraw_gate_failure(self, borrowed_market):
        before = snapshot(borrowed_market)
        with pytest.raises(WithdrawAmountExceedsCollateralValue):
            borrowed_market.withdraw("alice", "SOL", 2 * SOL)
        assert snapshot(borrowed_market) == before

    def test_oracle_failure(self, lending_market, oracle):
        lending_market.deposit("alice", "SOL", 10 * SOL)
        oracle.fail("feed:USDC")
        before = snapshot(lending_market)
        with pytest.raises(InvalidPriceFeed):
            lending_market.borrow("alice", "USDC", USDC)
        assert snapshot(lending_market) == before

    def test_healthy_liquidation(self, borrowed_market):
        before = snapshot(borrowed_market)
        with pytest.raises(HealthyAccount):
            borrowed_market.liquidate("liquidator", "alice", USDC)
        assert snapshot(borrowed_market) == before

    def test_custody_rejection_during_liquidation(self, borrowed_market, oracle, monkeypatch):
        advance(borrowed_market, oracle, timedelta(hours=1), {"SOL": 85, "USDC": 1})
        before = snapshot(borrowed_market)

        def reject(moves):
            raise TransferError("custody offline")

        monkeypatch.setattr(borrowed_market.custody, "transfer_batch", reject)
        with pytest.raises(TransferError):
            borrowed_market.liquidate("liquidator", "alice", 100 * USDC)
        assert snapshot(borrowed_market) == before


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(
        st.sampled_from(["deposit", "withdraw", "borrow", "repay"]),
        st.sampled_from(["alice", "bob", "carol"]),
        st.sampled_from(["SOL", "USDC"]),
        st.integers(min_value=1, max_value=10 ** 15),
    )
    @settings(max_examples=150, deadline=None)
    def test_rejected_operation_changes_nothing(self, kind, owner, asset, amount):
        """
        PROPERTY: Whatever the operation, a rejection leaves the market and
        custody byte-for-byte as they were.
        """
        market, oracle = fresh_market()
        market.deposit("bob", "USDC", 50_000 * USDC)
        market.deposit("alice", "SOL", 10 * SOL)
        market.borrow("alice", "USDC", 500 * USDC)
        advance(market, oracle, timedelta(days=10), {"SOL": Decimal("100"), "USDC": Decimal("1")})

        before = snapshot(market)
        try:
            getattr(market, kind)(owner, asset, amount)
        except LendingError:
            assert snapshot(market) == before
        else:
            assert len(market.operation_log) == before[3] + 1
