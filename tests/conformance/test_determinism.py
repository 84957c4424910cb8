"""
Determinism Conformance Tests

INVARIANT: Same inputs ⟹ same outputs.

    ∀ markets M1, M2 built identically, ∀ operation sequences S:
        apply(M1, S) and apply(M2, S) yield identical pools, positions,
        balances and audit logs.
"""

from datetime import timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from lending import LendingError
from tests.conformance.test_conservation import operation, apply
from tests.helpers import SOL, USDC, fresh_market


def run(operations):
    market, oracle = fresh_market()
    prices = {"SOL": Decimal("100"), "USDC": Decimal("1")}
    outcomes = []
    for kind, args in operations:
        try:
            apply(market, oracle, prices, kind, args)
            outcomes.append("ok")
        except LendingError as e:
            outcomes.append(type(e).__name__)
    custody = market.custody
    return (
        outcomes,
        dict(market.pools),
        dict(market.positions),
        {w: custody.wallet_balances(w) for w in sorted(custody.registered_wallets)},
        [repr(r) for r in market.operation_log],
    )


class TestDeterminism:

    @given(st.lists(operation(), min_size=1, max_size=25))
    @settings(max_examples=40, deadline=None)
    def test_replay_is_identical(self, operations):
        """PROPERTY: replaying a sequence on a fresh market reproduces it exactly."""
        assert run(operations) == run(operations)

    def test_scripted_scenario(self):
        script = [
            ("deposit", ("bob", "USDC", 50_000 * USDC)),
            ("deposit", ("alice", "SOL", 10 * SOL)),
            ("borrow", ("alice", "USDC", 600 * USDC)),
            ("advance", (30 * 24 * 3600,)),
            ("repay", ("alice", "USDC", 100 * USDC)),
            ("price", (55,)),
            ("liquidate", ("liquidator", "alice", 200 * USDC)),
        ]
        first = run(script)
        assert first == run(script)
        assert first[0][-1] == "ok"

    def test_clone_replays_identically(self, borrowed_market):
        cloned = borrowed_market.clone()
        later = borrowed_market.current_time + timedelta(days=7)
        for m in (borrowed_market, cloned):
            m.advance_time(later)
            m.repay("alice", "USDC", 50 * USDC)
        assert cloned.pools == borrowed_market.pools
        assert cloned.positions == borrowed_market.positions
        assert [repr(r) for r in cloned.operation_log] == [repr(r) for r in borrowed_market.operation_log]
