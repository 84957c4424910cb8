"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending market.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Token conservation and pool/treasury backing
2. atomicity.py - Failed operations change nothing
3. rounding_direction.py - Share conversions never favor the account
4. accrual_idempotence.py - Accrual at one timestamp applies once
5. share_price_monotonicity.py - Depositors only lose value through bad debt
6. liquidity.py - Idle liquidity never goes negative
7. determinism.py - Reproducible behavior
8. concurrency.py - Parallel operations keep every invariant

These tests use hypothesis for property-based testing.
"""
