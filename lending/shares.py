"""
shares.py - Share <-> amount conversion for both sides of a pool

Each pool has two independent share types with their own exchange rate:
    deposit side: total_deposited / total_deposit_shares
    borrow side:  total_borrowed  / total_borrow_shares

Shares are fixed at issuance; their underlying value moves with accrual.

Rounding always favors the pool, never the acting account:

    operation   conversion            rounding
    ---------   -------------------   --------
    deposit     amount -> shares      down   (mint fewer deposit shares)
    withdraw    amount -> shares      up     (burn more deposit shares)
    redeemable  shares -> amount      down   (claim less)
    borrow      amount -> shares      up     (mint more debt shares)
    repay       amount -> shares      down   (burn fewer debt shares)
    owed        shares -> amount      up     (owe more)
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_UP

from .fixed_point import checked_mul_div, ratio
from .state import Pool, Position


def amount_to_shares(amount: int, total_amount: int, total_shares: int, rounding: str = ROUND_DOWN) -> int:
    """
    Convert an underlying amount to shares at the current exchange rate.

    The first depositor/borrower (total_shares == 0) is issued shares 1:1.

    Raises:
        DivisionByZero: If shares exist against a zero total
    """
    if total_shares == 0:
        return amount
    return checked_mul_div(amount, total_shares, total_amount, rounding)


def shares_to_amount(shares: int, total_amount: int, total_shares: int, rounding: str = ROUND_DOWN) -> int:
    """Convert shares to the underlying amount at the current exchange rate."""
    if shares == 0 or total_shares == 0:
        return 0
    return checked_mul_div(shares, total_amount, total_shares, rounding)


# ============================================================================
# DIRECTIONAL HELPERS
# ============================================================================

def deposit_shares_for(pool: Pool, amount: int) -> int:
    """Deposit shares minted for a deposit of amount (rounded down)."""
    return amount_to_shares(amount, pool.total_deposited, pool.total_deposit_shares, ROUND_DOWN)


def withdraw_shares_for(pool: Pool, amount: int) -> int:
    """Deposit shares burned by a withdrawal of amount (rounded up)."""
    return amount_to_shares(amount, pool.total_deposited, pool.total_deposit_shares, ROUND_UP)


def borrow_shares_for(pool: Pool, amount: int) -> int:
    """
    Borrow shares minted for a borrow of amount (rounded up).

    Leftover shares worth nothing (total_borrowed == 0) do not block new
    debt: issuance restarts 1:1 and those shares pick up a sliver of it.
    """
    if pool.total_borrowed == 0:
        return amount
    return amount_to_shares(amount, pool.total_borrowed, pool.total_borrow_shares, ROUND_UP)


def repay_shares_for(pool: Pool, amount: int) -> int:
    """Borrow shares burned by a repayment of amount (rounded down)."""
    return amount_to_shares(amount, pool.total_borrowed, pool.total_borrow_shares, ROUND_DOWN)


def redeemable_amount(pool: Pool, position: Position) -> int:
    """Underlying amount a position's deposit shares can withdraw (rounded down)."""
    if position.deposit_asset != pool.asset_id:
        return 0
    return shares_to_amount(
        position.deposited_shares, pool.total_deposited, pool.total_deposit_shares, ROUND_DOWN
    )


def owed_amount(pool: Pool, position: Position) -> int:
    """Underlying amount a position must repay to clear its debt (rounded up)."""
    if position.borrow_asset != pool.asset_id:
        return 0
    return shares_to_amount(
        position.borrowed_shares, pool.total_borrowed, pool.total_borrow_shares, ROUND_UP
    )


def deposit_share_price(pool: Pool) -> Decimal:
    """Underlying units per deposit share, 1 for an empty pool."""
    if pool.total_deposit_shares == 0:
        return Decimal("1")
    return ratio(pool.total_deposited, pool.total_deposit_shares)


def borrow_share_price(pool: Pool) -> Decimal:
    """Underlying units owed per borrow share, 1 for a pool without debt."""
    if pool.total_borrow_shares == 0:
        return Decimal("1")
    return ratio(pool.total_borrowed, pool.total_borrow_shares)
