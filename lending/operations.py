"""
operations.py - Pure deposit / withdraw / borrow / repay state transitions

Each calculate_* function takes the current Pool and Position plus the
request, and returns an OperationResult holding the NEW pool, the NEW
position and the custody moves that must succeed for the result to be
committed. Nothing is mutated; the market decides whether to commit.

Every function accrues the pool to `now` first (idempotent, so a pool the
caller already accrued is unchanged), then converts the amount into shares
with the rounding direction that favors the pool.

Risk gating (LTV) is NOT done here: it needs prices and the other pool of
the position. The market runs risk.check_borrow / risk.check_withdraw on
the resulting position before committing.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Tuple

from .core import (
    U64_MAX, Move, treasury_wallet,
    InvalidAmount, BorrowAmountTooLarge,
    OverWithdrawRequest, OverBorrowRequest, OverRepayRequest,
    PositionAssetMismatch,
)
from .fixed_point import checked_add, checked_sub
from .interest import accrue
from .shares import (
    deposit_shares_for, withdraw_shares_for,
    borrow_shares_for, repay_shares_for,
    redeemable_amount, owed_amount,
)
from .state import Pool, Position


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Outcome of a pure state transition.

    Attributes:
        pool: Pool after accrual and the operation
        position: Position after the operation
        amount: Underlying amount moved
        shares: Shares minted (deposit, borrow) or burned (withdraw, repay)
        moves: Custody transfers required
    """
    pool: Pool
    position: Position
    amount: int
    shares: int
    moves: Tuple[Move, ...]


def validate_amount(amount: int) -> int:
    """
    Check an operation amount.

    Raises:
        InvalidAmount: If amount is not a positive integer
        BorrowAmountTooLarge: If amount exceeds the u64 bound
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer number of base units, got {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")
    if amount > U64_MAX:
        raise BorrowAmountTooLarge(f"amount {amount} exceeds {U64_MAX}")
    return amount


# ============================================================================
# POSITION SLOT HELPERS
# ============================================================================

def sync_deposit_slot(position: Position, pool: Pool, shares: int, now: datetime) -> Position:
    """Set the deposit slot to shares of pool.asset_id, clearing it at zero."""
    if shares == 0:
        return replace(
            position,
            deposit_asset=None,
            deposited_shares=0,
            deposited_amount=0,
            last_updated_deposited=now,
        )
    updated = replace(position, deposit_asset=pool.asset_id, deposited_shares=shares)
    return replace(
        updated,
        deposited_amount=redeemable_amount(pool, updated),
        last_updated_deposited=now,
    )


def sync_borrow_slot(position: Position, pool: Pool, shares: int, now: datetime) -> Position:
    """Set the borrow slot to shares of pool.asset_id, clearing it at zero."""
    if shares == 0:
        return replace(
            position,
            borrow_asset=None,
            borrowed_shares=0,
            borrowed_amount=0,
            last_updated_borrowed=now,
        )
    updated = replace(position, borrow_asset=pool.asset_id, borrowed_shares=shares)
    return replace(
        updated,
        borrowed_amount=owed_amount(pool, updated),
        last_updated_borrowed=now,
    )


def refresh_position(position: Position, collateral_pool: Optional[Pool] = None,
                     debt_pool: Optional[Pool] = None, now: Optional[datetime] = None) -> Position:
    """Recompute a position's stored amounts from its shares and accrued pools."""
    if collateral_pool is not None and position.has_collateral:
        position = sync_deposit_slot(position, collateral_pool, position.deposited_shares,
                                     now or collateral_pool.last_updated)
    if debt_pool is not None and position.has_debt:
        position = sync_borrow_slot(position, debt_pool, position.borrowed_shares,
                                    now or debt_pool.last_updated)
    return position


def _check_deposit_slot(position: Position, asset_id: str) -> None:
    if position.has_collateral and position.deposit_asset != asset_id:
        raise PositionAssetMismatch(
            f"{position.owner} already has collateral in {position.deposit_asset}, not {asset_id}"
        )


def _check_borrow_slot(position: Position, asset_id: str) -> None:
    if position.has_debt and position.borrow_asset != asset_id:
        raise PositionAssetMismatch(
            f"{position.owner} already borrows {position.borrow_asset}, not {asset_id}"
        )


# ============================================================================
# DEPOSIT / WITHDRAW
# ============================================================================

def calculate_deposit(pool: Pool, position: Position, amount: int, now: datetime) -> OperationResult:
    """
    Deposit amount of pool.asset_id as collateral.

    Shares minted = amount * total_deposit_shares / total_deposited (down),
    or amount for an empty pool.

    Raises:
        InvalidAmount: If amount is invalid or too small to mint a share
        PositionAssetMismatch: If the position holds collateral in another asset
    """
    validate_amount(amount)
    _check_deposit_slot(position, pool.asset_id)
    pool = accrue(pool, now)

    shares = deposit_shares_for(pool, amount)
    if shares == 0:
        raise InvalidAmount(f"deposit of {amount} {pool.asset_id} is too small to mint a share")

    new_pool = replace(
        pool,
        total_deposited=checked_add(pool.total_deposited, amount),
        total_deposit_shares=checked_add(pool.total_deposit_shares, shares),
    )
    new_position = sync_deposit_slot(
        position, new_pool, checked_add(position.deposited_shares, shares), now
    )
    move = Move(amount, pool.asset_id, position.owner, treasury_wallet(pool.asset_id),
                f"deposit:{position.owner}")
    return OperationResult(new_pool, new_position, amount, shares, (move,))


def calculate_withdraw(pool: Pool, position: Position, amount: int, now: datetime) -> OperationResult:
    """
    Withdraw amount of pool.asset_id from the position's collateral.

    Shares burned = amount * total_deposit_shares / total_deposited (up).
    Withdrawing the full redeemable amount burns every share of the position.

    Raises:
        InvalidAmount: If amount is invalid, or is a partial withdrawal whose
                       rounded-up burn would take every share of the position
        OverWithdrawRequest: If amount exceeds the redeemable amount or the
                             pool's idle liquidity
    """
    validate_amount(amount)
    pool = accrue(pool, now)

    redeemable = redeemable_amount(pool, position)
    if amount > redeemable:
        raise OverWithdrawRequest(
            f"{position.owner}: withdraw {amount} {pool.asset_id} exceeds redeemable {redeemable}"
        )
    if amount > pool.available_liquidity:
        raise OverWithdrawRequest(
            f"withdraw {amount} {pool.asset_id} exceeds pool liquidity {pool.available_liquidity}"
        )

    if amount == redeemable:
        shares = position.deposited_shares
    else:
        shares = withdraw_shares_for(pool, amount)
        if shares >= position.deposited_shares:
            raise InvalidAmount(
                f"{position.owner}: withdraw {amount} {pool.asset_id} would burn every share; "
                f"withdraw the full redeemable {redeemable} instead"
            )

    new_pool = replace(
        pool,
        total_deposited=checked_sub(pool.total_deposited, amount),
        total_deposit_shares=checked_sub(pool.total_deposit_shares, shares),
    )
    new_position = sync_deposit_slot(
        position, new_pool, checked_sub(position.deposited_shares, shares), now
    )
    move = Move(amount, pool.asset_id, treasury_wallet(pool.asset_id), position.owner,
                f"withdraw:{position.owner}")
    return OperationResult(new_pool, new_position, amount, shares, (move,))


# ============================================================================
# BORROW / REPAY
# ============================================================================

def calculate_borrow(pool: Pool, position: Position, amount: int, now: datetime) -> OperationResult:
    """
    Borrow amount of pool.asset_id.

    Shares minted = amount * total_borrow_shares / total_borrowed (up), or
    amount when the pool has no outstanding debt.

    Raises:
        InvalidAmount: If amount is invalid
        PositionAssetMismatch: If the position already borrows another asset
        OverBorrowRequest: If amount exceeds the pool's idle liquidity
    """
    validate_amount(amount)
    _check_borrow_slot(position, pool.asset_id)
    pool = accrue(pool, now)

    if amount > pool.available_liquidity:
        raise OverBorrowRequest(
            f"borrow {amount} {pool.asset_id} exceeds pool liquidity {pool.available_liquidity}"
        )

    shares = borrow_shares_for(pool, amount)

    new_pool = replace(
        pool,
        total_borrowed=checked_add(pool.total_borrowed, amount),
        total_borrow_shares=checked_add(pool.total_borrow_shares, shares),
    )
    new_position = sync_borrow_slot(
        position, new_pool, checked_add(position.borrowed_shares, shares), now
    )
    move = Move(amount, pool.asset_id, treasury_wallet(pool.asset_id), position.owner,
                f"borrow:{position.owner}")
    return OperationResult(new_pool, new_position, amount, shares, (move,))


def apply_repayment(pool: Pool, position: Position, amount: int, now: datetime,
                    payer: str, memo: str) -> OperationResult:
    """
    Apply a repayment to an already-accrued pool.

    Shared by repay and liquidation. Shares burned = amount *
    total_borrow_shares / total_borrowed (down); repaying the full owed
    amount burns every debt share of the position.

    Raises:
        OverRepayRequest: If amount exceeds the amount owed
        InvalidAmount: If a partial repayment is too small to burn a share
    """
    owed = owed_amount(pool, position)
    if amount > owed:
        raise OverRepayRequest(
            f"{position.owner}: repay {amount} {pool.asset_id} exceeds owed {owed}"
        )

    if amount == owed:
        shares = position.borrowed_shares
    else:
        shares = repay_shares_for(pool, amount)
        if shares == 0:
            raise InvalidAmount(f"repayment of {amount} {pool.asset_id} is too small to burn a share")

    new_pool = replace(
        pool,
        total_borrowed=checked_sub(pool.total_borrowed, amount),
        total_borrow_shares=checked_sub(pool.total_borrow_shares, shares),
    )
    new_position = sync_borrow_slot(
        position, new_pool, checked_sub(position.borrowed_shares, shares), now
    )
    move = Move(amount, pool.asset_id, payer, treasury_wallet(pool.asset_id), memo)
    return OperationResult(new_pool, new_position, amount, shares, (move,))


def calculate_repay(pool: Pool, position: Position, amount: int, now: datetime,
                    payer: Optional[str] = None) -> OperationResult:
    """
    Repay amount of the position's debt in pool.asset_id.

    payer defaults to the position owner.

    Raises:
        InvalidAmount: If amount is invalid
        OverRepayRequest: If amount exceeds the amount owed (rounded up)
    """
    validate_amount(amount)
    pool = accrue(pool, now)
    payer = payer or position.owner
    return apply_repayment(pool, position, amount, now, payer,
                           f"repay:{position.owner}")
