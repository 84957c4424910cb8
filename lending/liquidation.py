"""
liquidation.py - Third-party repayment of unhealthy debt for discounted collateral

Pure calculation over explicit inputs, mirroring operations.py: takes the
debt pool, the collateral pool, the position, the liquidator and validated
prices; returns the new pools, the new position and the custody moves.

Rules:
    - Only positions with health_factor < 1 (liquidation_threshold basis)
      may be liquidated; otherwise HealthyAccount.
    - One liquidation repays at most floor(owed * liquidation_close_factor).
      When that rounds to zero the whole (dust) debt may be repaid.
    - The liquidator receives collateral worth repaid_value * (1 + bonus),
      converted at the collateral price and rounded down.
    - Seizure is capped at the position's redeemable collateral. When the
      collateral is exhausted and debt remains, the remainder is written off
      against the debt pool: total_borrowed and total_deposited both drop,
      so depositors absorb the loss through the share price, and the amount
      is added to pool.bad_debt.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Mapping, Tuple

from .core import (
    Move, treasury_wallet,
    HEALTH_FACTOR_ONE,
    HealthyAccount, OverLiquidationRequest, OverWithdrawRequest,
)
from .fixed_point import amount_for_value, checked_add, checked_sub, to_units, value_of
from .interest import accrue
from .operations import apply_repayment, sync_borrow_slot, sync_deposit_slot, validate_amount
from .risk import RiskSnapshot, assess_position, price_for
from .shares import owed_amount, redeemable_amount, withdraw_shares_for
from .state import Pool, Position


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """
    Outcome of a liquidation.

    When collateral and debt are the same asset, debt_pool and
    collateral_pool are the same final Pool.

    Attributes:
        debt_pool: Debt pool after repayment and any write-off
        collateral_pool: Collateral pool after seizure
        position: Liquidated position
        repaid: Debt asset repaid by the liquidator
        repaid_shares: Borrow shares burned by the repayment
        seized: Collateral transferred to the liquidator
        seized_shares: Deposit shares burned by the seizure
        seizure_shortfall: Collateral owed to the liquidator but not available
        bad_debt: Debt written off after collateral ran out
        health_before: Health factor before liquidation
        moves: Custody transfers required
    """
    debt_pool: Pool
    collateral_pool: Pool
    position: Position
    repaid: int
    repaid_shares: int
    seized: int
    seized_shares: int
    seizure_shortfall: int
    bad_debt: int
    health_before: Decimal
    moves: Tuple[Move, ...]


def max_liquidation_repay(owed: int, close_factor: Decimal) -> int:
    """Largest repayment one liquidation may make against owed."""
    limit = to_units(Decimal(owed) * close_factor, ROUND_DOWN)
    return limit if limit > 0 else owed


def calculate_seizure(repay_amount: int, debt_pool: Pool, collateral_pool: Pool,
                      prices: Mapping[str, Decimal]) -> int:
    """
    Collateral units owed to a liquidator for repaying repay_amount.

    seized = repay_value * (1 + liquidation_bonus) / collateral_price, rounded down.
    """
    repay_value = value_of(repay_amount, price_for(prices, debt_pool.asset_id), debt_pool.decimals)
    seize_value = repay_value * (Decimal("1") + collateral_pool.liquidation_bonus)
    return amount_for_value(
        seize_value, price_for(prices, collateral_pool.asset_id), collateral_pool.decimals, ROUND_DOWN
    )


def calculate_liquidation(
    debt_pool: Pool,
    collateral_pool: Pool,
    position: Position,
    repay_amount: int,
    liquidator: str,
    prices: Mapping[str, Decimal],
    now: datetime,
) -> LiquidationResult:
    """
    Liquidate part of an unhealthy position.

    PURE FUNCTION - accrues both pools to now, assesses the position, then
    applies the repayment, the seizure and any bad-debt write-off.

    Args:
        debt_pool: Pool of position.borrow_asset
        collateral_pool: Pool of position.deposit_asset
        position: Position being liquidated
        repay_amount: Debt asset units the liquidator pays
        liquidator: Wallet paying the debt and receiving collateral
        prices: Validated asset id -> price
        now: Valuation and accrual time

    Raises:
        InvalidAmount: If repay_amount is invalid
        HealthyAccount: If the position has no debt or health_factor >= 1
        OverLiquidationRequest: If repay_amount exceeds the close factor limit
        OverWithdrawRequest: If the collateral pool lacks the liquidity to pay out
    """
    validate_amount(repay_amount)

    same_asset = debt_pool.asset_id == collateral_pool.asset_id
    debt_pool = accrue(debt_pool, now)
    collateral_pool = debt_pool if same_asset else accrue(collateral_pool, now)

    snapshot: RiskSnapshot = assess_position(position, collateral_pool, debt_pool, prices)
    if not position.has_debt or snapshot.health_factor >= HEALTH_FACTOR_ONE:
        raise HealthyAccount(
            f"{position.owner} is healthy (health factor {snapshot.health_factor})"
        )

    owed = owed_amount(debt_pool, position)
    limit = max_liquidation_repay(owed, debt_pool.liquidation_close_factor)
    if repay_amount > limit:
        raise OverLiquidationRequest(
            f"repay {repay_amount} {debt_pool.asset_id} exceeds close factor limit {limit}"
        )

    pools: Dict[str, Pool] = {debt_pool.asset_id: debt_pool, collateral_pool.asset_id: collateral_pool}

    # Repay leg
    repaid = apply_repayment(
        debt_pool, position, repay_amount, now, liquidator,
        f"liquidate:{position.owner}:repay",
    )
    pools[debt_pool.asset_id] = repaid.pool
    position = repaid.position
    moves = list(repaid.moves)

    # Seizure leg
    coll = pools[collateral_pool.asset_id]
    entitled = calculate_seizure(repay_amount, debt_pool, coll, prices)
    available = redeemable_amount(coll, position)
    if entitled >= available:
        seized = available
        seized_shares = position.deposited_shares
    else:
        seized = entitled
        seized_shares = withdraw_shares_for(coll, seized) if seized > 0 else 0
    shortfall = entitled - seized

    if seized > coll.available_liquidity:
        raise OverWithdrawRequest(
            f"seizure of {seized} {coll.asset_id} exceeds pool liquidity {coll.available_liquidity}"
        )

    if seized_shares > 0:
        coll = replace(
            coll,
            total_deposited=checked_sub(coll.total_deposited, seized),
            total_deposit_shares=checked_sub(coll.total_deposit_shares, seized_shares),
        )
        position = sync_deposit_slot(
            position, coll, checked_sub(position.deposited_shares, seized_shares), now
        )
        pools[coll.asset_id] = coll
    if seized > 0:
        moves.append(Move(seized, coll.asset_id, treasury_wallet(coll.asset_id), liquidator,
                          f"liquidate:{position.owner}:seize"))

    # Bad debt write-off once collateral is exhausted
    written_off = 0
    if not position.has_collateral and position.has_debt:
        debt = pools[debt_pool.asset_id]
        written_off = min(owed_amount(debt, position), debt.total_borrowed)
        debt = replace(
            debt,
            total_borrowed=checked_sub(debt.total_borrowed, written_off),
            total_deposited=checked_sub(debt.total_deposited, written_off),
            total_borrow_shares=checked_sub(debt.total_borrow_shares, position.borrowed_shares),
            bad_debt=checked_add(debt.bad_debt, written_off),
        )
        position = sync_borrow_slot(position, debt, 0, now)
        pools[debt.asset_id] = debt

    return LiquidationResult(
        debt_pool=pools[debt_pool.asset_id],
        collateral_pool=pools[collateral_pool.asset_id],
        position=position,
        repaid=repay_amount,
        repaid_shares=repaid.shares,
        seized=seized,
        seized_shares=seized_shares,
        seizure_shortfall=shortfall,
        bad_debt=written_off,
        health_before=snapshot.health_factor,
        moves=tuple(moves),
    )
