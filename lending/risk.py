"""
risk.py - Collateral valuation, health factor and borrow/withdraw gates

Pure functions over explicit inputs: a Position, the (already accrued) pools
holding its collateral and its debt, and a price per asset. No oracle access
happens here; the market reads validated prices first and passes them in.

Key Formulas:
    collateral_value   = collateral_amount * price / 10**decimals
    borrowing_capacity = collateral_value * max_ltv
    liquidation_value  = collateral_value * liquidation_threshold
    health_factor      = liquidation_value / debt_value      (Infinity if no debt)
    ltv                = debt_value / collateral_value

Status:
    HEALTHY       debt_value <= borrowing_capacity
    AT_RISK       above max_ltv but health_factor >= 1 (cannot borrow more,
                  cannot be liquidated)
    LIQUIDATABLE  health_factor < 1

Risk parameters come from the collateral pool.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from .core import (
    HEALTH_FACTOR_ONE,
    POSITION_STATUS_HEALTHY, POSITION_STATUS_AT_RISK, POSITION_STATUS_LIQUIDATABLE,
    InvalidPriceFeed, OverBorrowableAmount, WithdrawAmountExceedsCollateralValue,
)
from .fixed_point import value_of
from .shares import owed_amount, redeemable_amount
from .state import Pool, Position


INFINITE_HEALTH = Decimal("Infinity")


@dataclass(frozen=True, slots=True)
class RiskSnapshot:
    """
    Immutable valuation of one position at a point in time.

    Amounts are in base units of their asset; values are in the common
    pricing unit.
    """
    owner: str
    collateral_asset: Optional[str]
    debt_asset: Optional[str]
    collateral_amount: int
    debt_amount: int
    collateral_value: Decimal
    debt_value: Decimal
    borrowing_capacity: Decimal
    liquidation_value: Decimal
    health_factor: Decimal
    ltv: Decimal
    status: str

    @property
    def is_liquidatable(self) -> bool:
        return self.status == POSITION_STATUS_LIQUIDATABLE

    @property
    def available_to_borrow(self) -> Decimal:
        """Additional debt value that may be drawn under max_ltv."""
        return max(Decimal("0"), self.borrowing_capacity - self.debt_value)


def price_for(prices: Mapping[str, Decimal], asset_id: str) -> Decimal:
    """
    Look up an asset's price.

    Raises:
        InvalidPriceFeed: If no price was supplied for asset_id
    """
    price = prices.get(asset_id)
    if price is None:
        raise InvalidPriceFeed(f"no price available for {asset_id}")
    return price


def calculate_health_factor(collateral_value: Decimal, liquidation_threshold: Decimal,
                            debt_value: Decimal) -> Decimal:
    """Risk-adjusted collateral over debt; Infinity when there is no debt."""
    if debt_value <= Decimal("0"):
        return INFINITE_HEALTH
    return collateral_value * liquidation_threshold / debt_value


def assess_position(
    position: Position,
    collateral_pool: Optional[Pool],
    debt_pool: Optional[Pool],
    prices: Mapping[str, Decimal],
) -> RiskSnapshot:
    """
    Value a position's collateral and debt and classify it.

    PURE FUNCTION - pools must already be accrued to the valuation time.

    Args:
        position: Position to assess
        collateral_pool: Pool of position.deposit_asset (None if no collateral)
        debt_pool: Pool of position.borrow_asset (None if no debt)
        prices: Asset id -> price of one whole unit

    Raises:
        InvalidPriceFeed: If a needed price is missing
    """
    collateral_amount = 0
    collateral_value = Decimal("0")
    max_ltv = Decimal("0")
    threshold = Decimal("0")
    if collateral_pool is not None and position.has_collateral:
        collateral_amount = redeemable_amount(collateral_pool, position)
        collateral_value = value_of(
            collateral_amount, price_for(prices, collateral_pool.asset_id), collateral_pool.decimals
        )
        max_ltv = collateral_pool.max_ltv
        threshold = collateral_pool.liquidation_threshold

    debt_amount = 0
    debt_value = Decimal("0")
    if debt_pool is not None and position.has_debt:
        debt_amount = owed_amount(debt_pool, position)
        debt_value = value_of(debt_amount, price_for(prices, debt_pool.asset_id), debt_pool.decimals)

    borrowing_capacity = collateral_value * max_ltv
    liquidation_value = collateral_value * threshold
    health_factor = calculate_health_factor(collateral_value, threshold, debt_value)

    if debt_value == Decimal("0"):
        ltv = Decimal("0")
    elif collateral_value == Decimal("0"):
        ltv = INFINITE_HEALTH
    else:
        ltv = debt_value / collateral_value

    if health_factor < HEALTH_FACTOR_ONE:
        status = POSITION_STATUS_LIQUIDATABLE
    elif debt_value > borrowing_capacity:
        status = POSITION_STATUS_AT_RISK
    else:
        status = POSITION_STATUS_HEALTHY

    return RiskSnapshot(
        owner=position.owner,
        collateral_asset=position.deposit_asset,
        debt_asset=position.borrow_asset,
        collateral_amount=collateral_amount,
        debt_amount=debt_amount,
        collateral_value=collateral_value,
        debt_value=debt_value,
        borrowing_capacity=borrowing_capacity,
        liquidation_value=liquidation_value,
        health_factor=health_factor,
        ltv=ltv,
        status=status,
    )


def check_borrow(
    position: Position,
    collateral_pool: Optional[Pool],
    debt_pool: Pool,
    prices: Mapping[str, Decimal],
) -> RiskSnapshot:
    """
    Gate a borrow on the position as it would stand afterwards.

    Raises:
        OverBorrowableAmount: If debt_value exceeds collateral_value * max_ltv
    """
    snapshot = assess_position(position, collateral_pool, debt_pool, prices)
    if snapshot.debt_value > snapshot.borrowing_capacity:
        raise OverBorrowableAmount(
            f"{position.owner}: debt value {snapshot.debt_value} would exceed "
            f"borrowing capacity {snapshot.borrowing_capacity}"
        )
    return snapshot


def check_withdraw(
    position: Position,
    collateral_pool: Pool,
    debt_pool: Optional[Pool],
    prices: Mapping[str, Decimal],
) -> RiskSnapshot:
    """
    Gate a withdrawal on the position as it would stand afterwards.

    A position without debt always passes.

    Raises:
        WithdrawAmountExceedsCollateralValue: If remaining collateral no
            longer covers the debt under max_ltv
    """
    snapshot = assess_position(position, collateral_pool, debt_pool, prices)
    if snapshot.debt_value > snapshot.borrowing_capacity:
        raise WithdrawAmountExceedsCollateralValue(
            f"{position.owner}: remaining borrowing capacity {snapshot.borrowing_capacity} "
            f"would not cover debt value {snapshot.debt_value}"
        )
    return snapshot
