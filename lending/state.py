"""
state.py - Pool and Position records

Both records are frozen dataclasses. Every state transition produces a NEW
instance (value semantics) via dataclasses.replace(), which is what makes
operations all-or-nothing: nothing is visible until the market commits the
new instances.

Pool      - one per supported asset: totals, shares, risk parameters, accrual time
Position  - one per account: a single deposit slot and a single borrow slot
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .core import U64_MAX, MathOverflow
from .fixed_point import ratio
from .interest import InterestRateModel, FixedRateModel


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _check_u64(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise MathOverflow(f"{name} out of u64 range: {value}")


# ============================================================================
# RISK PARAMETERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class RiskParameters:
    """
    Immutable risk configuration of a pool.

    max_ltv: Fraction of collateral value that may be borrowed (e.g. 0.75)
    liquidation_threshold: Fraction of collateral value counted toward the
        health factor; must be >= max_ltv (e.g. 0.80)
    liquidation_bonus: Extra fraction of seized collateral paid to liquidators
    liquidation_close_factor: Max fraction of a debt one liquidation may repay
    """
    max_ltv: Decimal
    liquidation_threshold: Decimal
    liquidation_bonus: Decimal
    liquidation_close_factor: Decimal

    def __post_init__(self):
        for name in ('max_ltv', 'liquidation_threshold', 'liquidation_bonus', 'liquidation_close_factor'):
            object.__setattr__(self, name, _as_decimal(getattr(self, name)))

        if self.max_ltv <= Decimal("0"):
            raise ValueError(f"max_ltv must be positive, got {self.max_ltv}")
        if self.liquidation_threshold > Decimal("1"):
            raise ValueError(
                f"liquidation_threshold cannot exceed 1, got {self.liquidation_threshold}"
            )
        if self.max_ltv > self.liquidation_threshold:
            raise ValueError(
                f"max_ltv ({self.max_ltv}) cannot exceed "
                f"liquidation_threshold ({self.liquidation_threshold})"
            )
        if self.liquidation_bonus < Decimal("0") or self.liquidation_bonus >= Decimal("1"):
            raise ValueError(
                f"liquidation_bonus must be in [0, 1), got {self.liquidation_bonus}"
            )
        if self.liquidation_close_factor <= Decimal("0") or self.liquidation_close_factor > Decimal("1"):
            raise ValueError(
                f"liquidation_close_factor must be in (0, 1], got {self.liquidation_close_factor}"
            )


# ============================================================================
# POOL (BANK)
# ============================================================================

@dataclass(frozen=True, slots=True)
class Pool:
    """
    Aggregate state of one asset's lending pool.

    Amounts are in the asset's base units. Shares are proportional ownership
    units of the deposit side and the borrow side, each with its own
    exchange rate (total / shares).

    available_liquidity = total_deposited - total_borrowed never goes negative.
    """
    authority: str
    asset_id: str
    decimals: int
    risk: RiskParameters
    interest_rate: Decimal
    last_updated: datetime
    total_deposited: int = 0
    total_borrowed: int = 0
    total_deposit_shares: int = 0
    total_borrow_shares: int = 0
    bad_debt: int = 0
    rate_model: Optional[InterestRateModel] = None
    # Sub-unit interest carried between accruals, in 1 / (WAD * RATE_SCALE) units
    interest_remainder: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'interest_rate', _as_decimal(self.interest_rate))
        for name in ('total_deposited', 'total_borrowed', 'total_deposit_shares',
                     'total_borrow_shares', 'bad_debt'):
            _check_u64(name, getattr(self, name))
        if not isinstance(self.interest_remainder, int) or self.interest_remainder < 0:
            raise ValueError(f"interest_remainder must be a non-negative int, got {self.interest_remainder}")
        if self.rate_model is None:
            object.__setattr__(self, 'rate_model', FixedRateModel(self.interest_rate))

    # Risk parameter shortcuts
    @property
    def max_ltv(self) -> Decimal:
        return self.risk.max_ltv

    @property
    def liquidation_threshold(self) -> Decimal:
        return self.risk.liquidation_threshold

    @property
    def liquidation_bonus(self) -> Decimal:
        return self.risk.liquidation_bonus

    @property
    def liquidation_close_factor(self) -> Decimal:
        return self.risk.liquidation_close_factor

    @property
    def available_liquidity(self) -> int:
        """Idle liquidity that can be withdrawn or borrowed."""
        return max(0, self.total_deposited - self.total_borrowed)

    @property
    def utilization(self) -> Decimal:
        """Fraction of deposits currently lent out (0 for an empty pool)."""
        if self.total_deposited == 0:
            return Decimal("0")
        return min(Decimal("1"), ratio(self.total_borrowed, self.total_deposited))

    def borrow_rate(self) -> Decimal:
        """Annual borrow rate at the pool's current utilization."""
        return self.rate_model.borrow_rate(self.utilization)


def create_pool(
    authority: str,
    asset_id: str,
    decimals: int,
    max_ltv: Decimal,
    liquidation_threshold: Decimal,
    liquidation_bonus: Decimal,
    liquidation_close_factor: Decimal,
    interest_rate: Decimal,
    created_at: datetime,
    rate_model: Optional[InterestRateModel] = None,
) -> Pool:
    """
    Create an empty pool for an asset.

    Args:
        authority: Identity permitted to create/configure the pool
        asset_id: Asset held by the pool (e.g. "SOL")
        decimals: Base-unit decimals of the asset (9 for SOL, 6 for USDC)
        max_ltv: Max fraction of collateral value borrowable
        liquidation_threshold: Health-factor weight; must be >= max_ltv
        liquidation_bonus: Liquidator incentive fraction
        liquidation_close_factor: Max fraction of debt repaid per liquidation
        interest_rate: Annual rate used when no rate_model is given
        created_at: Initial accrual timestamp
        rate_model: Optional utilization-based rate model

    Returns:
        Pool with zero totals and last_updated = created_at

    Raises:
        ValueError: If identifiers are empty, decimals out of range,
                    interest_rate negative, or risk parameters inconsistent.

    Example:
        pool = create_pool(
            authority="admin",
            asset_id="USDC",
            decimals=6,
            max_ltv=Decimal("0.80"),
            liquidation_threshold=Decimal("0.85"),
            liquidation_bonus=Decimal("0.05"),
            liquidation_close_factor=Decimal("0.5"),
            interest_rate=Decimal("0.05"),
            created_at=datetime(2025, 1, 1),
        )
    """
    if not authority or not authority.strip():
        raise ValueError("authority cannot be empty")
    if not asset_id or not asset_id.strip():
        raise ValueError("asset_id cannot be empty")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 18:
        raise ValueError(f"decimals must be an int in [0, 18], got {decimals}")

    interest_rate = _as_decimal(interest_rate)
    if interest_rate < Decimal("0"):
        raise ValueError(f"interest_rate cannot be negative, got {interest_rate}")

    risk = RiskParameters(
        max_ltv=max_ltv,
        liquidation_threshold=liquidation_threshold,
        liquidation_bonus=liquidation_bonus,
        liquidation_close_factor=liquidation_close_factor,
    )

    return Pool(
        authority=authority,
        asset_id=asset_id,
        decimals=decimals,
        risk=risk,
        interest_rate=interest_rate,
        last_updated=created_at,
        rate_model=rate_model,
    )


# ============================================================================
# POSITION (USER)
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    One account's deposit slot and borrow slot.

    deposited_amount / borrowed_amount are the underlying values as of the
    last synchronization (last_updated_deposited / last_updated_borrowed).
    Shares are authoritative: amounts are recomputed from shares and the
    freshly accrued pool before any risk check.

    A slot's asset binding is cleared when its shares return to zero.
    Positions are never removed, only drained.
    """
    owner: str
    deposit_asset: Optional[str] = None
    deposited_amount: int = 0
    deposited_shares: int = 0
    borrow_asset: Optional[str] = None
    borrowed_amount: int = 0
    borrowed_shares: int = 0
    last_updated_deposited: Optional[datetime] = None
    last_updated_borrowed: Optional[datetime] = None

    def __post_init__(self):
        for name in ('deposited_amount', 'deposited_shares', 'borrowed_amount', 'borrowed_shares'):
            _check_u64(name, getattr(self, name))

    @property
    def has_collateral(self) -> bool:
        return self.deposited_shares > 0

    @property
    def has_debt(self) -> bool:
        return self.borrowed_shares > 0

    @property
    def is_empty(self) -> bool:
        """True once both slots are drained to zero."""
        return self.deposited_shares == 0 and self.borrowed_shares == 0


def create_position(owner: str) -> Position:
    """Create an empty position for an account."""
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    return Position(owner=owner)
