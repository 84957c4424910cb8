"""
interest.py - Interest accrual for lending pools

Accrual is lazy: a pool's totals are brought up to "now" as the first step of
every operation that touches it. Nothing runs in the background; a pool left
untouched for a month catches up in one step on its next operation.

Simple linear model:
    interest = total_borrowed * rate * elapsed_seconds / SECONDS_PER_YEAR

Interest is charged per whole second and rounded down; the fraction of a
unit is carried on the pool so that accruing often or rarely adds the same
total.

The interest is added to total_borrowed (debt grows) and to total_deposited
(depositors of the same asset earn it), so the share price of both sides
rises by the same absolute amount.

Rate models are pluggable. A pool uses FixedRateModel(interest_rate) unless a
utilization-based model is supplied.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING, runtime_checkable

from .core import WAD, RATE_SCALE, U256_MAX
from .fixed_point import checked_add, checked_mul, to_wad

if TYPE_CHECKING:
    from .state import Pool


# ============================================================================
# RATE MODELS
# ============================================================================

@runtime_checkable
class InterestRateModel(Protocol):
    """Maps pool utilization in [0, 1] to an annual borrow rate."""

    def borrow_rate(self, utilization: Decimal) -> Decimal:
        ...


@dataclass(frozen=True, slots=True)
class FixedRateModel:
    """Constant annual rate regardless of utilization."""
    rate: Decimal

    def __post_init__(self):
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, 'rate', Decimal(str(self.rate)))
        if self.rate < Decimal("0"):
            raise ValueError(f"rate cannot be negative, got {self.rate}")

    def borrow_rate(self, utilization: Decimal) -> Decimal:
        return self.rate


@dataclass(frozen=True, slots=True)
class UtilizationRateModel:
    """
    Kinked (piecewise linear) rate curve.

    Below optimal_utilization the rate climbs from base_rate by slope1;
    above it the remaining utilization adds slope2 on top.
    """
    base_rate: Decimal
    slope1: Decimal
    slope2: Decimal
    optimal_utilization: Decimal

    def __post_init__(self):
        for name in ('base_rate', 'slope1', 'slope2', 'optimal_utilization'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if min(self.base_rate, self.slope1, self.slope2) < Decimal("0"):
            raise ValueError("rates and slopes cannot be negative")
        if not Decimal("0") < self.optimal_utilization < Decimal("1"):
            raise ValueError(
                f"optimal_utilization must be in (0, 1), got {self.optimal_utilization}"
            )

    def borrow_rate(self, utilization: Decimal) -> Decimal:
        if utilization <= Decimal("0"):
            return self.base_rate
        utilization = min(utilization, Decimal("1"))
        if utilization <= self.optimal_utilization:
            return self.base_rate + (utilization / self.optimal_utilization) * self.slope1
        excess = (utilization - self.optimal_utilization) / (Decimal("1") - self.optimal_utilization)
        return self.base_rate + self.slope1 + excess * self.slope2


# ============================================================================
# ACCRUAL
# ============================================================================

INTEREST_DENOMINATOR = WAD * RATE_SCALE


def elapsed_seconds(since: datetime, now: datetime) -> int:
    """Whole seconds between two timestamps (0 if now is not after since)."""
    if now <= since:
        return 0
    return int((now - since).total_seconds())


def interest_numerator(total_borrowed: int, annual_rate: Decimal, seconds: int) -> int:
    """total_borrowed * rate_wad * seconds, in units of 1 / (WAD * RATE_SCALE)."""
    if total_borrowed == 0 or seconds <= 0:
        return 0
    rate_wad = to_wad(annual_rate)
    if rate_wad == 0:
        return 0
    rate_time = checked_mul(rate_wad, seconds, limit=U256_MAX)
    return checked_mul(total_borrowed, rate_time, limit=U256_MAX)


def calculate_interest(total_borrowed: int, annual_rate: Decimal, seconds: int,
                       remainder: int = 0) -> int:
    """
    Interest owed on total_borrowed over seconds at annual_rate.

    PURE FUNCTION - rounds down. remainder is the fractional interest carried
    from earlier accruals (see Pool.interest_remainder) and is added before
    rounding.

    Example:
        # 1,000,000 units at 10% for a full year
        calculate_interest(1_000_000, Decimal("0.10"), SECONDS_PER_YEAR)  # 100000
    """
    numerator = interest_numerator(total_borrowed, annual_rate, seconds) + remainder
    return numerator // INTEREST_DENOMINATOR


def accrue(pool: Pool, now: datetime) -> Pool:
    """
    Bring a pool's totals up to now.

    Only whole elapsed seconds are charged: last_updated advances by exactly
    the seconds accrued, so a sub-second gap carries over to the next call.
    The fraction of a unit left after rounding down stays on the pool as
    interest_remainder and is paid out once it adds up to a whole unit, so
    the total charged does not depend on how often the pool is touched.

    No-op when less than one second has elapsed since pool.last_updated, so
    repeated calls with the same timestamp change the pool only once.

    Returns:
        A new Pool with interest added to both totals, or the same pool
        object if no whole second has elapsed.

    Raises:
        MathOverflow: If either total would exceed u64
    """
    seconds = elapsed_seconds(pool.last_updated, now)
    if seconds == 0:
        return pool

    numerator = (interest_numerator(pool.total_borrowed, pool.borrow_rate(), seconds)
                 + pool.interest_remainder)
    interest, remainder = divmod(numerator, INTEREST_DENOMINATOR)

    return replace(
        pool,
        total_borrowed=checked_add(pool.total_borrowed, interest),
        total_deposited=checked_add(pool.total_deposited, interest),
        interest_remainder=remainder,
        last_updated=pool.last_updated + timedelta(seconds=seconds),
    )


def pending_interest(pool: Pool, now: datetime) -> int:
    """Interest that accrue(pool, now) would add, without building a new pool."""
    seconds = elapsed_seconds(pool.last_updated, now)
    if seconds == 0:
        return 0
    return calculate_interest(pool.total_borrowed, pool.borrow_rate(), seconds,
                              pool.interest_remainder)
