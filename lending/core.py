"""
Core types, constants and exceptions for the lending ledger.

This module provides the foundational pieces every other module builds on:
1. Decimal context configuration (deterministic rate/price arithmetic)
2. Constants: integer bounds, fixed-point scales, oracle limits, status strings
3. Exceptions: LendingError and the domain-specific error kinds
4. Immutable records: Move (a custody transfer), OperationRecord (audit entry)

Amounts and shares are integers in an asset's base units. Rates, risk
parameters and prices are Decimals.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, DefaultContext, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Dict, Optional, Tuple


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Risk and valuation math runs in Decimal. The context is configured once at
# import time so that every valuation is deterministic.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_LENDING_DECIMAL_CONTEXT = getcontext()
_LENDING_DECIMAL_CONTEXT.prec = 50
_LENDING_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN

# Threads started later copy DefaultContext.
DefaultContext.prec = 50
DefaultContext.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Stored amounts, shares and totals are unsigned 64-bit quantities.
U64_MAX = 2 ** 64 - 1

# Intermediate products in multiply-divide may use up to 256 bits.
U256_MAX = 2 ** 256 - 1

# Fixed-point scale used when converting Decimal rates to integers.
WAD = 10 ** 18

# Accrual time unit: rates are annual, elapsed time is in seconds.
SECONDS_PER_YEAR = 365 * 24 * 60 * 60
RATE_SCALE = SECONDS_PER_YEAR

# Oracle acceptance limits.
DEFAULT_MAX_PRICE_AGE = timedelta(seconds=100)
DEFAULT_MAX_CONFIDENCE_RATIO = Decimal("0.02")

# Health factor at which a position stops being healthy.
HEALTH_FACTOR_ONE = Decimal("1")

# Reserved wallet for issuance into the custody layer (funding, airdrops).
SYSTEM_WALLET = "system"

# Prefix of the per-asset pool custody wallet.
TREASURY_PREFIX = "treasury"

# Position status constants (strings, matching the rest of the codebase).
POSITION_STATUS_HEALTHY = "HEALTHY"
POSITION_STATUS_AT_RISK = "AT_RISK"
POSITION_STATUS_LIQUIDATABLE = "LIQUIDATABLE"


def treasury_wallet(asset_id: str) -> str:
    """Return the custody wallet that holds a pool's liquidity."""
    return f"{TREASURY_PREFIX}:{asset_id}"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset id to the current common-unit price of that asset.
PriceMap = Dict[str, Decimal]

# Mapping from asset id to integer balance in base units.
BalanceMap = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-ledger errors."""
    pass


class MathOverflow(LendingError):
    """Raised on arithmetic overflow or underflow in checked math."""
    pass


class DivisionByZero(MathOverflow):
    """Raised when a checked division has a zero denominator."""
    pass


class InvalidAmount(LendingError):
    """Raised when an operation amount is zero, negative or not an integer."""
    pass


class BorrowAmountTooLarge(InvalidAmount):
    """Raised when an operation amount exceeds the u64 sanity bound."""
    pass


class OverWithdrawRequest(LendingError):
    """Raised when a withdrawal exceeds the redeemable amount or pool liquidity."""
    pass


class OverBorrowRequest(LendingError):
    """Raised when a borrow exceeds the liquidity available in the pool."""
    pass


class OverRepayRequest(LendingError):
    """Raised when a repayment exceeds the outstanding debt."""
    pass


class OverBorrowableAmount(LendingError):
    """Raised when a borrow would push debt above collateral_value * max_ltv."""
    pass


class WithdrawAmountExceedsCollateralValue(LendingError):
    """Raised when a withdrawal would leave debt uncovered under max_ltv."""
    pass


class HealthyAccount(LendingError):
    """Raised when liquidation is attempted on a position with health factor >= 1."""
    pass


class OverLiquidationRequest(LendingError):
    """Raised when a liquidation repays more than the close factor allows."""
    pass


class InvalidPriceFeed(LendingError):
    """Raised when a price feed is unknown, stale, too uncertain or failing."""
    pass


class TransferError(LendingError):
    """Raised when the custody layer rejects a transfer."""
    pass


class PoolNotFound(LendingError):
    """Raised when operating on an asset that has no pool."""
    pass


class PoolAlreadyExists(LendingError):
    """Raised when creating a second pool for the same asset."""
    pass


class PositionAssetMismatch(LendingError):
    """Raised when a position's single deposit or borrow slot holds another asset."""
    pass


class Unauthorized(LendingError):
    """Raised when a caller other than the authority registers configuration."""
    pass


# ============================================================================
# CUSTODY MOVES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single custody transfer of an asset between two wallets.

    Attributes:
        quantity: Amount in base units (positive integer).
        asset_id: The asset being moved.
        source: Wallet debited.
        dest: Wallet credited.
        memo: Identifier of the operation generating this move.
    """
    quantity: int
    asset_id: str
    source: str
    dest: str
    memo: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.asset_id or not self.asset_id.strip():
            raise ValueError("Move asset_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset_id}: {self.source}→{self.dest})"


# ============================================================================
# OPERATION AUDIT RECORDS
# ============================================================================

class OperationType(Enum):
    """Kind of state transition committed by the market."""
    CREATE_POOL = "create_pool"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    LIQUIDATE = "liquidate"
    ACCRUE = "accrue"


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    Executed, immutable record of a committed operation.

    Attributes:
        sequence_number: Monotonic within the market (for ordering)
        operation: What was done
        actor: Account that invoked the operation
        asset_id: Primary asset (the debt asset for liquidations)
        amount: Amount requested in base units (0 for accruals)
        shares: Shares minted or burned by the primary leg
        timestamp: Market time at which the operation was committed
        owner: Position affected (differs from actor for liquidations)
        collateral_asset_id: Seized asset (liquidations only)
        seized: Collateral seized (liquidations only)
        moves: Custody transfers performed
    """
    sequence_number: int
    operation: OperationType
    actor: str
    asset_id: str
    amount: int
    shares: int
    timestamp: datetime
    owner: Optional[str] = None
    collateral_asset_id: Optional[str] = None
    seized: int = 0
    moves: Tuple[Move, ...] = ()

    def __repr__(self) -> str:
        w = 80
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            f"┌{bar}┐",
            f"│{pad(' Operation #' + str(self.sequence_number) + ': ' + self.operation.value)}│",
            f"├{bar}┤",
            f"│{pad('   actor     : ' + self.actor)}│",
            f"│{pad('   asset     : ' + self.asset_id)}│",
            f"│{pad('   amount    : ' + str(self.amount))}│",
            f"│{pad('   shares    : ' + str(self.shares))}│",
            f"│{pad('   timestamp : ' + str(self.timestamp))}│",
        ]
        if self.owner and self.owner != self.actor:
            lines.append(f"│{pad('   owner     : ' + self.owner)}│")
        if self.collateral_asset_id:
            lines.append(f"│{pad('   seized    : ' + str(self.seized) + ' ' + self.collateral_asset_id)}│")
        if self.moves:
            lines.append(f"├{bar}┤")
            for i, move in enumerate(self.moves):
                lines.append(f"│{pad(f'   [{i}] {move.quantity} {move.asset_id}: {move.source} → {move.dest}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
