"""
lending - Collateralized Lending Ledger

Share-based lending pools with lazy interest accrual, LTV and health-factor
enforcement, and liquidation, over a price oracle and a custody provider.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from lending import (
        LendingMarket, Custody, FeedRegistry, StaticPriceOracle,
    )

    t0 = datetime(2025, 1, 1)
    registry = FeedRegistry("admin")
    registry.register("admin", "SOL", "feed:SOL")
    registry.register("admin", "USDC", "feed:USDC")

    oracle = StaticPriceOracle()
    oracle.set_price("feed:SOL", Decimal("150"), t0)
    oracle.set_price("feed:USDC", Decimal("1"), t0)

    custody = Custody()
    custody.register_wallet("alice")
    custody.issue("alice", "SOL", 10 * 10**9)

    market = LendingMarket("main", oracle, registry, custody, initial_time=t0)
    market.create_pool("admin", "SOL", 9, Decimal("0.75"), Decimal("0.80"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.03"))
    market.create_pool("admin", "USDC", 6, Decimal("0.80"), Decimal("0.85"),
                       Decimal("0.05"), Decimal("0.5"), Decimal("0.08"))

    market.deposit("alice", "SOL", 10 * 10**9)
    market.borrow("alice", "USDC", 500 * 10**6)   # needs USDC liquidity
    print(market.assess("alice"))
"""

# Core types
from .core import (
    Move,
    OperationType,
    OperationRecord,
    LendingError,
    MathOverflow,
    DivisionByZero,
    InvalidAmount,
    BorrowAmountTooLarge,
    OverWithdrawRequest,
    OverBorrowRequest,
    OverRepayRequest,
    OverBorrowableAmount,
    WithdrawAmountExceedsCollateralValue,
    HealthyAccount,
    OverLiquidationRequest,
    InvalidPriceFeed,
    TransferError,
    PoolNotFound,
    PoolAlreadyExists,
    PositionAssetMismatch,
    Unauthorized,
    U64_MAX,
    WAD,
    SECONDS_PER_YEAR,
    DEFAULT_MAX_PRICE_AGE,
    DEFAULT_MAX_CONFIDENCE_RATIO,
    HEALTH_FACTOR_ONE,
    SYSTEM_WALLET,
    POSITION_STATUS_HEALTHY,
    POSITION_STATUS_AT_RISK,
    POSITION_STATUS_LIQUIDATABLE,
    treasury_wallet,
)

# Checked arithmetic
from .fixed_point import (
    checked_add,
    checked_sub,
    checked_mul,
    checked_mul_div,
    ratio,
    value_of,
    amount_for_value,
)

# Interest
from .interest import (
    InterestRateModel,
    FixedRateModel,
    UtilizationRateModel,
    calculate_interest,
    accrue,
    pending_interest,
)

# Shares
from .shares import (
    amount_to_shares,
    shares_to_amount,
    redeemable_amount,
    owed_amount,
    deposit_share_price,
    borrow_share_price,
)

# State
from .state import (
    RiskParameters,
    Pool,
    Position,
    create_pool,
    create_position,
)

# Oracle
from .oracle import (
    OracleError,
    PriceQuote,
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    PriceFeedBinding,
    FeedRegistry,
    validate_quote,
    read_price,
)

# Risk
from .risk import (
    RiskSnapshot,
    assess_position,
    calculate_health_factor,
    check_borrow,
    check_withdraw,
)

# Operations and liquidation
from .operations import (
    OperationResult,
    calculate_deposit,
    calculate_withdraw,
    calculate_borrow,
    calculate_repay,
    refresh_position,
)
from .liquidation import (
    LiquidationResult,
    calculate_liquidation,
    calculate_seizure,
    max_liquidation_repay,
)

# Custody and market
from .custody import Custody, CustodyProvider
from .market import LendingMarket


__all__ = [
    # Core
    'Move', 'OperationType', 'OperationRecord',
    'LendingError', 'MathOverflow', 'DivisionByZero',
    'InvalidAmount', 'BorrowAmountTooLarge',
    'OverWithdrawRequest', 'OverBorrowRequest', 'OverRepayRequest',
    'OverBorrowableAmount', 'WithdrawAmountExceedsCollateralValue',
    'HealthyAccount', 'OverLiquidationRequest', 'InvalidPriceFeed',
    'TransferError', 'PoolNotFound', 'PoolAlreadyExists',
    'PositionAssetMismatch', 'Unauthorized',
    'U64_MAX', 'WAD', 'SECONDS_PER_YEAR',
    'DEFAULT_MAX_PRICE_AGE', 'DEFAULT_MAX_CONFIDENCE_RATIO', 'HEALTH_FACTOR_ONE',
    'SYSTEM_WALLET',
    'POSITION_STATUS_HEALTHY', 'POSITION_STATUS_AT_RISK', 'POSITION_STATUS_LIQUIDATABLE',
    'treasury_wallet',
    # Checked arithmetic
    'checked_add', 'checked_sub', 'checked_mul', 'checked_mul_div',
    'ratio', 'value_of', 'amount_for_value',
    # Interest
    'InterestRateModel', 'FixedRateModel', 'UtilizationRateModel',
    'calculate_interest', 'accrue', 'pending_interest',
    # Shares
    'amount_to_shares', 'shares_to_amount', 'redeemable_amount', 'owed_amount',
    'deposit_share_price', 'borrow_share_price',
    # State
    'RiskParameters', 'Pool', 'Position', 'create_pool', 'create_position',
    # Oracle
    'OracleError', 'PriceQuote', 'PriceOracle', 'StaticPriceOracle',
    'TimeSeriesPriceOracle', 'PriceFeedBinding', 'FeedRegistry',
    'validate_quote', 'read_price',
    # Risk
    'RiskSnapshot', 'assess_position', 'calculate_health_factor',
    'check_borrow', 'check_withdraw',
    # Operations and liquidation
    'OperationResult', 'calculate_deposit', 'calculate_withdraw',
    'calculate_borrow', 'calculate_repay', 'refresh_position',
    'LiquidationResult', 'calculate_liquidation', 'calculate_seizure',
    'max_liquidation_repay',
    # Custody and market
    'Custody', 'CustodyProvider', 'LendingMarket',
]

__version__ = '1.0.0'
