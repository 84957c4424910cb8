"""
market.py - Stateful lending market

LendingMarket is the only component that commits state. Every operation
follows the same sequence under the locks of every pool and position it
touches:

    1. accrue every pool the operation touches to the market's current time
    2. compute the new Pool / Position values with the pure functions in
       operations.py or liquidation.py
    3. read validated prices and run the risk gate on the resulting position
    4. hand the custody moves to the custody provider (all-or-nothing)
    5. commit the new pools and position and append an OperationRecord

Any failure in steps 1-4 raises and leaves every pool, position and
balance exactly as it was.

Key responsibilities:
    - Pool creation and treasury registration
    - deposit / withdraw / borrow / repay / liquidate
    - explicit accrual, risk assessment, time management
    - audit trail (operation_log), always kept
"""

from __future__ import annotations
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional, Sequence
import threading

from .core import (
    DEFAULT_MAX_PRICE_AGE, DEFAULT_MAX_CONFIDENCE_RATIO,
    Move, OperationRecord, OperationType, PriceMap,
    LendingError, HealthyAccount, PoolAlreadyExists, PoolNotFound,
)
from .custody import Custody, CustodyProvider
from .interest import InterestRateModel, accrue, pending_interest
from .liquidation import LiquidationResult, calculate_liquidation
from .operations import (
    OperationResult,
    calculate_deposit, calculate_withdraw, calculate_borrow, calculate_repay,
    refresh_position,
)
from .oracle import FeedRegistry, PriceOracle, read_price
from .risk import RiskSnapshot, assess_position, check_borrow, check_withdraw
from .state import Pool, Position, create_pool, create_position


class LendingMarket:
    """
    Collateralized lending market over a set of single-asset pools.

    Positions are keyed by owner; the owner id is also the owner's custody
    wallet. Asset ids double as the symbols resolved through the feed
    registry.

    Thread Safety:
        Operations on different pools and positions run in parallel. Each
        operation holds a re-entrant lock per position and per pool it
        touches (positions first, then pools, each in sorted order) from
        accrual through commit.

    Example:
        market = LendingMarket("main", oracle, registry, custody,
                               initial_time=datetime(2025, 1, 1))
        market.create_pool("admin", "SOL", 9, ...)
        market.create_pool("admin", "USDC", 6, ...)
        market.deposit("alice", "SOL", 10 * 10**9)
        market.borrow("alice", "USDC", 500 * 10**6)
    """

    def __init__(
        self,
        name: str,
        oracle: PriceOracle,
        registry: FeedRegistry,
        custody: Optional[CustodyProvider] = None,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        max_price_age: timedelta = DEFAULT_MAX_PRICE_AGE,
        max_confidence_ratio: Decimal = DEFAULT_MAX_CONFIDENCE_RATIO,
    ):
        """
        Create a market.

        Args:
            name: Market identifier
            oracle: Price source consulted for every risk check
            registry: Asset symbol -> feed id lookup
            custody: Custody provider (default: a fresh in-memory Custody)
            initial_time: Starting time (default: 1970-01-01)
            verbose: Print registrations, committed operations and rejections
            max_price_age: Oldest acceptable oracle quote
            max_confidence_ratio: Widest acceptable confidence / price
        """
        self.name = name
        self.oracle = oracle
        self.registry = registry
        self.custody = custody if custody is not None else Custody(f"{name}-custody")
        self.verbose = verbose
        self.max_price_age = max_price_age
        self.max_confidence_ratio = max_confidence_ratio

        self.pools: Dict[str, Pool] = {}
        self.positions: Dict[str, Position] = {}
        self.operation_log: List[OperationRecord] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0

        self._state_lock = threading.RLock()
        self._pool_locks: Dict[str, threading.RLock] = {}
        self._position_locks: Dict[str, threading.RLock] = {}

    # ========================================================================
    # READ-ONLY ACCESS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the market."""
        return self._current_time

    def get_pool(self, asset_id: str) -> Pool:
        """
        Committed pool state (not accrued to current_time).

        Raises:
            PoolNotFound: If no pool exists for asset_id
        """
        pool = self.pools.get(asset_id)
        if pool is None:
            raise PoolNotFound(f"no pool for {asset_id}")
        return pool

    def get_position(self, owner: str) -> Position:
        """Committed position of owner (an empty position if none exists)."""
        position = self.positions.get(owner)
        return position if position is not None else create_position(owner)

    def list_pools(self) -> List[str]:
        return sorted(self.pools)

    def list_positions(self) -> List[str]:
        return sorted(self.positions)

    def position_balances(self, owner: str) -> Position:
        """Owner's position with amounts recomputed at current_time."""
        with self._locked(owners=[owner]):
            position = self.get_position(owner)
            with self._locked(asset_ids=self._position_assets(position)):
                now = self._current_time
                pools = self._accrued(self._position_assets(position), now)
                return refresh_position(
                    position,
                    pools.get(position.deposit_asset),
                    pools.get(position.borrow_asset),
                    now,
                )

    def pending_interest(self, asset_id: str) -> int:
        """Interest the pool would accrue if touched now."""
        return pending_interest(self.get_pool(asset_id), self._current_time)

    def assess(self, owner: str) -> RiskSnapshot:
        """
        Value owner's position at current_time with validated oracle prices.

        Read-only: accrual is applied to working copies, not committed.

        Raises:
            InvalidPriceFeed: If a needed price is unavailable or invalid
        """
        with self._locked(owners=[owner]):
            position = self.get_position(owner)
            assets = self._position_assets(position)
            with self._locked(asset_ids=assets):
                now = self._current_time
                pools = self._accrued(assets, now)
                prices = self._read_prices(assets, now)
                return assess_position(
                    position,
                    pools.get(position.deposit_asset),
                    pools.get(position.borrow_asset),
                    prices,
                )

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the market clock. Pools catch up lazily on their next touch.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._state_lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # POOL SETUP
    # ========================================================================

    def create_pool(
        self,
        authority: str,
        asset_id: str,
        decimals: int,
        max_ltv: Decimal,
        liquidation_threshold: Decimal,
        liquidation_bonus: Decimal,
        liquidation_close_factor: Decimal,
        interest_rate: Decimal,
        rate_model: Optional[InterestRateModel] = None,
    ) -> Pool:
        """
        Create the pool for asset_id and register its treasury wallet.

        Raises:
            PoolAlreadyExists: If asset_id already has a pool
            ValueError: If any parameter is invalid
        """
        with self._locked(asset_ids=[asset_id]):
            if asset_id in self.pools:
                raise PoolAlreadyExists(f"pool for {asset_id} already exists")
            pool = create_pool(
                authority=authority,
                asset_id=asset_id,
                decimals=decimals,
                max_ltv=max_ltv,
                liquidation_threshold=liquidation_threshold,
                liquidation_bonus=liquidation_bonus,
                liquidation_close_factor=liquidation_close_factor,
                interest_rate=interest_rate,
                created_at=self._current_time,
                rate_model=rate_model,
            )
            self.custody.register_treasury(asset_id)
            self.pools[asset_id] = pool
            if self.verbose:
                print(f"📝 Pool: {asset_id} (decimals={decimals}, max_ltv={pool.max_ltv}, "
                      f"threshold={pool.liquidation_threshold}, rate={pool.interest_rate})")
            self._record(OperationType.CREATE_POOL, authority, asset_id, 0, 0)
            return pool

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, owner: str, asset_id: str, amount: int) -> OperationRecord:
        """
        Deposit amount of asset_id from owner's wallet as collateral.

        Raises:
            PoolNotFound, InvalidAmount, PositionAssetMismatch, TransferError
        """
        with self._locked(owners=[owner]), self._locked(asset_ids=[asset_id]):
            with self._reporting(OperationType.DEPOSIT, owner, asset_id, amount):
                pool = self.get_pool(asset_id)
                position = self.get_position(owner)
                now = self._current_time
                result = calculate_deposit(pool, position, amount, now)
                self.custody.transfer_batch(result.moves)
            return self._commit(OperationType.DEPOSIT, owner, result)

    def withdraw(self, owner: str, asset_id: str, amount: int) -> OperationRecord:
        """
        Withdraw amount of asset_id collateral to owner's wallet.

        Raises:
            PoolNotFound, InvalidAmount, OverWithdrawRequest,
            WithdrawAmountExceedsCollateralValue, InvalidPriceFeed, TransferError
        """
        with self._locked(owners=[owner]):
            position = self.get_position(owner)
            assets = {asset_id, *self._position_assets(position)}
            with self._locked(asset_ids=assets):
                with self._reporting(OperationType.WITHDRAW, owner, asset_id, amount):
                    self.get_pool(asset_id)
                    now = self._current_time
                    pools = self._accrued(assets, now)
                    result = calculate_withdraw(pools[asset_id], position, amount, now)
                    pools[asset_id] = result.pool
                    if result.position.has_debt:
                        debt_asset = result.position.borrow_asset
                        prices = self._read_prices([asset_id, debt_asset], now)
                        check_withdraw(result.position, result.pool, pools[debt_asset], prices)
                    self.custody.transfer_batch(result.moves)
                self._commit_pools(pools)
                return self._commit(OperationType.WITHDRAW, owner, result)

    def borrow(self, owner: str, asset_id: str, amount: int) -> OperationRecord:
        """
        Borrow amount of asset_id against owner's collateral.

        Raises:
            PoolNotFound, InvalidAmount, PositionAssetMismatch,
            OverBorrowRequest, OverBorrowableAmount, InvalidPriceFeed, TransferError
        """
        with self._locked(owners=[owner]):
            position = self.get_position(owner)
            assets = {asset_id, *self._position_assets(position)}
            with self._locked(asset_ids=assets):
                with self._reporting(OperationType.BORROW, owner, asset_id, amount):
                    self.get_pool(asset_id)
                    now = self._current_time
                    pools = self._accrued(assets, now)
                    result = calculate_borrow(pools[asset_id], position, amount, now)
                    pools[asset_id] = result.pool
                    collateral_asset = result.position.deposit_asset
                    prices = self._read_prices([asset_id, collateral_asset], now)
                    check_borrow(result.position, pools.get(collateral_asset), result.pool, prices)
                    self.custody.transfer_batch(result.moves)
                self._commit_pools(pools)
                return self._commit(OperationType.BORROW, owner, result)

    def repay(self, owner: str, asset_id: str, amount: int,
              payer: Optional[str] = None) -> OperationRecord:
        """
        Repay amount of owner's asset_id debt, paid from payer (default owner).

        Raises:
            PoolNotFound, InvalidAmount, OverRepayRequest, TransferError
        """
        actor = payer or owner
        with self._locked(owners=[owner]), self._locked(asset_ids=[asset_id]):
            with self._reporting(OperationType.REPAY, actor, asset_id, amount):
                pool = self.get_pool(asset_id)
                position = self.get_position(owner)
                now = self._current_time
                result = calculate_repay(pool, position, amount, now, payer=actor)
                self.custody.transfer_batch(result.moves)
            return self._commit(OperationType.REPAY, actor, result)

    def liquidate(self, liquidator: str, owner: str, repay_amount: int) -> OperationRecord:
        """
        Repay part of owner's debt from liquidator's wallet and seize collateral.

        Raises:
            HealthyAccount: If owner has no debt or health_factor >= 1
            OverLiquidationRequest, InvalidAmount, InvalidPriceFeed,
            OverWithdrawRequest, TransferError
        """
        with self._locked(owners=[owner]):
            position = self.get_position(owner)
            debt_asset = position.borrow_asset
            with self._reporting(OperationType.LIQUIDATE, liquidator, debt_asset or "-", repay_amount):
                if debt_asset is None:
                    raise HealthyAccount(f"{owner} has no debt")
                collateral_asset = position.deposit_asset or debt_asset
                assets = {debt_asset, collateral_asset}
                with self._locked(asset_ids=assets):
                    now = self._current_time
                    pools = self._accrued(assets, now)
                    prices = self._read_prices(assets, now)
                    result = calculate_liquidation(
                        pools[debt_asset], pools[collateral_asset], position,
                        repay_amount, liquidator, prices, now,
                    )
                    self.custody.transfer_batch(result.moves)
                    return self._commit_liquidation(liquidator, result)

    def accrue(self, asset_id: str) -> Pool:
        """
        Bring asset_id's pool up to current_time and commit it.

        Raises:
            PoolNotFound: If no pool exists for asset_id
        """
        with self._locked(asset_ids=[asset_id]):
            pool = self.get_pool(asset_id)
            interest = pending_interest(pool, self._current_time)
            accrued = accrue(pool, self._current_time)
            if accrued is not pool:
                self.pools[asset_id] = accrued
                self._record(OperationType.ACCRUE, "market", asset_id, interest, 0)
            return accrued

    def accrue_all(self) -> Dict[str, Pool]:
        """Accrue every pool; returns asset_id -> accrued pool."""
        return {asset_id: self.accrue(asset_id) for asset_id in self.list_pools()}

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> LendingMarket:
        """
        Independent copy for what-if analysis.

        Pools, positions, the operation log, the clock and custody balances
        are copied. The oracle and feed registry are shared.
        """
        with self._state_lock:
            custody = self.custody.clone() if hasattr(self.custody, 'clone') else self.custody
            cloned = LendingMarket(
                self.name,
                self.oracle,
                self.registry,
                custody,
                initial_time=self._current_time,
                verbose=self.verbose,
                max_price_age=self.max_price_age,
                max_confidence_ratio=self.max_confidence_ratio,
            )
            cloned.pools = dict(self.pools)
            cloned.positions = dict(self.positions)
            cloned.operation_log = list(self.operation_log)
            cloned._next_sequence = self._next_sequence
            return cloned

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _lock_for(self, table: Dict[str, threading.RLock], key: str) -> threading.RLock:
        with self._state_lock:
            lock = table.get(key)
            if lock is None:
                lock = table[key] = threading.RLock()
            return lock

    @contextmanager
    def _locked(self, owners: Iterable[str] = (), asset_ids: Iterable[Optional[str]] = ()) -> Iterator[None]:
        """Hold position locks, then pool locks, each set in sorted order."""
        with ExitStack() as stack:
            for owner in sorted(set(owners)):
                stack.enter_context(self._lock_for(self._position_locks, owner))
            for asset_id in sorted(a for a in set(asset_ids) if a is not None):
                stack.enter_context(self._lock_for(self._pool_locks, asset_id))
            yield

    @contextmanager
    def _reporting(self, operation: OperationType, actor: str, asset_id: str,
                   amount: int) -> Iterator[None]:
        try:
            yield
        except LendingError as e:
            if self.verbose:
                print(f"✗ REJECTED {operation.value} {amount} {asset_id} by {actor}: "
                      f"{type(e).__name__}: {e}")
            raise

    @staticmethod
    def _position_assets(position: Position) -> List[str]:
        return [a for a in (position.deposit_asset, position.borrow_asset) if a is not None]

    def _accrued(self, asset_ids: Iterable[str], now: datetime) -> Dict[str, Pool]:
        return {a: accrue(self.get_pool(a), now) for a in set(asset_ids) if a is not None}

    def _read_prices(self, asset_ids: Iterable[Optional[str]], now: datetime) -> PriceMap:
        return {
            a: read_price(self.oracle, self.registry, a, now,
                          self.max_price_age, self.max_confidence_ratio)
            for a in sorted(set(asset_ids) - {None})
        }

    def _commit_pools(self, pools: Dict[str, Pool]) -> None:
        for asset_id, pool in pools.items():
            self.pools[asset_id] = pool

    def _commit(self, operation: OperationType, actor: str, result: OperationResult) -> OperationRecord:
        self.pools[result.pool.asset_id] = result.pool
        self.positions[result.position.owner] = result.position
        return self._record(
            operation, actor, result.pool.asset_id, result.amount, result.shares,
            owner=result.position.owner, moves=result.moves,
        )

    def _commit_liquidation(self, liquidator: str, result: LiquidationResult) -> OperationRecord:
        self.pools[result.collateral_pool.asset_id] = result.collateral_pool
        self.pools[result.debt_pool.asset_id] = result.debt_pool
        self.positions[result.position.owner] = result.position
        if self.verbose and result.bad_debt:
            print(f"⚠️  BAD DEBT: {result.bad_debt} {result.debt_pool.asset_id} "
                  f"written off for {result.position.owner}")
        return self._record(
            OperationType.LIQUIDATE, liquidator, result.debt_pool.asset_id,
            result.repaid, result.repaid_shares,
            owner=result.position.owner,
            collateral_asset_id=result.collateral_pool.asset_id,
            seized=result.seized,
            moves=result.moves,
        )

    def _record(
        self,
        operation: OperationType,
        actor: str,
        asset_id: str,
        amount: int,
        shares: int,
        owner: Optional[str] = None,
        collateral_asset_id: Optional[str] = None,
        seized: int = 0,
        moves: Sequence[Move] = (),
    ) -> OperationRecord:
        with self._state_lock:
            record = OperationRecord(
                sequence_number=self._next_sequence,
                operation=operation,
                actor=actor,
                asset_id=asset_id,
                amount=amount,
                shares=shares,
                timestamp=self._current_time,
                owner=owner,
                collateral_asset_id=collateral_asset_id,
                seized=seized,
                moves=tuple(moves),
            )
            self._next_sequence += 1
            # Audit trail is mandatory
            self.operation_log.append(record)
        if self.verbose:
            self._print_record(record)
        return record

    def _print_record(self, record: OperationRecord) -> None:
        lines = repr(record).split('\n')
        w = 80
        bar = "─" * w
        lines[-1] = f"├{bar}┤"
        result = " ✓ APPLIED"
        lines.append(f"│{result + ' ' * (w - len(result))}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def __repr__(self):
        return (f"LendingMarket({self.name!r}, {len(self.pools)} pools, "
                f"{len(self.positions)} positions, t={self._current_time})")
