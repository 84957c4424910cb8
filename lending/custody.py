"""
custody.py - Token custody: wallets, pool treasuries and atomic transfers

The lending core never moves tokens itself. It hands a batch of Moves to a
custody provider, which must apply all of them or none. Custody is the
reference provider: integer balances per wallet and asset, validated as a
batch before anything is applied.

Wallets:
    - SYSTEM_WALLET is always registered and may go negative; it is the
      source of issued funds (airdrops, test funding).
    - treasury:<asset> holds a pool's liquidity. Treasuries are registered
      by the market when a pool is created.
    - Every other wallet must be registered before it can send or receive.
"""

from __future__ import annotations
from collections import defaultdict
import threading
from typing import Any, Dict, List, Protocol, Sequence, Set, Tuple, runtime_checkable

from .core import Move, SYSTEM_WALLET, BalanceMap, TransferError, treasury_wallet


@runtime_checkable
class CustodyProvider(Protocol):
    """What the market needs from custody: pool treasuries and atomic batch transfer."""

    def register_treasury(self, asset_id: str) -> str:
        ...

    def transfer_batch(self, moves: Sequence[Move]) -> None:
        ...


class Custody:
    """
    In-memory custody with all-or-nothing batch transfers.

    Example:
        custody = Custody()
        custody.register_wallet("alice")
        custody.issue("alice", "USDC", 1_000_000)
        custody.transfer("USDC", "alice", "bob", 250_000)
    """

    def __init__(self, name: str = "custody", verbose: bool = False):
        self.name = name
        self.verbose = verbose
        self.balances: Dict[str, Dict[str, int]] = {}
        self.registered_wallets: Set[str] = set()
        self.transfer_log: List[Move] = []
        self._lock = threading.RLock()

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # WALLETS
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If the wallet is already registered or the id is empty
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        with self._lock:
            self.registered_wallets.add(wallet_id)
            self.balances[wallet_id] = defaultdict(int)
        if self.verbose:
            print(f"📝 Registered wallet: {wallet_id}")
        return wallet_id

    def register_treasury(self, asset_id: str) -> str:
        """Register the treasury wallet of asset_id (no-op if it exists)."""
        wallet = treasury_wallet(asset_id)
        if wallet not in self.registered_wallets:
            self.register_wallet(wallet)
        return wallet

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def balance(self, wallet_id: str, asset_id: str) -> int:
        """
        Balance of asset_id held by wallet_id.

        Raises:
            TransferError: If the wallet is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise TransferError(f"Wallet {wallet_id} not registered")
        return self.balances[wallet_id].get(asset_id, 0)

    def wallet_balances(self, wallet_id: str) -> BalanceMap:
        if wallet_id not in self.registered_wallets:
            raise TransferError(f"Wallet {wallet_id} not registered")
        return {a: q for a, q in self.balances[wallet_id].items() if q != 0}

    def total_supply(self, asset_id: str) -> int:
        """Units of asset_id held outside the system wallet."""
        return sum(
            self.balances[w].get(asset_id, 0)
            for w in sorted(self.registered_wallets)
            if w != SYSTEM_WALLET
        )

    def assets(self) -> List[str]:
        found: Set[str] = set()
        for wallet in self.balances.values():
            found.update(a for a, q in wallet.items() if q != 0)
        return sorted(found)

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Check that every asset nets to zero across all wallets.

        Issued units leave the system wallet negative by exactly the amount
        held elsewhere, so a non-zero net means units were created or lost.

        Returns:
            Dict with 'valid', 'supplies' (asset -> units outside the system
            wallet) and 'discrepancies' (asset -> non-zero net)
        """
        supplies = {}
        discrepancies = {}
        for asset_id in self.assets():
            supply = self.total_supply(asset_id)
            supplies[asset_id] = supply
            net = supply + self.balances[SYSTEM_WALLET].get(asset_id, 0)
            if net != 0:
                discrepancies[asset_id] = net
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def issue(self, wallet_id: str, asset_id: str, amount: int) -> Move:
        """Credit wallet_id with newly issued units from the system wallet."""
        move = Move(amount, asset_id, SYSTEM_WALLET, wallet_id, f"issue:{wallet_id}")
        self.transfer_batch([move])
        return move

    def transfer(self, asset_id: str, source: str, dest: str, amount: int,
                 memo: str = "transfer") -> Move:
        """
        Move amount of asset_id from source to dest.

        Raises:
            TransferError: If a wallet is unknown or source lacks funds
        """
        move = Move(amount, asset_id, source, dest, memo)
        self.transfer_batch([move])
        return move

    def transfer_batch(self, moves: Sequence[Move]) -> None:
        """
        Apply moves atomically.

        The whole batch is validated against net balance changes first;
        on failure nothing is applied.

        Raises:
            TransferError: If any wallet is unknown or any non-system wallet
                           would end negative
        """
        if not moves:
            return
        with self._lock:
            valid, reason = self._validate_moves(moves)
            if not valid:
                if self.verbose:
                    print(f"✗ TRANSFER REJECTED: {reason}")
                raise TransferError(reason)
            self._execute_moves(moves)
            self.transfer_log.extend(moves)

    def _validate_moves(self, moves: Sequence[Move]) -> Tuple[bool, str]:
        for move in moves:
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        net: Dict[Tuple[str, str], int] = {}
        for move in moves:
            key_src = (move.source, move.asset_id)
            key_dst = (move.dest, move.asset_id)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        # SYSTEM_WALLET is exempt: it is the issuance source
        for (wallet, asset_id), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet][asset_id] + delta
            if proposed < 0:
                return False, (
                    f"{wallet} {asset_id}: insufficient balance "
                    f"({self.balances[wallet][asset_id]} available, {-delta} required)"
                )
        return True, ""

    def _execute_moves(self, moves: Sequence[Move]) -> None:
        for move in moves:
            self.balances[move.source][move.asset_id] -= move.quantity
            self.balances[move.dest][move.asset_id] += move.quantity

    def clone(self) -> Custody:
        """Independent copy of balances, registrations and transfer log."""
        cloned = Custody(self.name, verbose=self.verbose)
        cloned.registered_wallets = set(self.registered_wallets)
        cloned.balances = {
            w: defaultdict(int, balances) for w, balances in self.balances.items()
        }
        cloned.transfer_log = list(self.transfer_log)
        return cloned

    def __repr__(self):
        return f"Custody({self.name!r}, {len(self.registered_wallets)} wallets)"
