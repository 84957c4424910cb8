"""
test_operations.py - Unit tests for operations.py

Tests:
- Amount validation
- calculate_deposit / calculate_withdraw share math and slot handling
- calculate_borrow / calculate_repay share math and limits
- Accrual before every operation
- refresh_position
"""

import pytest
from dataclasses import replace
from datetime import timedelta

from lending import (
    U64_MAX, Position, create_position, treasury_wallet,
    InvalidAmount, BorrowAmountTooLarge, OverWithdrawRequest, OverBorrowRequest,
    OverRepayRequest, PositionAssetMismatch,
    calculate_deposit, calculate_withdraw, calculate_borrow, calculate_repay,
    refresh_position, redeemable_amount, owed_amount, accrue,
)
from lending.operations import validate_amount
from tests.helpers import T0, make_pool, seeded_pool


@pytest.fixture
def premium_pool():
    """Deposit shares worth 2 units each, borrow shares owing 2 units each."""
    return replace(
        make_pool(),
        total_deposited=2_000, total_deposit_shares=1_000,
        total_borrowed=1_000, total_borrow_shares=500,
    )


class TestValidateAmount:

    def test_positive_int(self):
        assert validate_amount(1) == 1

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10"])
    def test_rejects_invalid(self, amount):
        with pytest.raises(InvalidAmount):
            validate_amount(amount)

    def test_too_large(self):
        with pytest.raises(BorrowAmountTooLarge):
            validate_amount(U64_MAX + 1)

    def test_too_large_is_invalid_amount(self):
        with pytest.raises(InvalidAmount):
            validate_amount(U64_MAX + 1)


class TestDeposit:

    def test_first_deposit_is_one_to_one(self, empty_position):
        result = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        assert result.shares == 1_000
        assert result.pool.total_deposited == 1_000
        assert result.pool.total_deposit_shares == 1_000
        assert result.position.deposit_asset == "USDC"
        assert result.position.deposited_amount == 1_000
        assert result.position.last_updated_deposited == T0

    def test_move_to_treasury(self, empty_position):
        result = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        (move,) = result.moves
        assert move.source == "alice"
        assert move.dest == treasury_wallet("USDC")
        assert move.quantity == 1_000
        assert move.memo == "deposit:alice"

    def test_shares_round_down(self, premium_pool, empty_position):
        result = calculate_deposit(premium_pool, empty_position, 5, T0)
        assert result.shares == 2

    def test_too_small_to_mint(self, premium_pool, empty_position):
        with pytest.raises(InvalidAmount):
            calculate_deposit(premium_pool, empty_position, 1, T0)

    def test_second_asset_rejected(self, empty_position):
        sol = make_pool("SOL", 9)
        position = calculate_deposit(make_pool(), empty_position, 1_000, T0).position
        with pytest.raises(PositionAssetMismatch):
            calculate_deposit(sol, position, 1_000, T0)

    def test_inputs_unchanged(self, empty_position):
        pool = make_pool()
        calculate_deposit(pool, empty_position, 1_000, T0)
        assert pool.total_deposited == 0
        assert empty_position.deposited_shares == 0


class TestWithdraw:

    def test_full_withdraw_clears_slot(self, empty_position):
        deposit = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        result = calculate_withdraw(deposit.pool, deposit.position, 1_000, T0)
        assert result.shares == 1_000
        assert result.position.deposit_asset is None
        assert result.position.is_empty
        assert result.pool.total_deposited == 0
        assert result.pool.total_deposit_shares == 0

    def test_partial_withdraw_rounds_shares_up(self, premium_pool):
        position = Position(owner="lender", deposit_asset="USDC", deposited_shares=1_000)
        result = calculate_withdraw(premium_pool, position, 3, T0)
        assert result.shares == 2
        assert result.position.deposited_shares == 998

    def test_full_redeemable_burns_everything(self, premium_pool):
        position = Position(owner="lender", deposit_asset="USDC", deposited_shares=3)
        assert redeemable_amount(premium_pool, position) == 6
        result = calculate_withdraw(premium_pool, position, 6, T0)
        assert result.shares == 3
        assert result.position.deposited_shares == 0

    def test_partial_withdraw_cannot_burn_every_share(self):
        """Sole depositor at share price 2: withdrawing 5 of 6 would round up to all 3 shares."""
        pool = replace(make_pool(), total_deposited=6, total_deposit_shares=3)
        position = Position(owner="lender", deposit_asset="USDC", deposited_shares=3)
        with pytest.raises(InvalidAmount):
            calculate_withdraw(pool, position, 5, T0)

        partial = calculate_withdraw(pool, position, 4, T0)
        assert partial.shares == 2
        assert partial.pool.total_deposit_shares == 1
        assert partial.pool.total_deposited == 2

        full = calculate_withdraw(pool, position, 6, T0)
        assert full.pool.total_deposit_shares == 0
        assert full.pool.total_deposited == 0

    def test_over_redeemable(self, empty_position):
        deposit = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        with pytest.raises(OverWithdrawRequest):
            calculate_withdraw(deposit.pool, deposit.position, 1_001, T0)

    def test_without_deposit(self, empty_position):
        with pytest.raises(OverWithdrawRequest):
            calculate_withdraw(seeded_pool(), empty_position, 1, T0)

    def test_over_liquidity(self, empty_position):
        deposit = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        borrow = calculate_borrow(deposit.pool, create_position("bob"), 900, T0)
        with pytest.raises(OverWithdrawRequest):
            calculate_withdraw(borrow.pool, deposit.position, 101, T0)

    def test_move_from_treasury(self, empty_position):
        deposit = calculate_deposit(make_pool(), empty_position, 1_000, T0)
        (move,) = calculate_withdraw(deposit.pool, deposit.position, 400, T0).moves
        assert move.source == treasury_wallet("USDC")
        assert move.dest == "alice"
        assert move.memo == "withdraw:alice"


class TestBorrow:

    def test_first_borrow_is_one_to_one(self, empty_position):
        result = calculate_borrow(seeded_pool(), empty_position, 500, T0)
        assert result.shares == 500
        assert result.pool.total_borrowed == 500
        assert result.position.borrow_asset == "USDC"
        assert result.position.borrowed_amount == 500

    def test_shares_round_up(self, premium_pool, empty_position):
        result = calculate_borrow(premium_pool, empty_position, 3, T0)
        assert result.shares == 2

    def test_over_liquidity(self, empty_position):
        with pytest.raises(OverBorrowRequest):
            calculate_borrow(seeded_pool(deposited=1_000), empty_position, 1_001, T0)

    def test_second_asset_rejected(self, empty_position):
        position = calculate_borrow(seeded_pool(), empty_position, 10, T0).position
        sol = seeded_pool(asset_id="SOL", decimals=9)
        with pytest.raises(PositionAssetMismatch):
            calculate_borrow(sol, position, 10, T0)

    def test_worthless_leftover_shares_restart_one_to_one(self, empty_position):
        pool = replace(seeded_pool(), total_borrowed=0, total_borrow_shares=7)
        result = calculate_borrow(pool, empty_position, 100, T0)
        assert result.shares == 100
        assert result.pool.total_borrow_shares == 107


class TestRepay:

    def test_full_repay_clears_slot(self, empty_position):
        borrow = calculate_borrow(seeded_pool(), empty_position, 500, T0)
        result = calculate_repay(borrow.pool, borrow.position, 500, T0)
        assert result.shares == 500
        assert result.position.borrow_asset is None
        assert result.pool.total_borrowed == 0
        assert result.pool.total_borrow_shares == 0

    def test_partial_repay_rounds_shares_down(self, premium_pool):
        position = Position(owner="borrower", borrow_asset="USDC", borrowed_shares=500)
        result = calculate_repay(premium_pool, position, 5, T0)
        assert result.shares == 2
        assert result.position.borrowed_shares == 498

    def test_too_small_to_burn(self, premium_pool):
        position = Position(owner="borrower", borrow_asset="USDC", borrowed_shares=10)
        with pytest.raises(InvalidAmount):
            calculate_repay(premium_pool, position, 1, T0)

    def test_owed_dust_repays_in_full(self, premium_pool):
        position = Position(owner="borrower", borrow_asset="USDC", borrowed_shares=1)
        assert owed_amount(premium_pool, position) == 2
        result = calculate_repay(premium_pool, position, 2, T0)
        assert result.position.borrowed_shares == 0

    def test_over_repay(self, empty_position):
        borrow = calculate_borrow(seeded_pool(), empty_position, 500, T0)
        with pytest.raises(OverRepayRequest):
            calculate_repay(borrow.pool, borrow.position, 501, T0)

    def test_third_party_payer(self, empty_position):
        borrow = calculate_borrow(seeded_pool(), empty_position, 500, T0)
        (move,) = calculate_repay(borrow.pool, borrow.position, 200, T0, payer="carol").moves
        assert move.source == "carol"
        assert move.dest == treasury_wallet("USDC")
        assert move.memo == "repay:alice"


class TestAccrualFirst:

    def test_deposit_prices_shares_after_interest(self, empty_position):
        pool = seeded_pool(deposited=1_000_000, borrowed=500_000)
        later = T0 + timedelta(days=365)
        result = calculate_deposit(pool, empty_position, 1_050, later)
        assert result.pool.total_borrowed == 550_000
        assert result.pool.total_deposited == 1_050_000 + 1_050
        assert result.shares == 1_000
        assert result.pool.last_updated == later

    def test_repay_sees_accrued_debt(self, empty_position):
        borrow = calculate_borrow(seeded_pool(deposited=1_000_000), empty_position, 100_000, T0)
        later = T0 + timedelta(days=365)
        with pytest.raises(OverRepayRequest):
            calculate_repay(borrow.pool, borrow.position, 110_001, later)
        result = calculate_repay(borrow.pool, borrow.position, 110_000, later)
        assert result.position.borrowed_shares == 0


class TestRefreshPosition:

    def test_amounts_follow_accrual(self, empty_position):
        borrow = calculate_borrow(seeded_pool(deposited=1_000_000), empty_position, 100_000, T0)
        later = T0 + timedelta(days=365)
        refreshed = refresh_position(borrow.position, debt_pool=accrue(borrow.pool, later), now=later)
        assert refreshed.borrowed_amount == 110_000
        assert refreshed.last_updated_borrowed == later

    def test_no_pools_is_noop(self, empty_position):
        assert refresh_position(empty_position) == empty_position
