"""
Funds Service Tests.

Tests cover:
- Deposits and balance reads
- Withdrawal rule ordering (limits, daily limit, unsettled, balance)
- Staff adjustments
- Audit records for fund operations
"""

from decimal import Decimal

import pytest

from ledger_engine import (
    Currency,
    ErrorKind,
    FundsService,
    LedgerEngineConfig,
    LedgerEntryType,
    OrderRequest,
    OrderSide,
    TradeType,
)


CNY = Currency.CNY


@pytest.fixture
def funded(funds):
    funds.deposit("u1", CNY, "10000", actor_id="ops-1")
    return funds


# =============================================================
# TEST: Deposits
# =============================================================

class TestDeposit:

    def test_deposit_credits_and_records(self, funds):
        outcome = funds.deposit("u1", CNY, "2500.50")

        assert outcome.ok
        assert outcome.value.entry_type is LedgerEntryType.DEPOSIT
        assert funds.balance("u1", CNY).available == Decimal("2500.50")

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN"])
    def test_invalid_amount(self, funds, amount):
        outcome = funds.deposit("u1", CNY, amount)

        assert outcome.kind is ErrorKind.VALIDATION
        assert funds.entries("u1") == []

    def test_accounts_are_per_currency(self, funds):
        funds.deposit("u1", CNY, "100")
        funds.deposit("u1", Currency.HKD, "200")

        balances = {a.currency: a.available for a in funds.accounts("u1")}

        assert balances == {CNY: Decimal("100"), Currency.HKD: Decimal("200")}


# =============================================================
# TEST: Withdrawals
# =============================================================

class TestWithdraw:

    def test_withdraw_debits_available(self, funded):
        outcome = funded.withdraw("u1", CNY, "3000")

        assert outcome.ok
        assert outcome.value.amount == Decimal("-3000")
        assert funded.balance("u1", CNY).available == Decimal("7000")

    def test_below_minimum(self, funded):
        outcome = funded.withdraw("u1", CNY, "50")

        assert outcome.kind is ErrorKind.WITHDRAW_LIMIT

    def test_above_maximum(self, funded):
        outcome = funded.withdraw("u1", CNY, "1000001")

        assert outcome.kind is ErrorKind.WITHDRAW_LIMIT

    def test_account_locked_before_aggregate_reads(self, funded, logged_uow_factory, access_log, config):
        funds = FundsService(logged_uow_factory, config=config)

        assert funds.withdraw("u1", CNY, "3000").ok
        assert access_log[0] == "lock"
        assert access_log.count("read") == 2

    def test_daily_limit_counts_earlier_withdrawals(self, uow_factory, audit):
        config = LedgerEngineConfig.from_dict({"dailyWithdrawLimit": "5000"})
        funds = FundsService(uow_factory, config=config, audit=audit)
        funds.deposit("u1", CNY, "10000")

        assert funds.withdraw("u1", CNY, "3000").ok
        outcome = funds.withdraw("u1", CNY, "2500")

        assert outcome.kind is ErrorKind.WITHDRAW_LIMIT
        assert outcome.details["withdrawn_today"] == "3000"
        assert funds.balance("u1", CNY).available == Decimal("7000")

    def test_insufficient_balance(self, funded):
        outcome = funded.withdraw("u1", CNY, "10000.01")

        assert outcome.kind is ErrorKind.INSUFFICIENT_BALANCE

    def test_unsettled_flow_blocks_with_amount(self, funded, lifecycle, settlement):
        order = lifecycle.create(OrderRequest(
            user_id="u1",
            symbol="600000",
            side=OrderSide.BUY,
            price=Decimal("10"),
            quantity=500,
            trade_type=TradeType.A_SHARE,
        )).value
        lifecycle.approve(order.order_id, "admin-1")

        blocked = funded.withdraw("u1", CNY, "1000")

        assert blocked.kind is ErrorKind.UNSETTLED_FLOW
        assert blocked.details["unsettled_amount"] == "5000"

        settlement.settle_all_unsettled("u1")
        assert funded.withdraw("u1", CNY, "1000").ok

    def test_frozen_funds_cannot_be_withdrawn(self, funded, lifecycle):
        lifecycle.create(OrderRequest(
            user_id="u1",
            symbol="600000",
            side=OrderSide.BUY,
            price=Decimal("10"),
            quantity=500,
            trade_type=TradeType.A_SHARE,
        ))

        outcome = funded.withdraw("u1", CNY, "5000")

        assert outcome.kind is ErrorKind.INSUFFICIENT_BALANCE


# =============================================================
# TEST: Adjustments
# =============================================================

class TestAdjust:

    def test_signed_adjustment(self, funded):
        down = funded.adjust("u1", CNY, "-250", "fee refund reversal", "admin-1")
        up = funded.adjust("u1", CNY, "100", "goodwill credit", "admin-1")

        assert down.ok and up.ok
        assert funded.balance("u1", CNY).available == Decimal("9850")
        assert up.value.entry_type is LedgerEntryType.ADJUST
        assert up.value.settled is True

    def test_reason_required(self, funded):
        outcome = funded.adjust("u1", CNY, "100", "", "admin-1")

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "reason"

    def test_zero_amount(self, funded):
        outcome = funded.adjust("u1", CNY, "0", "noop", "admin-1")

        assert outcome.kind is ErrorKind.VALIDATION

    def test_cannot_drive_available_negative(self, funded):
        outcome = funded.adjust("u1", CNY, "-10000.01", "correction", "admin-1")

        assert outcome.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert funded.balance("u1", CNY).available == Decimal("10000")


# =============================================================
# TEST: Audit
# =============================================================

class TestFundsAudit:

    def test_fund_operations_are_audited(self, funded, audit):
        funded.withdraw("u1", CNY, "1000", actor_id="u1")
        funded.adjust("u1", CNY, "5", "rounding", "admin-1", "Alice")

        assert audit.actions() == ["fund_deposit", "fund_withdraw", "fund_adjust"]
        adjust = audit.records[-1]
        assert adjust.target_id == "u1:CNY"
        assert adjust.reason == "rounding"
        assert adjust.before_snapshot["available"] == "9000"
        assert adjust.after_snapshot["balance_after"] == "9005"

    def test_denied_operations_are_not_audited(self, funded, audit):
        funded.withdraw("u1", CNY, "50")

        assert audit.actions() == ["fund_deposit"]
