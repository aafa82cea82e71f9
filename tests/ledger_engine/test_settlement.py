"""
Settlement Ledger Tests.

Tests cover:
- Unsettled aggregate after execution
- Bulk and per-order settlement
- Idempotent re-settlement
- Withdrawal check policy flag
"""

from decimal import Decimal

from ledger_engine import (
    Currency,
    LedgerEngineConfig,
    OrderRequest,
    OrderSide,
    SettlementLedger,
    TradeType,
)


def executed_buy(lifecycle, deposit, user_id="u1"):
    deposit(user_id, "10000")
    order = lifecycle.create(OrderRequest(
        user_id=user_id,
        symbol="600000",
        side=OrderSide.BUY,
        price=Decimal("10"),
        quantity=500,
        trade_type=TradeType.A_SHARE,
    )).value
    lifecycle.approve(order.order_id, "admin-1")
    return order.order_id


# =============================================================
# TEST: Unsettled Aggregate
# =============================================================

class TestUnsettledTotal:

    def test_fresh_user_has_nothing_unsettled(self, settlement):
        assert settlement.unsettled_total("u1") == Decimal("0")

    def test_deposits_and_fees_are_settled_on_creation(self, settlement, deposit):
        deposit("u1", "10000")
        assert settlement.unsettled_total("u1") == Decimal("0")

    def test_trade_flow_counts_by_absolute_amount(self, lifecycle, settlement, deposit):
        executed_buy(lifecycle, deposit)

        assert settlement.unsettled_total("u1") == Decimal("5000")
        assert settlement.unsettled_total("u1", Currency.HKD) == Decimal("0")

    def test_other_users_are_not_counted(self, lifecycle, settlement, deposit):
        executed_buy(lifecycle, deposit, user_id="u2")

        assert settlement.unsettled_total("u1") == Decimal("0")


# =============================================================
# TEST: Settling
# =============================================================

class TestSettle:

    def test_settle_all_flips_entries_once(self, lifecycle, settlement, deposit, audit):
        executed_buy(lifecycle, deposit)

        assert settlement.settle_all_unsettled("u1", actor_id="admin-1") == 1
        assert settlement.unsettled_total("u1") == Decimal("0")
        assert settlement.settle_all_unsettled("u1", actor_id="admin-1") == 0

        settle_records = [r for r in audit.records if r.action.value == "flow_settle"]
        assert len(settle_records) == 1
        assert settle_records[0].before_snapshot == {"unsettled_amount": "5000"}

    def test_settle_order_entries(self, lifecycle, settlement, deposit):
        first = executed_buy(lifecycle, deposit)
        executed_buy(lifecycle, deposit)

        assert settlement.settle_order_entries(first) == 1
        assert settlement.unsettled_total("u1") == Decimal("5000")

    def test_settled_entries_keep_amounts(self, lifecycle, settlement, uow_factory, deposit):
        order_id = executed_buy(lifecycle, deposit)
        settlement.settle_all_unsettled("u1")

        with uow_factory() as uow:
            entries = uow.entries.list_entries(order_id=order_id)

        assert all(e.settled for e in entries)
        assert all(e.settled_at is not None for e in entries)
        assert sorted(e.amount for e in entries) == [Decimal("-5000"), Decimal("-5.1")]


# =============================================================
# TEST: Withdrawal Check
# =============================================================

class TestWithdrawalCheck:

    def test_blocked_while_flows_unsettled(self, lifecycle, settlement, deposit):
        executed_buy(lifecycle, deposit)

        check = settlement.withdrawal_check("u1", Currency.CNY)

        assert check.unsettled_amount == Decimal("5000")
        assert check.require_flow_settled is True
        assert check.blocked is True

    def test_policy_flag_off_never_blocks(self, lifecycle, uow_factory, deposit):
        config = LedgerEngineConfig.from_dict({"requireFlowSettled": False})
        settlement = SettlementLedger(uow_factory, config=config)
        executed_buy(lifecycle, deposit)

        check = settlement.withdrawal_check("u1", Currency.CNY)

        assert check.unsettled_amount == Decimal("5000")
        assert check.blocked is False

    def test_unblocked_after_settlement(self, lifecycle, settlement, deposit):
        executed_buy(lifecycle, deposit)
        settlement.settle_all_unsettled("u1")

        assert settlement.withdrawal_check("u1", Currency.CNY).blocked is False
