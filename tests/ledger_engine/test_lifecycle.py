"""
Order Lifecycle Tests.

============================================================
PURPOSE
============================================================
Orders from submission to terminal state on the memory stores.

TEST CATEGORIES:
- Submission: validation, holds, eligibility gates
- Approval: execution, fees, flows, shortfall rollback
- Reject / cancel: hold release, reason requirement
- Re-delivery and unknown orders
- Audit trail and audit failure isolation
- Review queue

============================================================
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from ledger_engine import (
    AuditRecorder,
    Currency,
    ErrorKind,
    InvalidStateTransition,
    LedgerEntryType,
    OrderLifecycle,
    OrderNotFound,
    OrderRequest,
    OrderSide,
    OrderStatus,
    RiskLevel,
    StaffAction,
    TradeType,
)


def buy(symbol="600000", price="10", quantity=500, trade_type=TradeType.A_SHARE, **kwargs):
    return OrderRequest(
        user_id=kwargs.pop("user_id", "u1"),
        symbol=symbol,
        side=OrderSide.BUY,
        price=Decimal(price),
        quantity=quantity,
        trade_type=trade_type,
        **kwargs,
    )


def sell(symbol="600000", price="12", quantity=200, **kwargs):
    return OrderRequest(
        user_id=kwargs.pop("user_id", "u1"),
        symbol=symbol,
        side=OrderSide.SELL,
        price=Decimal(price),
        quantity=quantity,
        trade_type=kwargs.pop("trade_type", TradeType.A_SHARE),
        **kwargs,
    )


def entries_for(uow_factory, order_id):
    with uow_factory() as uow:
        return uow.entries.list_entries(order_id=order_id)


def position_of(uow_factory, user_id="u1", symbol="600000"):
    with uow_factory() as uow:
        return uow.positions.get(user_id, symbol)


# ============================================================
# SUBMISSION
# ============================================================

class TestCreate:
    """Tests for order submission."""

    def test_buy_freezes_estimated_total(self, lifecycle, deposit, balance):
        deposit("u1", "10000")

        outcome = lifecycle.create(buy())

        assert outcome.ok
        order = outcome.value
        assert order.status is OrderStatus.PENDING
        assert order.frozen_amount == Decimal("5005.1")
        assert order.fee_estimate.total_fee == Decimal("5.1")

        account = balance("u1")
        assert account.available == Decimal("4994.9")
        assert account.frozen == Decimal("5005.1")

    def test_insufficient_balance_leaves_no_order(self, lifecycle, deposit, balance):
        deposit("u1", "5000")

        outcome = lifecycle.create(buy())

        assert outcome.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert lifecycle.list_orders() == []
        assert balance("u1").frozen == Decimal("0")

    def test_validation_failure_names_field(self, lifecycle, deposit, balance):
        deposit("u1", "10000")

        outcome = lifecycle.create(buy(quantity=0))

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "quantity"
        assert balance("u1").frozen == Decimal("0")

    def test_unknown_trade_type_is_validation_failure(self, lifecycle, deposit, balance):
        deposit("u1", "10000")

        outcome = lifecycle.create(buy(trade_type="a_share"))

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "trade_type"
        assert lifecycle.list_orders() == []
        assert balance("u1").frozen == Decimal("0")

    def test_sell_reserves_shares(self, lifecycle, uow_factory, deposit):
        deposit("u1", "10000")
        lifecycle.approve(lifecycle.create(buy()).value.order_id, "admin-1")

        outcome = lifecycle.create(sell())

        assert outcome.ok
        assert outcome.value.reserved_quantity == 200
        assert outcome.value.frozen_amount == Decimal("0")
        position = position_of(uow_factory)
        assert position.quantity == 500
        assert position.available_quantity == 300

    def test_sell_without_position_is_denied(self, lifecycle):
        outcome = lifecycle.create(sell())

        assert outcome.kind is ErrorKind.INSUFFICIENT_POSITION
        assert lifecycle.list_orders() == []

    def test_conditional_market_buy_holds_buffer(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        request = buy(
            quantity=100,
            trade_type=TradeType.CONDITIONAL,
            trade_data={"order_kind": "market", "trigger_price": "10", "trigger_condition": "gte"},
        )

        outcome = lifecycle.create(request)

        assert outcome.ok
        assert outcome.value.frozen_amount == Decimal("1055.021")
        assert outcome.value.trade_data["trigger_price"] == "10"
        assert balance("u1").frozen == Decimal("1055.021")

    def test_conditional_requires_trigger(self, lifecycle, deposit):
        deposit("u1", "10000")
        request = buy(
            quantity=100,
            trade_type=TradeType.CONDITIONAL,
            trade_data={"order_kind": "limit", "trigger_condition": "lte"},
        )

        outcome = lifecycle.create(request)

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "trigger_price"

    def test_hk_order_settles_converted_amount(self, lifecycle, deposit):
        deposit("u1", "100000")

        outcome = lifecycle.create(buy(symbol="00700", price="100", quantity=1000, trade_type=TradeType.HK_SHARE))

        assert outcome.value.frozen_amount == Decimal("92046")
        assert outcome.value.fee_estimate.exchange_rate == Decimal("0.92")

    def test_hk_order_uses_reference_rate(self, lifecycle, deposit, reference):
        deposit("u1", "100000")
        reference.set_rate(Currency.HKD, Currency.CNY, "0.9")

        outcome = lifecycle.create(buy(symbol="00700", price="100", quantity=1000, trade_type=TradeType.HK_SHARE))

        assert outcome.value.frozen_amount == Decimal("90045.0")

    def test_non_hk_order_must_be_cny(self, lifecycle):
        outcome = lifecycle.create(buy(currency=Currency.HKD))

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "currency"


# ============================================================
# ELIGIBILITY GATES
# ============================================================

class TestEligibilityGates:
    """Tests for ipo, block and board gating at submission."""

    def test_ipo_qualified(self, lifecycle, deposit, reference, balance):
        reference.set_trade_days("u1", 20)
        deposit("u1", "10000")

        outcome = lifecycle.create(buy(symbol="301001", quantity=100, trade_type=TradeType.IPO))

        assert outcome.ok
        assert outcome.value.frozen_amount == Decimal("1000")
        assert outcome.value.eligibility.approved is True
        assert balance("u1").available == Decimal("9000")

    def test_ipo_one_trade_day_short(self, lifecycle, deposit, reference, balance):
        reference.set_trade_days("u1", 19)
        deposit("u1", "10000")

        outcome = lifecycle.create(buy(symbol="301001", quantity=100, trade_type=TradeType.IPO))

        assert outcome.kind is ErrorKind.NOT_ELIGIBLE
        assert "trade days" in outcome.reason
        assert balance("u1").frozen == Decimal("0")
        assert lifecycle.list_orders() == []

    def test_ipo_sell_is_rejected(self, lifecycle):
        request = sell(trade_type=TradeType.IPO)

        outcome = lifecycle.create(request)

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "side"

    def test_block_trade_matched(self, lifecycle, deposit):
        deposit("u1", "3000000")

        outcome = lifecycle.create(buy(
            price="200", quantity=10000, trade_type=TradeType.BLOCK,
            trade_data={"discount_rate": "0.05"},
        ))

        assert outcome.ok
        assert outcome.value.frozen_amount == Decimal("2000640")

    def test_block_trade_below_minimum(self, lifecycle, deposit, balance):
        deposit("u1", "3000000")

        outcome = lifecycle.create(buy(
            price="100", quantity=10000, trade_type=TradeType.BLOCK,
            trade_data={"discount_rate": "0.05"},
        ))

        assert outcome.kind is ErrorKind.NOT_ELIGIBLE
        assert balance("u1").available == Decimal("3000000")

    def test_block_lot_in_order_fields_is_ignored(self, lifecycle, deposit, balance):
        """2000 shares @ 1000 meets the amount but not the 10000 market lot."""
        deposit("u1", "3000000")

        outcome = lifecycle.create(buy(
            price="1000", quantity=2000, trade_type=TradeType.BLOCK,
            trade_data={"discount_rate": "0.05", "min_quantity": 1},
        ))

        assert outcome.kind is ErrorKind.NOT_ELIGIBLE
        assert "below minimum lot 10000" in outcome.reason
        assert balance("u1").frozen == Decimal("0")

    def test_block_order_keeps_only_known_fields(self, lifecycle, deposit):
        deposit("u1", "3000000")

        outcome = lifecycle.create(buy(
            price="200", quantity=10000, trade_type=TradeType.BLOCK,
            trade_data={"discount_rate": "0.05", "min_quantity": 1},
        ))

        assert outcome.value.trade_data == {"discount_rate": "0.05"}

    def test_account_locked_before_quota_read(self, logged_uow_factory, access_log, config, reference, deposit):
        deposit("u1", "50000")
        lifecycle = OrderLifecycle(logged_uow_factory, config=config, reference_data=reference)

        outcome = lifecycle.create(buy(symbol="002001", price="10", quantity=1000, trade_type=TradeType.BOARD))

        assert outcome.ok
        assert "read" in access_log
        assert access_log.index("lock") < access_log.index("read")

    def test_board_quota_counts_earlier_orders(self, lifecycle, deposit):
        deposit("u1", "200000")

        first = lifecycle.create(buy(symbol="002001", price="60", quantity=1000, trade_type=TradeType.BOARD))
        second = lifecycle.create(buy(symbol="002002", price="50", quantity=1000, trade_type=TradeType.BOARD))

        assert first.ok
        assert first.value.eligibility.risk_level is RiskLevel.MEDIUM
        assert first.value.manual_review_required is False

        assert second.ok
        assert second.value.status is OrderStatus.PENDING
        assert second.value.manual_review_required is True
        assert second.value.eligibility.reason.startswith("exceeds daily quota")

    def test_board_limit_up_streak_needs_review(self, lifecycle, deposit, reference):
        deposit("u1", "50000")
        reference.set_limit_up_days("002001", 3)

        outcome = lifecycle.create(buy(symbol="002001", price="10", quantity=1000, trade_type=TradeType.BOARD))

        assert outcome.value.manual_review_required is True
        assert outcome.value.eligibility.risk_level is RiskLevel.HIGH

    def test_rejected_board_orders_free_quota(self, lifecycle, deposit):
        deposit("u1", "200000")
        first = lifecycle.create(buy(symbol="002001", price="60", quantity=1000, trade_type=TradeType.BOARD))
        lifecycle.reject(first.value.order_id, "admin-1", reason="not today")

        second = lifecycle.create(buy(symbol="002002", price="50", quantity=1000, trade_type=TradeType.BOARD))

        assert second.value.manual_review_required is False


# ============================================================
# APPROVAL
# ============================================================

class TestApprove:
    """Tests for approval and execution."""

    def test_buy_end_to_end(self, lifecycle, uow_factory, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        outcome = lifecycle.approve(order_id, "admin-1", "Alice")

        assert outcome.ok
        order = outcome.value
        assert order.status is OrderStatus.COMPLETED
        assert order.execution_price == Decimal("10")
        assert order.fee_actual.total_fee == Decimal("5.1")
        assert order.decided_by == "admin-1"
        assert order.completed_at is not None

        account = balance("u1")
        assert account.available == Decimal("4994.9")
        assert account.frozen == Decimal("0")

        position = position_of(uow_factory)
        assert position.quantity == 500
        assert position.available_quantity == 500
        assert position.avg_cost == Decimal("10")

        entries = {e.entry_type: e for e in entries_for(uow_factory, order_id)}
        assert entries[LedgerEntryType.TRADE].amount == Decimal("-5000")
        assert entries[LedgerEntryType.TRADE].settled is False
        assert entries[LedgerEntryType.FEE].amount == Decimal("-5.1")
        assert entries[LedgerEntryType.FEE].settled is True

    def test_sell_end_to_end(self, lifecycle, uow_factory, deposit, balance):
        deposit("u1", "10000")
        lifecycle.approve(lifecycle.create(buy()).value.order_id, "admin-1")
        order_id = lifecycle.create(sell()).value.order_id

        outcome = lifecycle.approve(order_id, "admin-1")

        assert outcome.ok
        assert outcome.value.fee_actual.total_fee == Decimal("7.448")
        assert balance("u1").available == Decimal("7387.452")

        position = position_of(uow_factory)
        assert position.quantity == 300
        assert position.available_quantity == 300

        entries = {e.entry_type: e for e in entries_for(uow_factory, order_id)}
        assert entries[LedgerEntryType.TRADE].amount == Decimal("2400")
        assert entries[LedgerEntryType.FEE].amount == Decimal("-7.448")

    def test_conditional_market_refunds_buffer(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy(
            quantity=100,
            trade_type=TradeType.CONDITIONAL,
            trade_data={"order_kind": "market", "trigger_price": "10", "trigger_condition": "gte"},
        )).value.order_id

        lifecycle.approve(order_id, "admin-1", execution_price=Decimal("10"))

        account = balance("u1")
        assert account.available == Decimal("8994.98")
        assert account.frozen == Decimal("0")

    def test_shortfall_rolls_back_everything(self, lifecycle, uow_factory, deposit, balance, audit):
        deposit("u1", "1005.02")
        order_id = lifecycle.create(buy(quantity=100)).value.order_id

        outcome = lifecycle.approve(order_id, "admin-1", execution_price=Decimal("11"))

        assert outcome.kind is ErrorKind.INSUFFICIENT_BALANCE
        assert outcome.details["order_id"] == order_id
        assert lifecycle.get_order(order_id).status is OrderStatus.PENDING
        assert balance("u1").frozen == Decimal("1005.02")
        assert position_of(uow_factory) is None
        assert entries_for(uow_factory, order_id) == []
        assert audit.actions() == ["order_create"]

    def test_ipo_execution_has_no_fee_entry(self, lifecycle, uow_factory, deposit, reference):
        reference.set_trade_days("u1", 20)
        deposit("u1", "10000")
        order_id = lifecycle.create(buy(symbol="301001", quantity=100, trade_type=TradeType.IPO)).value.order_id

        lifecycle.approve(order_id, "admin-1")

        types = [e.entry_type for e in entries_for(uow_factory, order_id)]
        assert types == [LedgerEntryType.TRADE]

    def test_invalid_execution_price(self, lifecycle, deposit):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        outcome = lifecycle.approve(order_id, "admin-1", execution_price=Decimal("-1"))

        assert outcome.kind is ErrorKind.VALIDATION
        assert lifecycle.get_order(order_id).status is OrderStatus.PENDING


# ============================================================
# REJECT / CANCEL
# ============================================================

class TestRejectAndCancel:
    """Tests for closing pending orders."""

    def test_reject_releases_cash(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        outcome = lifecycle.reject(order_id, "admin-1", reason="price out of band")

        assert outcome.value.status is OrderStatus.REJECTED
        assert outcome.value.reason == "price out of band"
        account = balance("u1")
        assert account.available == Decimal("10000")
        assert account.frozen == Decimal("0")

    def test_cancel_releases_shares(self, lifecycle, uow_factory, deposit):
        deposit("u1", "10000")
        lifecycle.approve(lifecycle.create(buy()).value.order_id, "admin-1")
        order_id = lifecycle.create(sell()).value.order_id

        lifecycle.cancel(order_id, "u1", reason="changed my mind")

        assert position_of(uow_factory).available_quantity == 500

    def test_reason_is_required(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        outcome = lifecycle.reject(order_id, "admin-1", reason="   ")

        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.details["field"] == "reason"
        assert lifecycle.get_order(order_id).status is OrderStatus.PENDING
        assert balance("u1").frozen == Decimal("5005.1")

    def test_decide_dispatches_staff_action(self, lifecycle, deposit):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        outcome = lifecycle.decide(order_id, StaffAction.CANCEL, "admin-1", reason="duplicate")

        assert outcome.value.status is OrderStatus.CANCELLED


# ============================================================
# RE-DELIVERY
# ============================================================

class TestRedelivery:
    """Tests for actions on non-pending or unknown orders."""

    def test_second_approval_raises(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id
        lifecycle.approve(order_id, "admin-1")

        with pytest.raises(InvalidStateTransition):
            lifecycle.approve(order_id, "admin-2")

        assert balance("u1").available == Decimal("4994.9")

    def test_reject_after_approval_raises(self, lifecycle, deposit):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id
        lifecycle.approve(order_id, "admin-1")

        with pytest.raises(InvalidStateTransition):
            lifecycle.reject(order_id, "admin-1", reason="too late")

    def test_cancel_twice_raises(self, lifecycle, deposit, balance):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id
        lifecycle.cancel(order_id, "u1", reason="first")

        with pytest.raises(InvalidStateTransition):
            lifecycle.cancel(order_id, "u1", reason="second")

        assert balance("u1").available == Decimal("10000")

    def test_unknown_order(self, lifecycle):
        with pytest.raises(OrderNotFound):
            lifecycle.approve("missing", "admin-1")

        with pytest.raises(OrderNotFound):
            lifecycle.get_order("missing")


# ============================================================
# AUDIT
# ============================================================

class TestAuditTrail:
    """Tests for audit records emitted by the lifecycle."""

    def test_approval_writes_one_record_per_transition(self, lifecycle, deposit, audit):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        lifecycle.approve(order_id, "admin-1", "Alice")

        assert audit.actions() == ["order_create", "order_approve", "order_complete"]
        approve = audit.records[1]
        assert approve.target_id == order_id
        assert approve.actor_id == "admin-1"
        assert approve.actor_name == "Alice"
        assert approve.before_snapshot["status"] == "pending"
        assert approve.after_snapshot["status"] == "approved"

    def test_rejection_records_reason(self, lifecycle, deposit, audit):
        deposit("u1", "10000")
        order_id = lifecycle.create(buy()).value.order_id

        lifecycle.reject(order_id, "admin-1", reason="price out of band")

        assert audit.records[-1].action.value == "order_reject"
        assert audit.records[-1].reason == "price out of band"

    def test_failing_recorder_never_fails_the_call(self, uow_factory, config, reference, deposit, balance):
        broken = MagicMock(spec=AuditRecorder)
        broken.write.side_effect = RuntimeError("audit store down")
        lifecycle = OrderLifecycle(uow_factory, config=config, reference_data=reference, audit=broken)
        deposit("u1", "10000")

        created = lifecycle.create(buy())
        approved = lifecycle.approve(created.value.order_id, "admin-1")

        assert created.ok
        assert approved.ok
        assert broken.write.call_count == 3
        assert balance("u1").frozen == Decimal("0")


# ============================================================
# QUEUE
# ============================================================

class TestReviewQueue:
    """Tests for listing pending orders."""

    def test_pending_orders_oldest_first(self, lifecycle, deposit):
        deposit("u1", "100000")
        ids = [lifecycle.create(buy(quantity=100 * (i + 1))).value.order_id for i in range(3)]
        lifecycle.cancel(ids[1], "u1", reason="drop")

        pending = lifecycle.pending_orders()

        assert [o.order_id for o in pending] == [ids[0], ids[2]]

    def test_filter_by_trade_type(self, lifecycle, deposit, reference):
        reference.set_trade_days("u1", 30)
        deposit("u1", "100000")
        lifecycle.create(buy())
        ipo = lifecycle.create(buy(symbol="301001", quantity=100, trade_type=TradeType.IPO)).value

        pending = lifecycle.pending_orders(trade_type=TradeType.IPO)

        assert [o.order_id for o in pending] == [ipo.order_id]

    def test_limit(self, lifecycle, deposit):
        deposit("u1", "100000")
        for _ in range(3):
            lifecycle.create(buy(quantity=100))

        assert len(lifecycle.pending_orders(limit=2)) == 2
