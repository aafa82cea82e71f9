"""
Tests for the Back-Office Service.

Tests cover:
- Schema validation and camelCase aliases
- Order submission responses
- Staff decisions (approve / reject / cancel, re-delivery)
- Review queue
- Withdrawal eligibility and funds handlers
- SQL-backed wiring
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from back_office import (
    BackOfficeService,
    StaffDecisionRequest,
    SubmitOrderRequest,
    TradeTypeEnum,
)
from database import DatabaseConnectionError
from ledger_engine import (
    Currency,
    InMemoryAuditRecorder,
    InvalidStateTransition,
    LedgerEngineConfig,
    OrderNotFound,
    StaticReferenceData,
    memory_uow_factory,
)


@pytest.fixture
def reference():
    return StaticReferenceData(trade_days={"u1": 30})


@pytest.fixture
def service(reference):
    return BackOfficeService.build(
        memory_uow_factory(),
        config=LedgerEngineConfig(),
        reference_data=reference,
        audit=InMemoryAuditRecorder(),
    )


@pytest.fixture
def funded(service):
    service.deposit({"userId": "u1", "currency": "CNY", "amount": "10000"})
    return service


def order_payload(**overrides):
    payload = {
        "userId": "u1",
        "symbol": "600000",
        "side": "buy",
        "price": "10",
        "quantity": 500,
        "tradeType": "a_share",
        "currency": "CNY",
    }
    payload.update(overrides)
    return payload


# =============================================================
# TEST: Schemas
# =============================================================

class TestSchemas:
    """Test request schema validation."""

    def test_submit_accepts_aliases_and_names(self):
        by_alias = SubmitOrderRequest.model_validate(order_payload())
        by_name = SubmitOrderRequest(
            user_id="u1", symbol="600000", side="buy", price="10", quantity=500,
        )

        assert by_alias.user_id == by_name.user_id == "u1"
        assert by_alias.trade_type is TradeTypeEnum.A_SHARE
        assert by_alias.price == Decimal("10")

    def test_submit_rejects_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            SubmitOrderRequest.model_validate(order_payload(quantity=0))

    def test_trade_data_drops_unset_fields(self):
        request = SubmitOrderRequest.model_validate(
            order_payload(tradeType="block", discountRate="0.05")
        )

        assert request.trade_data() == {"discount_rate": Decimal("0.05")}

    def test_decision_requires_admin(self):
        with pytest.raises(ValidationError):
            StaffDecisionRequest.model_validate({"orderId": "o-1", "action": "approve"})


# =============================================================
# TEST: Order Submission
# =============================================================

class TestSubmitOrder:
    """Test order submission handler."""

    def test_success_response(self, funded):
        response = funded.submit_order(order_payload())

        assert response.success is True
        assert response.status == "pending"
        assert response.frozen_amount == Decimal("5005.1")
        assert response.model_dump(by_alias=True)["orderId"] == response.order_id

    def test_schema_error_is_validation_failure(self, funded):
        response = funded.submit_order(order_payload(side="hold"))

        assert response.success is False
        assert response.error.kind == "VALIDATION"
        assert response.error.details["field"] == "side"

    def test_business_denial(self, service):
        response = service.submit_order(order_payload())

        assert response.success is False
        assert response.error.kind == "INSUFFICIENT_BALANCE"

    def test_block_trade_denial_reason(self, funded):
        response = funded.submit_order(order_payload(
            tradeType="block", price="100", quantity=10000, discountRate="0.05",
        ))

        assert response.error.kind == "NOT_ELIGIBLE"
        assert "below block minimum" in response.error.reason

    def test_client_block_lot_is_ignored(self, service):
        service.deposit({"userId": "u1", "amount": "3000000"})

        response = service.submit_order(order_payload(
            tradeType="block", price="1000", quantity=2000, discountRate="0.05", minQuantity=1,
        ))

        assert response.success is False
        assert response.error.kind == "NOT_ELIGIBLE"
        assert "below minimum lot 10000" in response.error.reason

    def test_conditional_fields_flow_through(self, funded):
        response = funded.submit_order(order_payload(
            tradeType="conditional", quantity=100,
            orderKind="market", triggerPrice="10", triggerCondition="gte",
        ))

        assert response.success is True
        assert response.frozen_amount == Decimal("1055.021")


# =============================================================
# TEST: Staff Decisions
# =============================================================

class TestStaffDecision:
    """Test staff decision handler."""

    def test_approve(self, funded):
        order_id = funded.submit_order(order_payload()).order_id

        response = funded.staff_decision({
            "orderId": order_id, "action": "approve", "adminId": "admin-1", "adminName": "Alice",
        })

        assert response.success is True
        assert response.target_id == order_id
        assert response.status == "completed"
        balance = funded.funds.balance("u1", Currency.CNY)
        assert balance.available == Decimal("4994.9")
        assert balance.frozen == Decimal("0")

    def test_reject_without_reason(self, funded):
        order_id = funded.submit_order(order_payload()).order_id

        response = funded.staff_decision({"orderId": order_id, "action": "reject", "adminId": "admin-1"})

        assert response.success is False
        assert response.status == "pending"
        assert response.error.kind == "VALIDATION"

    def test_cancel_with_reason(self, funded):
        order_id = funded.submit_order(order_payload()).order_id

        response = funded.staff_decision({
            "orderId": order_id, "action": "cancel", "adminId": "admin-1", "reason": "client request",
        })

        assert response.status == "cancelled"

    def test_shortfall_reports_pending(self, service):
        service.deposit({"userId": "u1", "amount": "1005.02"})
        order_id = service.submit_order(order_payload(quantity=100)).order_id

        response = service.staff_decision({
            "orderId": order_id, "action": "approve", "adminId": "admin-1", "executionPrice": "11",
        })

        assert response.success is False
        assert response.status == "pending"
        assert response.error.kind == "INSUFFICIENT_BALANCE"

    def test_redelivery_raises(self, funded):
        order_id = funded.submit_order(order_payload()).order_id
        decision = {"orderId": order_id, "action": "approve", "adminId": "admin-1"}
        funded.staff_decision(decision)

        with pytest.raises(InvalidStateTransition):
            funded.staff_decision(decision)

    def test_unknown_order_raises(self, funded):
        with pytest.raises(OrderNotFound):
            funded.staff_decision({"orderId": "missing", "action": "approve", "adminId": "admin-1"})

    def test_malformed_decision(self, funded):
        response = funded.staff_decision({"orderId": "o-1", "action": "escalate", "adminId": "admin-1"})

        assert response.success is False
        assert response.target_id == "o-1"
        assert response.error.kind == "VALIDATION"


# =============================================================
# TEST: Review Queue
# =============================================================

class TestPendingOrders:
    """Test staff review queue."""

    def test_queue_shows_manual_review_flag(self, service):
        service.deposit({"userId": "u1", "amount": "200000"})
        service.submit_order(order_payload(tradeType="board", symbol="002001", price="60", quantity=1000))
        service.submit_order(order_payload(tradeType="board", symbol="002002", price="50", quantity=1000))

        queue = service.pending_orders(TradeTypeEnum.BOARD)

        assert queue.total == 2
        assert [o.manual_review_required for o in queue.orders] == [False, True]
        assert queue.orders[0].risk_level == "medium"
        assert queue.orders[1].eligibility_reason.startswith("exceeds daily quota")

    def test_queue_excludes_decided_orders(self, funded):
        first = funded.submit_order(order_payload(quantity=100)).order_id
        second = funded.submit_order(order_payload(quantity=100)).order_id
        funded.staff_decision({"orderId": first, "action": "approve", "adminId": "admin-1"})

        queue = funded.pending_orders()

        assert [o.order_id for o in queue.orders] == [second]


# =============================================================
# TEST: Funds
# =============================================================

class TestFunds:
    """Test funds handlers."""

    def test_withdrawal_eligibility(self, funded):
        order_id = funded.submit_order(order_payload()).order_id
        funded.staff_decision({"orderId": order_id, "action": "approve", "adminId": "admin-1"})

        check = funded.withdrawal_eligibility({"userId": "u1", "currency": "CNY"})

        assert check.unsettled_amount == Decimal("5000")
        assert check.blocked is True
        assert check.model_dump(by_alias=True)["unsettledAmount"] == Decimal("5000")

        assert funded.settle_flows("u1", "admin-1") == 1
        assert funded.withdrawal_eligibility({"userId": "u1"}).blocked is False

    def test_withdrawal_eligibility_rejects_unknown_currency(self, funded):
        check = funded.withdrawal_eligibility({"userId": "u1", "currency": "USD"})

        assert check.success is False
        assert check.unsettled_amount is None
        assert check.error.kind == "VALIDATION"
        assert check.error.details["field"] == "currency"

    def test_withdraw(self, funded):
        response = funded.withdraw({"userId": "u1", "amount": "2500"})

        assert response.success is True
        assert response.balance_after == Decimal("7500")

    def test_withdraw_rejects_negative_amount(self, funded):
        response = funded.withdraw({"userId": "u1", "amount": "-5"})

        assert response.success is False
        assert response.error.kind == "VALIDATION"

    def test_adjust(self, funded):
        response = funded.adjust({
            "userId": "u1", "amount": "-100", "reason": "fee reversal", "adminId": "admin-1",
        })

        assert response.success is True
        assert response.balance_after == Decimal("9900")

    def test_adjust_requires_reason(self, funded):
        response = funded.adjust({"userId": "u1", "amount": "10", "reason": "", "adminId": "admin-1"})

        assert response.error.kind == "VALIDATION"


# =============================================================
# TEST: SQL Wiring
# =============================================================

class TestFromDatabase:
    """Test SQL-backed service construction."""

    def test_end_to_end_on_sqlite(self, sql_session_factory):
        service = BackOfficeService.from_database(sql_session_factory)
        service.deposit({"userId": "u1", "amount": "10000"})

        submitted = service.submit_order(order_payload())
        decided = service.staff_decision({
            "orderId": submitted.order_id, "action": "approve", "adminId": "admin-1",
        })

        assert decided.status == "completed"
        assert service.funds.positions("u1")[0].quantity == 500
        assert service.pending_orders().total == 0

    def test_connect_initializes_database(self, tmp_path):
        service = BackOfficeService.connect(f"sqlite:///{tmp_path / 'ledger.db'}")

        response = service.deposit({"userId": "u1", "amount": "500"})

        assert response.success is True
        assert response.balance_after == Decimal("500")

    def test_connect_to_unreachable_database(self, tmp_path):
        with pytest.raises(DatabaseConnectionError):
            BackOfficeService.connect(f"sqlite:///{tmp_path / 'missing' / 'ledger.db'}")
