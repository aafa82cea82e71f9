"""
Back-Office Service.

This service handles:
- Order submission from clients
- Staff decisions on pending orders (approve / reject / cancel)
- The staff review queue
- Withdrawal eligibility checks
- Deposits, withdrawals and staff adjustments

Business denials come back as unsuccessful responses. State
conflicts (InvalidStateTransition, OrderNotFound) and persistence
failures propagate to the caller unchanged.
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import sessionmaker

from database.engine import create_database_engine, create_session_factory, initialize_database
from ledger_engine import (
    Currency,
    FundsService,
    LedgerEngineConfig,
    OrderLifecycle,
    OrderRecord,
    OrderRequest,
    OrderSide,
    OrderStatus,
    Outcome,
    ReferenceData,
    SettlementLedger,
    SqlAuditRecorder,
    StaffAction,
    TradeType,
    sql_uow_factory,
)
from ledger_engine.audit import AuditRecorder
from ledger_engine.stores import UnitOfWorkFactory

from .schemas import (
    AdjustmentRequest,
    ErrorInfo,
    FundRequest,
    FundResponse,
    OrderListResponse,
    OrderSummary,
    StaffDecisionRequest,
    StaffDecisionResponse,
    SubmitOrderRequest,
    SubmitOrderResponse,
    TradeTypeEnum,
    WithdrawalCheckRequest,
    WithdrawalCheckResponse,
)

logger = logging.getLogger(__name__)


Payload = Union[BaseModel, Dict[str, Any]]


def _parse(schema, payload: Payload):
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    return schema.model_validate(payload)


def _validation_error(exc: ValidationError) -> ErrorInfo:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    return ErrorInfo(
        kind="VALIDATION",
        reason=f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "invalid value"),
        details={"field": field},
    )


def _error(outcome: Outcome) -> ErrorInfo:
    return ErrorInfo(kind=outcome.kind.value, reason=outcome.reason, details=dict(outcome.details))


def _summary(order: OrderRecord) -> OrderSummary:
    eligibility = order.eligibility
    return OrderSummary(
        order_id=order.order_id,
        user_id=order.user_id,
        trade_type=order.trade_type.value,
        symbol=order.symbol,
        side=order.side.value,
        price=order.price,
        quantity=order.quantity,
        currency=order.currency.value,
        status=order.status.value,
        frozen_amount=order.frozen_amount,
        manual_review_required=order.manual_review_required,
        risk_level=eligibility.risk_level.value if eligibility and eligibility.risk_level else None,
        eligibility_reason=eligibility.reason if eligibility else None,
        created_at=order.created_at,
    )


# =============================================================
# BACK-OFFICE SERVICE
# =============================================================

class BackOfficeService:
    """Handler-facing contract over the ledger engine."""

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        settlement: SettlementLedger,
        funds: FundsService,
    ):
        self.lifecycle = lifecycle
        self.settlement = settlement
        self.funds = funds

    @classmethod
    def build(
        cls,
        uow_factory: UnitOfWorkFactory,
        config: Optional[LedgerEngineConfig] = None,
        reference_data: Optional[ReferenceData] = None,
        audit: Optional[AuditRecorder] = None,
    ) -> "BackOfficeService":
        """Wire every engine component over one unit-of-work factory."""
        config = config or LedgerEngineConfig()
        return cls(
            lifecycle=OrderLifecycle(
                uow_factory,
                config=config,
                reference_data=reference_data,
                audit=audit,
            ),
            settlement=SettlementLedger(uow_factory, audit=audit, config=config),
            funds=FundsService(uow_factory, config=config, audit=audit),
        )

    @classmethod
    def from_database(
        cls,
        session_factory: Optional[sessionmaker] = None,
        config: Optional[LedgerEngineConfig] = None,
        reference_data: Optional[ReferenceData] = None,
    ) -> "BackOfficeService":
        """SQL-backed service with audit rows in audit_logs."""
        return cls.build(
            sql_uow_factory(session_factory),
            config=config,
            reference_data=reference_data,
            audit=SqlAuditRecorder(session_factory),
        )

    @classmethod
    def connect(
        cls,
        database_url: Optional[str] = None,
        config: Optional[LedgerEngineConfig] = None,
        reference_data: Optional[ReferenceData] = None,
    ) -> "BackOfficeService":
        """
        Open the ledger database and build a SQL-backed service.

        Runs the full initialization sequence (connection check, table
        creation, required-table check) before returning.

        Raises:
            DatabaseConnectionError: Database unreachable
            DatabaseInitializationError: Tables could not be created
        """
        engine = create_database_engine(database_url)
        initialize_database(engine)
        return cls.from_database(
            create_session_factory(engine),
            config=config,
            reference_data=reference_data,
        )

    # ---------------------------------------------------------
    # ORDERS
    # ---------------------------------------------------------

    def submit_order(self, payload: Payload) -> SubmitOrderResponse:
        """Submit order: {userId, symbol, side, price, quantity, tradeType, currency}."""
        try:
            data = _parse(SubmitOrderRequest, payload)
        except ValidationError as e:
            return SubmitOrderResponse(success=False, error=_validation_error(e))

        outcome = self.lifecycle.create(OrderRequest(
            user_id=data.user_id,
            symbol=data.symbol,
            side=OrderSide(data.side.value),
            price=data.price,
            quantity=data.quantity,
            trade_type=TradeType(data.trade_type.value),
            currency=Currency(data.currency.value),
            trade_data=data.trade_data(),
        ))

        if not outcome.ok:
            return SubmitOrderResponse(success=False, error=_error(outcome))

        order = outcome.value
        return SubmitOrderResponse(
            success=True,
            order_id=order.order_id,
            status=order.status.value,
            manual_review_required=order.manual_review_required,
            frozen_amount=order.frozen_amount,
        )

    def staff_decision(self, payload: Payload) -> StaffDecisionResponse:
        """
        Staff decision: {orderId, action, adminId, adminName, reason?}.

        Raises:
            OrderNotFound: Unknown order id
            InvalidStateTransition: Order is not pending
        """
        try:
            data = _parse(StaffDecisionRequest, payload)
        except ValidationError as e:
            target = payload.get("orderId", "") if isinstance(payload, dict) else ""
            action = payload.get("action", "") if isinstance(payload, dict) else ""
            return StaffDecisionResponse(
                success=False,
                target_id=str(target or ""),
                action=str(action or ""),
                error=_validation_error(e),
            )

        outcome = self.lifecycle.decide(
            data.order_id,
            StaffAction(data.action.value),
            data.admin_id,
            data.admin_name,
            reason=data.reason,
            execution_price=data.execution_price,
        )

        if not outcome.ok:
            return StaffDecisionResponse(
                success=False,
                target_id=data.order_id,
                action=data.action.value,
                status=OrderStatus.PENDING.value,
                error=_error(outcome),
            )

        logger.info(
            f"Staff {data.admin_id} {data.action.value} order {data.order_id} "
            f"-> {outcome.value.status.value}"
        )
        return StaffDecisionResponse(
            success=True,
            target_id=data.order_id,
            action=data.action.value,
            status=outcome.value.status.value,
        )

    def pending_orders(
        self,
        trade_type: Optional[TradeTypeEnum] = None,
        limit: int = 50,
    ) -> OrderListResponse:
        """Staff review queue, oldest first."""
        orders = self.lifecycle.pending_orders(
            TradeType(trade_type.value) if trade_type else None,
            limit=limit,
        )
        summaries = [_summary(o) for o in orders]
        return OrderListResponse(orders=summaries, total=len(summaries))

    # ---------------------------------------------------------
    # FUNDS
    # ---------------------------------------------------------

    def withdrawal_eligibility(self, payload: Payload) -> WithdrawalCheckResponse:
        """Withdrawal eligibility check: {userId, currency} -> {unsettledAmount}."""
        try:
            data = _parse(WithdrawalCheckRequest, payload)
        except ValidationError as e:
            return WithdrawalCheckResponse(success=False, error=_validation_error(e))

        check = self.settlement.withdrawal_check(data.user_id, Currency(data.currency.value))
        return WithdrawalCheckResponse(
            user_id=check.user_id,
            currency=check.currency.value,
            unsettled_amount=check.unsettled_amount,
            require_flow_settled=check.require_flow_settled,
            blocked=check.blocked,
        )

    def deposit(self, payload: Payload) -> FundResponse:
        try:
            data = _parse(FundRequest, payload)
        except ValidationError as e:
            return FundResponse(success=False, error=_validation_error(e))

        outcome = self.funds.deposit(
            data.user_id, Currency(data.currency.value), data.amount, description=data.description
        )
        return self._fund_response(outcome)

    def withdraw(self, payload: Payload) -> FundResponse:
        try:
            data = _parse(FundRequest, payload)
        except ValidationError as e:
            return FundResponse(success=False, error=_validation_error(e))

        outcome = self.funds.withdraw(
            data.user_id, Currency(data.currency.value), data.amount, description=data.description
        )
        return self._fund_response(outcome)

    def adjust(self, payload: Payload) -> FundResponse:
        try:
            data = _parse(AdjustmentRequest, payload)
        except ValidationError as e:
            return FundResponse(success=False, error=_validation_error(e))

        outcome = self.funds.adjust(
            data.user_id,
            Currency(data.currency.value),
            data.amount,
            data.reason,
            actor_id=data.admin_id,
            actor_name=data.admin_name,
        )
        return self._fund_response(outcome)

    def settle_flows(self, user_id: str, admin_id: str, admin_name: Optional[str] = None) -> int:
        """Settle every unsettled flow of a user."""
        return self.settlement.settle_all_unsettled(user_id, actor_id=admin_id, actor_name=admin_name)

    @staticmethod
    def _fund_response(outcome: Outcome) -> FundResponse:
        if not outcome.ok:
            return FundResponse(success=False, error=_error(outcome))
        entry = outcome.value
        return FundResponse(
            success=True,
            entry_id=entry.entry_id,
            balance_after=entry.balance_after,
        )
