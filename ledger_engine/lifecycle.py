"""
Ledger Engine - Order Lifecycle.

============================================================
PURPOSE
============================================================
Orchestrates an order from submission to its terminal state.

FLOW:
    create   validate -> fee estimate -> eligibility
             -> freeze cash (buy) | reserve shares (sell)
             -> persist PENDING                    [one transaction]

    approve  PENDING -> APPROVED -> COMPLETED
             exact fees at execution price
             -> settle cash + apply fill
             -> unsettled trade entry + settled fee entry
                                                   [one transaction]

    reject   PENDING -> REJECTED  (release holds, reason required)
    cancel   PENDING -> CANCELLED (release holds, reason required)

CRITICAL PRINCIPLES:
- Freeze happens before the order row exists, in the same
  transaction, so no frozen amount can be orphaned
- Any action on a non-pending order raises InvalidStateTransition
- Business denials roll the transaction back and come back as
  Outcome values; nothing partial is ever committed
- Audit records are written after commit and never fail the call

============================================================
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from .audit import (
    AuditAction,
    AuditRecord,
    AuditRecorder,
    AuditTargetType,
    record_safely,
)
from .config import LedgerEngineConfig
from .eligibility import EligibilityEngine
from .errors import BusinessRuleDenial, OrderNotFound
from .fees import FeeCalculator
from .fund_ledger import FundLedger
from .reference import ReferenceData, StaticReferenceData
from .state_machine import OrderStateMachine, StateTransitionEvent
from .stores import UnitOfWork, UnitOfWorkFactory
from .types import (
    ConditionalOrderKind,
    Currency,
    EligibilityDecision,
    ErrorKind,
    FeeBreakdown,
    LedgerEntryType,
    OrderRecord,
    OrderRequest,
    OrderSide,
    OrderStatus,
    Outcome,
    StaffAction,
    TradeType,
    ZERO,
    to_decimal,
    utc_now,
)
from .validation import OrderValidator


logger = logging.getLogger(__name__)


# Orders that count against the board daily quota
QUOTA_STATUSES = (OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.COMPLETED)


class OrderLifecycle:
    """
    Order state machine orchestration.

    Depends only on store capabilities through a unit-of-work
    factory, so it runs unchanged on memory or SQL stores.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        config: Optional[LedgerEngineConfig] = None,
        fees: Optional[FeeCalculator] = None,
        eligibility: Optional[EligibilityEngine] = None,
        reference_data: Optional[ReferenceData] = None,
        audit: Optional[AuditRecorder] = None,
        validator: Optional[OrderValidator] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config or LedgerEngineConfig()
        self._fees = fees or FeeCalculator(self._config.a_share, self._config.hk_share)
        self._eligibility = eligibility or EligibilityEngine(
            self._config.ipo, self._config.block, self._config.board
        )
        self._reference = reference_data or StaticReferenceData()
        self._audit = audit
        self._validator = validator or OrderValidator()

    # --------------------------------------------------------
    # CREATE
    # --------------------------------------------------------

    def create(self, request: OrderRequest) -> Outcome[OrderRecord]:
        """
        Submit an order: validate, check eligibility, hold, persist.

        Returns:
            Outcome with the pending order, or a denial. A denied
            submission leaves no trace in any store.
        """
        validation = self._validator.validate(request)
        if not validation.is_valid:
            return Outcome.denied(
                ErrorKind.VALIDATION,
                validation.error_message,
                field=validation.field_name,
            )

        price = to_decimal(request.price)
        order = OrderRecord(
            user_id=request.user_id,
            trade_type=request.trade_type,
            symbol=request.symbol,
            side=request.side,
            price=price,
            quantity=request.quantity,
            currency=request.currency,
            trade_data=validation.trade_data,
        )
        order.fee_estimate = self._fees.for_trade(
            order.trade_type,
            self._estimate_price(order),
            order.quantity,
            order.side,
            order.currency,
            self._exchange_rate(order),
        )

        try:
            with self._uow_factory() as uow:
                if order.side is OrderSide.BUY:
                    # Account row lock serializes the balance and quota reads below
                    uow.accounts.get_for_update(order.user_id, order.currency)
                decision = self._check_eligibility(uow, order)
                if decision is not None:
                    order.eligibility = decision
                    order.manual_review_required = decision.manual_required

                ledger = FundLedger(uow)
                if order.side is OrderSide.BUY:
                    order.frozen_amount = order.fee_estimate.total_amount
                    self._require(ledger.freeze(order.user_id, order.currency, order.frozen_amount))
                else:
                    order.reserved_quantity = order.quantity
                    self._require(ledger.reserve_quantity(order.user_id, order.symbol, order.quantity))

                uow.orders.add(order)
        except BusinessRuleDenial as denial:
            return Outcome.denied(denial.kind, denial.reason, **denial.details)

        logger.info(
            f"Order {order.order_id} created: {order.trade_type.value} "
            f"{order.side.value} {order.quantity} {order.symbol} @ {order.price} "
            f"(frozen {order.frozen_amount} {order.currency.value}, "
            f"reserved {order.reserved_quantity})"
        )
        record_safely(self._audit, AuditRecord(
            action=AuditAction.ORDER_CREATE,
            actor_id=order.user_id,
            target_type=AuditTargetType.ORDER,
            target_id=order.order_id,
            after_snapshot=order.to_dict(),
        ))
        return Outcome.success(order)

    def _estimate_price(self, order: OrderRecord) -> Decimal:
        """Price used for the provisional hold."""
        if order.trade_type is TradeType.CONDITIONAL:
            if order.trade_data.get("order_kind") == ConditionalOrderKind.MARKET.value:
                trigger = to_decimal(order.trade_data["trigger_price"])
                return trigger * (1 + self._config.conditional.market_order_buffer)
        return order.price

    def _exchange_rate(self, order: OrderRecord) -> Optional[Decimal]:
        """HKD -> settlement rate for HK orders, None otherwise."""
        if order.trade_type is not TradeType.HK_SHARE:
            return None
        rate = self._reference.exchange_rate(Currency.HKD, order.currency)
        if rate is None:
            rate = self._config.hk_share.default_exchange_rate
        return rate

    def _check_eligibility(
        self,
        uow: UnitOfWork,
        order: OrderRecord,
    ) -> Optional[EligibilityDecision]:
        """
        Eligibility gate for ipo, block and board orders.

        Raises:
            BusinessRuleDenial: For ipo and block denials
        """
        if order.trade_type is TradeType.IPO:
            balance = FundLedger(uow).balance(order.user_id, order.currency)
            decision = self._eligibility.check_ipo_qualification(
                self._reference.trade_days_on_record(order.user_id),
                balance.available,
                order.amount,
            )
        elif order.trade_type is TradeType.BLOCK:
            decision = self._eligibility.match_block_trade(
                order.price,
                order.quantity,
                to_decimal(order.trade_data["discount_rate"]),
            )
        elif order.trade_type is TradeType.BOARD:
            decision = self._eligibility.score_board_risk(
                order.amount,
                self._board_quota_used(uow, order.user_id),
                self._reference.consecutive_limit_up_days(order.symbol),
            )
            if decision.manual_required:
                logger.warning(
                    f"Board order for user {order.user_id} on {order.symbol} "
                    f"flagged for manual review: {decision.reason}"
                )
            return decision
        else:
            return None

        if not decision.approved:
            logger.warning(
                f"{order.trade_type.value} order for user {order.user_id} "
                f"not eligible: {decision.reason}"
            )
            raise BusinessRuleDenial(
                ErrorKind.NOT_ELIGIBLE,
                decision.reason,
                {"trade_type": order.trade_type.value},
            )
        return decision

    def _board_quota_used(self, uow: UnitOfWork, user_id: str) -> Decimal:
        """Notional of today's live board orders for a user."""
        start_of_day = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
        orders = uow.orders.list_orders(
            user_id=user_id,
            status=QUOTA_STATUSES,
            trade_type=TradeType.BOARD,
            since=start_of_day,
        )
        return sum((o.amount for o in orders), ZERO)

    @staticmethod
    def _require(outcome: Outcome):
        """Unwrap an outcome or abort the unit of work."""
        if not outcome.ok:
            raise BusinessRuleDenial(outcome.kind, outcome.reason, outcome.details)
        return outcome.value

    # --------------------------------------------------------
    # STAFF DECISIONS
    # --------------------------------------------------------

    def approve(
        self,
        order_id: str,
        admin_id: str,
        admin_name: Optional[str] = None,
        execution_price: Optional[Decimal] = None,
    ) -> Outcome[OrderRecord]:
        """
        Approve and execute a pending order.

        Raises:
            OrderNotFound: Unknown order id
            InvalidStateTransition: Order is not pending
        """
        if execution_price is not None:
            execution_price = to_decimal(execution_price)
            if not execution_price.is_finite() or execution_price <= 0:
                return Outcome.denied(
                    ErrorKind.VALIDATION,
                    "execution_price must be a positive number",
                    field="execution_price",
                )

        try:
            with self._uow_factory() as uow:
                order = self._load_pending(uow, order_id)
                machine = OrderStateMachine(order)
                machine.mark_approved(admin_id, admin_name)
                self._execute(uow, order, execution_price or order.price)
                machine.mark_completed(admin_id, admin_name)
                uow.orders.save(order)
        except BusinessRuleDenial as denial:
            logger.warning(f"Approval of order {order_id} denied: {denial.reason}")
            return Outcome.denied(denial.kind, denial.reason, order_id=order_id, **denial.details)

        self._audit_transitions(machine.history)
        return Outcome.success(order)

    def _execute(self, uow: UnitOfWork, order: OrderRecord, price: Decimal) -> FeeBreakdown:
        """Book an execution at price; raises BusinessRuleDenial on shortfall."""
        ledger = FundLedger(uow)
        fee = self._fees.for_trade(
            order.trade_type,
            price,
            order.quantity,
            order.side,
            order.currency,
            self._exchange_rate(order),
        )

        if order.side is OrderSide.BUY:
            account = self._require(ledger.settle_buy(
                order.user_id, order.currency, order.frozen_amount, fee.total_amount
            ))
            self._require(ledger.apply_fill(
                order.user_id, order.symbol, OrderSide.BUY, order.quantity, price
            ))
            trade_amount = -fee.amount
        else:
            ledger.release_quantity(order.user_id, order.symbol, order.reserved_quantity)
            self._require(ledger.apply_fill(
                order.user_id, order.symbol, OrderSide.SELL, order.quantity, price
            ))
            account = self._require(ledger.settle_sell(
                order.user_id, order.currency, fee.total_amount
            ))
            trade_amount = fee.amount

        ledger.record_entry(
            account,
            LedgerEntryType.TRADE,
            trade_amount,
            order_id=order.order_id,
            description=f"{order.side.value} {order.quantity} {order.symbol} @ {price}",
        )
        if fee.total_fee > 0:
            ledger.record_entry(
                account,
                LedgerEntryType.FEE,
                -fee.total_fee,
                order_id=order.order_id,
                description=f"fees for order {order.order_id}",
            )

        order.execution_price = price
        order.fee_actual = fee
        return fee

    def reject(
        self,
        order_id: str,
        admin_id: str,
        admin_name: Optional[str] = None,
        reason: str = "",
    ) -> Outcome[OrderRecord]:
        """Reject a pending order and release its holds."""
        return self._close(order_id, OrderStatus.REJECTED, admin_id, admin_name, reason)

    def cancel(
        self,
        order_id: str,
        actor_id: str,
        actor_name: Optional[str] = None,
        reason: str = "",
    ) -> Outcome[OrderRecord]:
        """Cancel a pending order and release its holds."""
        return self._close(order_id, OrderStatus.CANCELLED, actor_id, actor_name, reason)

    def _close(
        self,
        order_id: str,
        target: OrderStatus,
        actor_id: str,
        actor_name: Optional[str],
        reason: str,
    ) -> Outcome[OrderRecord]:
        if not reason or not reason.strip():
            return Outcome.denied(
                ErrorKind.VALIDATION,
                f"a reason is required to mark an order {target.value}",
                field="reason",
            )

        with self._uow_factory() as uow:
            order = self._load_pending(uow, order_id)
            ledger = FundLedger(uow)

            if order.frozen_amount > 0:
                ledger.unfreeze(order.user_id, order.currency, order.frozen_amount)
            if order.reserved_quantity > 0:
                ledger.release_quantity(order.user_id, order.symbol, order.reserved_quantity)

            machine = OrderStateMachine(order)
            if target is OrderStatus.REJECTED:
                machine.mark_rejected(reason, actor_id, actor_name)
            else:
                machine.mark_cancelled(reason, actor_id, actor_name)
            uow.orders.save(order)

        self._audit_transitions(machine.history)
        return Outcome.success(order)

    def decide(
        self,
        order_id: str,
        action: StaffAction,
        admin_id: str,
        admin_name: Optional[str] = None,
        reason: Optional[str] = None,
        execution_price: Optional[Decimal] = None,
    ) -> Outcome[OrderRecord]:
        """Dispatch a staff decision."""
        if action is StaffAction.APPROVE:
            return self.approve(order_id, admin_id, admin_name, execution_price)
        if action is StaffAction.REJECT:
            return self.reject(order_id, admin_id, admin_name, reason or "")
        return self.cancel(order_id, admin_id, admin_name, reason or "")

    def _load_pending(self, uow: UnitOfWork, order_id: str) -> OrderRecord:
        order = uow.orders.get_for_update(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", context={"order_id": order_id})
        OrderStateMachine(order).ensure_pending()
        return order

    def _audit_transitions(self, events: List[StateTransitionEvent]) -> None:
        for event in events:
            record_safely(self._audit, AuditRecord.from_transition(event))

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    def get_order(self, order_id: str) -> OrderRecord:
        """
        Raises:
            OrderNotFound: Unknown order id
        """
        with self._uow_factory() as uow:
            order = uow.orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", context={"order_id": order_id})
        return order

    def list_orders(
        self,
        status: Optional[Iterable[OrderStatus]] = None,
        trade_type: Optional[TradeType] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[OrderRecord]:
        """Orders matching the filters, oldest first."""
        with self._uow_factory() as uow:
            return uow.orders.list_orders(
                user_id=user_id,
                status=status,
                trade_type=trade_type,
                limit=limit,
            )

    def pending_orders(
        self,
        trade_type: Optional[TradeType] = None,
        limit: Optional[int] = None,
    ) -> List[OrderRecord]:
        """Review queue: pending orders, oldest first."""
        return self.list_orders([OrderStatus.PENDING], trade_type, limit=limit)
