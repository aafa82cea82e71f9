"""
Ledger Engine - SQL Repository.

============================================================
PURPOSE
============================================================
SQLAlchemy implementation of the store interfaces.

RESPONSIBILITIES:
- Map ledger records to ORM rows and back
- Lock account, position and order rows with SELECT ... FOR UPDATE
- Run every unit of work inside database.transaction_scope

CRITICAL REQUIREMENTS:
- All operations must be transactional
- A failed commit leaves no partial state
- Persistence failures raise PersistenceError

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from database.engine import DatabasePersistenceError, transaction_scope
from database.models import (
    AccountModel,
    LedgerEntryModel,
    OrderModel,
    PositionModel,
)

from .errors import PersistenceError
from .stores import AccountStore, LedgerStore, OrderStore, PositionStore, UnitOfWork
from .types import (
    AccountBalance,
    Currency,
    EligibilityDecision,
    FeeBreakdown,
    LedgerEntryRecord,
    LedgerEntryType,
    OrderRecord,
    OrderSide,
    OrderStatus,
    PositionRecord,
    TradeType,
    ZERO,
    to_decimal,
)


logger = logging.getLogger(__name__)


def _money(value) -> Decimal:
    return to_decimal(value) if value is not None else ZERO


# ============================================================
# ACCOUNTS
# ============================================================

class SqlAccountStore(AccountStore):

    def __init__(self, session: Session):
        self._session = session

    def _query(self, user_id: str, currency: Currency):
        return select(AccountModel).where(
            AccountModel.user_id == user_id,
            AccountModel.currency == currency.value,
        )

    def _model_to_account(self, model: AccountModel) -> AccountBalance:
        return AccountBalance(
            user_id=model.user_id,
            currency=Currency(model.currency),
            available=_money(model.available),
            frozen=_money(model.frozen),
            updated_at=model.updated_at,
        )

    def get(self, user_id: str, currency: Currency) -> Optional[AccountBalance]:
        model = self._session.execute(self._query(user_id, currency)).scalar_one_or_none()
        return self._model_to_account(model) if model else None

    def get_for_update(self, user_id: str, currency: Currency) -> AccountBalance:
        model = self._session.execute(
            self._query(user_id, currency).with_for_update()
        ).scalar_one_or_none()

        if model is None:
            model = AccountModel(
                user_id=user_id,
                currency=currency.value,
                available=ZERO,
                frozen=ZERO,
            )
            self._session.add(model)
            self._session.flush()
            logger.debug(f"Opened {currency.value} account for user {user_id}")

        return self._model_to_account(model)

    def save(self, account: AccountBalance) -> None:
        model = self._session.execute(
            self._query(account.user_id, account.currency)
        ).scalar_one()
        model.available = account.available
        model.frozen = account.frozen
        self._session.flush()

    def list_for_user(self, user_id: str) -> List[AccountBalance]:
        models = self._session.execute(
            select(AccountModel)
            .where(AccountModel.user_id == user_id)
            .order_by(AccountModel.currency)
        ).scalars().all()
        return [self._model_to_account(m) for m in models]


# ============================================================
# POSITIONS
# ============================================================

class SqlPositionStore(PositionStore):

    def __init__(self, session: Session):
        self._session = session

    def _query(self, user_id: str, symbol: str):
        return select(PositionModel).where(
            PositionModel.user_id == user_id,
            PositionModel.symbol == symbol,
        )

    def _model_to_position(self, model: PositionModel) -> PositionRecord:
        return PositionRecord(
            user_id=model.user_id,
            symbol=model.symbol,
            quantity=int(model.quantity),
            available_quantity=int(model.available_quantity),
            avg_cost=_money(model.avg_cost),
            updated_at=model.updated_at,
        )

    def get(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        model = self._session.execute(self._query(user_id, symbol)).scalar_one_or_none()
        return self._model_to_position(model) if model else None

    def get_for_update(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        model = self._session.execute(
            self._query(user_id, symbol).with_for_update()
        ).scalar_one_or_none()
        return self._model_to_position(model) if model else None

    def save(self, position: PositionRecord) -> None:
        model = self._session.execute(
            self._query(position.user_id, position.symbol)
        ).scalar_one_or_none()

        if model is None:
            model = PositionModel(user_id=position.user_id, symbol=position.symbol)
            self._session.add(model)

        model.quantity = position.quantity
        model.available_quantity = position.available_quantity
        model.avg_cost = position.avg_cost
        self._session.flush()

    def list_for_user(self, user_id: str) -> List[PositionRecord]:
        models = self._session.execute(
            select(PositionModel)
            .where(PositionModel.user_id == user_id)
            .order_by(PositionModel.symbol)
        ).scalars().all()
        return [self._model_to_position(m) for m in models]


# ============================================================
# ORDERS
# ============================================================

class SqlOrderStore(OrderStore):

    def __init__(self, session: Session):
        self._session = session

    def _model_to_order(self, model: OrderModel) -> OrderRecord:
        """Convert database model to OrderRecord."""
        return OrderRecord(
            order_id=model.order_id,
            user_id=model.user_id,
            trade_type=TradeType(model.trade_type),
            symbol=model.symbol,
            side=OrderSide(model.side),
            price=_money(model.price),
            quantity=int(model.quantity),
            currency=Currency(model.currency),
            status=OrderStatus(model.status),
            frozen_amount=_money(model.frozen_amount),
            reserved_quantity=int(model.reserved_quantity or 0),
            fee_estimate=FeeBreakdown.from_dict(model.fee_estimate) if model.fee_estimate else None,
            eligibility=EligibilityDecision.from_dict(model.eligibility) if model.eligibility else None,
            manual_review_required=bool(model.manual_review_required),
            trade_data=dict(model.trade_data or {}),
            reason=model.reason,
            decided_by=model.decided_by,
            decided_by_name=model.decided_by_name,
            decided_at=model.decided_at,
            execution_price=to_decimal(model.execution_price) if model.execution_price is not None else None,
            fee_actual=FeeBreakdown.from_dict(model.fee_actual) if model.fee_actual else None,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _apply(self, model: OrderModel, order: OrderRecord) -> None:
        model.status = order.status.value
        model.frozen_amount = order.frozen_amount
        model.reserved_quantity = order.reserved_quantity
        model.fee_estimate = order.fee_estimate.to_dict() if order.fee_estimate else None
        model.eligibility = order.eligibility.to_dict() if order.eligibility else None
        model.manual_review_required = order.manual_review_required
        model.trade_data = order.trade_data
        model.reason = order.reason
        model.decided_by = order.decided_by
        model.decided_by_name = order.decided_by_name
        model.decided_at = order.decided_at
        model.execution_price = order.execution_price
        model.fee_actual = order.fee_actual.to_dict() if order.fee_actual else None
        model.updated_at = order.updated_at
        model.completed_at = order.completed_at

    def add(self, order: OrderRecord) -> None:
        model = OrderModel(
            order_id=order.order_id,
            user_id=order.user_id,
            trade_type=order.trade_type.value,
            symbol=order.symbol,
            side=order.side.value,
            price=order.price,
            quantity=order.quantity,
            currency=order.currency.value,
            created_at=order.created_at,
        )
        self._apply(model, order)
        self._session.add(model)
        self._session.flush()

    def get(self, order_id: str) -> Optional[OrderRecord]:
        model = self._session.execute(
            select(OrderModel).where(OrderModel.order_id == order_id)
        ).scalar_one_or_none()
        return self._model_to_order(model) if model else None

    def get_for_update(self, order_id: str) -> Optional[OrderRecord]:
        model = self._session.execute(
            select(OrderModel).where(OrderModel.order_id == order_id).with_for_update()
        ).scalar_one_or_none()
        return self._model_to_order(model) if model else None

    def save(self, order: OrderRecord) -> None:
        model = self._session.execute(
            select(OrderModel).where(OrderModel.order_id == order.order_id)
        ).scalar_one()
        self._apply(model, order)
        self._session.flush()

    def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[Iterable[OrderStatus]] = None,
        trade_type: Optional[TradeType] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[OrderRecord]:
        query = select(OrderModel)

        if user_id is not None:
            query = query.where(OrderModel.user_id == user_id)
        if status is not None:
            query = query.where(OrderModel.status.in_([s.value for s in status]))
        if trade_type is not None:
            query = query.where(OrderModel.trade_type == trade_type.value)
        if since is not None:
            query = query.where(OrderModel.created_at >= since)

        query = query.order_by(OrderModel.created_at, OrderModel.id)
        if limit is not None:
            query = query.limit(limit)

        models = self._session.execute(query).scalars().all()
        return [self._model_to_order(m) for m in models]


# ============================================================
# LEDGER ENTRIES
# ============================================================

class SqlLedgerStore(LedgerStore):

    def __init__(self, session: Session):
        self._session = session

    def _model_to_entry(self, model: LedgerEntryModel) -> LedgerEntryRecord:
        return LedgerEntryRecord(
            entry_id=model.entry_id,
            user_id=model.user_id,
            currency=Currency(model.currency),
            entry_type=LedgerEntryType(model.entry_type),
            amount=_money(model.amount),
            balance_after=_money(model.balance_after),
            settled=bool(model.settled),
            order_id=model.order_id,
            description=model.description or "",
            created_at=model.created_at,
            settled_at=model.settled_at,
        )

    def add(self, entry: LedgerEntryRecord) -> None:
        self._session.add(LedgerEntryModel(
            entry_id=entry.entry_id,
            user_id=entry.user_id,
            currency=entry.currency.value,
            entry_type=entry.entry_type.value,
            amount=entry.amount,
            balance_after=entry.balance_after,
            settled=entry.settled,
            order_id=entry.order_id,
            description=entry.description,
            created_at=entry.created_at,
            settled_at=entry.settled_at,
        ))
        self._session.flush()

    def list_entries(
        self,
        user_id: Optional[str] = None,
        currency: Optional[Currency] = None,
        settled: Optional[bool] = None,
        order_id: Optional[str] = None,
        entry_type: Optional[LedgerEntryType] = None,
        since: Optional[datetime] = None,
    ) -> List[LedgerEntryRecord]:
        query = select(LedgerEntryModel)

        if user_id is not None:
            query = query.where(LedgerEntryModel.user_id == user_id)
        if currency is not None:
            query = query.where(LedgerEntryModel.currency == currency.value)
        if settled is not None:
            query = query.where(LedgerEntryModel.settled == settled)
        if order_id is not None:
            query = query.where(LedgerEntryModel.order_id == order_id)
        if entry_type is not None:
            query = query.where(LedgerEntryModel.entry_type == entry_type.value)
        if since is not None:
            query = query.where(LedgerEntryModel.created_at >= since)

        query = query.order_by(LedgerEntryModel.created_at, LedgerEntryModel.id)
        models = self._session.execute(query).scalars().all()
        return [self._model_to_entry(m) for m in models]

    def mark_settled(self, entry_ids: Iterable[str], settled_at: datetime) -> int:
        ids = list(entry_ids)
        if not ids:
            return 0

        result = self._session.execute(
            update(LedgerEntryModel)
            .where(
                LedgerEntryModel.entry_id.in_(ids),
                LedgerEntryModel.settled == False,  # noqa: E712
            )
            .values(settled=True, settled_at=settled_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# ============================================================
# UNIT OF WORK
# ============================================================

class SqlUnitOfWork(UnitOfWork):
    """
    One SQLAlchemy transaction over all ledger stores.

    Commits on clean exit; any exception rolls back. SQLAlchemy
    failures surface as PersistenceError chained to the
    DatabasePersistenceError raised by transaction_scope.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory
        self._scope = None
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlUnitOfWork":
        self._scope = transaction_scope(self._session_factory)
        self.session = self._scope.__enter__()
        self.accounts = SqlAccountStore(self.session)
        self.positions = SqlPositionStore(self.session)
        self.orders = SqlOrderStore(self.session)
        self.entries = SqlLedgerStore(self.session)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        scope, self._scope = self._scope, None
        self.session = None
        try:
            return bool(scope.__exit__(exc_type, exc, tb))
        except DatabasePersistenceError as e:
            raise PersistenceError(str(e), context={"cause": type(e.__cause__).__name__}) from e


def sql_uow_factory(session_factory: Optional[sessionmaker] = None):
    """Build a unit-of-work factory over a session factory."""

    def factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory)

    return factory
