"""
Ledger Engine - In-Memory Stores.

============================================================
PURPOSE
============================================================
Process-local implementation of the store interfaces.

CONCURRENCY:
- One re-entrant lock per MemoryDatabase
- A unit of work holds the lock from enter to exit, so every
  read-modify-write on an account or position is serialized
- Rollback restores a snapshot taken on enter

Records are copied in and out so callers can only change
stored state through save().

============================================================
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .stores import AccountStore, LedgerStore, OrderStore, PositionStore, UnitOfWork
from .types import (
    AccountBalance,
    Currency,
    LedgerEntryRecord,
    LedgerEntryType,
    OrderRecord,
    OrderStatus,
    PositionRecord,
    TradeType,
    utc_now,
)


logger = logging.getLogger(__name__)


class MemoryDatabase:
    """Shared state behind every MemoryUnitOfWork."""

    def __init__(self):
        self.lock = threading.RLock()
        self.accounts: Dict[Tuple[str, Currency], AccountBalance] = {}
        self.positions: Dict[Tuple[str, str], PositionRecord] = {}
        self.orders: Dict[str, OrderRecord] = {}
        self.entries: List[LedgerEntryRecord] = []

    def snapshot(self) -> tuple:
        return copy.deepcopy((self.accounts, self.positions, self.orders, self.entries))

    def restore(self, state: tuple) -> None:
        self.accounts, self.positions, self.orders, self.entries = state


# ============================================================
# STORES
# ============================================================

class MemoryAccountStore(AccountStore):

    def __init__(self, db: MemoryDatabase):
        self._db = db

    def get(self, user_id: str, currency: Currency) -> Optional[AccountBalance]:
        account = self._db.accounts.get((user_id, currency))
        return copy.deepcopy(account)

    def get_for_update(self, user_id: str, currency: Currency) -> AccountBalance:
        key = (user_id, currency)
        if key not in self._db.accounts:
            self._db.accounts[key] = AccountBalance(user_id=user_id, currency=currency)
        return copy.deepcopy(self._db.accounts[key])

    def save(self, account: AccountBalance) -> None:
        account.updated_at = utc_now()
        self._db.accounts[(account.user_id, account.currency)] = copy.deepcopy(account)

    def list_for_user(self, user_id: str) -> List[AccountBalance]:
        return [
            copy.deepcopy(account)
            for (owner, _), account in self._db.accounts.items()
            if owner == user_id
        ]


class MemoryPositionStore(PositionStore):

    def __init__(self, db: MemoryDatabase):
        self._db = db

    def get(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        return copy.deepcopy(self._db.positions.get((user_id, symbol)))

    def get_for_update(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        return self.get(user_id, symbol)

    def save(self, position: PositionRecord) -> None:
        position.updated_at = utc_now()
        self._db.positions[(position.user_id, position.symbol)] = copy.deepcopy(position)

    def list_for_user(self, user_id: str) -> List[PositionRecord]:
        return [
            copy.deepcopy(position)
            for (owner, _), position in self._db.positions.items()
            if owner == user_id
        ]


class MemoryOrderStore(OrderStore):

    def __init__(self, db: MemoryDatabase):
        self._db = db

    def add(self, order: OrderRecord) -> None:
        if order.order_id in self._db.orders:
            raise ValueError(f"Duplicate order id: {order.order_id}")
        self._db.orders[order.order_id] = copy.deepcopy(order)

    def get(self, order_id: str) -> Optional[OrderRecord]:
        return copy.deepcopy(self._db.orders.get(order_id))

    def get_for_update(self, order_id: str) -> Optional[OrderRecord]:
        return self.get(order_id)

    def save(self, order: OrderRecord) -> None:
        self._db.orders[order.order_id] = copy.deepcopy(order)

    def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[Iterable[OrderStatus]] = None,
        trade_type: Optional[TradeType] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[OrderRecord]:
        statuses = set(status) if status is not None else None
        result = [
            order for order in self._db.orders.values()
            if (user_id is None or order.user_id == user_id)
            and (statuses is None or order.status in statuses)
            and (trade_type is None or order.trade_type is trade_type)
            and (since is None or order.created_at >= since)
        ]
        result.sort(key=lambda o: o.created_at)
        if limit is not None:
            result = result[:limit]
        return copy.deepcopy(result)


class MemoryLedgerStore(LedgerStore):

    def __init__(self, db: MemoryDatabase):
        self._db = db

    def add(self, entry: LedgerEntryRecord) -> None:
        self._db.entries.append(copy.deepcopy(entry))

    def list_entries(
        self,
        user_id: Optional[str] = None,
        currency: Optional[Currency] = None,
        settled: Optional[bool] = None,
        order_id: Optional[str] = None,
        entry_type: Optional[LedgerEntryType] = None,
        since: Optional[datetime] = None,
    ) -> List[LedgerEntryRecord]:
        return [
            copy.deepcopy(entry) for entry in self._db.entries
            if (user_id is None or entry.user_id == user_id)
            and (currency is None or entry.currency is currency)
            and (settled is None or entry.settled == settled)
            and (order_id is None or entry.order_id == order_id)
            and (entry_type is None or entry.entry_type is entry_type)
            and (since is None or entry.created_at >= since)
        ]

    def mark_settled(self, entry_ids: Iterable[str], settled_at: datetime) -> int:
        wanted = set(entry_ids)
        changed = 0
        for entry in self._db.entries:
            if entry.entry_id in wanted and not entry.settled:
                entry.settled = True
                entry.settled_at = settled_at
                changed += 1
        return changed


# ============================================================
# UNIT OF WORK
# ============================================================

class MemoryUnitOfWork(UnitOfWork):
    """Lock-holding transaction over a MemoryDatabase."""

    def __init__(self, db: MemoryDatabase):
        self._db = db
        self._snapshot = None
        self.accounts = MemoryAccountStore(db)
        self.positions = MemoryPositionStore(db)
        self.orders = MemoryOrderStore(db)
        self.entries = MemoryLedgerStore(db)

    def __enter__(self) -> "MemoryUnitOfWork":
        self._db.lock.acquire()
        self._snapshot = self._db.snapshot()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None:
                self._db.restore(self._snapshot)
                logger.debug(f"Memory transaction rolled back: {exc_type.__name__}")
        finally:
            self._snapshot = None
            self._db.lock.release()
        return False


def memory_uow_factory(db: Optional[MemoryDatabase] = None):
    """Build a unit-of-work factory over one shared MemoryDatabase."""
    database = db or MemoryDatabase()

    def factory() -> MemoryUnitOfWork:
        return MemoryUnitOfWork(database)

    factory.database = database
    return factory
