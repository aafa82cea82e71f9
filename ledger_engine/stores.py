"""
Ledger Engine - Store Interfaces.

============================================================
PURPOSE
============================================================
Abstract capability interfaces for ledger persistence.

DESIGN PRINCIPLES:
- Components depend on capabilities, never on a shared handle
- One UnitOfWork groups every store touched by an operation
- Rows read "for update" stay locked until the unit of work ends

IMPLEMENTATIONS:
- memory.MemoryUnitOfWork  (tests, single process)
- repository.SqlUnitOfWork (SQLAlchemy, row-level locks)

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .types import (
    AccountBalance,
    Currency,
    LedgerEntryRecord,
    LedgerEntryType,
    OrderRecord,
    OrderStatus,
    PositionRecord,
    TradeType,
)


# ============================================================
# ACCOUNTS
# ============================================================

class AccountStore(ABC):
    """Cash balances per user and currency."""

    @abstractmethod
    def get(self, user_id: str, currency: Currency) -> Optional[AccountBalance]:
        """Read without locking. None if the account was never touched."""
        pass

    @abstractmethod
    def get_for_update(self, user_id: str, currency: Currency) -> AccountBalance:
        """Lock and read, creating a zero account on first use."""
        pass

    @abstractmethod
    def save(self, account: AccountBalance) -> None:
        """Write back an account read for update."""
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[AccountBalance]:
        pass


# ============================================================
# POSITIONS
# ============================================================

class PositionStore(ABC):
    """Share holdings per user and symbol."""

    @abstractmethod
    def get(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        pass

    @abstractmethod
    def get_for_update(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        """Lock and read. None until the first buy fill."""
        pass

    @abstractmethod
    def save(self, position: PositionRecord) -> None:
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[PositionRecord]:
        pass


# ============================================================
# ORDERS
# ============================================================

class OrderStore(ABC):
    """Orders of every trade type. Rows are never deleted."""

    @abstractmethod
    def add(self, order: OrderRecord) -> None:
        pass

    @abstractmethod
    def get(self, order_id: str) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    def get_for_update(self, order_id: str) -> Optional[OrderRecord]:
        """Lock the order row so concurrent staff actions serialize."""
        pass

    @abstractmethod
    def save(self, order: OrderRecord) -> None:
        pass

    @abstractmethod
    def list_orders(
        self,
        user_id: Optional[str] = None,
        status: Optional[Iterable[OrderStatus]] = None,
        trade_type: Optional[TradeType] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[OrderRecord]:
        """Filtered orders, oldest first."""
        pass


# ============================================================
# LEDGER ENTRIES
# ============================================================

class LedgerStore(ABC):
    """Append-only transaction flows."""

    @abstractmethod
    def add(self, entry: LedgerEntryRecord) -> None:
        pass

    @abstractmethod
    def list_entries(
        self,
        user_id: Optional[str] = None,
        currency: Optional[Currency] = None,
        settled: Optional[bool] = None,
        order_id: Optional[str] = None,
        entry_type: Optional[LedgerEntryType] = None,
        since: Optional[datetime] = None,
    ) -> List[LedgerEntryRecord]:
        """Filtered entries, oldest first."""
        pass

    @abstractmethod
    def mark_settled(self, entry_ids: Iterable[str], settled_at: datetime) -> int:
        """
        Flip `settled` false -> true on the given entries.

        Returns:
            Number of entries that changed
        """
        pass


# ============================================================
# UNIT OF WORK
# ============================================================

class UnitOfWork(ABC):
    """
    One atomic transaction over all ledger stores.

    Usage:
        with uow_factory() as uow:
            account = uow.accounts.get_for_update(user_id, currency)
            ...
            # Commits on clean exit, rolls back on any exception
    """

    accounts: AccountStore
    positions: PositionStore
    orders: OrderStore
    entries: LedgerStore

    @abstractmethod
    def __enter__(self) -> "UnitOfWork":
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> bool:
        pass


UnitOfWorkFactory = Callable[[], UnitOfWork]
