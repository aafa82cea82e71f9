"""
Shared fixtures for the ledger test suites.

Memory-backed fixtures by default; `sql_session_factory` gives an
in-memory SQLite database with every ledger table created.
"""

from decimal import Decimal

import pytest

from database.engine import create_all_tables, create_database_engine, create_session_factory
from ledger_engine import (
    Currency,
    FundLedger,
    FundsService,
    InMemoryAuditRecorder,
    LedgerEngineConfig,
    OrderLifecycle,
    SettlementLedger,
    StaticReferenceData,
    memory_uow_factory,
)


@pytest.fixture
def uow_factory():
    return memory_uow_factory()


@pytest.fixture
def access_log():
    return []


@pytest.fixture
def logged_uow_factory(uow_factory, access_log):
    """Memory factory that logs account locks and aggregate reads in call order."""

    def _logged(name, method):
        def wrapper(*args, **kwargs):
            access_log.append(name)
            return method(*args, **kwargs)
        return wrapper

    def factory():
        uow = uow_factory()
        uow.accounts.get_for_update = _logged("lock", uow.accounts.get_for_update)
        uow.entries.list_entries = _logged("read", uow.entries.list_entries)
        uow.orders.list_orders = _logged("read", uow.orders.list_orders)
        return uow

    return factory


@pytest.fixture
def config():
    return LedgerEngineConfig()


@pytest.fixture
def reference():
    return StaticReferenceData()


@pytest.fixture
def audit():
    return InMemoryAuditRecorder()


@pytest.fixture
def lifecycle(uow_factory, config, reference, audit):
    return OrderLifecycle(uow_factory, config=config, reference_data=reference, audit=audit)


@pytest.fixture
def settlement(uow_factory, config, audit):
    return SettlementLedger(uow_factory, audit=audit, config=config)


@pytest.fixture
def funds(uow_factory, config, audit):
    return FundsService(uow_factory, config=config, audit=audit)


@pytest.fixture
def deposit(uow_factory):
    """Credit a user's account directly through the FundLedger."""

    def _deposit(user_id="u1", amount="10000", currency=Currency.CNY):
        with uow_factory() as uow:
            FundLedger(uow).deposit(user_id, currency, Decimal(amount))

    return _deposit


@pytest.fixture
def balance(uow_factory):
    """Read a user's balance."""

    def _balance(user_id="u1", currency=Currency.CNY):
        with uow_factory() as uow:
            return FundLedger(uow).balance(user_id, currency)

    return _balance


@pytest.fixture
def sql_session_factory():
    engine = create_database_engine("sqlite://")
    create_all_tables(engine)
    yield create_session_factory(engine)
    engine.dispose()
