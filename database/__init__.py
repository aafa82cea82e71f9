"""
Database Package Initialization.

============================================================
LEDGER DATABASE PERSISTENCE LAYER
============================================================

Relational store behind the ledger engine. All writes go to
real tables with explicit transaction management.

REQUIRED:
- Every ledger mutation runs inside one transaction
- Account and position rows are locked before they are read
- Every failure raises a hard exception

============================================================
"""

from .engine import (
    Base,
    create_database_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    transaction_scope,
    initialize_database,
    verify_database_connection,
    verify_required_tables,
    create_all_tables,
    REQUIRED_TABLES,
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)

from .models import (
    AccountModel,
    PositionModel,
    OrderModel,
    LedgerEntryModel,
    AuditLogModel,
)


__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "transaction_scope",
    "initialize_database",
    "verify_database_connection",
    "verify_required_tables",
    "create_all_tables",
    "REQUIRED_TABLES",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
    "AccountModel",
    "PositionModel",
    "OrderModel",
    "LedgerEntryModel",
    "AuditLogModel",
]
