"""
Database ORM Models - Ledger Tables.

============================================================
LEDGER DATABASE SCHEMA
============================================================

Defines the five ledger tables with:
- Primary keys
- Timestamps (UTC)
- Proper indexes
- Uniqueness on the contended rows (account, position)

============================================================
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, Boolean,
    DateTime, JSON, Numeric, Index, UniqueConstraint,
)

from .engine import Base


# =============================================================
# HELPER FUNCTIONS
# =============================================================

def generate_uuid():
    """Generate a new UUID."""
    return str(uuid.uuid4())


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


MONEY = Numeric(24, 8)


# =============================================================
# 1. ACCOUNTS TABLE
# =============================================================

class AccountModel(Base):
    """
    Cash balance of one user in one currency.

    Mutated only through FundLedger inside a locked transaction.
    """
    __tablename__ = "accounts"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    currency = Column(String(8), nullable=False)

    available = Column(MONEY, nullable=False, default=0)
    frozen = Column(MONEY, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_accounts_user_currency"),
    )


# =============================================================
# 2. POSITIONS TABLE
# =============================================================

class PositionModel(Base):
    """Share holding of one user in one symbol."""
    __tablename__ = "positions"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    symbol = Column(String(32), nullable=False)

    quantity = Column(BigInteger, nullable=False, default=0)
    available_quantity = Column(BigInteger, nullable=False, default=0)
    avg_cost = Column(MONEY, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "symbol", name="uq_positions_user_symbol"),
    )


# =============================================================
# 3. ORDERS TABLE
# =============================================================

class OrderModel(Base):
    """
    Submitted order of any trade type.

    Never deleted: cancellation is a status.
    """
    __tablename__ = "orders"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    order_id = Column(String(36), nullable=False, unique=True, default=generate_uuid)
    user_id = Column(String(64), nullable=False, index=True)

    trade_type = Column(String(16), nullable=False, index=True)
    symbol = Column(String(32), nullable=False)
    side = Column(String(8), nullable=False)
    price = Column(MONEY, nullable=False)
    quantity = Column(BigInteger, nullable=False)
    currency = Column(String(8), nullable=False)
    status = Column(String(16), nullable=False, index=True)

    # Holds taken at creation
    frozen_amount = Column(MONEY, nullable=False, default=0)
    reserved_quantity = Column(BigInteger, nullable=False, default=0)

    fee_estimate = Column(JSON, nullable=True)
    eligibility = Column(JSON, nullable=True)
    manual_review_required = Column(Boolean, nullable=False, default=False)
    trade_data = Column(JSON, nullable=True)

    # Staff decision
    reason = Column(Text, nullable=True)
    decided_by = Column(String(64), nullable=True)
    decided_by_name = Column(String(128), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    execution_price = Column(MONEY, nullable=True)
    fee_actual = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_orders_status_created", "status", "created_at"),
        Index("idx_orders_user_type_created", "user_id", "trade_type", "created_at"),
    )


# =============================================================
# 4. LEDGER ENTRIES TABLE
# =============================================================

class LedgerEntryModel(Base):
    """
    Transaction flow row.

    Append-only; only `settled` ever changes, false -> true.
    """
    __tablename__ = "ledger_entries"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    entry_id = Column(String(36), nullable=False, unique=True, default=generate_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    currency = Column(String(8), nullable=False)

    entry_type = Column(String(16), nullable=False)
    amount = Column(MONEY, nullable=False)
    balance_after = Column(MONEY, nullable=False)
    settled = Column(Boolean, nullable=False, default=False)
    order_id = Column(String(36), nullable=True, index=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    settled_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_ledger_entries_user_settled", "user_id", "settled"),
    )


# =============================================================
# 5. AUDIT LOGS TABLE
# =============================================================

class AuditLogModel(Base):
    """Append-only record of every lifecycle transition."""
    __tablename__ = "audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    action = Column(String(64), nullable=False, index=True)
    actor_id = Column(String(64), nullable=False)
    actor_name = Column(String(128), nullable=True)
    target_type = Column(String(32), nullable=False)
    target_id = Column(String(64), nullable=False, index=True)
    before_snapshot = Column(JSON, nullable=True)
    after_snapshot = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)


__all__ = [
    "AccountModel",
    "PositionModel",
    "OrderModel",
    "LedgerEntryModel",
    "AuditLogModel",
    "generate_uuid",
    "utc_now",
]
