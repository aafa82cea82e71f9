"""
Ledger Engine Package.

============================================================
PURPOSE
============================================================
Order & fund ledger for the trading back office.

CRITICAL PRINCIPLE:
    "Money is never created or destroyed."
    "available + frozen changes only through FundLedger."

AUTHORITY BOUNDARIES:
    CAN:
        - Freeze, release and settle user funds
        - Reserve and release share quantities
        - Execute approved orders (fees, fills, flows)
        - Gate ipo, block and board orders on eligibility

    MUST NOT:
        - Execute an order without a staff approval
        - Act twice on the same order
        - Let an audit failure undo a committed mutation

============================================================
MODULES
============================================================
- types: Enums, records, Outcome
- errors: Error taxonomy and exceptions
- config: Fee rates and thresholds
- fees: FeeCalculator
- eligibility: EligibilityEngine
- reference: Reference data (trade days, limit-ups, FX)
- stores: Store interfaces and UnitOfWork
- memory: In-memory stores
- repository: SQLAlchemy stores
- fund_ledger: FundLedger
- state_machine: Order status transitions
- validation: Order request validation
- lifecycle: OrderLifecycle
- settlement: SettlementLedger
- funds: Deposits, withdrawals, adjustments
- audit: Audit records and recorders

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    # Enums
    Currency,
    OrderSide,
    TradeType,
    ConditionalOrderKind,
    TriggerCondition,
    OrderStatus,
    StaffAction,
    LedgerEntryType,
    RiskLevel,
    ErrorKind,
    # Dataclasses
    Outcome,
    FeeBreakdown,
    HKFeeBreakdown,
    EligibilityDecision,
    AccountBalance,
    PositionRecord,
    LedgerEntryRecord,
    OrderRequest,
    OrderRecord,
    WithdrawalCheck,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ErrorCategory,
    ERROR_KINDS,
    get_error_info,
    is_recoverable,
    LedgerEngineError,
    InvalidStateTransition,
    OrderNotFound,
    InvariantViolation,
    PersistenceError,
    BusinessRuleDenial,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import (
    AShareFeeConfig,
    HKShareFeeConfig,
    IPOConfig,
    BlockTradeConfig,
    BoardConfig,
    ConditionalOrderConfig,
    WithdrawConfig,
    LedgerEngineConfig,
    get_default_config,
    load_config,
)

# ============================================================
# PURE CALCULATORS
# ============================================================
from .fees import FeeCalculator
from .eligibility import EligibilityEngine
from .reference import ReferenceData, StaticReferenceData

# ============================================================
# STORES
# ============================================================
from .stores import (
    AccountStore,
    PositionStore,
    OrderStore,
    LedgerStore,
    UnitOfWork,
)
from .memory import MemoryDatabase, MemoryUnitOfWork, memory_uow_factory
from .repository import SqlUnitOfWork, sql_uow_factory

# ============================================================
# LEDGER AND LIFECYCLE
# ============================================================
from .fund_ledger import FundLedger
from .state_machine import (
    VALID_TRANSITIONS,
    StateTransitionEvent,
    TransitionGuard,
    OrderStateMachine,
)
from .validation import ValidationResult, OrderValidator
from .lifecycle import OrderLifecycle
from .settlement import SettlementLedger
from .funds import FundsService

# ============================================================
# AUDIT
# ============================================================
from .audit import (
    AuditAction,
    AuditTargetType,
    AuditRecord,
    AuditRecorder,
    InMemoryAuditRecorder,
    SqlAuditRecorder,
    record_safely,
)


__all__ = [
    # Types
    "Currency",
    "OrderSide",
    "TradeType",
    "ConditionalOrderKind",
    "TriggerCondition",
    "OrderStatus",
    "StaffAction",
    "LedgerEntryType",
    "RiskLevel",
    "ErrorKind",
    "Outcome",
    "FeeBreakdown",
    "HKFeeBreakdown",
    "EligibilityDecision",
    "AccountBalance",
    "PositionRecord",
    "LedgerEntryRecord",
    "OrderRequest",
    "OrderRecord",
    "WithdrawalCheck",
    # Errors
    "ErrorCategory",
    "ERROR_KINDS",
    "get_error_info",
    "is_recoverable",
    "LedgerEngineError",
    "InvalidStateTransition",
    "OrderNotFound",
    "InvariantViolation",
    "PersistenceError",
    "BusinessRuleDenial",
    # Config
    "AShareFeeConfig",
    "HKShareFeeConfig",
    "IPOConfig",
    "BlockTradeConfig",
    "BoardConfig",
    "ConditionalOrderConfig",
    "WithdrawConfig",
    "LedgerEngineConfig",
    "get_default_config",
    "load_config",
    # Calculators
    "FeeCalculator",
    "EligibilityEngine",
    "ReferenceData",
    "StaticReferenceData",
    # Stores
    "AccountStore",
    "PositionStore",
    "OrderStore",
    "LedgerStore",
    "UnitOfWork",
    "MemoryDatabase",
    "MemoryUnitOfWork",
    "memory_uow_factory",
    "SqlUnitOfWork",
    "sql_uow_factory",
    # Ledger and lifecycle
    "FundLedger",
    "VALID_TRANSITIONS",
    "StateTransitionEvent",
    "TransitionGuard",
    "OrderStateMachine",
    "ValidationResult",
    "OrderValidator",
    "OrderLifecycle",
    "SettlementLedger",
    "FundsService",
    # Audit
    "AuditAction",
    "AuditTargetType",
    "AuditRecord",
    "AuditRecorder",
    "InMemoryAuditRecorder",
    "SqlAuditRecorder",
    "record_safely",
]
