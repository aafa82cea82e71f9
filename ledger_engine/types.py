"""
Ledger Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Order & Fund Ledger Engine.

CRITICAL PRINCIPLE:
    "Money is never created or destroyed."
    "available + frozen changes only through FundLedger."

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, Generic, TypeVar
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal
import uuid


T = TypeVar("T")

ZERO = Decimal("0")


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value: Any) -> Decimal:
    """Coerce a number or numeric string to Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================
# MARKET ENUMS
# ============================================================

class Currency(Enum):
    """Settlement currency of an account."""

    CNY = "CNY"
    HKD = "HKD"


class OrderSide(Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"


class TradeType(Enum):
    """Instrument class / order family."""

    A_SHARE = "a_share"
    HK_SHARE = "hk_share"
    BLOCK = "block"
    IPO = "ipo"
    BOARD = "board"
    CONDITIONAL = "conditional"

    def buy_only(self) -> bool:
        """IPO subscriptions and limit-up strategies can only buy."""
        return self in {TradeType.IPO, TradeType.BOARD}


class ConditionalOrderKind(Enum):
    """Order placed once a conditional trigger fires."""

    LIMIT = "limit"
    MARKET = "market"


class TriggerCondition(Enum):
    """Comparison applied to the trigger price."""

    GTE = "gte"
    LTE = "lte"


# ============================================================
# ORDER LIFECYCLE STATES
# ============================================================

class OrderStatus(Enum):
    """
    Order lifecycle status.

    State Machine:

        PENDING ──► APPROVED ──► COMPLETED
           │
           ├──► REJECTED
           │
           └──► CANCELLED

    COMPLETED, REJECTED and CANCELLED are terminal.
    """

    PENDING = "pending"
    """Submitted, funds or shares held, awaiting staff decision."""

    APPROVED = "approved"
    """Accepted by staff, execution in progress."""

    COMPLETED = "completed"
    """Executed and booked."""

    REJECTED = "rejected"
    """Refused by staff, holds released."""

    CANCELLED = "cancelled"
    """Withdrawn before execution, holds released."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal status."""
        return self in {
            OrderStatus.COMPLETED,
            OrderStatus.REJECTED,
            OrderStatus.CANCELLED,
        }


class StaffAction(Enum):
    """Decision a staff member can take on a pending order."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"

    def requires_reason(self) -> bool:
        """Reject and cancel must always say why."""
        return self in {StaffAction.REJECT, StaffAction.CANCEL}


class LedgerEntryType(Enum):
    """Transaction flow type."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRADE = "trade"
    FEE = "fee"
    ADJUST = "adjust"

    def settled_on_creation(self) -> bool:
        """Only trade flows wait for external settlement."""
        return self is not LedgerEntryType.TRADE


class RiskLevel(Enum):
    """Risk level attached to an eligibility decision."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================
# RESULT TYPES
# ============================================================

class ErrorKind(Enum):
    """Tag carried by every non-success outcome and engine error."""

    VALIDATION = "VALIDATION"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_POSITION = "INSUFFICIENT_POSITION"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    UNSETTLED_FLOW = "UNSETTLED_FLOW"
    WITHDRAW_LIMIT = "WITHDRAW_LIMIT"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    PERSISTENCE = "PERSISTENCE"


@dataclass
class Outcome(Generic[T]):
    """
    Success value or tagged business failure.

    Expected denials (insufficient balance, eligibility) travel as
    values; state conflicts and persistence faults are raised.
    """

    ok: bool
    """Whether the operation succeeded."""

    value: Optional[T] = None
    """Result value on success."""

    kind: Optional[ErrorKind] = None
    """Failure tag when not ok."""

    reason: str = ""
    """Human-readable reason when not ok."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Extra context for the caller (e.g. unsettled amount)."""

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def denied(
        cls,
        kind: ErrorKind,
        reason: str,
        **details: Any,
    ) -> "Outcome[T]":
        return cls(ok=False, kind=kind, reason=reason, details=details)


# ============================================================
# FEES
# ============================================================

@dataclass(frozen=True)
class FeeBreakdown:
    """Fee computation result in one currency."""

    amount: Decimal
    """Gross notional (price * quantity)."""

    commission: Decimal
    """Broker commission after minimum floor."""

    stamp_duty: Decimal
    """Stamp duty (sell side only)."""

    transfer_fee: Decimal
    """Transfer fee."""

    total_fee: Decimal
    """commission + stamp_duty + transfer_fee."""

    total_amount: Decimal
    """Cash moved: amount + fee for buys, amount - fee for sells."""

    currency: Currency = Currency.CNY
    """Currency the figures are expressed in."""

    exchange_rate: Decimal = Decimal("1")
    """Rate applied to reach this currency from the quote currency."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "commission": str(self.commission),
            "stamp_duty": str(self.stamp_duty),
            "transfer_fee": str(self.transfer_fee),
            "total_fee": str(self.total_fee),
            "total_amount": str(self.total_amount),
            "currency": self.currency.value,
            "exchange_rate": str(self.exchange_rate),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeBreakdown":
        return cls(
            amount=Decimal(data["amount"]),
            commission=Decimal(data["commission"]),
            stamp_duty=Decimal(data["stamp_duty"]),
            transfer_fee=Decimal(data["transfer_fee"]),
            total_fee=Decimal(data["total_fee"]),
            total_amount=Decimal(data["total_amount"]),
            currency=Currency(data.get("currency", Currency.CNY.value)),
            exchange_rate=Decimal(data.get("exchange_rate", "1")),
        )


@dataclass(frozen=True)
class HKFeeBreakdown:
    """HK-share fees in quote currency and converted to settlement currency."""

    quote: FeeBreakdown
    """Figures in HKD."""

    settlement: FeeBreakdown
    """Figures converted with the exchange rate."""


# ============================================================
# ELIGIBILITY
# ============================================================

@dataclass(frozen=True)
class EligibilityDecision:
    """
    Ephemeral eligibility verdict.

    Not an entity of its own; attached to the order at creation.
    """

    approved: bool
    """Whether the check passed."""

    manual_required: bool = False
    """Whether staff must review before execution."""

    reason: str = ""
    """Why the check failed or which branch passed."""

    risk_level: Optional[RiskLevel] = None
    """Risk level (board strategies only)."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "manual_required": self.manual_required,
            "reason": self.reason,
            "risk_level": self.risk_level.value if self.risk_level else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EligibilityDecision":
        risk = data.get("risk_level")
        return cls(
            approved=bool(data["approved"]),
            manual_required=bool(data.get("manual_required", False)),
            reason=data.get("reason", ""),
            risk_level=RiskLevel(risk) if risk else None,
        )


# ============================================================
# LEDGER RECORDS
# ============================================================

@dataclass
class AccountBalance:
    """Cash balance of one user in one currency."""

    user_id: str
    currency: Currency
    available: Decimal = ZERO
    frozen: Decimal = ZERO
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def total(self) -> Decimal:
        """available + frozen."""
        return self.available + self.frozen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "currency": self.currency.value,
            "available": str(self.available),
            "frozen": str(self.frozen),
        }


@dataclass
class PositionRecord:
    """Share holding of one user in one symbol."""

    user_id: str
    symbol: str
    quantity: int = 0
    available_quantity: int = 0
    avg_cost: Decimal = ZERO
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "available_quantity": self.available_quantity,
            "avg_cost": str(self.avg_cost),
        }


@dataclass
class LedgerEntryRecord:
    """
    Transaction flow entry.

    Immutable after creation except for `settled` (false -> true).
    """

    user_id: str
    currency: Currency
    entry_type: LedgerEntryType
    amount: Decimal
    """Signed amount: negative leaves the account."""

    balance_after: Decimal
    """Available balance after the mutation that produced this entry."""

    settled: bool = False
    order_id: Optional[str] = None
    description: str = ""
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    settled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "currency": self.currency.value,
            "type": self.entry_type.value,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "settled": self.settled,
            "order_id": self.order_id,
            "description": self.description,
        }


# ============================================================
# ORDERS
# ============================================================

@dataclass
class OrderRequest:
    """Client order submission."""

    user_id: str
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: int
    trade_type: TradeType
    currency: Currency = Currency.CNY
    trade_data: Dict[str, Any] = field(default_factory=dict)
    """Trade-type specific fields (discount_rate, trigger_price, ...)."""


@dataclass
class OrderRecord:
    """Persisted order of any trade type."""

    user_id: str
    trade_type: TradeType
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: int
    currency: Currency
    status: OrderStatus = OrderStatus.PENDING
    order_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    frozen_amount: Decimal = ZERO
    """Cash held at creation (buy side)."""

    reserved_quantity: int = 0
    """Shares held at creation (sell side)."""

    fee_estimate: Optional[FeeBreakdown] = None
    eligibility: Optional[EligibilityDecision] = None
    manual_review_required: bool = False
    trade_data: Dict[str, Any] = field(default_factory=dict)

    reason: Optional[str] = None
    decided_by: Optional[str] = None
    decided_by_name: Optional[str] = None
    decided_at: Optional[datetime] = None
    execution_price: Optional[Decimal] = None
    fee_actual: Optional[FeeBreakdown] = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def amount(self) -> Decimal:
        """Gross notional at the order price."""
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot for audit records and API responses."""
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "trade_type": self.trade_type.value,
            "symbol": self.symbol,
            "side": self.side.value,
            "price": str(self.price),
            "quantity": self.quantity,
            "currency": self.currency.value,
            "status": self.status.value,
            "frozen_amount": str(self.frozen_amount),
            "reserved_quantity": self.reserved_quantity,
            "manual_review_required": self.manual_review_required,
            "eligibility": self.eligibility.to_dict() if self.eligibility else None,
            "reason": self.reason,
            "execution_price": str(self.execution_price) if self.execution_price is not None else None,
        }


# ============================================================
# WITHDRAWAL
# ============================================================

@dataclass(frozen=True)
class WithdrawalCheck:
    """Withdrawal eligibility facts for one user and currency."""

    user_id: str
    currency: Currency
    unsettled_amount: Decimal
    require_flow_settled: bool

    @property
    def blocked(self) -> bool:
        """Policy decision: block when flows must be settled and are not."""
        return self.require_flow_settled and self.unsettled_amount > 0
