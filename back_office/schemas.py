"""
Pydantic Schemas for the Back-Office Handlers.

Field names follow the handler wire contract (camelCase aliases);
Python code uses the snake_case attribute names.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================
# ENUMS
# =============================================================

class TradeTypeEnum(str, Enum):
    A_SHARE = "a_share"
    HK_SHARE = "hk_share"
    BLOCK = "block"
    IPO = "ipo"
    BOARD = "board"
    CONDITIONAL = "conditional"


class SideEnum(str, Enum):
    BUY = "buy"
    SELL = "sell"


class CurrencyEnum(str, Enum):
    CNY = "CNY"
    HKD = "HKD"


class StaffActionEnum(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================
# ERRORS
# =============================================================

class ErrorInfo(_WireModel):
    """Tagged failure returned to the caller."""
    kind: str
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)


# =============================================================
# ORDER SCHEMAS
# =============================================================

class SubmitOrderRequest(_WireModel):
    """Order submission from a client."""
    user_id: str = Field(alias="userId", min_length=1)
    symbol: str = Field(min_length=1)
    side: SideEnum
    price: Decimal = Field(gt=0)
    quantity: int = Field(gt=0)
    trade_type: TradeTypeEnum = Field(default=TradeTypeEnum.A_SHARE, alias="tradeType")
    currency: CurrencyEnum = CurrencyEnum.CNY

    # Block trades
    discount_rate: Optional[Decimal] = Field(default=None, alias="discountRate")

    # Conditional orders
    order_kind: Optional[str] = Field(default=None, alias="orderKind")
    trigger_price: Optional[Decimal] = Field(default=None, alias="triggerPrice")
    trigger_condition: Optional[str] = Field(default=None, alias="triggerCondition")

    def trade_data(self) -> Dict[str, Any]:
        """Trade-type specific fields, snake_case, unset ones dropped."""
        fields = {
            "discount_rate": self.discount_rate,
            "order_kind": self.order_kind,
            "trigger_price": self.trigger_price,
            "trigger_condition": self.trigger_condition,
        }
        return {k: v for k, v in fields.items() if v is not None}


class SubmitOrderResponse(_WireModel):
    """Result of an order submission."""
    success: bool
    order_id: Optional[str] = Field(default=None, alias="orderId")
    status: Optional[str] = None
    manual_review_required: bool = Field(default=False, alias="manualReviewRequired")
    frozen_amount: Optional[Decimal] = Field(default=None, alias="frozenAmount")
    error: Optional[ErrorInfo] = None


class StaffDecisionRequest(_WireModel):
    """Staff decision on a pending order."""
    order_id: str = Field(alias="orderId", min_length=1)
    action: StaffActionEnum
    admin_id: str = Field(alias="adminId", min_length=1)
    admin_name: Optional[str] = Field(default=None, alias="adminName")
    reason: Optional[str] = None
    execution_price: Optional[Decimal] = Field(default=None, alias="executionPrice", gt=0)


class StaffDecisionResponse(_WireModel):
    """Result of a staff decision."""
    success: bool
    target_id: str = Field(alias="targetId")
    action: str
    status: Optional[str] = None
    error: Optional[ErrorInfo] = None


class OrderSummary(_WireModel):
    """Review queue row."""
    order_id: str = Field(alias="orderId")
    user_id: str = Field(alias="userId")
    trade_type: str = Field(alias="tradeType")
    symbol: str
    side: str
    price: Decimal
    quantity: int
    currency: str
    status: str
    frozen_amount: Decimal = Field(alias="frozenAmount")
    manual_review_required: bool = Field(alias="manualReviewRequired")
    risk_level: Optional[str] = Field(default=None, alias="riskLevel")
    eligibility_reason: Optional[str] = Field(default=None, alias="eligibilityReason")
    created_at: datetime = Field(alias="createdAt")


class OrderListResponse(_WireModel):
    orders: List[OrderSummary]
    total: int


# =============================================================
# FUNDS SCHEMAS
# =============================================================

class WithdrawalCheckRequest(_WireModel):
    user_id: str = Field(alias="userId", min_length=1)
    currency: CurrencyEnum = CurrencyEnum.CNY


class WithdrawalCheckResponse(_WireModel):
    """Unsettled amount plus the policy verdict."""
    success: bool = True
    user_id: Optional[str] = Field(default=None, alias="userId")
    currency: Optional[str] = None
    unsettled_amount: Optional[Decimal] = Field(default=None, alias="unsettledAmount")
    require_flow_settled: Optional[bool] = Field(default=None, alias="requireFlowSettled")
    blocked: Optional[bool] = None
    error: Optional[ErrorInfo] = None


class FundRequest(_WireModel):
    """Deposit or withdrawal request."""
    user_id: str = Field(alias="userId", min_length=1)
    currency: CurrencyEnum = CurrencyEnum.CNY
    amount: Decimal = Field(gt=0)
    description: str = ""


class AdjustmentRequest(_WireModel):
    """Staff balance correction (signed amount)."""
    user_id: str = Field(alias="userId", min_length=1)
    currency: CurrencyEnum = CurrencyEnum.CNY
    amount: Decimal
    reason: str = Field(min_length=1)
    admin_id: str = Field(alias="adminId", min_length=1)
    admin_name: Optional[str] = Field(default=None, alias="adminName")


class FundResponse(_WireModel):
    """Result of a funds operation."""
    success: bool
    entry_id: Optional[str] = Field(default=None, alias="entryId")
    balance_after: Optional[Decimal] = Field(default=None, alias="balanceAfter")
    error: Optional[ErrorInfo] = None
