"""
Back-Office Handlers Package.

Handler-facing contracts of the ledger engine: order submission,
staff decisions, the review queue, withdrawal eligibility and
funds operations. Request/response bodies are pydantic models.
"""

from .schemas import (
    TradeTypeEnum,
    SideEnum,
    CurrencyEnum,
    StaffActionEnum,
    ErrorInfo,
    SubmitOrderRequest,
    SubmitOrderResponse,
    StaffDecisionRequest,
    StaffDecisionResponse,
    OrderSummary,
    OrderListResponse,
    WithdrawalCheckRequest,
    WithdrawalCheckResponse,
    FundRequest,
    AdjustmentRequest,
    FundResponse,
)
from .service import BackOfficeService


__all__ = [
    "TradeTypeEnum",
    "SideEnum",
    "CurrencyEnum",
    "StaffActionEnum",
    "ErrorInfo",
    "SubmitOrderRequest",
    "SubmitOrderResponse",
    "StaffDecisionRequest",
    "StaffDecisionResponse",
    "OrderSummary",
    "OrderListResponse",
    "WithdrawalCheckRequest",
    "WithdrawalCheckResponse",
    "FundRequest",
    "AdjustmentRequest",
    "FundResponse",
    "BackOfficeService",
]
