"""
Ledger Engine - Order Request Validation.

============================================================
PURPOSE
============================================================
Validates order submissions before anything touches the
FundLedger.

VALIDATION STEPS:
1. Trade type is a known TradeType
2. Identity fields (user, symbol)
3. Price and quantity strictly positive
4. Currency allowed for the trade type
5. Side allowed for the trade type (ipo/board are buy-only)
6. Trade-type specific fields (block, conditional)

A failed step is a VALIDATION outcome; nothing is frozen.

============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from .types import (
    ConditionalOrderKind,
    Currency,
    OrderRequest,
    OrderSide,
    TradeType,
    TriggerCondition,
    to_decimal,
)


logger = logging.getLogger(__name__)


# ============================================================
# VALIDATION RESULT
# ============================================================

@dataclass
class ValidationResult:
    """Result of order request validation."""

    is_valid: bool
    """Whether validation passed."""

    error_message: Optional[str] = None
    """Error message if invalid."""

    field_name: Optional[str] = None
    """Offending field if invalid."""

    trade_data: Dict[str, Any] = field(default_factory=dict)
    """Normalized trade-type fields (JSON-safe) when valid."""


def _invalid(message: str, field_name: Optional[str] = None) -> ValidationResult:
    return ValidationResult(is_valid=False, error_message=message, field_name=field_name)


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return to_decimal(value)
    except (InvalidOperation, ValueError):
        return None


# ============================================================
# VALIDATOR
# ============================================================

class OrderValidator:
    """
    Validates OrderRequest objects.

    Validation failures are deterministic and logged.
    """

    def validate(self, request: OrderRequest) -> ValidationResult:
        """Run every validation step; the first failure is returned."""
        for step in (
            self._validate_trade_type,
            self._validate_identity,
            self._validate_amounts,
            self._validate_currency,
            self._validate_side,
        ):
            result = step(request)
            if not result.is_valid:
                logger.warning(f"Order validation failed for user {request.user_id}: {result.error_message}")
                return result

        result = self._validate_trade_data(request)
        if not result.is_valid:
            logger.warning(f"Order validation failed for user {request.user_id}: {result.error_message}")
        return result

    def _validate_trade_type(self, request: OrderRequest) -> ValidationResult:
        if not isinstance(request.trade_type, TradeType):
            return _invalid(f"unsupported trade type: {request.trade_type!r}", "trade_type")
        return ValidationResult(is_valid=True)

    def _validate_identity(self, request: OrderRequest) -> ValidationResult:
        if not request.user_id or not str(request.user_id).strip():
            return _invalid("user_id is required", "user_id")
        if not request.symbol or not str(request.symbol).strip():
            return _invalid("symbol is required", "symbol")
        return ValidationResult(is_valid=True)

    def _validate_amounts(self, request: OrderRequest) -> ValidationResult:
        price = _parse_decimal(request.price)
        if price is None or not price.is_finite() or price <= 0:
            return _invalid("price must be a positive number", "price")

        quantity = request.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return _invalid("quantity must be a positive integer", "quantity")

        return ValidationResult(is_valid=True)

    def _validate_currency(self, request: OrderRequest) -> ValidationResult:
        if not isinstance(request.currency, Currency):
            return _invalid(f"unsupported currency: {request.currency!r}", "currency")
        if request.trade_type is not TradeType.HK_SHARE and request.currency is not Currency.CNY:
            return _invalid(
                f"{request.trade_type.value} orders settle in CNY only",
                "currency",
            )
        return ValidationResult(is_valid=True)

    def _validate_side(self, request: OrderRequest) -> ValidationResult:
        if not isinstance(request.side, OrderSide):
            return _invalid(f"unsupported side: {request.side!r}", "side")
        if request.trade_type.buy_only() and request.side is not OrderSide.BUY:
            return _invalid(f"{request.trade_type.value} orders must be buys", "side")
        return ValidationResult(is_valid=True)

    def _validate_trade_data(self, request: OrderRequest) -> ValidationResult:
        data = request.trade_data or {}

        if request.trade_type is TradeType.BLOCK:
            return self._validate_block(data)
        if request.trade_type is TradeType.CONDITIONAL:
            return self._validate_conditional(data)

        return ValidationResult(is_valid=True, trade_data={})

    def _validate_block(self, data: Dict[str, Any]) -> ValidationResult:
        discount = _parse_decimal(data.get("discount_rate"))
        if discount is None or discount < 0 or discount >= 1:
            return _invalid("discount_rate must be in [0, 1)", "discount_rate")

        normalized = {"discount_rate": str(discount)}
        return ValidationResult(is_valid=True, trade_data=normalized)

    def _validate_conditional(self, data: Dict[str, Any]) -> ValidationResult:
        try:
            kind = ConditionalOrderKind(data.get("order_kind"))
        except ValueError:
            return _invalid("order_kind must be 'limit' or 'market'", "order_kind")

        trigger_price = _parse_decimal(data.get("trigger_price"))
        if trigger_price is None or not trigger_price.is_finite() or trigger_price <= 0:
            return _invalid("trigger_price must be a positive number", "trigger_price")

        try:
            condition = TriggerCondition(data.get("trigger_condition"))
        except ValueError:
            return _invalid("trigger_condition must be 'gte' or 'lte'", "trigger_condition")

        return ValidationResult(
            is_valid=True,
            trade_data={
                "order_kind": kind.value,
                "trigger_price": str(trigger_price),
                "trigger_condition": condition.value,
            },
        )
