"""
Ledger Engine - Eligibility Engine.

============================================================
PURPOSE
============================================================
Pure predicates gating the riskier order types.

CHECKS:
1. IPO qualification     - trade days, balance, apply limit
2. Block-trade match     - amount, minimum lot, discount rate
3. Board risk scoring    - quota, manual threshold, limit-up streak,
                           risk threshold (strict priority order)

Business-rule failures are returned as decisions, never raised.
Only malformed input (negative numbers) raises ValueError.

============================================================
"""

from decimal import Decimal
from typing import Optional

from .config import BlockTradeConfig, BoardConfig, IPOConfig
from .types import EligibilityDecision, RiskLevel, ZERO


def _require_non_negative(**values) -> None:
    for name, value in values.items():
        if value is None or value < 0:
            raise ValueError(f"{name} must be a non-negative number, got {value!r}")


class EligibilityEngine:
    """
    Eligibility and risk checks for IPO, block and board orders.

    Each check is independent and returns an EligibilityDecision.
    """

    def __init__(
        self,
        ipo: Optional[IPOConfig] = None,
        block: Optional[BlockTradeConfig] = None,
        board: Optional[BoardConfig] = None,
    ):
        self._ipo = ipo or IPOConfig()
        self._block = block or BlockTradeConfig()
        self._board = board or BoardConfig()

    # --------------------------------------------------------
    # IPO
    # --------------------------------------------------------

    def check_ipo_qualification(
        self,
        trade_days_on_record: int,
        balance: Decimal,
        apply_amount: Decimal,
    ) -> EligibilityDecision:
        """
        IPO subscription qualification.

        Conditions in order; the first failure is reported:
        trade days >= qualification days, balance >= apply amount,
        apply amount <= max apply amount.
        """
        _require_non_negative(
            trade_days_on_record=trade_days_on_record,
            balance=balance,
            apply_amount=apply_amount,
        )
        cfg = self._ipo

        if trade_days_on_record < cfg.qualification_days:
            return EligibilityDecision(
                approved=False,
                reason=f"insufficient trade days on record: {trade_days_on_record} < {cfg.qualification_days}",
            )

        if balance < apply_amount:
            return EligibilityDecision(
                approved=False,
                reason=f"insufficient balance for subscription: {balance} < {apply_amount}",
            )

        if apply_amount > cfg.max_apply_amount:
            return EligibilityDecision(
                approved=False,
                reason=f"apply amount exceeds limit of {cfg.max_apply_amount}",
            )

        return EligibilityDecision(approved=True, reason="qualified")

    # --------------------------------------------------------
    # BLOCK TRADE
    # --------------------------------------------------------

    def match_block_trade(
        self,
        price: Decimal,
        quantity: int,
        discount_rate: Decimal = ZERO,
    ) -> EligibilityDecision:
        """
        Block-trade matching thresholds.

        The minimum lot is the market-wide value from configuration.

        Args:
            price: Negotiated price
            quantity: Share quantity
            discount_rate: Discount to market price (0.05 = 5%)
        """
        _require_non_negative(price=price, quantity=quantity, discount_rate=discount_rate)
        cfg = self._block
        lot = cfg.min_quantity
        amount = price * quantity

        if amount < cfg.min_amount:
            return EligibilityDecision(
                approved=False,
                reason=f"amount {amount} below block minimum {cfg.min_amount}",
            )

        if quantity < lot:
            return EligibilityDecision(
                approved=False,
                reason=f"quantity {quantity} below minimum lot {lot}",
            )

        if discount_rate > cfg.max_discount_rate:
            return EligibilityDecision(
                approved=False,
                reason=f"discount rate {discount_rate} exceeds maximum {cfg.max_discount_rate}",
            )

        return EligibilityDecision(approved=True, reason="matched")

    # --------------------------------------------------------
    # BOARD STRATEGY
    # --------------------------------------------------------

    def score_board_risk(
        self,
        order_amount: Decimal,
        user_used_quota_today: Decimal,
        consecutive_limit_up_days: int,
    ) -> EligibilityDecision:
        """
        Risk scoring for a limit-up board strategy.

        Evaluated in strict priority order, first match wins. Quota and
        absolute-threshold checks come before risk-level scoring so a
        large order can never fall through to auto-approval.
        """
        _require_non_negative(
            order_amount=order_amount,
            user_used_quota_today=user_used_quota_today,
            consecutive_limit_up_days=consecutive_limit_up_days,
        )
        cfg = self._board
        remaining_quota = cfg.daily_user_quota - user_used_quota_today

        if order_amount > remaining_quota:
            return EligibilityDecision(
                approved=False,
                manual_required=True,
                reason=f"exceeds daily quota (remaining {remaining_quota})",
                risk_level=RiskLevel.HIGH,
            )

        if order_amount > cfg.manual_approval_threshold:
            return EligibilityDecision(
                approved=False,
                manual_required=True,
                reason="exceeds manual-approval threshold",
                risk_level=RiskLevel.HIGH,
            )

        if consecutive_limit_up_days >= cfg.high_risk_limit_up_days:
            return EligibilityDecision(
                approved=False,
                manual_required=True,
                reason=f"high risk: {cfg.high_risk_limit_up_days}+ consecutive limit-up days",
                risk_level=RiskLevel.HIGH,
            )

        if order_amount > cfg.risk_amount_threshold:
            return EligibilityDecision(
                approved=True,
                reason="medium risk, auto-approved",
                risk_level=RiskLevel.MEDIUM,
            )

        return EligibilityDecision(
            approved=True,
            reason="low risk, auto-approved",
            risk_level=RiskLevel.LOW,
        )
