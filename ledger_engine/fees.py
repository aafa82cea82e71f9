"""
Ledger Engine - Fee Calculator.

============================================================
PURPOSE
============================================================
Pure fee math for every instrument class.

A-SHARE:
    amount       = price * quantity
    commission   = max(amount * commission_rate, min_commission)
    stamp_duty   = amount * stamp_duty_rate   (sell only)
    transfer_fee = amount * transfer_fee_rate
    total_fee    = commission + stamp_duty + transfer_fee
    total_amount = amount + total_fee (buy) | amount - total_fee (sell)

HK-SHARE:
    Same structure in HKD, commission floor applied in HKD,
    then every figure converted with the exchange rate.

INVARIANTS:
- No state, no I/O, exact Decimal arithmetic
- Buy total_amount >= amount, sell total_amount <= amount
- Inputs are assumed positive (validated by the caller)

============================================================
"""

from decimal import Decimal
from typing import Optional

from .config import AShareFeeConfig, HKShareFeeConfig
from .types import (
    Currency,
    FeeBreakdown,
    HKFeeBreakdown,
    OrderSide,
    TradeType,
    ZERO,
)


class FeeCalculator:
    """
    Computes commission, stamp duty, transfer fee and totals.

    Rates come from configuration so each market or deployment can
    swap them without code changes.
    """

    def __init__(
        self,
        a_share: Optional[AShareFeeConfig] = None,
        hk_share: Optional[HKShareFeeConfig] = None,
    ):
        self._a_share = a_share or AShareFeeConfig()
        self._hk_share = hk_share or HKShareFeeConfig()

    @staticmethod
    def _breakdown(
        amount: Decimal,
        side: OrderSide,
        commission_rate: Decimal,
        min_commission: Decimal,
        stamp_duty_rate: Decimal,
        transfer_fee_rate: Decimal,
        currency: Currency,
    ) -> FeeBreakdown:
        commission = max(amount * commission_rate, min_commission)
        stamp_duty = amount * stamp_duty_rate if side is OrderSide.SELL else ZERO
        transfer_fee = amount * transfer_fee_rate
        total_fee = commission + stamp_duty + transfer_fee

        if side is OrderSide.BUY:
            total_amount = amount + total_fee
        else:
            total_amount = amount - total_fee

        return FeeBreakdown(
            amount=amount,
            commission=commission,
            stamp_duty=stamp_duty,
            transfer_fee=transfer_fee,
            total_fee=total_fee,
            total_amount=total_amount,
            currency=currency,
        )

    def a_share(self, price: Decimal, quantity: int, side: OrderSide) -> FeeBreakdown:
        """A-share fees in CNY."""
        cfg = self._a_share
        return self._breakdown(
            amount=price * quantity,
            side=side,
            commission_rate=cfg.commission_rate,
            min_commission=cfg.min_commission,
            stamp_duty_rate=cfg.stamp_duty_rate,
            transfer_fee_rate=cfg.transfer_fee_rate,
            currency=Currency.CNY,
        )

    def hk_share(
        self,
        price: Decimal,
        quantity: int,
        side: OrderSide,
        exchange_rate: Decimal,
        settlement_currency: Currency = Currency.CNY,
    ) -> HKFeeBreakdown:
        """
        HK-share fees in HKD and in the settlement currency.

        Args:
            price: Price in HKD
            quantity: Share quantity
            side: Order side
            exchange_rate: HKD -> settlement currency rate
            settlement_currency: Currency the account settles in
        """
        cfg = self._hk_share
        quote = self._breakdown(
            amount=price * quantity,
            side=side,
            commission_rate=cfg.commission_rate,
            min_commission=cfg.min_commission,
            stamp_duty_rate=cfg.stamp_duty_rate,
            transfer_fee_rate=cfg.transfer_fee_rate,
            currency=Currency.HKD,
        )

        if settlement_currency is Currency.HKD:
            return HKFeeBreakdown(quote=quote, settlement=quote)

        settlement = FeeBreakdown(
            amount=quote.amount * exchange_rate,
            commission=quote.commission * exchange_rate,
            stamp_duty=quote.stamp_duty * exchange_rate,
            transfer_fee=quote.transfer_fee * exchange_rate,
            total_fee=quote.total_fee * exchange_rate,
            total_amount=quote.total_amount * exchange_rate,
            currency=settlement_currency,
            exchange_rate=exchange_rate,
        )
        return HKFeeBreakdown(quote=quote, settlement=settlement)

    @staticmethod
    def no_fee(price: Decimal, quantity: int, currency: Currency = Currency.CNY) -> FeeBreakdown:
        """Fee-free breakdown (IPO subscriptions)."""
        amount = price * quantity
        return FeeBreakdown(
            amount=amount,
            commission=ZERO,
            stamp_duty=ZERO,
            transfer_fee=ZERO,
            total_fee=ZERO,
            total_amount=amount,
            currency=currency,
        )

    def for_trade(
        self,
        trade_type: TradeType,
        price: Decimal,
        quantity: int,
        side: OrderSide,
        currency: Currency = Currency.CNY,
        exchange_rate: Optional[Decimal] = None,
    ) -> FeeBreakdown:
        """
        Settlement-currency breakdown for a trade type.

        a_share, block, board and conditional use the A-share schedule;
        hk_share uses the HK schedule; ipo is fee-free.
        """
        if trade_type is TradeType.HK_SHARE:
            rate = exchange_rate if exchange_rate is not None else self._hk_share.default_exchange_rate
            return self.hk_share(price, quantity, side, rate, currency).settlement
        if trade_type is TradeType.IPO:
            return self.no_fee(price, quantity, currency)
        return self.a_share(price, quantity, side)
