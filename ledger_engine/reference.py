"""
Ledger Engine - Reference Data.

============================================================
PURPOSE
============================================================
User and market facts consumed by eligibility checks and
cross-currency fee conversion.

Market data retrieval is external; the engine only sees this
interface.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional, Tuple

from .types import Currency, to_decimal


logger = logging.getLogger(__name__)


class ReferenceData(ABC):
    """Facts the engine reads but never owns."""

    @abstractmethod
    def trade_days_on_record(self, user_id: str) -> int:
        """Number of days the user has traded (IPO qualification)."""
        pass

    @abstractmethod
    def consecutive_limit_up_days(self, symbol: str) -> int:
        """Current limit-up streak of a symbol (board risk scoring)."""
        pass

    @abstractmethod
    def exchange_rate(self, base: Currency, quote: Currency) -> Optional[Decimal]:
        """Rate converting one unit of base into quote, None if unknown."""
        pass


class StaticReferenceData(ReferenceData):
    """
    Dictionary-backed reference data.

    Unknown users and symbols default to zero; a currency converted
    to itself always has rate 1.
    """

    def __init__(
        self,
        trade_days: Optional[Dict[str, int]] = None,
        limit_up_days: Optional[Dict[str, int]] = None,
        rates: Optional[Dict[Tuple[Currency, Currency], Decimal]] = None,
    ):
        self._trade_days = dict(trade_days or {})
        self._limit_up_days = dict(limit_up_days or {})
        self._rates = {pair: to_decimal(rate) for pair, rate in (rates or {}).items()}

    def set_trade_days(self, user_id: str, days: int) -> None:
        self._trade_days[user_id] = days

    def set_limit_up_days(self, symbol: str, days: int) -> None:
        self._limit_up_days[symbol] = days

    def set_rate(self, base: Currency, quote: Currency, rate) -> None:
        self._rates[(base, quote)] = to_decimal(rate)

    def trade_days_on_record(self, user_id: str) -> int:
        return self._trade_days.get(user_id, 0)

    def consecutive_limit_up_days(self, symbol: str) -> int:
        return self._limit_up_days.get(symbol, 0)

    def exchange_rate(self, base: Currency, quote: Currency) -> Optional[Decimal]:
        if base is quote:
            return Decimal("1")
        rate = self._rates.get((base, quote))
        if rate is None:
            logger.debug(f"No exchange rate configured for {base.value}/{quote.value}")
        return rate
