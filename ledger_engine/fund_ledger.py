"""
Ledger Engine - Fund Ledger.

============================================================
PURPOSE
============================================================
The ONLY code path allowed to change an account's available or
frozen balance, or a position's quantity fields.

OPERATIONS:
- freeze / unfreeze          available <-> frozen
- settle_buy / settle_sell   execution cash effects
- reserve / release          sell-side share holds
- apply_fill                 position and average cost
- deposit / withdraw / adjust
- record_entry               ledger flow with balance_after

CONCURRENCY:
Every read goes through get_for_update() of the bound unit of
work, so the balance check and the write are inseparable.

INVARIANTS:
- available >= 0 and frozen >= 0 at all times
- freeze(x) then unfreeze(x) restores both fields exactly
- Business shortfalls are returned as Outcome denials
- Broken invariants raise InvariantViolation

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from .errors import InvariantViolation
from .stores import UnitOfWork
from .types import (
    AccountBalance,
    Currency,
    ErrorKind,
    LedgerEntryRecord,
    LedgerEntryType,
    OrderSide,
    Outcome,
    PositionRecord,
    ZERO,
)


logger = logging.getLogger(__name__)


def _require_positive(name: str, value) -> None:
    if value is None or value <= 0:
        raise InvariantViolation(
            f"{name} must be positive, got {value!r}",
            context={name: str(value)},
        )


class FundLedger:
    """
    Balance and position mutations inside one unit of work.

    The ledger never commits; the caller's unit of work does.
    """

    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def balance(self, user_id: str, currency: Currency) -> AccountBalance:
        """Current balance, zero if the account was never touched."""
        account = self._uow.accounts.get(user_id, currency)
        return account or AccountBalance(user_id=user_id, currency=currency)

    def position(self, user_id: str, symbol: str) -> Optional[PositionRecord]:
        return self._uow.positions.get(user_id, symbol)

    # --------------------------------------------------------
    # CASH HOLDS
    # --------------------------------------------------------

    def freeze(
        self,
        user_id: str,
        currency: Currency,
        amount: Decimal,
    ) -> Outcome[AccountBalance]:
        """Move amount from available to frozen."""
        _require_positive("amount", amount)
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.available < amount:
            logger.warning(
                f"Freeze denied for user {user_id}: available "
                f"{account.available} {currency.value} < {amount}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_BALANCE,
                "insufficient available balance",
                available=str(account.available),
                required=str(amount),
            )

        account.available -= amount
        account.frozen += amount
        self._uow.accounts.save(account)

        logger.info(f"Froze {amount} {currency.value} for user {user_id}")
        return Outcome.success(account)

    def unfreeze(
        self,
        user_id: str,
        currency: Currency,
        amount: Decimal,
    ) -> AccountBalance:
        """
        Move amount from frozen back to available.

        Raises:
            InvariantViolation: If frozen would go negative
        """
        _require_positive("amount", amount)
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.frozen < amount:
            raise InvariantViolation(
                f"Unfreeze of {amount} {currency.value} exceeds frozen "
                f"{account.frozen} for user {user_id}",
                context={"user_id": user_id, "frozen": str(account.frozen), "amount": str(amount)},
            )

        account.frozen -= amount
        account.available += amount
        self._uow.accounts.save(account)

        logger.info(f"Unfroze {amount} {currency.value} for user {user_id}")
        return account

    # --------------------------------------------------------
    # EXECUTION
    # --------------------------------------------------------

    def settle_buy(
        self,
        user_id: str,
        currency: Currency,
        frozen_amount: Decimal,
        actual_cost: Optional[Decimal] = None,
    ) -> Outcome[AccountBalance]:
        """
        Release a buy hold as spent.

        The hold leaves the account without crediting available.
        When the executed cost differs from the hold, the excess is
        refunded to available or the shortfall is taken from it.
        """
        _require_positive("frozen_amount", frozen_amount)
        cost = frozen_amount if actual_cost is None else actual_cost
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.frozen < frozen_amount:
            raise InvariantViolation(
                f"Buy settlement of {frozen_amount} {currency.value} exceeds frozen "
                f"{account.frozen} for user {user_id}",
                context={"user_id": user_id, "frozen": str(account.frozen)},
            )

        refund = frozen_amount - cost
        if account.available + refund < 0:
            logger.warning(
                f"Buy settlement denied for user {user_id}: shortfall "
                f"{-refund} {currency.value} exceeds available {account.available}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_BALANCE,
                "execution cost exceeds frozen and available balance",
                available=str(account.available),
                shortfall=str(-refund),
            )

        account.frozen -= frozen_amount
        account.available += refund
        self._uow.accounts.save(account)

        logger.info(
            f"Settled buy for user {user_id}: released {frozen_amount} "
            f"{currency.value}, cost {cost}"
        )
        return Outcome.success(account)

    def settle_sell(
        self,
        user_id: str,
        currency: Currency,
        proceeds: Decimal,
    ) -> Outcome[AccountBalance]:
        """
        Credit sell proceeds (net of fees) to available.

        Proceeds can be negative when fees exceed a tiny notional.
        """
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.available + proceeds < 0:
            logger.warning(
                f"Sell settlement denied for user {user_id}: fees exceed "
                f"proceeds and available {account.available} {currency.value}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_BALANCE,
                "sell fees exceed proceeds and available balance",
                available=str(account.available),
                proceeds=str(proceeds),
            )

        account.available += proceeds
        self._uow.accounts.save(account)

        logger.info(f"Credited {proceeds} {currency.value} sell proceeds to user {user_id}")
        return Outcome.success(account)

    # --------------------------------------------------------
    # SHARE HOLDS
    # --------------------------------------------------------

    def reserve_quantity(
        self,
        user_id: str,
        symbol: str,
        quantity: int,
    ) -> Outcome[PositionRecord]:
        """Hold shares for a pending sell order."""
        _require_positive("quantity", quantity)
        position = self._uow.positions.get_for_update(user_id, symbol)
        held = position.available_quantity if position else 0

        if held < quantity:
            logger.warning(
                f"Reservation denied for user {user_id}: {symbol} "
                f"available {held} < {quantity}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_POSITION,
                "insufficient available position",
                symbol=symbol,
                available_quantity=held,
                required=quantity,
            )

        position.available_quantity -= quantity
        self._uow.positions.save(position)

        logger.info(f"Reserved {quantity} {symbol} for user {user_id}")
        return Outcome.success(position)

    def release_quantity(
        self,
        user_id: str,
        symbol: str,
        quantity: int,
    ) -> PositionRecord:
        """
        Return reserved shares to available.

        Raises:
            InvariantViolation: If available would exceed quantity
        """
        _require_positive("quantity", quantity)
        position = self._uow.positions.get_for_update(user_id, symbol)

        if position is None or position.available_quantity + quantity > position.quantity:
            raise InvariantViolation(
                f"Release of {quantity} {symbol} for user {user_id} exceeds reserved shares",
                context={"user_id": user_id, "symbol": symbol, "quantity": quantity},
            )

        position.available_quantity += quantity
        self._uow.positions.save(position)

        logger.info(f"Released {quantity} {symbol} for user {user_id}")
        return position

    def apply_fill(
        self,
        user_id: str,
        symbol: str,
        side: OrderSide,
        quantity: int,
        price: Decimal,
    ) -> Outcome[PositionRecord]:
        """
        Update a position for an executed fill.

        Buy: quantity and available grow, avg_cost is re-weighted.
        Sell: quantity and available shrink by the fill quantity.
        """
        _require_positive("quantity", quantity)
        _require_positive("price", price)
        position = self._uow.positions.get_for_update(user_id, symbol)

        if side is OrderSide.BUY:
            if position is None:
                position = PositionRecord(user_id=user_id, symbol=symbol)
            new_quantity = position.quantity + quantity
            position.avg_cost = (
                position.avg_cost * position.quantity + price * quantity
            ) / new_quantity
            position.quantity = new_quantity
            position.available_quantity += quantity
        else:
            held = position.available_quantity if position else 0
            if held < quantity:
                logger.warning(
                    f"Sell fill denied for user {user_id}: {symbol} "
                    f"available {held} < {quantity}"
                )
                return Outcome.denied(
                    ErrorKind.INSUFFICIENT_POSITION,
                    "insufficient available position",
                    symbol=symbol,
                    available_quantity=held,
                    required=quantity,
                )
            position.quantity -= quantity
            position.available_quantity -= quantity
            if position.quantity == 0:
                position.avg_cost = ZERO

        self._uow.positions.save(position)

        logger.info(
            f"Applied {side.value} fill of {quantity} {symbol} @ {price} "
            f"for user {user_id} (qty {position.quantity}, avg {position.avg_cost})"
        )
        return Outcome.success(position)

    # --------------------------------------------------------
    # FUNDS
    # --------------------------------------------------------

    def deposit(
        self,
        user_id: str,
        currency: Currency,
        amount: Decimal,
        description: str = "",
    ) -> LedgerEntryRecord:
        """Credit available and write a settled deposit entry."""
        _require_positive("amount", amount)
        account = self._uow.accounts.get_for_update(user_id, currency)
        account.available += amount
        self._uow.accounts.save(account)

        logger.info(f"Deposited {amount} {currency.value} for user {user_id}")
        return self.record_entry(
            account, LedgerEntryType.DEPOSIT, amount, description=description or "deposit"
        )

    def withdraw(
        self,
        user_id: str,
        currency: Currency,
        amount: Decimal,
        description: str = "",
    ) -> Outcome[LedgerEntryRecord]:
        """Debit available and write a settled withdraw entry."""
        _require_positive("amount", amount)
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.available < amount:
            logger.warning(
                f"Withdrawal denied for user {user_id}: available "
                f"{account.available} {currency.value} < {amount}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_BALANCE,
                "insufficient available balance",
                available=str(account.available),
                required=str(amount),
            )

        account.available -= amount
        self._uow.accounts.save(account)

        logger.info(f"Withdrew {amount} {currency.value} for user {user_id}")
        return Outcome.success(self.record_entry(
            account, LedgerEntryType.WITHDRAW, -amount, description=description or "withdrawal"
        ))

    def adjust(
        self,
        user_id: str,
        currency: Currency,
        amount: Decimal,
        description: str,
    ) -> Outcome[LedgerEntryRecord]:
        """Signed staff correction of available; never drives it negative."""
        if amount == 0:
            raise InvariantViolation("adjustment amount must be non-zero")
        account = self._uow.accounts.get_for_update(user_id, currency)

        if account.available + amount < 0:
            logger.warning(
                f"Adjustment denied for user {user_id}: {amount} "
                f"{currency.value} exceeds available {account.available}"
            )
            return Outcome.denied(
                ErrorKind.INSUFFICIENT_BALANCE,
                "adjustment would make available balance negative",
                available=str(account.available),
                amount=str(amount),
            )

        account.available += amount
        self._uow.accounts.save(account)

        logger.info(f"Adjusted user {user_id} by {amount} {currency.value}: {description}")
        return Outcome.success(self.record_entry(
            account, LedgerEntryType.ADJUST, amount, description=description
        ))

    # --------------------------------------------------------
    # LEDGER ENTRIES
    # --------------------------------------------------------

    def record_entry(
        self,
        account: AccountBalance,
        entry_type: LedgerEntryType,
        amount: Decimal,
        order_id: Optional[str] = None,
        description: str = "",
    ) -> LedgerEntryRecord:
        """
        Append a flow entry for a mutation already applied to account.

        balance_after is the account's available balance; only trade
        entries start unsettled.
        """
        entry = LedgerEntryRecord(
            user_id=account.user_id,
            currency=account.currency,
            entry_type=entry_type,
            amount=amount,
            balance_after=account.available,
            settled=entry_type.settled_on_creation(),
            order_id=order_id,
            description=description,
        )
        if entry.settled:
            entry.settled_at = entry.created_at

        self._uow.entries.add(entry)
        logger.debug(
            f"Ledger entry {entry.entry_id}: {entry_type.value} {amount} "
            f"{account.currency.value} user {account.user_id}"
        )
        return entry
