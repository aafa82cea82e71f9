"""
Ledger Engine - Funds Operations.

============================================================
PURPOSE
============================================================
Deposits, withdrawals and staff adjustments.

WITHDRAWAL RULES (checked in order):
1. min_amount <= amount <= max_amount     -> WITHDRAW_LIMIT
2. today's withdrawals + amount <= limit  -> WITHDRAW_LIMIT
3. no unsettled flow (policy flag)        -> UNSETTLED_FLOW
4. available >= amount                    -> INSUFFICIENT_BALANCE

Every operation writes a settled ledger entry in the same
transaction as the balance change.

============================================================
"""

import logging
from decimal import Decimal
from typing import List, Optional

from .audit import AuditAction, AuditRecord, AuditRecorder, AuditTargetType, record_safely
from .config import LedgerEngineConfig
from .errors import BusinessRuleDenial
from .fund_ledger import FundLedger
from .settlement import unsettled_amount
from .stores import UnitOfWork, UnitOfWorkFactory
from .types import (
    AccountBalance,
    Currency,
    ErrorKind,
    LedgerEntryRecord,
    LedgerEntryType,
    Outcome,
    PositionRecord,
    ZERO,
    to_decimal,
    utc_now,
)


logger = logging.getLogger(__name__)


def _positive_amount(amount) -> Optional[Decimal]:
    try:
        value = to_decimal(amount)
    except (ArithmeticError, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


class FundsService:
    """Cash movements in and out of user accounts."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        config: Optional[LedgerEngineConfig] = None,
        audit: Optional[AuditRecorder] = None,
    ):
        self._uow_factory = uow_factory
        self._config = config or LedgerEngineConfig()
        self._audit = audit

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    def balance(self, user_id: str, currency: Currency) -> AccountBalance:
        with self._uow_factory() as uow:
            return FundLedger(uow).balance(user_id, currency)

    def accounts(self, user_id: str) -> List[AccountBalance]:
        with self._uow_factory() as uow:
            return uow.accounts.list_for_user(user_id)

    def positions(self, user_id: str) -> List[PositionRecord]:
        with self._uow_factory() as uow:
            return uow.positions.list_for_user(user_id)

    def entries(
        self,
        user_id: str,
        currency: Optional[Currency] = None,
        settled: Optional[bool] = None,
    ) -> List[LedgerEntryRecord]:
        """Transaction flows of a user, oldest first."""
        with self._uow_factory() as uow:
            return uow.entries.list_entries(user_id=user_id, currency=currency, settled=settled)

    # --------------------------------------------------------
    # MUTATIONS
    # --------------------------------------------------------

    def deposit(
        self,
        user_id: str,
        currency: Currency,
        amount,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        description: str = "",
    ) -> Outcome[LedgerEntryRecord]:
        value = _positive_amount(amount)
        if value is None:
            return Outcome.denied(ErrorKind.VALIDATION, "amount must be a positive number", field="amount")

        with self._uow_factory() as uow:
            ledger = FundLedger(uow)
            before = ledger.balance(user_id, currency)
            entry = ledger.deposit(user_id, currency, value, description)

        self._audit_funds(AuditAction.FUND_DEPOSIT, entry, before, actor_id or user_id, actor_name)
        return Outcome.success(entry)

    def withdraw(
        self,
        user_id: str,
        currency: Currency,
        amount,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        description: str = "",
    ) -> Outcome[LedgerEntryRecord]:
        value = _positive_amount(amount)
        if value is None:
            return Outcome.denied(ErrorKind.VALIDATION, "amount must be a positive number", field="amount")

        rules = self._config.withdraw
        if value < rules.min_amount or value > rules.max_amount:
            logger.warning(f"Withdrawal of {value} for user {user_id} outside limits")
            return Outcome.denied(
                ErrorKind.WITHDRAW_LIMIT,
                f"withdrawal must be between {rules.min_amount} and {rules.max_amount}",
                min_amount=str(rules.min_amount),
                max_amount=str(rules.max_amount),
            )

        try:
            with self._uow_factory() as uow:
                # Account row lock serializes the aggregate reads below
                uow.accounts.get_for_update(user_id, currency)
                self._check_daily_limit(uow, user_id, currency, value)

                if rules.require_flow_settled:
                    unsettled = unsettled_amount(uow, user_id, currency)
                    if unsettled > 0:
                        logger.warning(
                            f"Withdrawal for user {user_id} blocked by "
                            f"{unsettled} {currency.value} unsettled flow"
                        )
                        raise BusinessRuleDenial(
                            ErrorKind.UNSETTLED_FLOW,
                            "unsettled transaction flows must settle before withdrawal",
                            {"unsettled_amount": str(unsettled)},
                        )

                ledger = FundLedger(uow)
                before = ledger.balance(user_id, currency)
                outcome = ledger.withdraw(user_id, currency, value, description)
                if not outcome.ok:
                    raise BusinessRuleDenial(outcome.kind, outcome.reason, outcome.details)
                entry = outcome.value
        except BusinessRuleDenial as denial:
            return Outcome.denied(denial.kind, denial.reason, **denial.details)

        self._audit_funds(AuditAction.FUND_WITHDRAW, entry, before, actor_id or user_id, actor_name)
        return Outcome.success(entry)

    def _check_daily_limit(
        self,
        uow: UnitOfWork,
        user_id: str,
        currency: Currency,
        amount: Decimal,
    ) -> None:
        limit = self._config.withdraw.daily_limit
        start_of_day = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
        today = uow.entries.list_entries(
            user_id=user_id,
            currency=currency,
            entry_type=LedgerEntryType.WITHDRAW,
            since=start_of_day,
        )
        withdrawn = sum((-e.amount for e in today), ZERO)

        if withdrawn + amount > limit:
            logger.warning(
                f"Withdrawal for user {user_id} exceeds daily limit: "
                f"{withdrawn} + {amount} > {limit}"
            )
            raise BusinessRuleDenial(
                ErrorKind.WITHDRAW_LIMIT,
                f"daily withdrawal limit of {limit} exceeded",
                {"withdrawn_today": str(withdrawn), "daily_limit": str(limit)},
            )

    def adjust(
        self,
        user_id: str,
        currency: Currency,
        amount,
        reason: str,
        actor_id: str,
        actor_name: Optional[str] = None,
    ) -> Outcome[LedgerEntryRecord]:
        """Signed staff correction; reason is mandatory."""
        if not reason or not reason.strip():
            return Outcome.denied(ErrorKind.VALIDATION, "a reason is required for adjustments", field="reason")
        try:
            value = to_decimal(amount)
        except (ArithmeticError, ValueError):
            value = None
        if value is None or not value.is_finite() or value == 0:
            return Outcome.denied(ErrorKind.VALIDATION, "amount must be a non-zero number", field="amount")

        with self._uow_factory() as uow:
            ledger = FundLedger(uow)
            before = ledger.balance(user_id, currency)
            outcome = ledger.adjust(user_id, currency, value, reason)

        if outcome.ok:
            self._audit_funds(AuditAction.FUND_ADJUST, outcome.value, before, actor_id, actor_name, reason)
        return outcome

    def _audit_funds(
        self,
        action: AuditAction,
        entry: LedgerEntryRecord,
        before: AccountBalance,
        actor_id: str,
        actor_name: Optional[str],
        reason: Optional[str] = None,
    ) -> None:
        record_safely(self._audit, AuditRecord(
            action=action,
            actor_id=actor_id,
            actor_name=actor_name,
            target_type=AuditTargetType.ACCOUNT,
            target_id=f"{entry.user_id}:{entry.currency.value}",
            before_snapshot=before.to_dict(),
            after_snapshot=entry.to_dict(),
            reason=reason,
        ))
