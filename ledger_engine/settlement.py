"""
Ledger Engine - Settlement Ledger.

============================================================
PURPOSE
============================================================
Owns the `settled` flag of ledger entries and the unsettled
aggregate that gates withdrawals.

OPERATIONS:
- settle_all_unsettled(user)   flip every unsettled entry
- settle_order_entries(order)  flip the entries of one order
- unsettled_total(user)        sum of |amount| over unsettled
- withdrawal_check(user, ccy)  unsettled amount + policy flag

Entries are never edited except settled: false -> true.

============================================================
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional

from .audit import AuditAction, AuditRecord, AuditRecorder, AuditTargetType, record_safely
from .config import LedgerEngineConfig
from .stores import UnitOfWork, UnitOfWorkFactory
from .types import Currency, LedgerEntryRecord, WithdrawalCheck, ZERO, utc_now


logger = logging.getLogger(__name__)


def unsettled_sum(entries: Iterable[LedgerEntryRecord]) -> Decimal:
    """Sum of absolute amounts over the unsettled entries given."""
    return sum((abs(e.amount) for e in entries if not e.settled), ZERO)


def unsettled_amount(
    uow: UnitOfWork,
    user_id: str,
    currency: Optional[Currency] = None,
) -> Decimal:
    """Unsettled total read inside an open unit of work."""
    return unsettled_sum(
        uow.entries.list_entries(user_id=user_id, currency=currency, settled=False)
    )


class SettlementLedger:
    """Settlement state of transaction flows."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        audit: Optional[AuditRecorder] = None,
        config: Optional[LedgerEngineConfig] = None,
    ):
        self._uow_factory = uow_factory
        self._audit = audit
        self._config = config or LedgerEngineConfig()

    def settle_all_unsettled(
        self,
        user_id: str,
        currency: Optional[Currency] = None,
        actor_id: str = "system",
        actor_name: Optional[str] = None,
    ) -> int:
        """
        Mark every unsettled entry of a user as settled.

        Returns:
            Number of entries flipped (0 on a repeated call)
        """
        with self._uow_factory() as uow:
            pending = uow.entries.list_entries(user_id=user_id, currency=currency, settled=False)
            before_total = unsettled_sum(pending)
            count = uow.entries.mark_settled([e.entry_id for e in pending], utc_now())

        if count:
            logger.info(f"Settled {count} entries ({before_total}) for user {user_id}")
            record_safely(self._audit, AuditRecord(
                action=AuditAction.FLOW_SETTLE,
                actor_id=actor_id,
                actor_name=actor_name,
                target_type=AuditTargetType.LEDGER,
                target_id=user_id,
                before_snapshot={"unsettled_amount": str(before_total)},
                after_snapshot={"settled_count": count, "unsettled_amount": "0"},
            ))
        return count

    def settle_order_entries(
        self,
        order_id: str,
        actor_id: str = "system",
        actor_name: Optional[str] = None,
    ) -> int:
        """Mark the unsettled entries of one order as settled."""
        with self._uow_factory() as uow:
            pending = uow.entries.list_entries(order_id=order_id, settled=False)
            count = uow.entries.mark_settled([e.entry_id for e in pending], utc_now())

        if count:
            logger.info(f"Settled {count} entries of order {order_id}")
            record_safely(self._audit, AuditRecord(
                action=AuditAction.FLOW_SETTLE,
                actor_id=actor_id,
                actor_name=actor_name,
                target_type=AuditTargetType.LEDGER,
                target_id=order_id,
                after_snapshot={"settled_count": count},
            ))
        return count

    def unsettled_total(self, user_id: str, currency: Optional[Currency] = None) -> Decimal:
        """Sum of absolute amounts of the user's unsettled entries."""
        with self._uow_factory() as uow:
            return unsettled_amount(uow, user_id, currency)

    def withdrawal_check(self, user_id: str, currency: Currency) -> WithdrawalCheck:
        """Facts a withdrawal handler needs to allow or block a request."""
        total = self.unsettled_total(user_id, currency)
        check = WithdrawalCheck(
            user_id=user_id,
            currency=currency,
            unsettled_amount=total,
            require_flow_settled=self._config.withdraw.require_flow_settled,
        )
        if check.blocked:
            logger.warning(
                f"Withdrawal for user {user_id} blocked by {total} "
                f"{currency.value} unsettled flow"
            )
        return check
