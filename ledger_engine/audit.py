"""
Ledger Engine - Audit Recorder.

============================================================
PURPOSE
============================================================
Append-only record of every lifecycle transition and fund
operation.

WRITE CONTRACT:
    {action, actor_id, actor_name, target_type, target_id,
     before_snapshot?, after_snapshot?, reason?, timestamp}

Audit writes are best-effort: they happen after the ledger
transaction commits, and a failing recorder is logged and
swallowed so it can never undo a committed mutation.

============================================================
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from database.engine import transaction_scope
from database.models import AuditLogModel

from .state_machine import StateTransitionEvent
from .types import OrderStatus, utc_now


logger = logging.getLogger(__name__)


# ============================================================
# AUDIT RECORD
# ============================================================

class AuditAction(str, Enum):
    """Audited action names."""

    ORDER_CREATE = "order_create"
    ORDER_APPROVE = "order_approve"
    ORDER_COMPLETE = "order_complete"
    ORDER_REJECT = "order_reject"
    ORDER_CANCEL = "order_cancel"
    FUND_DEPOSIT = "fund_deposit"
    FUND_WITHDRAW = "fund_withdraw"
    FUND_ADJUST = "fund_adjust"
    FLOW_SETTLE = "flow_settle"


class AuditTargetType(str, Enum):
    """Kind of entity an audit record refers to."""

    ORDER = "order"
    ACCOUNT = "account"
    LEDGER = "ledger"


TRANSITION_ACTIONS: Dict[OrderStatus, AuditAction] = {
    OrderStatus.APPROVED: AuditAction.ORDER_APPROVE,
    OrderStatus.COMPLETED: AuditAction.ORDER_COMPLETE,
    OrderStatus.REJECTED: AuditAction.ORDER_REJECT,
    OrderStatus.CANCELLED: AuditAction.ORDER_CANCEL,
}


@dataclass
class AuditRecord:
    """One audit log row."""

    action: AuditAction
    actor_id: str
    target_type: AuditTargetType
    target_id: str
    actor_name: Optional[str] = None
    before_snapshot: Optional[Dict[str, Any]] = None
    after_snapshot: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_transition(cls, event: StateTransitionEvent) -> "AuditRecord":
        """Audit record for an order state transition."""
        return cls(
            action=TRANSITION_ACTIONS[event.to_state],
            actor_id=event.actor_id or "system",
            actor_name=event.actor_name,
            target_type=AuditTargetType.ORDER,
            target_id=event.order_id,
            before_snapshot=event.before or None,
            after_snapshot=event.after or None,
            reason=event.reason or None,
            timestamp=event.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "target_type": self.target_type.value,
            "target_id": self.target_id,
            "before_snapshot": self.before_snapshot,
            "after_snapshot": self.after_snapshot,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# RECORDERS
# ============================================================

class AuditRecorder(ABC):
    """External audit sink."""

    @abstractmethod
    def write(self, record: AuditRecord) -> None:
        """Persist one record. May raise; callers go through record_safely."""
        pass


class InMemoryAuditRecorder(AuditRecorder):
    """Keeps records in a list."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[AuditRecord] = []

    def write(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[AuditRecord]:
        with self._lock:
            return list(self._records)

    def actions(self) -> List[str]:
        return [r.action.value for r in self.records]


class SqlAuditRecorder(AuditRecorder):
    """Writes audit_logs rows in a transaction of their own."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def write(self, record: AuditRecord) -> None:
        with transaction_scope(self._session_factory) as session:
            session.add(AuditLogModel(
                action=record.action.value,
                actor_id=record.actor_id,
                actor_name=record.actor_name,
                target_type=record.target_type.value,
                target_id=record.target_id,
                before_snapshot=record.before_snapshot,
                after_snapshot=record.after_snapshot,
                reason=record.reason,
                timestamp=record.timestamp,
            ))


def record_safely(recorder: Optional[AuditRecorder], record: AuditRecord) -> bool:
    """
    Write an audit record without letting a failure escape.

    Returns:
        True if the record was written
    """
    if recorder is None:
        return False
    try:
        recorder.write(record)
        return True
    except Exception as e:
        logger.error(
            f"Failed to write audit record {record.action.value} "
            f"for {record.target_type.value} {record.target_id}: {e}"
        )
        return False
