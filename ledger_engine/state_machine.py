"""
Ledger Engine - Order State Machine.

============================================================
PURPOSE
============================================================
Manages order lifecycle with strict state transitions.

STATE MACHINE:

    PENDING ──────► APPROVED ──────► COMPLETED
       │
       ├──────► REJECTED
       │
       └──────► CANCELLED

INVARIANTS:
- Terminal states are final
- Re-applying the current state is an error, never a no-op
- Each transition has a guard
- All transitions are logged

============================================================
"""

import logging
from datetime import datetime
from typing import Optional, Set, Dict, List, Any, Tuple
from dataclasses import dataclass, field

from .errors import InvalidStateTransition
from .types import OrderStatus, OrderRecord, utc_now


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.APPROVED,
        OrderStatus.REJECTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.APPROVED: {
        OrderStatus.COMPLETED,
    },
    # Terminal states - no transitions out
    OrderStatus.COMPLETED: set(),
    OrderStatus.REJECTED: set(),
    OrderStatus.CANCELLED: set(),
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a state transition."""

    order_id: str
    """Order ID."""

    from_state: OrderStatus
    """Previous state."""

    to_state: OrderStatus
    """New state."""

    timestamp: datetime = field(default_factory=utc_now)
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    actor_id: Optional[str] = None
    """Staff member (or user) driving the transition."""

    actor_name: Optional[str] = None

    before: Dict[str, Any] = field(default_factory=dict)
    """Order snapshot before the transition."""

    after: Dict[str, Any] = field(default_factory=dict)
    """Order snapshot after the transition."""


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: OrderStatus,
        to_state: OrderStatus,
    ) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if from_state == to_state:
            return False, f"Order is already {from_state.value}"

        if to_state in VALID_TRANSITIONS[from_state]:
            return True, "Valid transition"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def validate_order_for_state(
        order: OrderRecord,
        target_state: OrderStatus,
        reason: str,
    ) -> Tuple[bool, str]:
        """Validate order data for target state."""
        if target_state in (OrderStatus.REJECTED, OrderStatus.CANCELLED):
            if not reason or not reason.strip():
                return False, f"A reason is required to mark an order {target_state.value}"

        if target_state == OrderStatus.COMPLETED:
            if order.fee_actual is None:
                return False, "Missing execution fees for COMPLETED state"

        return True, "Order valid for state"


# ============================================================
# ORDER STATE MACHINE
# ============================================================

class OrderStateMachine:
    """
    State machine for one order.

    Manages state transitions with:
    - Guard checks
    - Transition events
    - History tracking
    """

    def __init__(self, order: OrderRecord):
        self._order = order
        self._history: List[StateTransitionEvent] = []

    @property
    def current_state(self) -> OrderStatus:
        """Get current order state."""
        return self._order.status

    @property
    def order(self) -> OrderRecord:
        """Get the managed order."""
        return self._order

    @property
    def history(self) -> List[StateTransitionEvent]:
        """Get transition history."""
        return list(self._history)

    def can_transition_to(
        self,
        target_state: OrderStatus,
        reason: str = "",
    ) -> Tuple[bool, str]:
        """Check if transition to target state is allowed."""
        allowed, guard_reason = TransitionGuard.can_transition(
            self.current_state,
            target_state,
        )

        if not allowed:
            return False, guard_reason

        return TransitionGuard.validate_order_for_state(
            self._order,
            target_state,
            reason,
        )

    def ensure_pending(self) -> None:
        """
        Re-entrancy guard for staff actions.

        Raises:
            InvalidStateTransition: If the order is not pending
        """
        if self.current_state != OrderStatus.PENDING:
            raise InvalidStateTransition(
                f"Order {self._order.order_id} is {self.current_state.value}, not pending",
                context={
                    "order_id": self._order.order_id,
                    "status": self.current_state.value,
                },
            )

    def transition_to(
        self,
        target_state: OrderStatus,
        reason: str = "",
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> StateTransitionEvent:
        """
        Transition to a new state.

        Raises:
            InvalidStateTransition: If transition is not allowed
        """
        allowed, validation_reason = self.can_transition_to(target_state, reason)

        if not allowed:
            raise InvalidStateTransition(
                f"Cannot transition {self._order.order_id} from "
                f"{self.current_state.value} to {target_state.value}: "
                f"{validation_reason}",
                context={
                    "order_id": self._order.order_id,
                    "from": self.current_state.value,
                    "to": target_state.value,
                },
            )

        from_state = self.current_state
        before = self._order.to_dict()
        timestamp = utc_now()

        self._order.status = target_state
        self._order.updated_at = timestamp

        if target_state == OrderStatus.COMPLETED:
            self._order.completed_at = timestamp
        elif target_state in (OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED):
            self._order.decided_at = timestamp
            self._order.decided_by = actor_id
            self._order.decided_by_name = actor_name
            if reason and target_state != OrderStatus.APPROVED:
                self._order.reason = reason

        event = StateTransitionEvent(
            order_id=self._order.order_id,
            from_state=from_state,
            to_state=target_state,
            timestamp=timestamp,
            reason=reason,
            actor_id=actor_id,
            actor_name=actor_name,
            before=before,
            after=self._order.to_dict(),
        )

        self._history.append(event)

        logger.info(
            f"Order {self._order.order_id}: "
            f"{event.from_state.value} -> {event.to_state.value} "
            f"({reason})"
        )

        return event

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def mark_approved(
        self,
        actor_id: str,
        actor_name: Optional[str] = None,
        reason: str = "Approved by staff",
    ) -> StateTransitionEvent:
        """Mark order as approved."""
        return self.transition_to(OrderStatus.APPROVED, reason, actor_id, actor_name)

    def mark_completed(
        self,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        reason: str = "Execution booked",
    ) -> StateTransitionEvent:
        """Mark order as completed."""
        return self.transition_to(OrderStatus.COMPLETED, reason, actor_id, actor_name)

    def mark_rejected(
        self,
        reason: str,
        actor_id: str,
        actor_name: Optional[str] = None,
    ) -> StateTransitionEvent:
        """Mark order as rejected."""
        return self.transition_to(OrderStatus.REJECTED, reason, actor_id, actor_name)

    def mark_cancelled(
        self,
        reason: str,
        actor_id: str,
        actor_name: Optional[str] = None,
    ) -> StateTransitionEvent:
        """Mark order as cancelled."""
        return self.transition_to(OrderStatus.CANCELLED, reason, actor_id, actor_name)
