"""
Ledger Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of every failure the ledger engine reports.

ERROR CATEGORIES:
1. Validation     - malformed or missing request fields
2. Business rule  - expected denials (balance, position, eligibility)
3. State conflict - acting on a non-pending order
4. Persistence    - transaction commit failure
5. Internal       - invariant violations (programming errors)

PROPAGATION:
- Validation and business-rule failures are returned as Outcome values
- State conflicts, persistence and internal faults are raised

============================================================
"""

from enum import Enum
from typing import Optional, Dict, Any
from dataclasses import dataclass

from .types import ErrorKind


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Request rejected before touching the ledger."""

    BUSINESS_RULE = "BUSINESS_RULE"
    """Expected denial explained to the user."""

    STATE_CONFLICT = "STATE_CONFLICT"
    """Operation not allowed in the current state."""

    PERSISTENCE = "PERSISTENCE"
    """Store failed to commit."""

    INTERNAL = "INTERNAL"
    """Invariant broken by a programming error."""


# ============================================================
# ERROR KIND REGISTRY
# ============================================================

@dataclass(frozen=True)
class ErrorKindInfo:
    """Information about an error kind."""

    kind: ErrorKind
    category: ErrorCategory
    recoverable: bool
    """Whether the caller can handle it locally (explain to the user)."""

    description: str


ERROR_KINDS: Dict[ErrorKind, ErrorKindInfo] = {
    ErrorKind.VALIDATION: ErrorKindInfo(
        kind=ErrorKind.VALIDATION,
        category=ErrorCategory.VALIDATION,
        recoverable=True,
        description="Request fields are missing or malformed",
    ),
    ErrorKind.INSUFFICIENT_BALANCE: ErrorKindInfo(
        kind=ErrorKind.INSUFFICIENT_BALANCE,
        category=ErrorCategory.BUSINESS_RULE,
        recoverable=True,
        description="Available balance is lower than the amount required",
    ),
    ErrorKind.INSUFFICIENT_POSITION: ErrorKindInfo(
        kind=ErrorKind.INSUFFICIENT_POSITION,
        category=ErrorCategory.BUSINESS_RULE,
        recoverable=True,
        description="Available share quantity is lower than the quantity to sell",
    ),
    ErrorKind.NOT_ELIGIBLE: ErrorKindInfo(
        kind=ErrorKind.NOT_ELIGIBLE,
        category=ErrorCategory.BUSINESS_RULE,
        recoverable=True,
        description="Eligibility check denied the order",
    ),
    ErrorKind.UNSETTLED_FLOW: ErrorKindInfo(
        kind=ErrorKind.UNSETTLED_FLOW,
        category=ErrorCategory.BUSINESS_RULE,
        recoverable=True,
        description="Withdrawal blocked by unsettled transaction flows",
    ),
    ErrorKind.WITHDRAW_LIMIT: ErrorKindInfo(
        kind=ErrorKind.WITHDRAW_LIMIT,
        category=ErrorCategory.BUSINESS_RULE,
        recoverable=True,
        description="Withdrawal amount outside the configured limits",
    ),
    ErrorKind.INVALID_STATE_TRANSITION: ErrorKindInfo(
        kind=ErrorKind.INVALID_STATE_TRANSITION,
        category=ErrorCategory.STATE_CONFLICT,
        recoverable=False,
        description="Order is not in a state that allows this action",
    ),
    ErrorKind.NOT_FOUND: ErrorKindInfo(
        kind=ErrorKind.NOT_FOUND,
        category=ErrorCategory.STATE_CONFLICT,
        recoverable=False,
        description="Referenced order does not exist",
    ),
    ErrorKind.INVARIANT_VIOLATION: ErrorKindInfo(
        kind=ErrorKind.INVARIANT_VIOLATION,
        category=ErrorCategory.INTERNAL,
        recoverable=False,
        description="Ledger invariant would be broken",
    ),
    ErrorKind.PERSISTENCE: ErrorKindInfo(
        kind=ErrorKind.PERSISTENCE,
        category=ErrorCategory.PERSISTENCE,
        recoverable=False,
        description="Transaction failed to commit",
    ),
}


def get_error_info(kind: ErrorKind) -> ErrorKindInfo:
    """Look up registry information for an error kind."""
    return ERROR_KINDS[kind]


def is_recoverable(kind: ErrorKind) -> bool:
    """Check whether a failure can be handled locally by the caller."""
    return ERROR_KINDS[kind].recoverable


# ============================================================
# EXCEPTIONS
# ============================================================

class LedgerEngineError(Exception):
    """
    Base exception for the ledger engine.

    Carries an ErrorKind and context for logging.
    """

    default_kind: ErrorKind = ErrorKind.INVARIANT_VIOLATION

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.context = context or {}

    @property
    def category(self) -> ErrorCategory:
        return get_error_info(self.kind).category

    @property
    def recoverable(self) -> bool:
        return is_recoverable(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/responses."""
        return {
            "type": type(self).__name__,
            "kind": self.kind.value,
            "category": self.category.value,
            "recoverable": self.recoverable,
            "message": self.message,
            "context": self.context,
        }


class InvalidStateTransition(LedgerEngineError):
    """Action attempted on an order that is not pending (or not approved)."""

    default_kind = ErrorKind.INVALID_STATE_TRANSITION


class OrderNotFound(LedgerEngineError):
    """Referenced order does not exist."""

    default_kind = ErrorKind.NOT_FOUND


class InvariantViolation(LedgerEngineError):
    """Ledger invariant broken (e.g. frozen would go negative)."""

    default_kind = ErrorKind.INVARIANT_VIOLATION


class BusinessRuleDenial(LedgerEngineError):
    """
    Denial detected inside a unit of work.

    Raised to roll the transaction back; OrderLifecycle converts it
    into an Outcome before it reaches the caller.
    """

    default_kind = ErrorKind.NOT_ELIGIBLE

    def __init__(
        self,
        kind: ErrorKind,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(reason, kind=kind, context=details)
        self.reason = reason
        self.details = details or {}


class PersistenceError(LedgerEngineError):
    """Ledger transaction failed to commit; nothing was written."""

    default_kind = ErrorKind.PERSISTENCE
