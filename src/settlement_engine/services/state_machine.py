"""Settlement state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from settlement_engine.bookings import BookingStatus
from settlement_engine.types import RefundStatus


class EscrowStatus(str, Enum):
    """Escrow record status values."""

    SCHEDULED = "scheduled"
    RELEASED = "released"
    RELEASED_EARLY = "released_early"
    FAILED = "failed"


class LoyaltyCreditStatus(str, Enum):
    """Loyalty credit status values."""

    ACTIVE = "active"
    EXPIRED = "expired"
    FULLY_USED = "fully_used"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str | None, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status or 'none'}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class _StateMachine:
    VALID_TRANSITIONS: dict[str | None, list[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str | None, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(
        cls, from_status: str | None, to_status: str, reason: str | None = None
    ) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def get_next_statuses(cls, current_status: str | None) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(current_status, []))

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)


class EscrowStateMachine(_StateMachine):
    """State machine for escrow records.

    Allowed transitions:
    - none → scheduled
    - scheduled → scheduled (reschedule)
    - scheduled → released | released_early | failed
    - released → failed (transfer reversed after payout)
    - released_early → failed (transfer failed after early release)
    """

    VALID_TRANSITIONS = {
        None: [EscrowStatus.SCHEDULED],
        EscrowStatus.SCHEDULED: [
            EscrowStatus.SCHEDULED,
            EscrowStatus.RELEASED,
            EscrowStatus.RELEASED_EARLY,
            EscrowStatus.FAILED,
        ],
        EscrowStatus.RELEASED: [EscrowStatus.FAILED],
        EscrowStatus.RELEASED_EARLY: [EscrowStatus.FAILED],
        EscrowStatus.FAILED: [],  # Manual operator intervention
    }

    # Statuses in which funds have left escrow
    FUNDS_RELEASED = {EscrowStatus.RELEASED, EscrowStatus.RELEASED_EARLY}


class BookingStateMachine(_StateMachine):
    """State machine for booking status as seen by settlement.

    Transitions are forward-only; dispute resolution is handled elsewhere.
    """

    VALID_TRANSITIONS = {
        BookingStatus.REQUESTED: [BookingStatus.CONFIRMED, BookingStatus.CANCELLED],
        BookingStatus.CONFIRMED: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
        BookingStatus.COMPLETED: [BookingStatus.DISPUTED],
        BookingStatus.CANCELLED: [],
        BookingStatus.DISPUTED: [],
    }


class RefundStateMachine(_StateMachine):
    """Refunds move once from pending to a terminal status."""

    VALID_TRANSITIONS = {
        RefundStatus.PENDING: [
            RefundStatus.SUCCEEDED,
            RefundStatus.FAILED,
            RefundStatus.CANCELLED,
        ],
        RefundStatus.SUCCEEDED: [],
        RefundStatus.FAILED: [],
        RefundStatus.CANCELLED: [],
    }


class LoyaltyCreditStateMachine(_StateMachine):
    VALID_TRANSITIONS = {
        LoyaltyCreditStatus.ACTIVE: [
            LoyaltyCreditStatus.EXPIRED,
            LoyaltyCreditStatus.FULLY_USED,
        ],
        LoyaltyCreditStatus.EXPIRED: [],
        LoyaltyCreditStatus.FULLY_USED: [],
    }
