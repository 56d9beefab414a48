"""Tests for escrow, booking, refund and loyalty state machines."""

import pytest

from settlement_engine.services.state_machine import (
    BookingStateMachine,
    EscrowStateMachine,
    EscrowStatus,
    InvalidTransitionError,
    LoyaltyCreditStateMachine,
    RefundStateMachine,
)


class TestEscrowStateMachine:
    """Test escrow transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # none → scheduled
        assert EscrowStateMachine.can_transition(None, "scheduled") is True

        # scheduled → scheduled (reschedule)
        assert EscrowStateMachine.can_transition("scheduled", "scheduled") is True

        # scheduled → released / released_early / failed
        assert EscrowStateMachine.can_transition("scheduled", "released") is True
        assert EscrowStateMachine.can_transition("scheduled", "released_early") is True
        assert EscrowStateMachine.can_transition("scheduled", "failed") is True

        # released → failed (reversal)
        assert EscrowStateMachine.can_transition("released", "failed") is True
        assert EscrowStateMachine.can_transition("released_early", "failed") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        assert EscrowStateMachine.can_transition(None, "released") is False
        assert EscrowStateMachine.can_transition("released", "scheduled") is False
        assert EscrowStateMachine.can_transition("released", "released_early") is False
        assert EscrowStateMachine.can_transition("released_early", "released") is False

        # Failed is terminal
        assert EscrowStateMachine.can_transition("failed", "scheduled") is False
        assert EscrowStateMachine.can_transition("failed", "released") is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            EscrowStateMachine.validate_transition("failed", "released", reason="operator review")

        assert exc_info.value.from_status == "failed"
        assert exc_info.value.to_status == "released"
        assert "operator review" in str(exc_info.value)

    def test_terminal_and_next_statuses(self):
        assert EscrowStateMachine.is_terminal("failed") is True
        assert EscrowStateMachine.is_terminal("scheduled") is False
        assert EscrowStateMachine.get_next_statuses("released") == [EscrowStatus.FAILED]

    def test_funds_released(self):
        assert "released" in EscrowStateMachine.FUNDS_RELEASED
        assert "released_early" in EscrowStateMachine.FUNDS_RELEASED
        assert "failed" not in EscrowStateMachine.FUNDS_RELEASED


class TestBookingStateMachine:
    def test_completion_and_cancellation(self):
        assert BookingStateMachine.can_transition("confirmed", "completed") is True
        assert BookingStateMachine.can_transition("requested", "cancelled") is True
        assert BookingStateMachine.can_transition("confirmed", "cancelled") is True
        assert BookingStateMachine.can_transition("completed", "disputed") is True

    def test_cannot_cancel_completed(self):
        assert BookingStateMachine.can_transition("completed", "cancelled") is False
        assert BookingStateMachine.can_transition("requested", "completed") is False
        assert BookingStateMachine.can_transition("cancelled", "confirmed") is False


class TestRefundStateMachine:
    def test_pending_moves_once(self):
        for status in ("succeeded", "failed", "cancelled"):
            assert RefundStateMachine.can_transition("pending", status) is True
            assert RefundStateMachine.is_terminal(status) is True

    def test_terminal_never_changes(self):
        assert RefundStateMachine.can_transition("succeeded", "failed") is False
        assert RefundStateMachine.can_transition("failed", "pending") is False


class TestLoyaltyCreditStateMachine:
    def test_transitions(self):
        assert LoyaltyCreditStateMachine.can_transition("active", "fully_used") is True
        assert LoyaltyCreditStateMachine.can_transition("active", "expired") is True
        assert LoyaltyCreditStateMachine.can_transition("expired", "active") is False
        assert LoyaltyCreditStateMachine.can_transition("fully_used", "active") is False
