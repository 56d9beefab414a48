"""End-to-end tests for the settlement workflow."""

from dataclasses import replace
from datetime import date

import pytest

from settlement_engine.bookings import BookingStatus, Payee
from settlement_engine.errors import (
    ApprovalRequired,
    BookingNotFound,
    InvalidPricingInput,
    RefundAlreadyIssued,
)
from settlement_engine.events import EscrowReleased, EscrowScheduled, LoyaltyCreditIssued
from settlement_engine.services import InvalidTransitionError
from settlement_engine.types import PayeeCategory


class TestCompleteBooking:
    """Test completion: split, escrow and loyalty credit."""

    def test_complete_booking_schedules_escrow(self, workflow, make_booking, payee, recorder):
        make_booking()

        record = workflow.complete_booking("bk_1", payee)

        assert record.status == "scheduled"
        assert record.payee_amount == 9025
        assert record.platform_amount == 475
        assert record.retention_amount == 500
        assert record.temple_amount == 0
        # Completed Wednesday, one day hold
        assert record.scheduled_release_on == date(2026, 3, 5)
        assert workflow.loyalty.available_balance("devotee_1", "payee_1") == 500
        assert recorder.types == ["EscrowScheduled", "LoyaltyCreditIssued"]

    def test_employee_uses_default_temple_share(self, workflow, make_booking):
        make_booking()
        employee = Payee(payee_id="payee_1", category=PayeeCategory.EMPLOYEE)

        record = workflow.complete_booking("bk_1", employee)

        # 30% of the 9500 distributable
        assert record.temple_amount == 2850
        assert record.platform_amount == 475
        assert record.payee_amount == 6175

    def test_completing_twice_is_idempotent(self, workflow, make_booking, payee, recorder):
        make_booking()

        first = workflow.complete_booking("bk_1", payee)
        second = workflow.complete_booking("bk_1", payee)

        assert first is second
        assert len(recorder.of_type(EscrowScheduled)) == 1
        assert len(recorder.of_type(LoyaltyCreditIssued)) == 1

    def test_wrong_payee_rejected(self, workflow, make_booking, payee):
        make_booking(payee_id="payee_2")

        with pytest.raises(ValueError, match="belongs to payee"):
            workflow.complete_booking("bk_1", payee)

    def test_requested_booking_cannot_complete(self, workflow, make_booking, payee):
        make_booking(status=BookingStatus.REQUESTED)

        with pytest.raises(InvalidTransitionError):
            workflow.complete_booking("bk_1", payee)

    def test_unknown_booking(self, workflow, payee):
        with pytest.raises(BookingNotFound):
            workflow.complete_booking("bk_missing", payee)

    def test_tampered_breakdown_rejected(self, workflow, make_booking, payee):
        booking = make_booking()
        tampered = replace(booking.pricing, payee_earnings=booking.pricing.payee_earnings + 1)
        make_booking(pricing=tampered)

        with pytest.raises(InvalidPricingInput):
            workflow.complete_booking("bk_1", payee)

        assert workflow.escrow.get_record("bk_1") is None


class TestCancellation:
    """Test cancellation refunds."""

    def test_cancel_refunds_per_tier(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=20)

        record = workflow.cancel_booking("bk_1", initiated_by="devotee_1")

        assert record.refund_amount == 2500
        assert record.cancellation_fee == 2500
        assert record.status == "succeeded"
        assert gateway.refund_count == 1

    def test_cancel_in_free_window(self, workflow, make_booking):
        make_booking(hours_until_start=72)

        assert workflow.cancel_booking("bk_1", initiated_by="devotee_1").refund_amount == 5000

    def test_quote_matches_cancellation(self, workflow, make_booking):
        make_booking(hours_until_start=30)

        quote = workflow.quote_refund("bk_1")
        record = workflow.cancel_booking("bk_1", initiated_by="devotee_1")

        assert quote.refund_amount == record.refund_amount == 3750
        assert quote.policy_applied == "24 hours before service policy"

    def test_completed_booking_cannot_cancel(self, workflow, make_booking):
        make_booking(status=BookingStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            workflow.cancel_booking("bk_1", initiated_by="devotee_1")

    def test_emergency_cancel_refunds_everything(self, workflow, make_booking):
        make_booking(hours_until_start=1)

        record = workflow.emergency_cancel(
            "bk_1",
            initiated_by="support_1",
            approved_by="manager_1",
            emergency_type="medical",
        )

        assert record.refund_amount == 5000
        assert record.cancellation_fee == 0
        assert record.reason == "emergency"
        assert record.approved_by == "manager_1"

    def test_emergency_cancel_needs_approval(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=1)

        with pytest.raises(ApprovalRequired):
            workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by=None)

        assert gateway.calls == []

    def test_emergency_after_late_cancellation(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=-1)
        late = workflow.cancel_booking("bk_1", initiated_by="devotee_1")
        assert late.refund_amount == 0

        record = workflow.emergency_cancel(
            "bk_1", initiated_by="support_1", approved_by="ops_lead", emergency_type="medical"
        )

        assert record.refund_id != late.refund_id
        assert record.reason == "emergency"
        assert record.approved_by == "ops_lead"
        assert record.refund_amount == 5000
        assert record.status == "succeeded"
        assert gateway.refund_count == 1

    def test_emergency_refunds_only_the_outstanding_advance(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=20)
        workflow.cancel_booking("bk_1", initiated_by="devotee_1")

        record = workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by="ops_lead")

        assert record.refund_amount == 2500
        assert record.metadata_json["previously_refunded"] == 2500
        assert workflow.refunds.refunded_amount("bk_1") == 5000
        assert gateway.refund_count == 2

    def test_emergency_repeat_returns_recorded_refund(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=1)
        first = workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by="ops_lead")

        again = workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by="ops_lead")

        assert again.refund_id == first.refund_id
        assert gateway.refund_count == 1

    def test_emergency_after_full_refund_rejected(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=72)
        workflow.cancel_booking("bk_1", initiated_by="devotee_1")

        with pytest.raises(RefundAlreadyIssued):
            workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by="ops_lead")

        assert gateway.refund_count == 1

    def test_tier_cancellation_after_emergency_rejected(self, workflow, make_booking, gateway):
        make_booking(hours_until_start=20)
        workflow.emergency_cancel("bk_1", initiated_by="support_1", approved_by="ops_lead")

        with pytest.raises(RefundAlreadyIssued):
            workflow.cancel_booking("bk_1", initiated_by="devotee_1")

        assert gateway.refund_count == 1


class TestGatewayEvents:
    """Test webhook dispatch."""

    @pytest.fixture
    def pending_release(self, workflow, make_booking, payee, enable_account, gateway, clock):
        """Escrow whose release transfer is waiting for the gateway."""
        enable_account()
        make_booking()
        workflow.complete_booking("bk_1", payee)
        gateway.auto_pay = False
        clock.advance(days=1)
        (outcome,) = workflow.release_due()
        assert outcome.transfer_status == "pending"
        return workflow.escrow.get_record("bk_1")

    def test_transfer_paid_releases_escrow(self, workflow, pending_release, recorder):
        handled = workflow.handle_gateway_event(
            "transfer.paid", {"id": pending_release.transfer_ref}
        )

        assert handled is True
        assert pending_release.status == "released"
        assert len(recorder.of_type(EscrowReleased)) == 1

    def test_transfer_updated_uses_reversed_flag(self, workflow, pending_release):
        workflow.handle_gateway_event(
            "transfer.updated",
            {"id": pending_release.transfer_ref, "status": "paid", "reversed": True},
        )

        assert pending_release.status == "failed"
        assert pending_release.failure_code == "transfer_reversed"

    def test_transfer_failed(self, workflow, pending_release):
        workflow.handle_gateway_event("transfer.failed", {"id": pending_release.transfer_ref})

        assert pending_release.status == "failed"

    def test_account_updated(self, workflow):
        workflow.accounts.start_onboarding("payee_1", "acct_payee_1")

        handled = workflow.handle_gateway_event(
            "account.updated",
            {"id": "acct_payee_1", "charges_enabled": True, "payouts_enabled": True},
        )

        assert handled is True
        assert workflow.accounts.can_payee_receive_payouts("payee_1") is True

    def test_refund_updated(self, workflow, make_booking):
        make_booking(hours_until_start=20)
        record = workflow.cancel_booking("bk_1", initiated_by="devotee_1")
        record.status = "pending"

        workflow.handle_gateway_event(
            "refund.updated",
            {"id": record.gateway_refund_ref, "status": "failed", "failure_reason": "lost_card"},
        )

        assert record.status == "failed"
        assert record.failure_reason == "lost_card"

    def test_unhandled_type(self, workflow):
        assert workflow.handle_gateway_event("charge.captured", {"id": "ch_1"}) is False

    def test_missing_id_rejected(self, workflow):
        with pytest.raises(ValueError, match="no id"):
            workflow.handle_gateway_event("transfer.paid", {})


class TestReleaseFlow:
    """Test the full completion to payout path."""

    def test_release_on_payout_date(self, workflow, make_booking, payee, enable_account, clock):
        enable_account()
        make_booking()
        workflow.complete_booking("bk_1", payee)

        assert workflow.release_due() == []

        clock.advance(days=1)
        (outcome,) = workflow.release_due()

        assert outcome.released is True
        assert outcome.status == "released"

    def test_release_early(self, workflow, make_booking, payee, enable_account):
        enable_account()
        make_booking()
        workflow.complete_booking("bk_1", payee)

        outcome = workflow.release_early("bk_1", payee)

        assert outcome.status == "released_early"

    def test_friday_completion_pays_monday(
        self, workflow, make_booking, payee, enable_account, clock
    ):
        enable_account()
        make_booking()
        clock.advance(days=2)

        record = workflow.complete_booking("bk_1", payee)

        assert record.scheduled_release_on == date(2026, 3, 9)
        clock.advance(days=1)
        assert workflow.release_due() == []
