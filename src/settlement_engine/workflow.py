"""Settlement workflow - composes the calculators and services.

Completion:   re-validate breakdown -> split -> schedule escrow -> loyalty credit
Cancellation: refund policy -> refund intent -> gateway refund (no escrow)
Release:      due sweep or early release -> payout gate -> gateway transfer
Webhooks:     account, transfer and refund updates from the gateway

Usage:
    with get_session() as session:
        workflow = SettlementWorkflow(session, gateway, booking_store)
        workflow.complete_booking("bk_1", payee)
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from settlement_engine.bookings import (
    Booking,
    BookingStatus,
    BookingStore,
    Clock,
    Payee,
    SystemClock,
)
from settlement_engine.calculators import (
    PricingBreakdownBuilder,
    RefundPolicyEngine,
    SplitCalculator,
)
from settlement_engine.errors import BookingNotFound, PayeeNotFound, RefundAlreadyIssued
from settlement_engine.events import EventEmitter
from settlement_engine.gateway import PaymentGateway, RawAccountState
from settlement_engine.models import EscrowRecord, RefundRecord
from settlement_engine.policy import SettlementConfig
from settlement_engine.services import (
    BookingStateMachine,
    ConnectAccountLifecycle,
    EscrowManager,
    LoyaltyLedger,
    RefundService,
    ReleaseOutcome,
)
from settlement_engine.services.refund_service import (
    EMERGENCY_REFUND_OPERATION,
    REFUND_OPERATION,
)
from settlement_engine.types import (
    CancellationPolicy,
    PayeeCategory,
    PaymentSplit,
    RefundQuote,
    RefundReason,
)

logger = logging.getLogger(__name__)


class SettlementWorkflow:
    """Facade over one database session.

    Callers own the transaction; each public method leaves its changes
    flushed but uncommitted.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        bookings: BookingStore,
        *,
        config: SettlementConfig | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.bookings = bookings
        self.config = config or SettlementConfig()
        self.clock = clock or SystemClock()
        self.emitter = emitter

        timeout = float(self.config.gateway.timeout_seconds)
        self.splitter = SplitCalculator(self.config.split.platform_fee_percentage)
        self.pricing = PricingBreakdownBuilder(self.config.pricing)
        self.refund_engine = RefundPolicyEngine()
        self.accounts = ConnectAccountLifecycle(
            db, gateway, emitter=emitter, clock=self.clock, timeout=timeout
        )
        self.escrow = EscrowManager(
            db,
            gateway,
            self.accounts,
            bookings,
            config=self.config.escrow,
            criteria=self.config.early_release,
            clock=self.clock,
            emitter=emitter,
            timeout=timeout,
        )
        self.loyalty = LoyaltyLedger(
            db, config=self.config.loyalty, clock=self.clock, emitter=emitter
        )
        self.refunds = RefundService(
            db, gateway, clock=self.clock, emitter=emitter, timeout=timeout
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.bookings.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    def get_payee(self, payee_id: str) -> Payee:
        """Payee track record as the booking side knows it."""
        payee = self.bookings.get_payee(payee_id)
        if payee is None:
            raise PayeeNotFound(payee_id)
        return payee

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def split_for(self, booking: Booking, payee: Payee) -> PaymentSplit:
        """Split the booking's frozen final price for settlement."""
        temple_pct = payee.temple_share_percentage
        if payee.category == PayeeCategory.EMPLOYEE and temple_pct is None:
            temple_pct = self.config.split.default_temple_share_percentage
        return self.splitter.calculate(
            final_price=booking.pricing.final_price,
            retention_amount=booking.pricing.retention_amount,
            payee_category=payee.category,
            temple_share_percentage=temple_pct,
        )

    def complete_booking(
        self,
        booking_id: str,
        payee: Payee,
        *,
        completed_at: datetime | None = None,
    ) -> EscrowRecord:
        """Settle a completed booking: hold the payee's share in escrow.

        Raises:
            BookingNotFound: If the booking does not exist.
            InvalidTransitionError: If the booking cannot be completed.
            InvalidPricingInput: If the frozen breakdown fails validation.
        """
        booking = self.get_booking(booking_id)
        if booking.payee_id != payee.payee_id:
            raise ValueError(f"Booking {booking_id} belongs to payee {booking.payee_id}")
        if booking.status != BookingStatus.COMPLETED:
            BookingStateMachine.validate_transition(booking.status, BookingStatus.COMPLETED)

        self.pricing.revalidate(booking.pricing)
        split = self.split_for(booking, payee)
        record = self.escrow.schedule_release(
            booking_id,
            completed_at or self.clock.now(),
            payee_id=payee.payee_id,
            split=split,
        )
        self.loyalty.issue_retention_credit(booking)
        return record

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def policy_for(self, booking: Booking) -> CancellationPolicy:
        return booking.cancellation_policy or self.config.refund_policy

    def quote_refund(self, booking_id: str, *, cancelled_at: datetime | None = None) -> RefundQuote:
        booking = self.get_booking(booking_id)
        return self.refund_engine.quote(
            service_start=booking.scheduled_start,
            advance_amount=booking.pricing.advance_amount,
            policy=self.policy_for(booking),
            cancelled_at=cancelled_at or self.clock.now(),
        )

    def cancel_booking(
        self,
        booking_id: str,
        *,
        initiated_by: str,
        reason: RefundReason | str = RefundReason.CUSTOMER_REQUEST,
        description: str | None = None,
        cancelled_at: datetime | None = None,
    ) -> RefundRecord:
        """Cancel a booking and refund its advance per the policy tiers.

        Raises:
            RefundAlreadyIssued: If an emergency refund already returned the
                advance.
        """
        booking = self._cancellable(booking_id)
        if self.refunds.find_refund(booking_id, REFUND_OPERATION) is None:
            emergency = self.refunds.refunded_amount(
                booking_id, operation=EMERGENCY_REFUND_OPERATION
            )
            if emergency:
                raise RefundAlreadyIssued(booking_id, emergency)
        intent = self.refund_engine.build_refund(
            booking_id=booking_id,
            service_start=booking.scheduled_start,
            advance_amount=booking.pricing.advance_amount,
            policy=self.policy_for(booking),
            cancelled_at=cancelled_at or self.clock.now(),
            reason=reason,
            initiated_by=initiated_by,
            description=description,
        )
        return self.refunds.issue(intent, charge_ref=booking.charge_ref)

    def emergency_cancel(
        self,
        booking_id: str,
        *,
        initiated_by: str,
        approved_by: str | None,
        emergency_type: str = "",
        description: str = "",
    ) -> RefundRecord:
        """Cancel with a full refund of the advance, bypassing the tiers.

        After an earlier tier refund only the part of the advance not yet
        returned is refunded. Repeating the call returns the recorded
        emergency refund.

        Raises:
            ApprovalRequired: If no approver is given.
            RefundAlreadyIssued: If the whole advance is already refunded.
        """
        booking = self._cancellable(booking_id)
        advance = booking.pricing.advance_amount
        refunded = self.refunds.refunded_amount(booking_id, operation=REFUND_OPERATION)
        if advance and refunded >= advance:
            raise RefundAlreadyIssued(booking_id, refunded)

        intent = self.refund_engine.emergency_refund(
            booking_id=booking_id,
            advance_amount=advance,
            previously_refunded=refunded,
            initiated_by=initiated_by,
            approved_by=approved_by,
            emergency_type=emergency_type,
            description=description,
        )
        logger.info(
            "Emergency cancellation of booking %s approved by %s", booking_id, approved_by
        )
        return self.refunds.issue(intent, charge_ref=booking.charge_ref)

    def _cancellable(self, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.CANCELLED:
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)
        return booking

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release_due(self, as_of: date | None = None) -> list[ReleaseOutcome]:
        return self.escrow.release_due(as_of)

    def release_early(self, booking_id: str, payee: Payee) -> ReleaseOutcome:
        return self.escrow.release_early(booking_id, payee)

    # ------------------------------------------------------------------
    # Gateway webhooks
    # ------------------------------------------------------------------

    def handle_gateway_event(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Dispatch a verified gateway event.

        Returns False for event types this engine does not handle.

        Raises:
            ValueError: If the payload has no object id.
        """
        handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            "account.updated": self._on_account_updated,
            "transfer.paid": lambda p: self._on_transfer(p, "paid"),
            "transfer.failed": lambda p: self._on_transfer(p, "failed"),
            "transfer.reversed": lambda p: self._on_transfer(p, "reversed"),
            "transfer.updated": lambda p: self._on_transfer(p, None),
            "refund.updated": self._on_refund_updated,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring unhandled gateway event %s", event_type)
            return False
        if not payload.get("id"):
            raise ValueError(f"{event_type} payload has no id")
        handler(payload)
        return True

    def _on_account_updated(self, payload: dict[str, Any]) -> None:
        self.accounts.apply_account_update(RawAccountState.from_payload(payload))

    def _on_transfer(self, payload: dict[str, Any], status: str | None) -> None:
        if status is None:
            status = "reversed" if payload.get("reversed") else str(payload.get("status", ""))
        self.escrow.confirm_transfer(str(payload["id"]), status)

    def _on_refund_updated(self, payload: dict[str, Any]) -> None:
        self.refunds.apply_refund_status(
            str(payload["id"]),
            str(payload.get("status", "")),
            payload.get("failure_reason"),
        )
