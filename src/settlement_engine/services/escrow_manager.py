"""Escrow Manager - hold, schedule and release payee funds.

State machine per booking:
    none -> scheduled -> {released | released_early | failed}

Release flow:
1. schedule_release() after service completion (hold days, weekend roll)
2. release_due() on or after the release date, or release_early() for
   payees that pass the early-release gate
3. The transfer is created with idempotency key "{booking_id}:escrow_release";
   scheduled and early releases share it, so they can never both pay
4. A paid transfer marks the record released; failures mark it failed and
   wait for an operator

Retryable gateway errors leave the record scheduled. This manager never
retries on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_engine.bookings import (
    Booking,
    BookingStatus,
    BookingStore,
    Clock,
    Payee,
    SystemClock,
)
from settlement_engine.database import entity_lock
from settlement_engine.errors import EscrowNotFound, NotEligibleForEarlyRelease
from settlement_engine.events import (
    DomainEvent,
    EscrowReleased,
    EscrowReleasedEarly,
    EscrowReleaseFailed,
    EscrowRescheduled,
    EscrowScheduled,
    EventEmitter,
    EventMetadata,
)
from settlement_engine.gateway import GatewayError, PaymentGateway, idempotency_key
from settlement_engine.models import EscrowRecord
from settlement_engine.policy import EarlyReleaseCriteria, EscrowConfig
from settlement_engine.services.connect_accounts import (
    ConnectAccountLifecycle,
    TransferStatus,
    can_receive_payouts,
    map_transfer_status,
)
from settlement_engine.services.state_machine import (
    EscrowStateMachine,
    EscrowStatus,
    InvalidTransitionError,
)
from settlement_engine.types import PaymentSplit, to_decimal

logger = logging.getLogger(__name__)

RELEASE_OPERATION = "escrow_release"


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of the early-release gate.

    ``reasons`` lists every failed criterion; it is empty when eligible.
    """

    eligible: bool
    reasons: tuple[str, ...]
    cancellation_rate: Decimal


@dataclass(frozen=True)
class ReleaseOutcome:
    """Result of one release attempt.

    A skipped or retryable attempt leaves the escrow record scheduled.
    """

    booking_id: str
    status: str
    transfer_ref: str | None = None
    transfer_status: str | None = None
    skipped_reason: str | None = None
    error_code: str | None = None
    retryable: bool = False

    @property
    def released(self) -> bool:
        return self.status in EscrowStateMachine.FUNDS_RELEASED


def next_business_day(day: date) -> date:
    """Roll Saturday and Sunday forward to Monday."""
    weekday = day.weekday()
    if weekday == 5:
        return day + timedelta(days=2)
    if weekday == 6:
        return day + timedelta(days=1)
    return day


def estimate_payout_date(completed: date | datetime, hold_days: int) -> date:
    """Completion date plus the hold period, rolled past weekends."""
    day = completed.date() if isinstance(completed, datetime) else completed
    return next_business_day(day + timedelta(days=hold_days))


def cancellation_rate(bookings: list[Booking]) -> Decimal:
    """Share of cancelled bookings; zero for an empty history."""
    if not bookings:
        return Decimal("0")
    cancelled = sum(1 for b in bookings if b.status == BookingStatus.CANCELLED)
    return Decimal(cancelled) / Decimal(len(bookings))


def _format_amount(amount: int) -> str:
    return f"${Decimal(amount) / 100:.2f}"


class EscrowManager:
    """Schedules and releases escrowed payee funds.

    Every mutation of a booking's record happens under an entity lock and
    a row lock so a scheduled release and a concurrent early-release
    request cannot both act on the same record. Callers own the transaction.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        accounts: ConnectAccountLifecycle,
        bookings: BookingStore,
        *,
        config: EscrowConfig | None = None,
        criteria: EarlyReleaseCriteria | None = None,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
        timeout: float | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.accounts = accounts
        self.bookings = bookings
        self.config = config or EscrowConfig()
        self.criteria = criteria or EarlyReleaseCriteria()
        self.clock = clock or SystemClock()
        self.emitter = emitter
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record(self, booking_id: str, *, for_update: bool = False) -> EscrowRecord | None:
        stmt = select(EscrowRecord).where(EscrowRecord.booking_id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def require_record(self, booking_id: str, *, for_update: bool = False) -> EscrowRecord:
        record = self.get_record(booking_id, for_update=for_update)
        if record is None:
            raise EscrowNotFound(booking_id)
        return record

    def get_by_transfer_ref(
        self, transfer_ref: str, *, for_update: bool = False
    ) -> EscrowRecord | None:
        stmt = select(EscrowRecord).where(EscrowRecord.transfer_ref == transfer_ref)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def estimate_payout_date(self, completed: date | datetime) -> date:
        return estimate_payout_date(completed, self.config.hold_days)

    def format_payout_schedule(
        self, advance_amount: int, remaining_amount: int, service_date: date | datetime
    ) -> list[str]:
        """Display lines describing when each part of the price moves."""
        payout = self.estimate_payout_date(service_date)
        return [
            f"Advance payment: {_format_amount(advance_amount)} (Paid at booking)",
            f"Remaining payment: {_format_amount(remaining_amount)} (Due on service completion)",
            f"Estimated payout: {payout:%a, %b} {payout.day}",
        ]

    def schedule_release(
        self,
        booking_id: str,
        completed_at: datetime,
        *,
        payee_id: str,
        split: PaymentSplit,
    ) -> EscrowRecord:
        """Hold the payee's share until the release date.

        Scheduling again for the same date is a no-op. A different date
        overwrites the schedule and is logged.

        Raises:
            InvalidTransitionError: If the escrow is already settled or a
                release transfer is in flight.
        """
        release_on = self.estimate_payout_date(completed_at)

        with entity_lock("escrow", booking_id):
            record = self.get_record(booking_id, for_update=True)

            if record is None:
                EscrowStateMachine.validate_transition(None, EscrowStatus.SCHEDULED)
                record = EscrowRecord(
                    booking_id=booking_id,
                    payee_id=payee_id,
                    status=EscrowStatus.SCHEDULED.value,
                    hold_started_at=completed_at,
                    scheduled_release_on=release_on,
                    payee_amount=split.payee_amount,
                    temple_amount=split.temple_amount,
                    platform_amount=split.platform_amount,
                    retention_amount=split.retention_amount,
                )
                self.db.add(record)
                self.db.flush()
                logger.info(
                    "Scheduled escrow release for booking %s on %s (%s to payee %s)",
                    booking_id,
                    release_on,
                    split.payee_amount,
                    payee_id,
                )
                self._emit(
                    EscrowScheduled(
                        metadata=EventMetadata.create(correlation_id=booking_id),
                        booking_id=booking_id,
                        payee_id=payee_id,
                        amount=split.payee_amount,
                        release_on=release_on,
                    )
                )
                return record

            EscrowStateMachine.validate_transition(
                record.status, EscrowStatus.SCHEDULED, reason="escrow already settled"
            )
            if record.scheduled_release_on == release_on:
                return record
            if record.transfer_ref is not None:
                raise InvalidTransitionError(
                    record.status, EscrowStatus.SCHEDULED, "release transfer already in flight"
                )

            previous = record.scheduled_release_on
            record.scheduled_release_on = release_on
            record.hold_started_at = completed_at
            self.db.flush()
            logger.info(
                "Rescheduled escrow release for booking %s from %s to %s",
                booking_id,
                previous,
                release_on,
            )
            self._emit(
                EscrowRescheduled(
                    metadata=EventMetadata.create(correlation_id=booking_id),
                    booking_id=booking_id,
                    previous_release_on=previous,
                    release_on=release_on,
                )
            )
            return record

    # ------------------------------------------------------------------
    # Early release
    # ------------------------------------------------------------------

    def check_early_release_eligibility(self, payee: Payee) -> EligibilityResult:
        """Evaluate the conjunctive early-release gate.

        Every criterion is evaluated so the payee sees all reasons at once.
        """
        criteria = self.criteria
        reasons: list[str] = []

        rating = to_decimal(payee.rating) if payee.rating is not None else None
        if rating is None or rating < criteria.min_rating:
            shown = rating if rating is not None else "none"
            reasons.append(f"Rating {shown} is below {criteria.min_rating}")

        if payee.completed_booking_count < criteria.min_completed_bookings:
            reasons.append(
                f"{payee.completed_booking_count} completed bookings, "
                f"at least {criteria.min_completed_bookings} required"
            )

        if criteria.require_verified and not payee.is_verified:
            reasons.append("Payee is not verified")

        recent = self.bookings.get_recent_bookings(payee.payee_id, criteria.recent_window)
        rate = cancellation_rate(recent)
        if rate > to_decimal(criteria.max_cancellation_rate):
            reasons.append(
                f"Cancellation rate {rate * 100:.1f}% over the last {len(recent)} bookings "
                f"exceeds {to_decimal(criteria.max_cancellation_rate) * 100:.1f}%"
            )

        return EligibilityResult(eligible=not reasons, reasons=tuple(reasons), cancellation_rate=rate)

    def release_early(self, booking_id: str, payee: Payee) -> ReleaseOutcome:
        """Release held funds now instead of on the scheduled date.

        Raises:
            NotEligibleForEarlyRelease: If the payee fails the gate.
            EscrowNotFound: If the booking has no escrow record.
            InvalidTransitionError: If the escrow is no longer scheduled.
        """
        eligibility = self.check_early_release_eligibility(payee)
        if not eligibility.eligible:
            raise NotEligibleForEarlyRelease(payee.payee_id, list(eligibility.reasons))

        with entity_lock("escrow", booking_id):
            record = self.require_record(booking_id, for_update=True)
            if record.payee_id != payee.payee_id:
                raise ValueError(
                    f"Escrow for booking {booking_id} belongs to payee {record.payee_id}"
                )
            EscrowStateMachine.validate_transition(record.status, EscrowStatus.RELEASED_EARLY)
            if record.transfer_ref is not None:
                raise InvalidTransitionError(
                    record.status,
                    EscrowStatus.RELEASED_EARLY,
                    "release transfer already in flight",
                )
            return self._transfer(record, early=True)

    # ------------------------------------------------------------------
    # Scheduled release
    # ------------------------------------------------------------------

    def release(self, booking_id: str, *, as_of: date | None = None) -> ReleaseOutcome:
        """Release one booking's escrow if it is due."""
        as_of = as_of or self.clock.now().date()

        with entity_lock("escrow", booking_id):
            record = self.require_record(booking_id, for_update=True)
            if record.status != EscrowStatus.SCHEDULED:
                return ReleaseOutcome(
                    booking_id, record.status, record.transfer_ref, record.transfer_status,
                    skipped_reason=f"escrow already {record.status}",
                )
            if record.scheduled_release_on > as_of:
                return ReleaseOutcome(
                    booking_id, record.status,
                    skipped_reason=f"not due until {record.scheduled_release_on}",
                )
            if record.transfer_ref is not None:
                return ReleaseOutcome(
                    booking_id, record.status, record.transfer_ref, record.transfer_status,
                    skipped_reason="transfer awaiting confirmation",
                )
            return self._transfer(record, early=False)

    def release_due(self, as_of: date | None = None) -> list[ReleaseOutcome]:
        """Release every scheduled escrow whose release date has arrived."""
        if not self.config.auto_release_enabled:
            logger.info("Automatic escrow release is disabled; skipping sweep")
            return []

        as_of = as_of or self.clock.now().date()
        booking_ids = self.db.execute(
            select(EscrowRecord.booking_id)
            .where(
                EscrowRecord.status == EscrowStatus.SCHEDULED.value,
                EscrowRecord.scheduled_release_on <= as_of,
                EscrowRecord.transfer_ref.is_(None),
            )
            .order_by(EscrowRecord.scheduled_release_on, EscrowRecord.booking_id)
        ).scalars().all()

        outcomes = [self.release(booking_id, as_of=as_of) for booking_id in booking_ids]
        logger.info(
            "Escrow sweep for %s: %d due, %d released",
            as_of,
            len(outcomes),
            sum(1 for o in outcomes if o.released),
        )
        return outcomes

    def confirm_transfer(self, transfer_ref: str, external_status: str) -> EscrowRecord | None:
        """Apply a transfer status reported later by the gateway.

        Returns None when no escrow record owns the transfer.
        """
        record = self.get_by_transfer_ref(transfer_ref)
        if record is None:
            logger.warning("Ignoring status for unknown transfer %s", transfer_ref)
            return None

        with entity_lock("escrow", record.booking_id):
            self.db.refresh(record, with_for_update=True)
            status = map_transfer_status(external_status)
            record.transfer_status = status.value
            self._apply_transfer_status(record, status, early=False)
            self.db.flush()
            return record

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _transfer(self, record: EscrowRecord, *, early: bool) -> ReleaseOutcome:
        """Create the release transfer. Caller holds the locks."""
        account = self.accounts.get_account(record.payee_id)
        if account is None or not can_receive_payouts(account):
            logger.info(
                "Payee %s cannot receive payouts; escrow for booking %s stays scheduled",
                record.payee_id,
                record.booking_id,
            )
            return ReleaseOutcome(
                record.booking_id,
                record.status,
                skipped_reason="payee account cannot receive payouts",
            )
        if record.payee_amount == 0:
            self._mark_released(record, early=early)
            return ReleaseOutcome(record.booking_id, record.status)

        key = idempotency_key(record.booking_id, RELEASE_OPERATION)
        try:
            result = self.gateway.create_transfer(
                amount=record.payee_amount,
                destination_account_ref=account.account_ref,
                idempotency_key=key,
                metadata={
                    "booking_id": record.booking_id,
                    "payee_id": record.payee_id,
                    "type": "early_release" if early else "scheduled_release",
                },
                timeout=self.timeout,
            )
        except GatewayError as e:
            if e.retryable:
                logger.warning(
                    "Retryable gateway error releasing escrow for booking %s: %s (%s)",
                    record.booking_id,
                    e,
                    e.code,
                )
                return ReleaseOutcome(
                    record.booking_id, record.status, error_code=e.code, retryable=True
                )
            self._mark_failed(record, e.code, str(e))
            return ReleaseOutcome(record.booking_id, record.status, error_code=e.code)

        status = map_transfer_status(result.status)
        record.transfer_ref = result.transfer_ref
        record.transfer_status = status.value
        self._apply_transfer_status(record, status, early=early)
        self.db.flush()
        return ReleaseOutcome(
            record.booking_id,
            record.status,
            transfer_ref=record.transfer_ref,
            transfer_status=record.transfer_status,
            error_code=record.failure_code,
        )

    def _apply_transfer_status(
        self, record: EscrowRecord, status: TransferStatus, *, early: bool
    ) -> None:
        if status in (TransferStatus.FAILED, TransferStatus.REVERSED):
            if record.status != EscrowStatus.FAILED:
                self._mark_failed(
                    record, f"transfer_{status.value}", f"Transfer {record.transfer_ref} {status.value}"
                )
            return

        if record.status != EscrowStatus.SCHEDULED:
            return

        # Early releases leave escrow as soon as the transfer is accepted;
        # scheduled releases wait for the gateway to confirm payment.
        if early or status == TransferStatus.PAID:
            self._mark_released(record, early=early)

    def _mark_released(self, record: EscrowRecord, *, early: bool) -> None:
        target = EscrowStatus.RELEASED_EARLY if early else EscrowStatus.RELEASED
        EscrowStateMachine.validate_transition(record.status, target)
        record.status = target.value
        record.released_at = self.clock.now()
        self.db.flush()
        logger.info(
            "Escrow %s for booking %s (%s to payee %s)",
            target.value,
            record.booking_id,
            record.payee_amount,
            record.payee_id,
        )
        metadata = EventMetadata.create(correlation_id=record.booking_id)
        if early:
            self._emit(
                EscrowReleasedEarly(
                    metadata=metadata,
                    booking_id=record.booking_id,
                    payee_id=record.payee_id,
                    amount=record.payee_amount,
                    transfer_ref=record.transfer_ref,
                    scheduled_release_on=record.scheduled_release_on,
                )
            )
        else:
            self._emit(
                EscrowReleased(
                    metadata=metadata,
                    booking_id=record.booking_id,
                    payee_id=record.payee_id,
                    amount=record.payee_amount,
                    transfer_ref=record.transfer_ref,
                )
            )

    def _mark_failed(self, record: EscrowRecord, code: str, reason: str) -> None:
        EscrowStateMachine.validate_transition(record.status, EscrowStatus.FAILED)
        record.status = EscrowStatus.FAILED.value
        record.failure_code = code
        record.failure_reason = reason
        self.db.flush()
        logger.error(
            "Escrow release failed for booking %s: %s (%s); operator action required",
            record.booking_id,
            reason,
            code,
        )
        self._emit(
            EscrowReleaseFailed(
                metadata=EventMetadata.create(correlation_id=record.booking_id),
                booking_id=record.booking_id,
                payee_id=record.payee_id,
                failure_code=code,
                failure_reason=reason,
            )
        )

    def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            self.emitter.emit(event)
