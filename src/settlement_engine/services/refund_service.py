"""Refund Service - persist refund intents and submit them to the gateway.

The policy engine decides how much to refund. This service records the
intent, asks the gateway to move the money with idempotency key
"{booking_id}:refund" (or "{booking_id}:emergency_refund" for the approved
bypass), and tracks the gateway's status afterwards.

Zero refunds never reach the gateway and are recorded as succeeded.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_engine.bookings import Clock, SystemClock
from settlement_engine.calculators.refund_policy import RefundPolicyEngine
from settlement_engine.database import entity_lock
from settlement_engine.events import (
    EventEmitter,
    EventMetadata,
    RefundIssued,
    RefundStatusChanged,
)
from settlement_engine.gateway import GatewayError, PaymentGateway, idempotency_key
from settlement_engine.models import RefundRecord
from settlement_engine.services.state_machine import RefundStateMachine
from settlement_engine.types import (
    PricingBreakdown,
    RefundReason,
    RefundStatus,
    RefundTransaction,
)

logger = logging.getLogger(__name__)

REFUND_OPERATION = "refund"
EMERGENCY_REFUND_OPERATION = "emergency_refund"

_MONEY_OUT_STATUSES = (RefundStatus.PENDING.value, RefundStatus.SUCCEEDED.value)

_REFUND_STATUS_MAP = {
    "pending": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELLED,
    "cancelled": RefundStatus.CANCELLED,
}

_GATEWAY_REASONS = {
    RefundReason.CUSTOMER_REQUEST: "requested_by_customer",
    RefundReason.PAYEE_CANCELLATION: "requested_by_customer",
    RefundReason.DISPUTE: "disputed",
    RefundReason.EMERGENCY: "requested_by_customer",
    RefundReason.SERVICE_NOT_COMPLETED: "requested_by_customer",
}


def map_refund_status(external_status: str | None) -> RefundStatus:
    """Map a gateway refund status; unknown values stay pending."""
    status = _REFUND_STATUS_MAP.get((external_status or "").lower())
    if status is None:
        logger.warning("Unknown refund status %r mapped to pending", external_status)
        return RefundStatus.PENDING
    return status


def gateway_reason(reason: RefundReason | str) -> str:
    return _GATEWAY_REASONS.get(RefundReason(reason), "requested_by_customer")


def refund_operation(reason: RefundReason | str) -> str:
    """Operation kind keying a refund; emergency refunds never collide with tier refunds."""
    if RefundReason(reason) == RefundReason.EMERGENCY:
        return EMERGENCY_REFUND_OPERATION
    return REFUND_OPERATION


class RefundService:
    """Records refunds and drives them through the gateway.

    Callers own the transaction.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        *,
        clock: Clock | None = None,
        emitter: EventEmitter | None = None,
        timeout: float | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock or SystemClock()
        self.emitter = emitter
        self.timeout = timeout

    def get_refund(self, booking_id: str) -> RefundRecord | None:
        """Latest refund recorded for a booking."""
        return self.db.execute(
            select(RefundRecord)
            .where(RefundRecord.booking_id == booking_id)
            .order_by(RefundRecord.refund_id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def refunded_amount(self, booking_id: str, *, operation: str | None = None) -> int:
        """Amount refunded or on its way back for a booking.

        Failed and cancelled refunds are excluded. ``operation`` narrows the
        sum to one refund kind.
        """
        query = select(func.coalesce(func.sum(RefundRecord.refund_amount), 0)).where(
            RefundRecord.booking_id == booking_id,
            RefundRecord.status.in_(_MONEY_OUT_STATUSES),
        )
        if operation is not None:
            query = query.where(
                RefundRecord.idempotency_key == idempotency_key(booking_id, operation)
            )
        return int(self.db.execute(query).scalar_one())

    def find_refund(self, booking_id: str, operation: str) -> RefundRecord | None:
        key = idempotency_key(booking_id, operation)
        return self.db.execute(
            select(RefundRecord).where(RefundRecord.idempotency_key == key)
        ).scalar_one_or_none()

    def issue(self, intent: RefundTransaction, *, charge_ref: str | None) -> RefundRecord:
        """Persist a refund intent and submit it to the gateway.

        Issuing again for the same booking and operation returns the
        recorded refund. A
        refund still pending without a gateway reference (an earlier
        retryable failure) is resubmitted with the same idempotency key.

        Returns:
            The refund record. ``status`` is failed for non-retryable
            gateway errors; ``failure_reason`` is set for retryable ones.
        """
        key = idempotency_key(intent.booking_id, refund_operation(intent.reason))

        with entity_lock("refund", intent.booking_id):
            record = self.db.execute(
                select(RefundRecord).where(RefundRecord.idempotency_key == key).with_for_update()
            ).scalar_one_or_none()

            if record is None:
                metadata = dict(intent.metadata)
                if charge_ref:
                    metadata["charge_ref"] = charge_ref
                record = RefundRecord(
                    booking_id=intent.booking_id,
                    original_amount=intent.original_amount,
                    refund_amount=intent.refund_amount,
                    cancellation_fee=intent.cancellation_fee,
                    reason=RefundReason(intent.reason).value,
                    status=RefundStatus.PENDING.value,
                    initiated_by=intent.initiated_by,
                    approved_by=intent.approved_by,
                    description=intent.description,
                    idempotency_key=key,
                    metadata_json=metadata,
                )
                self.db.add(record)
                self.db.flush()
            elif record.status != RefundStatus.PENDING or record.gateway_refund_ref:
                return record

            if record.refund_amount == 0:
                self._set_status(record, RefundStatus.SUCCEEDED)
                logger.info(
                    "Recorded zero refund for booking %s (fee %s)",
                    record.booking_id,
                    record.cancellation_fee,
                )
            else:
                if not charge_ref:
                    raise ValueError(
                        f"Booking {intent.booking_id} has no charge to refund against"
                    )
                self._submit(record, charge_ref)

            self.db.flush()

        if self.emitter is not None:
            self.emitter.emit(
                RefundIssued(
                    metadata=EventMetadata.create(correlation_id=record.booking_id),
                    booking_id=record.booking_id,
                    refund_amount=record.refund_amount,
                    cancellation_fee=record.cancellation_fee,
                    reason=record.reason,
                    status=record.status,
                )
            )
        return record

    def _submit(self, record: RefundRecord, charge_ref: str) -> None:
        try:
            result = self.gateway.create_refund(
                original_charge_ref=charge_ref,
                amount=record.refund_amount,
                reason=gateway_reason(record.reason),
                idempotency_key=record.idempotency_key,
                timeout=self.timeout,
            )
        except GatewayError as e:
            record.failure_reason = f"{e.code}: {e}"
            if e.retryable:
                logger.warning(
                    "Retryable gateway error refunding booking %s: %s (%s)",
                    record.booking_id,
                    e,
                    e.code,
                )
                return
            logger.error("Refund for booking %s failed: %s (%s)", record.booking_id, e, e.code)
            self._set_status(record, RefundStatus.FAILED)
            return

        record.gateway_refund_ref = result.refund_ref
        record.failure_reason = result.failure_reason
        status = map_refund_status(result.status)
        if status != record.status:
            self._set_status(record, status)
        logger.info(
            "Refund %s for booking %s: %s of %s (%s)",
            result.refund_ref,
            record.booking_id,
            record.refund_amount,
            record.original_amount,
            record.status,
        )

    def apply_refund_status(
        self,
        refund_ref: str,
        external_status: str,
        failure_reason: str | None = None,
    ) -> RefundRecord | None:
        """Apply a refund status reported by the gateway (webhook).

        Terminal refunds never change again. Returns None for unknown refunds.
        """
        record = self.db.execute(
            select(RefundRecord)
            .where(RefundRecord.gateway_refund_ref == refund_ref)
            .with_for_update()
        ).scalar_one_or_none()
        if record is None:
            logger.warning("Ignoring status for unknown refund %s", refund_ref)
            return None

        status = map_refund_status(external_status)
        previous = record.status
        if status == previous:
            return record
        if RefundStateMachine.is_terminal(previous):
            logger.warning(
                "Ignoring %s for refund %s already %s", status.value, refund_ref, previous
            )
            return record

        self._set_status(record, status)
        if failure_reason:
            record.failure_reason = failure_reason
        self.db.flush()

        logger.info("Refund %s: %s -> %s", refund_ref, previous, status.value)
        if self.emitter is not None:
            self.emitter.emit(
                RefundStatusChanged(
                    metadata=EventMetadata.create(
                        correlation_id=record.booking_id, actor_type="webhook"
                    ),
                    booking_id=record.booking_id,
                    refund_ref=refund_ref,
                    previous_status=previous,
                    status=status.value,
                )
            )
        return record

    def _set_status(self, record: RefundRecord, status: RefundStatus) -> None:
        RefundStateMachine.validate_transition(record.status, status)
        record.status = status.value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    check_emergency_exception = staticmethod(RefundPolicyEngine.check_emergency_exception)

    @staticmethod
    def calculate_payee_loss(breakdown: PricingBreakdown, refund_amount: int) -> dict[str, int]:
        return RefundPolicyEngine.calculate_payee_loss(breakdown, refund_amount)

    @staticmethod
    def format_refund_details(record: RefundRecord) -> list[str]:
        """Display lines for a refund."""
        details = [
            f"Refund amount: ${Decimal(record.refund_amount) / 100:.2f}",
            f"Cancellation fee: ${Decimal(record.cancellation_fee) / 100:.2f}",
            f"Status: {record.status}",
        ]
        if record.failure_reason:
            details.append(f"Failure reason: {record.failure_reason}")
        return details
