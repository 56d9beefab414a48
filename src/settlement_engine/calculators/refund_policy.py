"""Refund policy engine.

Evaluates a tiered cancellation policy against the time left before service.
Precedence (first match wins):

1. ``hours_until_service >= free_until_hours``: full refund.
2. ``hours_until_service <= no_refund_hours``: no refund, whole advance kept.
3. The tier with the largest ``hours_before_service`` that is still
   ``<= hours_until_service``.
4. No tier matches: no refund, and the gap is logged as a policy defect.

The engine is pure. It produces ``RefundTransaction`` intents and never calls
the payment gateway.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from settlement_engine.types import (
    HUNDRED,
    CancellationPolicy,
    PricingBreakdown,
    RefundQuote,
    RefundReason,
    RefundTransaction,
    percentage_of,
    round_half_up,
)
from settlement_engine.errors import ApprovalRequired

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = Decimal("3600")


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Signed hours from ``start`` until ``end``."""
    return Decimal(str((end - start).total_seconds())) / SECONDS_PER_HOUR


class RefundPolicyEngine:
    """Computes refunds and cancellation fees from a cancellation policy."""

    def quote(
        self,
        *,
        service_start: datetime,
        advance_amount: int,
        policy: CancellationPolicy,
        cancelled_at: datetime,
    ) -> RefundQuote:
        """Quote the refund for a cancellation.

        Args:
            service_start: Scheduled start of the service.
            advance_amount: Advance actually charged, in minor units.
            policy: Cancellation policy of the service.
            cancelled_at: When the cancellation happens.

        Returns:
            RefundQuote with refund and fee summing to ``advance_amount``.
        """
        if advance_amount < 0:
            raise ValueError(f"advance_amount cannot be negative, got {advance_amount}")

        hours = hours_between(cancelled_at, service_start)

        if hours >= policy.free_until_hours:
            return RefundQuote(
                refund_amount=advance_amount,
                cancellation_fee=0,
                refund_percentage=HUNDRED,
                policy_applied="Free cancellation period",
                hours_until_service=hours,
            )

        if hours <= policy.no_refund_hours:
            return RefundQuote(
                refund_amount=0,
                cancellation_fee=advance_amount,
                refund_percentage=Decimal("0"),
                policy_applied="No refund period",
                hours_until_service=hours,
            )

        # Tiers are stored with the largest threshold first.
        for tier in policy.tiers:
            if tier.hours_before_service <= hours:
                fee = percentage_of(advance_amount, tier.fee_percentage)
                return RefundQuote(
                    refund_amount=advance_amount - fee,
                    cancellation_fee=fee,
                    refund_percentage=HUNDRED - tier.fee_percentage,
                    policy_applied=f"{tier.hours_before_service} hours before service policy",
                    hours_until_service=hours,
                )

        logger.warning(
            "Cancellation policy has no tier covering %s hours before service; "
            "defaulting to zero refund",
            hours,
        )
        return RefundQuote(
            refund_amount=0,
            cancellation_fee=advance_amount,
            refund_percentage=Decimal("0"),
            policy_applied="Default policy",
            hours_until_service=hours,
            policy_gap=True,
        )

    def build_refund(
        self,
        *,
        booking_id: str,
        service_start: datetime,
        advance_amount: int,
        policy: CancellationPolicy,
        cancelled_at: datetime,
        reason: RefundReason | str,
        initiated_by: str,
        description: str | None = None,
    ) -> RefundTransaction:
        """Quote a cancellation and wrap it as a refund intent."""
        quote = self.quote(
            service_start=service_start,
            advance_amount=advance_amount,
            policy=policy,
            cancelled_at=cancelled_at,
        )
        return RefundTransaction(
            booking_id=booking_id,
            original_amount=advance_amount,
            refund_amount=quote.refund_amount,
            cancellation_fee=quote.cancellation_fee,
            reason=RefundReason(reason),
            initiated_by=initiated_by,
            description=description or quote.policy_applied,
            metadata={
                "policy_applied": quote.policy_applied,
                "refund_percentage": str(quote.refund_percentage),
                "hours_until_service": str(quote.hours_until_service),
                "policy_gap": quote.policy_gap,
            },
        )

    def emergency_refund(
        self,
        *,
        booking_id: str,
        advance_amount: int,
        initiated_by: str,
        approved_by: str | None,
        emergency_type: str = "",
        description: str = "",
        previously_refunded: int = 0,
    ) -> RefundTransaction:
        """Full refund of the advance, bypassing the tier schedule.

        ``previously_refunded`` is what earlier refunds of this booking
        already returned; only the rest of the advance is refunded.

        Raises:
            ApprovalRequired: If ``approved_by`` is empty.
        """
        if not approved_by or not approved_by.strip():
            raise ApprovalRequired("Emergency refunds require an approver")
        if advance_amount < 0:
            raise ValueError(f"advance_amount cannot be negative, got {advance_amount}")
        if not 0 <= previously_refunded <= advance_amount:
            raise ValueError(
                f"previously_refunded must be within the advance, got {previously_refunded}"
            )

        outstanding = advance_amount - previously_refunded
        return RefundTransaction(
            booking_id=booking_id,
            original_amount=outstanding,
            refund_amount=outstanding,
            cancellation_fee=0,
            reason=RefundReason.EMERGENCY,
            initiated_by=initiated_by,
            approved_by=approved_by,
            description=f"Emergency refund: {emergency_type} - {description}".rstrip(" -"),
            metadata={
                "emergency_type": emergency_type,
                "advance_amount": advance_amount,
                "previously_refunded": previously_refunded,
            },
        )

    @staticmethod
    def check_emergency_exception(reason: str, emergency_exceptions: tuple[str, ...] | list[str]) -> bool:
        """Whether a free-text reason mentions one of the policy's emergencies."""
        normalized = reason.lower()
        return any(exception.lower() in normalized for exception in emergency_exceptions)

    @staticmethod
    def calculate_payee_loss(breakdown: PricingBreakdown, refund_amount: int) -> dict[str, int]:
        """Estimate what the payee loses when a booking is refunded.

        The advance loss excludes the platform's share of the refunded
        amount; the future loss is the remaining balance never collected.
        """
        if breakdown.advance_amount:
            platform_share = Decimal(breakdown.platform_fee) / Decimal(breakdown.advance_amount)
        else:
            platform_share = Decimal("0")
        advance_loss = round_half_up(Decimal(refund_amount) * (1 - platform_share))
        future_loss = breakdown.remaining_amount
        return {
            "total_loss": advance_loss + future_loss,
            "advance_loss": advance_loss,
            "future_loss": future_loss,
        }
