"""Value types shared by the pure settlement calculators.

All monetary amounts are integers in minor currency units (cents).
Percentages are accepted as ``int``, ``float`` or ``Decimal`` and are
converted through ``str`` so that ``0.1`` stays ``Decimal("0.1")``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Union

from settlement_engine.errors import InvalidRefundPolicy

Percentage = Union[int, float, Decimal]

HUNDRED = Decimal("100")


def to_decimal(value: Percentage) -> Decimal:
    """Convert a number to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> int:
    """Round to a whole minor unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage_of(amount: int, percentage: Percentage) -> int:
    """Return ``round(amount * percentage / 100)`` in minor units."""
    return round_half_up(Decimal(amount) * to_decimal(percentage) / HUNDRED)


class PayeeCategory(str, Enum):
    """How a payee relates to a temple, which decides the temple share."""

    INDEPENDENT = "independent"
    EMPLOYEE = "employee"
    OWNER = "owner"


@dataclass(frozen=True)
class PaymentSplit:
    """Distribution of a booking's price after retention.

    Amounts are the source of truth. Percentages are display values and are
    never used to recompute amounts.
    """

    payee_amount: int
    temple_amount: int
    platform_amount: int
    retention_amount: int
    payee_percentage: Decimal
    temple_percentage: Decimal
    platform_percentage: Decimal

    @property
    def distributable(self) -> int:
        """Amount shared between payee, temple and platform."""
        return self.payee_amount + self.temple_amount + self.platform_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "payee_amount": self.payee_amount,
            "temple_amount": self.temple_amount,
            "platform_amount": self.platform_amount,
            "retention_amount": self.retention_amount,
            "payee_percentage": str(self.payee_percentage),
            "temple_percentage": str(self.temple_percentage),
            "platform_percentage": str(self.platform_percentage),
        }


@dataclass(frozen=True)
class PricingBreakdown:
    """Full price breakdown, frozen at booking confirmation."""

    service_price: int
    travel_fee: int
    discount_applied: int
    loyalty_credit_used: int
    subtotal: int
    platform_fee: int
    temple_share: int
    payee_earnings: int
    final_price: int
    advance_amount: int
    remaining_amount: int
    retention_amount: int

    def validate(self) -> list[str]:
        """Check the breakdown invariants.

        Returns:
            List of violated invariants (empty if the breakdown is consistent).
        """
        issues: list[str] = []
        amounts = {
            "service_price": self.service_price,
            "travel_fee": self.travel_fee,
            "discount_applied": self.discount_applied,
            "loyalty_credit_used": self.loyalty_credit_used,
            "subtotal": self.subtotal,
            "platform_fee": self.platform_fee,
            "temple_share": self.temple_share,
            "payee_earnings": self.payee_earnings,
            "final_price": self.final_price,
            "advance_amount": self.advance_amount,
            "remaining_amount": self.remaining_amount,
            "retention_amount": self.retention_amount,
        }
        for name, value in amounts.items():
            if value < 0:
                issues.append(f"{name} is negative ({value})")

        if self.subtotal != self.service_price + self.travel_fee:
            issues.append("subtotal != service_price + travel_fee")
        if self.final_price != self.subtotal - self.discount_applied:
            issues.append("final_price != subtotal - discount_applied")
        if self.discount_applied > self.subtotal:
            issues.append("discount_applied exceeds subtotal")
        if self.advance_amount + self.remaining_amount != self.final_price:
            issues.append("advance_amount + remaining_amount != final_price")
        if self.retention_amount > self.final_price:
            issues.append("retention_amount exceeds final_price")
        distributed = (
            self.platform_fee + self.temple_share + self.payee_earnings + self.retention_amount
        )
        if distributed != self.final_price:
            issues.append(
                "platform_fee + temple_share + payee_earnings + retention_amount != final_price"
            )
        return issues

    @property
    def is_valid(self) -> bool:
        return not self.validate()

    def to_dict(self) -> dict[str, int]:
        return {
            "service_price": self.service_price,
            "travel_fee": self.travel_fee,
            "discount_applied": self.discount_applied,
            "loyalty_credit_used": self.loyalty_credit_used,
            "subtotal": self.subtotal,
            "platform_fee": self.platform_fee,
            "temple_share": self.temple_share,
            "payee_earnings": self.payee_earnings,
            "final_price": self.final_price,
            "advance_amount": self.advance_amount,
            "remaining_amount": self.remaining_amount,
            "retention_amount": self.retention_amount,
        }


@dataclass(frozen=True)
class CancellationTier:
    """Fee charged when cancelling at least ``hours_before_service`` ahead."""

    hours_before_service: Decimal
    fee_percentage: Decimal


@dataclass(frozen=True)
class CancellationPolicy:
    """Time-based tiered cancellation policy.

    Attributes:
        free_until_hours: Cancelling at least this far ahead refunds in full.
        no_refund_hours: Cancelling at or inside this window refunds nothing.
        tiers: Fee schedule between the two thresholds. Stored sorted by
            ``hours_before_service`` descending.
        emergency_exceptions: Keywords that qualify a free-text reason for
            the emergency path.
    """

    free_until_hours: Decimal
    no_refund_hours: Decimal
    tiers: tuple[CancellationTier, ...] = ()
    emergency_exceptions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate and normalise the policy."""
        if self.no_refund_hours > self.free_until_hours:
            raise InvalidRefundPolicy("no_refund_hours cannot exceed free_until_hours")

        ordered = tuple(
            sorted(self.tiers, key=lambda t: t.hours_before_service, reverse=True)
        )
        seen: set[Decimal] = set()
        previous_fee: Decimal | None = None
        for tier in ordered:
            if tier.fee_percentage < 0 or tier.fee_percentage > HUNDRED:
                raise InvalidRefundPolicy(
                    f"fee_percentage must be between 0 and 100, got {tier.fee_percentage}"
                )
            if tier.hours_before_service in seen:
                raise InvalidRefundPolicy(
                    f"duplicate tier at {tier.hours_before_service} hours"
                )
            seen.add(tier.hours_before_service)
            # Later cancellation must never cost less than earlier cancellation.
            if previous_fee is not None and tier.fee_percentage < previous_fee:
                raise InvalidRefundPolicy(
                    "tier fees must not decrease as service time approaches"
                )
            previous_fee = tier.fee_percentage

        object.__setattr__(self, "tiers", ordered)

    @classmethod
    def build(
        cls,
        *,
        free_until_hours: Percentage,
        no_refund_hours: Percentage,
        tiers: list[tuple[Percentage, Percentage]] | None = None,
        emergency_exceptions: list[str] | None = None,
    ) -> CancellationPolicy:
        """Build a policy from plain numbers.

        Args:
            free_until_hours: Full refund threshold in hours.
            no_refund_hours: Zero refund threshold in hours.
            tiers: ``(hours_before_service, fee_percentage)`` pairs.
            emergency_exceptions: Emergency keywords.
        """
        return cls(
            free_until_hours=to_decimal(free_until_hours),
            no_refund_hours=to_decimal(no_refund_hours),
            tiers=tuple(
                CancellationTier(
                    hours_before_service=to_decimal(hours),
                    fee_percentage=to_decimal(fee),
                )
                for hours, fee in (tiers or [])
            ),
            emergency_exceptions=tuple(emergency_exceptions or ()),
        )


class RefundReason(str, Enum):
    """Why a refund was issued."""

    CUSTOMER_REQUEST = "customer_request"
    PAYEE_CANCELLATION = "payee_cancellation"
    DISPUTE = "dispute"
    EMERGENCY = "emergency"
    SERVICE_NOT_COMPLETED = "service_not_completed"


class RefundStatus(str, Enum):
    """Refund transaction status."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RefundQuote:
    """Outcome of evaluating a cancellation policy."""

    refund_amount: int
    cancellation_fee: int
    refund_percentage: Decimal
    policy_applied: str
    hours_until_service: Decimal
    policy_gap: bool = False


@dataclass(frozen=True)
class RefundTransaction:
    """Refund intent produced by the policy engine.

    The engine never talks to the gateway. The caller instructs the gateway
    and persists the resulting status.
    """

    booking_id: str
    original_amount: int
    refund_amount: int
    cancellation_fee: int
    reason: RefundReason
    initiated_by: str
    status: RefundStatus = RefundStatus.PENDING
    approved_by: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.refund_amount + self.cancellation_fee != self.original_amount:
            raise ValueError("refund_amount + cancellation_fee must equal original_amount")
