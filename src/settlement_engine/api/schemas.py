"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from settlement_engine.types import CancellationPolicy, PayeeCategory


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# Quote schemas
# ============================================================================


class PricingQuoteRequest(BaseModel):
    """Inputs for a pricing breakdown."""

    service_price: int = Field(ge=0)
    advance_percentage: Decimal
    retention_amount: int | None = Field(default=None, ge=0)
    distance: Decimal = Decimal("0")
    rate_per_unit: Decimal | None = None
    applied_credits: int = Field(default=0, ge=0)
    payee_category: PayeeCategory = PayeeCategory.INDEPENDENT
    temple_share_percentage: Decimal | None = None


class PricingBreakdownResponse(BaseModel):
    """Full pricing breakdown in minor units."""

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


class SplitQuoteRequest(BaseModel):
    """Inputs for a payment split."""

    final_price: int
    retention_amount: int
    payee_category: PayeeCategory
    temple_share_percentage: Decimal | None = None
    platform_fee_percentage: Decimal | None = None


class SplitResponse(BaseModel):
    """Payment split; amounts are authoritative, percentages informational."""

    payee_amount: int
    temple_amount: int
    platform_amount: int
    retention_amount: int
    payee_percentage: Decimal
    temple_percentage: Decimal
    platform_percentage: Decimal


class CancellationTierIn(BaseModel):
    hours_before_service: Decimal
    fee_percentage: Decimal


class CancellationPolicyIn(BaseModel):
    """Tiered cancellation policy."""

    free_until_hours: Decimal
    no_refund_hours: Decimal
    tiers: list[CancellationTierIn] = Field(default_factory=list)
    emergency_exceptions: list[str] = Field(default_factory=list)

    def to_policy(self) -> CancellationPolicy:
        return CancellationPolicy.build(
            free_until_hours=self.free_until_hours,
            no_refund_hours=self.no_refund_hours,
            tiers=[(t.hours_before_service, t.fee_percentage) for t in self.tiers],
            emergency_exceptions=self.emergency_exceptions,
        )


class RefundQuoteRequest(BaseModel):
    """Inputs for a refund quote. Naive timestamps are read as UTC."""

    service_start: datetime
    cancelled_at: datetime | None = None
    advance_amount: int = Field(ge=0)
    policy: CancellationPolicyIn | None = None

    @field_validator("service_start", "cancelled_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class RefundQuoteResponse(BaseModel):
    refund_amount: int
    cancellation_fee: int
    refund_percentage: Decimal
    policy_applied: str
    hours_until_service: Decimal
    policy_gap: bool


# ============================================================================
# Escrow schemas
# ============================================================================


class EscrowResponse(BaseModel):
    """Escrow record for a booking."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: str
    payee_id: str
    status: str
    hold_started_at: datetime
    scheduled_release_on: date
    payee_amount: int
    temple_amount: int
    platform_amount: int
    retention_amount: int
    transfer_ref: str | None = None
    transfer_status: str | None = None
    released_at: datetime | None = None
    failure_code: str | None = None
    failure_reason: str | None = None


class ReleaseDueRequest(BaseModel):
    as_of: date | None = None


class ReleaseOutcomeResponse(BaseModel):
    booking_id: str
    status: str
    released: bool
    transfer_ref: str | None = None
    transfer_status: str | None = None
    skipped_reason: str | None = None
    error_code: str | None = None
    retryable: bool = False


class ReleaseDueResponse(BaseModel):
    as_of: date
    released: int
    outcomes: list[ReleaseOutcomeResponse]


class PayeeRef(BaseModel):
    """Payee asking for early release.

    The track record the gate evaluates is looked up server-side; any other
    field in the body is ignored.
    """

    payee_id: str = Field(min_length=1)


class EligibilityResponse(BaseModel):
    eligible: bool
    reasons: list[str]
    cancellation_rate: Decimal


# ============================================================================
# Webhooks and errors
# ============================================================================


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
