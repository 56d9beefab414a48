"""Stateless quote endpoints: pricing, split, refund and payout date."""

from datetime import date

from fastapi import APIRouter, HTTPException, Query, status

from settlement_engine.api.dependencies import AppClock, Config
from settlement_engine.api.schemas import (
    PricingBreakdownResponse,
    PricingQuoteRequest,
    RefundQuoteRequest,
    RefundQuoteResponse,
    SplitQuoteRequest,
    SplitResponse,
)
from settlement_engine.calculators import (
    PricingBreakdownBuilder,
    RefundPolicyEngine,
    SplitCalculator,
)
from settlement_engine.errors import (
    InvalidPricingInput,
    InvalidRefundPolicy,
    InvalidSplitInput,
)
from settlement_engine.services import estimate_payout_date

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.post("/pricing", response_model=PricingBreakdownResponse)
def quote_pricing(request: PricingQuoteRequest, config: Config) -> PricingBreakdownResponse:
    """Build a full pricing breakdown without persisting anything."""
    builder = PricingBreakdownBuilder(config.pricing)
    try:
        breakdown = builder.build(
            service_price=request.service_price,
            advance_percentage=request.advance_percentage,
            retention_amount=request.retention_amount,
            distance=request.distance,
            rate_per_unit=request.rate_per_unit,
            applied_credits=request.applied_credits,
            payee_category=request.payee_category,
            temple_share_percentage=request.temple_share_percentage,
        )
    except InvalidPricingInput as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=str(e),
        )
    return PricingBreakdownResponse(**breakdown.to_dict())


@router.post("/split", response_model=SplitResponse)
def quote_split(request: SplitQuoteRequest, config: Config) -> SplitResponse:
    """Split a final price between payee, temple and platform."""
    temple_pct = request.temple_share_percentage
    if temple_pct is None and request.payee_category == "employee":
        temple_pct = config.split.default_temple_share_percentage

    calculator = SplitCalculator(config.split.platform_fee_percentage)
    try:
        split = calculator.calculate(
            final_price=request.final_price,
            retention_amount=request.retention_amount,
            payee_category=request.payee_category,
            temple_share_percentage=temple_pct,
            platform_fee_percentage=request.platform_fee_percentage,
        )
    except InvalidSplitInput as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=str(e),
        )
    return SplitResponse(
        payee_amount=split.payee_amount,
        temple_amount=split.temple_amount,
        platform_amount=split.platform_amount,
        retention_amount=split.retention_amount,
        payee_percentage=split.payee_percentage,
        temple_percentage=split.temple_percentage,
        platform_percentage=split.platform_percentage,
    )


@router.post("/refund", response_model=RefundQuoteResponse)
def quote_refund(
    request: RefundQuoteRequest, config: Config, clock: AppClock
) -> RefundQuoteResponse:
    """Quote a cancellation refund under the given or default policy."""
    try:
        policy = request.policy.to_policy() if request.policy else config.refund_policy
    except InvalidRefundPolicy as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=str(e),
        )

    quote = RefundPolicyEngine().quote(
        service_start=request.service_start,
        advance_amount=request.advance_amount,
        policy=policy,
        cancelled_at=request.cancelled_at or clock.now(),
    )
    return RefundQuoteResponse(
        refund_amount=quote.refund_amount,
        cancellation_fee=quote.cancellation_fee,
        refund_percentage=quote.refund_percentage,
        policy_applied=quote.policy_applied,
        hours_until_service=quote.hours_until_service,
        policy_gap=quote.policy_gap,
    )


@router.get("/payout-date")
def quote_payout_date(
    config: Config,
    completed_on: date = Query(..., description="Service completion date"),
) -> dict[str, date]:
    """Estimated escrow payout date for a completion date."""
    payout = estimate_payout_date(completed_on, config.escrow.hold_days)
    return {"completed_on": completed_on, "estimated_payout_on": payout}
