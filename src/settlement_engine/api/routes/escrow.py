"""Escrow endpoints."""

import logging

from fastapi import APIRouter, HTTPException, status

from settlement_engine.api.dependencies import DbSession, Workflow
from settlement_engine.api.schemas import (
    EligibilityResponse,
    EscrowResponse,
    PayeeRef,
    ReleaseDueRequest,
    ReleaseDueResponse,
    ReleaseOutcomeResponse,
)
from settlement_engine.errors import NotEligibleForEarlyRelease
from settlement_engine.services import ReleaseOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/escrow", tags=["escrow"])


def _outcome_response(outcome: ReleaseOutcome) -> ReleaseOutcomeResponse:
    return ReleaseOutcomeResponse(
        booking_id=outcome.booking_id,
        status=outcome.status,
        released=outcome.released,
        transfer_ref=outcome.transfer_ref,
        transfer_status=outcome.transfer_status,
        skipped_reason=outcome.skipped_reason,
        error_code=outcome.error_code,
        retryable=outcome.retryable,
    )


@router.get("/{booking_id}", response_model=EscrowResponse)
def get_escrow(booking_id: str, workflow: Workflow) -> EscrowResponse:
    """Get the escrow record for a booking."""
    record = workflow.escrow.get_record(booking_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No escrow record for booking {booking_id}",
        )
    return EscrowResponse.model_validate(record)


@router.post("/release-due", response_model=ReleaseDueResponse)
def release_due(
    db: DbSession,
    workflow: Workflow,
    request: ReleaseDueRequest | None = None,
) -> ReleaseDueResponse:
    """Run the due-release sweep. Failed releases are reported, not raised."""
    as_of = (request.as_of if request else None) or workflow.clock.now().date()
    with workflow.emitter.batch():
        outcomes = workflow.release_due(as_of)
        db.commit()
    return ReleaseDueResponse(
        as_of=as_of,
        released=sum(1 for o in outcomes if o.released),
        outcomes=[_outcome_response(o) for o in outcomes],
    )


@router.post("/eligibility", response_model=EligibilityResponse)
def check_eligibility(body: PayeeRef, workflow: Workflow) -> EligibilityResponse:
    """Evaluate the early-release gate against the payee's stored record."""
    payee = workflow.get_payee(body.payee_id)
    result = workflow.escrow.check_early_release_eligibility(payee)
    return EligibilityResponse(
        eligible=result.eligible,
        reasons=list(result.reasons),
        cancellation_rate=result.cancellation_rate,
    )


@router.post("/{booking_id}/release-early", response_model=ReleaseOutcomeResponse)
def release_early(
    booking_id: str,
    body: PayeeRef,
    db: DbSession,
    workflow: Workflow,
) -> ReleaseOutcomeResponse:
    """Release a booking's escrow before its scheduled date."""
    with workflow.emitter.batch():
        try:
            outcome = workflow.release_early(booking_id, workflow.get_payee(body.payee_id))
        except NotEligibleForEarlyRelease as e:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": str(e), "reasons": e.reasons},
            )
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=str(e),
            )
        db.commit()
    logger.info("Early release requested for booking %s: %s", booking_id, outcome.status)
    return _outcome_response(outcome)
