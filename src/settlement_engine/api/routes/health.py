"""Health and readiness endpoints for the settlement API.

``/health`` also reports how many scheduled escrows are past their release
date, so a stalled release sweep shows up in monitoring.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from settlement_engine.api.dependencies import DbSession
from settlement_engine.models import EscrowRecord

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    checked_at: datetime
    database: str
    gateway: str
    sandbox: bool
    overdue_escrows: int | None = None


def _overdue_escrows(db: DbSession, as_of: datetime) -> int:
    query = select(func.count(EscrowRecord.booking_id)).where(
        EscrowRecord.status == "scheduled",
        EscrowRecord.scheduled_release_on < as_of.date(),
    )
    return db.scalar(query) or 0


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request, db: DbSession) -> HealthResponse:
    state = request.app.state
    checked_at = state.clock.now()

    overdue: int | None = None
    try:
        overdue = _overdue_escrows(db, checked_at)
    except SQLAlchemyError:
        logger.exception("Health check could not query escrow records")

    database = "healthy" if overdue is not None else "unhealthy"
    if overdue:
        logger.warning("%d scheduled escrows are past their release date", overdue)
    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        checked_at=checked_at,
        database=database,
        gateway=state.config.gateway.name,
        sandbox=state.config.gateway.sandbox,
        overdue_escrows=overdue,
    )


@router.get("/ready")
def readiness_check() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/live")
def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
