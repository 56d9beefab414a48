"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from settlement_engine.bookings import Clock
from settlement_engine.policy import SettlementConfig
from settlement_engine.workflow import SettlementWorkflow


def get_db_session(request: Request) -> Iterator[Session]:
    """Get database session dependency. Routes commit explicitly."""
    factory = request.app.state.session_factory
    with factory() as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


def get_config(request: Request) -> SettlementConfig:
    return request.app.state.config


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


DbSession = Annotated[Session, Depends(get_db_session)]
Config = Annotated[SettlementConfig, Depends(get_config)]
AppClock = Annotated[Clock, Depends(get_clock)]


def get_workflow(request: Request, db: DbSession) -> SettlementWorkflow:
    state = request.app.state
    return SettlementWorkflow(
        db,
        state.gateway,
        state.bookings,
        config=state.config,
        clock=state.clock,
        emitter=state.emitter,
    )


Workflow = Annotated[SettlementWorkflow, Depends(get_workflow)]
