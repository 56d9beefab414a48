"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from settlement_engine import __version__
from settlement_engine.api.schemas import ErrorResponse
from settlement_engine.api.routes import (
    escrow_router,
    health_router,
    quotes_router,
    webhooks_router,
)
from settlement_engine.bookings import BookingStore, Clock, InMemoryBookingStore, SystemClock
from settlement_engine.config import get_settings
from settlement_engine.database import create_schema, get_engine
from settlement_engine.errors import (
    ApprovalRequired,
    BookingNotFound,
    ConnectAccountNotFound,
    EscrowNotFound,
    InsufficientLoyaltyCredit,
    InvalidPricingInput,
    InvalidRefundPolicy,
    InvalidSplitInput,
    NotEligibleForEarlyRelease,
    PayeeNotFound,
    RefundAlreadyIssued,
    SettlementError,
)
from settlement_engine.events import EventEmitter
from settlement_engine.gateway import GatewayError, PaymentGateway, StubPaymentGateway
from settlement_engine.policy import SettlementConfig, validate_production_config
from settlement_engine.services import InvalidTransitionError

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[SettlementError], int, str]] = [
    (BookingNotFound, status.HTTP_404_NOT_FOUND, "BOOKING_NOT_FOUND"),
    (EscrowNotFound, status.HTTP_404_NOT_FOUND, "ESCROW_NOT_FOUND"),
    (ConnectAccountNotFound, status.HTTP_404_NOT_FOUND, "ACCOUNT_NOT_FOUND"),
    (PayeeNotFound, status.HTTP_404_NOT_FOUND, "PAYEE_NOT_FOUND"),
    (NotEligibleForEarlyRelease, status.HTTP_403_FORBIDDEN, "NOT_ELIGIBLE"),
    (ApprovalRequired, status.HTTP_403_FORBIDDEN, "APPROVAL_REQUIRED"),
    (RefundAlreadyIssued, status.HTTP_409_CONFLICT, "REFUND_ALREADY_ISSUED"),
    (InvalidSplitInput, status.HTTP_422_UNPROCESSABLE_CONTENT, "INVALID_SPLIT"),
    (InvalidPricingInput, status.HTTP_422_UNPROCESSABLE_CONTENT, "INVALID_PRICING"),
    (InvalidRefundPolicy, status.HTTP_422_UNPROCESSABLE_CONTENT, "INVALID_POLICY"),
    (InsufficientLoyaltyCredit, status.HTTP_422_UNPROCESSABLE_CONTENT, "INSUFFICIENT_CREDIT"),
]


def _default_config() -> SettlementConfig:
    return get_settings().settlement_config()


def _error(
    status_code: int, code: str, detail: str, context: dict[str, Any] | None = None
) -> JSONResponse:
    body = ErrorResponse(detail=detail, code=code, context=context)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    create_schema(app.state.engine)
    for issue in validate_production_config(app.state.config):
        logger.warning(issue)
    logger.info(
        "Settlement API started with gateway %s (sandbox=%s)",
        app.state.gateway.gateway_name,
        app.state.config.gateway.sandbox,
    )
    yield
    app.state.engine.dispose()


def create_app(
    *,
    gateway: PaymentGateway | None = None,
    bookings: BookingStore | None = None,
    config: SettlementConfig | None = None,
    database_url: str | None = None,
    clock: Clock | None = None,
    emitter: EventEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the stub gateway, an empty in-memory booking
    store and the database URL from the environment.
    """
    app = FastAPI(
        title="Settlement Engine API",
        description="Marketplace payment allocation and settlement",
        version=__version__,
        lifespan=lifespan,
    )

    engine = get_engine(database_url)
    app.state.engine = engine
    app.state.session_factory = sessionmaker(engine, expire_on_commit=False, autoflush=False)
    app.state.gateway = gateway or StubPaymentGateway()
    app.state.bookings = bookings if bookings is not None else InMemoryBookingStore()
    app.state.config = config or _default_config()
    app.state.clock = clock or SystemClock()
    app.state.emitter = emitter or EventEmitter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
        """Map domain errors to HTTP status codes."""
        for error_type, status_code, code in _ERROR_STATUS:
            if isinstance(exc, error_type):
                return _error(status_code, code, str(exc))
        return _error(status.HTTP_422_UNPROCESSABLE_CONTENT, "SETTLEMENT_ERROR", str(exc))

    @app.exception_handler(InvalidTransitionError)
    async def transition_error_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        return _error(
            status.HTTP_409_CONFLICT,
            "INVALID_TRANSITION",
            str(exc),
            {"from_status": exc.from_status, "to_status": exc.to_status},
        )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        logger.error("Gateway error on %s: %s (%s)", request.url.path, exc, exc.code)
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE if exc.retryable else status.HTTP_502_BAD_GATEWAY,
            "GATEWAY_ERROR",
            str(exc),
            {"gateway_code": exc.code, "retryable": exc.retryable},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "Internal server error"
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(quotes_router, prefix="/api/v1")
    app.include_router(escrow_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    return app
