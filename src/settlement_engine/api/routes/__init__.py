"""API routes."""

from settlement_engine.api.routes.escrow import router as escrow_router
from settlement_engine.api.routes.health import router as health_router
from settlement_engine.api.routes.quotes import router as quotes_router
from settlement_engine.api.routes.webhooks import router as webhooks_router

__all__ = ["escrow_router", "health_router", "quotes_router", "webhooks_router"]
