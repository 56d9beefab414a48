"""Payment gateway webhook endpoint.

Events arrive as ``{"id": ..., "type": "transfer.paid", "data": {"object": {...}}}``.
When a webhook secret is configured, the raw body must carry a hex
HMAC-SHA256 signature in the ``Gateway-Signature`` header.
"""

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from settlement_engine.api.schemas import WebhookAck
from settlement_engine.workflow import SettlementWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "Gateway-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


def _dispatch(request: Request, event_type: str, payload: dict[str, Any]) -> bool:
    state = request.app.state
    with state.session_factory() as session:
        workflow = SettlementWorkflow(
            session,
            state.gateway,
            state.bookings,
            config=state.config,
            clock=state.clock,
            emitter=state.emitter,
        )
        try:
            with state.emitter.batch():
                handled = workflow.handle_gateway_event(event_type, payload)
                session.commit()
        except Exception:
            session.rollback()
            raise
    return handled


@router.post("/gateway", response_model=WebhookAck)
async def gateway_webhook(request: Request) -> WebhookAck:
    """Receive a gateway event and apply it."""
    body = await request.body()

    secret = request.app.state.config.gateway.webhook_secret
    if secret and not verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Rejected gateway webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body is not valid JSON",
        )
    if not isinstance(event, dict) or not event.get("type"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook event has no type",
        )

    payload = (event.get("data") or {}).get("object") or {}
    try:
        handled = await run_in_threadpool(_dispatch, request, str(event["type"]), payload)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    logger.info("Gateway webhook %s %s", event.get("id"), event["type"])
    return WebhookAck(handled=handled)
