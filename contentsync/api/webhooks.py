"""GitHub webhook endpoint that drives content sync."""

from __future__ import annotations

import json
import logging
from typing import Annotated

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request, status

from contentsync.api.deps import get_settings, get_sync_engine
from contentsync.config import Settings
from contentsync.schemas.webhook import PushEvent, SyncResult
from contentsync.exceptions import AuthenticationError
from contentsync.services.signature_service import require_valid_signature
from contentsync.services.sync_service import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"


def _acknowledge(message: str) -> SyncResult:
    return SyncResult(success=True, processed=0, duration=0, message=message)


@router.post("/github", response_model=SyncResult, response_model_exclude_none=True)
async def github_webhook(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> SyncResult:
    """Receive a GitHub push and sync the content files it changed.

    Returns 200 with per-file errors for any authenticated, well-formed
    delivery, even when every file failed.
    """
    # Signature covers the exact bytes sent, so read them before any parsing
    raw_body = await request.body()
    delivery = request.headers.get(DELIVERY_HEADER, "-")

    try:
        require_valid_signature(
            raw_body, request.headers.get(SIGNATURE_HEADER), settings.github_webhook_secret
        )
    except AuthenticationError:
        logger.warning("Rejected webhook delivery %s: invalid signature", delivery)
        raise

    event = request.headers.get(EVENT_HEADER, "")
    if event == "ping":
        logger.info("Webhook ping received (delivery %s)", delivery)
        return _acknowledge("pong")
    if event != "push":
        logger.info("Ignoring %r event (delivery %s)", event, delivery)
        return _acknowledge("Event type not supported")

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        ) from None

    try:
        push = PushEvent.model_validate(payload)
    except pydantic.ValidationError as exc:
        logger.warning("Malformed push payload in delivery %s: %s", delivery, exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid push payload",
        ) from None

    if settings.content_branch and push.branch != settings.content_branch:
        logger.info("Ignoring push to %s (delivery %s)", push.ref, delivery)
        return _acknowledge(f"Ignoring push to {push.ref}")

    return await engine.process_push(push)
