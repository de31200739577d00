"""Health check endpoint for uptime monitoring."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contentsync import __version__
from contentsync.api.deps import get_session
from contentsync.models import SyncLog
from contentsync.services.datetime_service import now_utc

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    timestamp: datetime
    last_sync: datetime | None = None


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """Report database reachability and when content was last synced.

    Answers 503 with ``status="degraded"`` when the database cannot be queried.
    """
    try:
        await session.execute(text("SELECT 1"))
        last_sync = await session.scalar(select(func.max(SyncLog.created_at)))
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="degraded",
            version=__version__,
            database="error",
            timestamp=now_utc(),
        )

    return HealthResponse(
        status="ok",
        version=__version__,
        database="ok",
        timestamp=now_utc(),
        last_sync=last_sync,
    )
