"""Append-only audit trail of sync attempts."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from contentsync.exceptions import LoggingError
from contentsync.models import SyncLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contentsync.models import ResourceType, SyncEventType, SyncStatus

logger = logging.getLogger(__name__)


class SyncLogger:
    """Writes one ``sync_logs`` row per resource operation.

    Each row is committed in its own session so that an audit entry for a
    failed file survives the rollback of that file's transaction. Failures to
    write are reported to the process log and never raised.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _write(self, entry: SyncLog) -> None:
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as exc:
            raise LoggingError(f"Failed to write sync log: {exc}") from exc

    async def record(
        self,
        *,
        event_type: SyncEventType,
        resource_type: ResourceType,
        status: SyncStatus,
        resource_id: str | None = None,
        file_path: str | None = None,
        commit_sha: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append an audit row. Returns False if it could not be written."""
        entry = SyncLog(
            event_type=str(event_type),
            resource_type=str(resource_type),
            resource_id=resource_id,
            file_path=file_path,
            commit_sha=commit_sha,
            status=str(status),
            error_message=error_message,
            details=details or {},
        )
        try:
            await self._write(entry)
        except LoggingError as exc:
            logger.error(
                "Could not record %s %s for %s (%s): %s",
                event_type,
                status,
                file_path or resource_id,
                resource_type,
                exc,
            )
            return False
        return True
