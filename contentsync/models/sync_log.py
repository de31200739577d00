"""Sync audit log model and its enumerations."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from contentsync.models.base import Base
from contentsync.services.datetime_service import now_utc


class SyncEventType(StrEnum):
    """Kind of operation attempted on a resource."""

    SYNC = "sync"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(StrEnum):
    """Kind of resource a content file maps to."""

    POST = "post"
    AUTHOR = "author"
    PAGE = "page"
    TAG = "tag"


class SyncStatus(StrEnum):
    """Outcome of a single resource operation."""

    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class SyncLog(Base):
    """Append-only audit row, one per attempted resource mutation."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    commit_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="success")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )

    __table_args__ = (
        Index("idx_sync_logs_created_at", "created_at"),
        Index("idx_sync_logs_resource_type", "resource_type"),
        Index("idx_sync_logs_status", "status"),
    )
