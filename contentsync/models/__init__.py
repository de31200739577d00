"""SQLAlchemy ORM models for the content sync engine."""

from contentsync.models.author import Author
from contentsync.models.base import Base
from contentsync.models.page import Page
from contentsync.models.post import Post, PostTag
from contentsync.models.sync_log import ResourceType, SyncEventType, SyncLog, SyncStatus
from contentsync.models.tag import Tag

__all__ = [
    "Author",
    "Base",
    "Page",
    "Post",
    "PostTag",
    "ResourceType",
    "SyncEventType",
    "SyncLog",
    "SyncStatus",
    "Tag",
]
