"""Application-level exception types.

Convention:
- ``SyncError`` subclasses mark the stage of the sync pipeline that failed.
- ``AuthenticationError`` is fatal to a webhook delivery; the global handler
  in ``contentsync/main.py`` turns it into a 401 before any file is touched.
- Every other ``SyncError`` is caught at the per-file boundary of the
  orchestrator, recorded in ``sync_logs`` and reported in the response
  ``errors`` list.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for failures inside the content sync pipeline."""


class AuthenticationError(SyncError):
    """Webhook signature missing or invalid."""


class ValidationError(SyncError):
    """Frontmatter is missing, malformed, or violates its schema."""


class FetchError(SyncError):
    """File content could not be retrieved from the hosting API."""


class RenderError(SyncError):
    """Markdown could not be rendered (renderer unreachable, timeout, parse error)."""


class PersistenceError(SyncError):
    """A database read or write failed while applying a change."""


class LoggingError(SyncError):
    """Writing a ``sync_logs`` row failed. Never propagated out of the sync logger."""

