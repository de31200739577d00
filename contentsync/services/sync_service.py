"""Sync orchestration: change set in, database writes and audit rows out.

Per push:

1. Extract the change set (content files only).
2. Fetch, parse, render and upsert every added or modified file. Files are
   independent: a failure is logged and reported, never fatal to the batch.
3. Delete rows for removed files, after all upserts.
4. Aggregate a :class:`SyncResult`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from contentsync.content.frontmatter import (
    ParsedAuthor,
    ParsedPage,
    ParsedPost,
    parse_author,
    parse_page,
    parse_post,
)
from contentsync.exceptions import PersistenceError, SyncError
from contentsync.models import ResourceType, SyncEventType, SyncStatus
from contentsync.schemas.webhook import SyncErrorItem, SyncResult
from contentsync.services.changeset_service import (
    ChangeSet,
    ContentChange,
    ContentLayout,
    build_change_set,
    change_set_from_push,
)
from contentsync.services.sync_log_service import SyncLogger
from contentsync.services.upsert_service import (
    delete_resource,
    upsert_author,
    upsert_page,
    upsert_post,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contentsync.config import Settings
    from contentsync.content.frontmatter import ParsedContent
    from contentsync.rendering.pandoc import Renderer
    from contentsync.schemas.webhook import PushEvent
    from contentsync.services.github_service import ContentFetcher

logger = logging.getLogger(__name__)


@dataclass
class FileOutcome:
    """Result of one file operation at the per-file error boundary."""

    change: ContentChange
    event_type: SyncEventType
    status: SyncStatus
    resource_id: int | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.ERROR


def _describe(parsed: ParsedContent) -> dict[str, Any]:
    """Audit metadata recorded alongside a successful write."""
    match parsed:
        case ParsedPost(metadata=meta):
            return {
                "title": meta.title,
                "author": meta.author,
                "tags": list(meta.tags),
                "status": meta.status,
            }
        case ParsedAuthor(metadata=meta):
            return {"name": meta.name}
        case ParsedPage(metadata=meta):
            return {"title": meta.title, "status": meta.status}
    return {}


_PARSERS: dict[ResourceType, Callable[[str], ParsedContent]] = {
    ResourceType.POST: parse_post,
    ResourceType.AUTHOR: parse_author,
    ResourceType.PAGE: parse_page,
}


class SyncEngine:
    """Applies content changes to the database.

    All collaborators are injected: the session factory, a content fetcher
    (``fetch(path, ref)``), a Markdown renderer (``render(body)``) and the
    settings that carry layout and tuning values.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: ContentFetcher,
        renderer: Renderer,
        settings: Settings,
        sync_logger: SyncLogger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._fetcher = fetcher
        self._renderer = renderer
        self._settings = settings
        self._sync_logger = sync_logger or SyncLogger(session_factory)
        self.layout = ContentLayout.from_settings(settings)
        # SQLite has a single writer; concurrent write transactions fail with
        # "database is locked" rather than waiting
        self._write_lock = (
            asyncio.Lock() if settings.database_url.startswith("sqlite") else None
        )

    def _db_guard(self) -> AbstractAsyncContextManager[Any]:
        return self._write_lock if self._write_lock is not None else nullcontext()

    async def process_push(self, event: PushEvent) -> SyncResult:
        """Sync everything a push changed, reading files at the pushed commit."""
        change_set = change_set_from_push(event, self.layout)
        logger.info(
            "Push %s to %s: %d added, %d modified, %d removed content files",
            event.commit_sha[:12],
            event.ref,
            len(change_set.added),
            len(change_set.modified),
            len(change_set.removed),
        )
        return await self.apply(change_set, event.commit_sha)

    async def sync_paths(self, paths: Iterable[str], commit_sha: str) -> SyncResult:
        """Upsert an explicit list of paths at *commit_sha* (manual sync)."""
        change_set = build_change_set([], list(paths), [], self.layout)
        return await self.apply(change_set, commit_sha)

    async def apply(self, change_set: ChangeSet, commit_sha: str) -> SyncResult:
        """Run a change set and aggregate the per-file outcomes."""
        started = time.perf_counter()
        if not len(change_set):
            return SyncResult(
                success=True,
                processed=0,
                duration=_elapsed_ms(started),
                message="No content files changed",
            )

        upserts = change_set.upserts
        outcomes = await self._run_grouped(
            upserts, lambda change: self._sync_file(change, commit_sha)
        )

        upserted_keys = {change.key for change in upserts}
        outcomes += await self._run_grouped(
            change_set.removed,
            lambda change: self._delete_file(change, commit_sha, upserted_keys),
        )

        errors = [
            SyncErrorItem(file=outcome.change.path, error=outcome.error or "Unknown error")
            for outcome in outcomes
            if not outcome.ok
        ]
        processed = sum(1 for outcome in outcomes if outcome.ok)
        result = SyncResult(
            success=not errors,
            processed=processed,
            errors=errors,
            duration=_elapsed_ms(started),
        )
        if errors:
            logger.warning(
                "Sync of %s %s with %d error(s), %d processed in %dms",
                commit_sha[:12],
                "partially failed" if result.partial else "failed",
                len(errors),
                processed,
                result.duration,
            )
        else:
            logger.info(
                "Sync of %s finished: %d processed in %dms",
                commit_sha[:12],
                processed,
                result.duration,
            )
        return result

    async def _run_grouped(
        self,
        changes: list[ContentChange],
        worker: Callable[[ContentChange], Awaitable[FileOutcome]],
    ) -> list[FileOutcome]:
        """Run *worker* over *changes* with bounded concurrency.

        Changes to the same ``(resource_type, slug)`` run sequentially in
        list order; distinct groups run concurrently. Outcomes come back in
        input order.
        """
        groups: dict[tuple[ResourceType, str], list[tuple[int, ContentChange]]] = {}
        for index, change in enumerate(changes):
            groups.setdefault(change.key, []).append((index, change))
        if not groups:
            return []

        semaphore = asyncio.Semaphore(min(len(groups), self._settings.sync_max_workers))
        results: list[FileOutcome | None] = [None] * len(changes)

        async def run_group(items: list[tuple[int, ContentChange]]) -> None:
            async with semaphore:
                for index, change in items:
                    results[index] = await worker(change)

        await asyncio.gather(*(run_group(items) for items in groups.values()))
        return [outcome for outcome in results if outcome is not None]

    async def _sync_file(self, change: ContentChange, commit_sha: str) -> FileOutcome:
        """Fetch, parse, render and upsert one file; never raises."""
        try:
            raw = await self._fetcher.fetch(change.path, commit_sha)
            parsed = _PARSERS[change.resource_type](raw)
            resource_id = await self._write(change, parsed)
            outcome = FileOutcome(
                change=change,
                event_type=SyncEventType.SYNC,
                status=SyncStatus.SUCCESS,
                resource_id=resource_id,
                details={"slug": change.slug, **_describe(parsed)},
            )
        except SyncError as exc:
            logger.warning("Failed to sync %s: %s", change.path, exc)
            outcome = self._failure(change, SyncEventType.SYNC, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error syncing %s", change.path)
            outcome = self._failure(change, SyncEventType.SYNC, f"Unexpected error: {exc}")

        await self._record(outcome, commit_sha)
        return outcome

    async def _write(self, change: ContentChange, parsed: ParsedContent) -> int:
        """Render if needed, then upsert inside a single transaction."""
        content_html = ""
        if isinstance(parsed, ParsedPost | ParsedPage):
            content_html = await self._renderer.render(parsed.body)
        if isinstance(parsed, ParsedPage) and parsed.metadata.slug not in (None, change.slug):
            logger.warning(
                "Page %s declares slug %r; using path-derived slug %r",
                change.path,
                parsed.metadata.slug,
                change.slug,
            )

        async with self._db_guard():
            try:
                async with self._session_factory() as session, session.begin():
                    match parsed:
                        case ParsedPost():
                            return await upsert_post(
                                session,
                                change.slug,
                                parsed,
                                content_html,
                                words_per_minute=self._settings.words_per_minute,
                                excerpt_max_length=self._settings.excerpt_max_length,
                            )
                        case ParsedAuthor():
                            return await upsert_author(session, change.slug, parsed)
                        case ParsedPage():
                            return await upsert_page(session, change.slug, parsed, content_html)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to commit {change.path}: {exc}") from exc
        raise PersistenceError(f"No writer for {change.path}")

    async def _delete_file(
        self,
        change: ContentChange,
        commit_sha: str,
        upserted_keys: set[tuple[ResourceType, str]],
    ) -> FileOutcome:
        """Delete the row for a removed file; never raises."""
        if change.key in upserted_keys:
            # Renamed within the push: the row now belongs to the new file
            outcome = FileOutcome(
                change=change,
                event_type=SyncEventType.DELETE,
                status=SyncStatus.SKIPPED,
                details={"slug": change.slug, "reason": "superseded"},
            )
            await self._record(outcome, commit_sha)
            return outcome

        try:
            async with self._db_guard():
                try:
                    async with self._session_factory() as session, session.begin():
                        deleted_id = await delete_resource(
                            session, change.resource_type, change.slug
                        )
                except SQLAlchemyError as exc:
                    raise PersistenceError(f"Failed to commit {change.path}: {exc}") from exc
            if deleted_id is None:
                outcome = FileOutcome(
                    change=change,
                    event_type=SyncEventType.DELETE,
                    status=SyncStatus.SKIPPED,
                    details={"slug": change.slug, "reason": "not_found"},
                )
            else:
                outcome = FileOutcome(
                    change=change,
                    event_type=SyncEventType.DELETE,
                    status=SyncStatus.SUCCESS,
                    resource_id=deleted_id,
                    details={"slug": change.slug},
                )
        except SyncError as exc:
            logger.warning("Failed to delete %s: %s", change.path, exc)
            outcome = self._failure(change, SyncEventType.DELETE, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error deleting %s", change.path)
            outcome = self._failure(change, SyncEventType.DELETE, f"Unexpected error: {exc}")

        await self._record(outcome, commit_sha)
        return outcome

    @staticmethod
    def _failure(change: ContentChange, event_type: SyncEventType, error: str) -> FileOutcome:
        return FileOutcome(
            change=change,
            event_type=event_type,
            status=SyncStatus.ERROR,
            error=error,
            details={"slug": change.slug},
        )

    async def _record(self, outcome: FileOutcome, commit_sha: str) -> None:
        resource_id = (
            str(outcome.resource_id) if outcome.resource_id is not None else outcome.change.slug
        )
        async with self._db_guard():
            await self._sync_logger.record(
                event_type=outcome.event_type,
                resource_type=outcome.change.resource_type,
                status=outcome.status,
                resource_id=resource_id,
                file_path=outcome.change.path,
                commit_sha=commit_sha or None,
                error_message=outcome.error,
                details=outcome.details,
            )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
