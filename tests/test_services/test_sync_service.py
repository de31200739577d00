"""Tests for the sync orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select

from contentsync.models import Author, Page, Post, PostTag, SyncLog, Tag
from contentsync.schemas.webhook import PushEvent
from contentsync.services.sync_service import SyncEngine
from tests.conftest import (
    TEST_COMMIT_SHA,
    FakeFetcher,
    FakeRenderer,
    author_markdown,
    page_markdown,
    post_markdown,
    push_payload,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contentsync.config import Settings

POST_PATH = "content/posts/2024-01-15-hello-world.md"
AUTHOR_PATH = "content/authors/john-doe.md"
PAGE_PATH = "content/pages/about.md"


def _push(**kwargs: list[str]) -> PushEvent:
    return PushEvent.model_validate(push_payload(**kwargs))


async def _count(session_factory: async_sessionmaker[AsyncSession], model: type) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model)) or 0


async def _logs(session_factory: async_sessionmaker[AsyncSession]) -> list[SyncLog]:
    async with session_factory() as session:
        return list(await session.scalars(select(SyncLog).order_by(SyncLog.id)))


class TestProcessPush:
    @pytest.mark.asyncio
    async def test_single_new_post(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[POST_PATH] = post_markdown()

        result = await sync_engine.process_push(_push(added=[POST_PATH]))

        assert result.success is True
        assert result.processed == 1
        async with session_factory() as session:
            author = await session.scalar(select(Author))
            tag = await session.scalar(select(Tag))
            post = await session.scalar(select(Post))
            link = await session.scalar(select(PostTag))
        assert author is not None
        assert (author.slug, author.name) == ("john-doe", "john-doe")
        assert tag is not None
        assert tag.slug == "test"
        assert post is not None
        assert post.slug == "hello-world"
        assert post.author_id == author.id
        assert link is not None
        assert (link.post_id, link.tag_id) == (post.id, tag.id)
        logs = await _logs(session_factory)
        assert [(log.resource_type, log.status) for log in logs] == [("post", "success")]
        assert logs[0].resource_id == str(post.id)

    @pytest.mark.asyncio
    async def test_syncs_post_author_and_page(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files.update(
            {
                AUTHOR_PATH: author_markdown("John Doe", email="john@example.com"),
                POST_PATH: post_markdown(tags=["python", "sync"]),
                PAGE_PATH: page_markdown(status="published"),
            }
        )

        result = await sync_engine.process_push(
            _push(added=[AUTHOR_PATH, POST_PATH, PAGE_PATH], modified=["README.md"])
        )

        assert result.success is True
        assert result.processed == 3
        assert result.errors == []
        assert result.duration >= 0

        async with session_factory() as session:
            post = await session.scalar(select(Post).where(Post.slug == "hello-world"))
            author = await session.scalar(select(Author).where(Author.slug == "john-doe"))
            page = await session.scalar(select(Page).where(Page.slug == "about"))
        assert post is not None
        assert author is not None
        assert page is not None
        assert post.author_id == author.id
        assert author.name == "John Doe"
        assert post.content_html == "<p>This is the first post.</p>"
        assert page.status == "published"
        assert await _count(session_factory, Tag) == 2
        assert await _count(session_factory, PostTag) == 2

        logs = await _logs(session_factory)
        assert len(logs) == 3
        assert {log.status for log in logs} == {"success"}
        assert {log.commit_sha for log in logs} == {TEST_COMMIT_SHA}
        assert {log.file_path for log in logs} == {AUTHOR_PATH, POST_PATH, PAGE_PATH}

    @pytest.mark.asyncio
    async def test_fetches_at_pushed_commit(
        self, sync_engine: SyncEngine, fake_fetcher: FakeFetcher
    ) -> None:
        fake_fetcher.files[POST_PATH] = post_markdown()
        await sync_engine.process_push(_push(modified=[POST_PATH]))
        assert fake_fetcher.calls == [(POST_PATH, TEST_COMMIT_SHA)]

    @pytest.mark.asyncio
    async def test_no_content_changes(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        result = await sync_engine.process_push(
            _push(modified=["README.md", "content/posts/notes.txt", "src/app.md"])
        )

        assert result.success is True
        assert result.processed == 0
        assert result.message == "No content files changed"
        assert fake_fetcher.calls == []
        assert await _logs(session_factory) == []

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[POST_PATH] = post_markdown(tags=["a", "b"])
        push = _push(added=[POST_PATH])

        first = await sync_engine.process_push(push)
        async with session_factory() as session:
            before = await session.scalar(select(Post))
        second = await sync_engine.process_push(push)
        async with session_factory() as session:
            after = await session.scalar(select(Post))

        assert first.processed == second.processed == 1
        assert before is not None
        assert after is not None
        assert after.id == before.id
        assert after.created_at == before.created_at
        assert await _count(session_factory, Post) == 1
        assert await _count(session_factory, PostTag) == 2
        assert await _count(session_factory, Author) == 1
        # Every attempt is audited
        assert len(await _logs(session_factory)) == 2


class TestErrorIsolation:
    @pytest.mark.asyncio
    async def test_invalid_file_does_not_block_others(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        paths = [f"content/posts/post-{index}.md" for index in range(4)]
        for path in paths:
            fake_fetcher.files[path] = post_markdown()
        bad = "content/posts/broken.md"
        fake_fetcher.files[bad] = "---\nauthor: john-doe\npublishedAt: '2024-01-15'\n---\nBody\n"

        result = await sync_engine.process_push(_push(added=[*paths, bad]))

        assert result.success is False
        assert result.processed == 4
        assert result.partial is True
        assert len(result.errors) == 1
        assert result.errors[0].file == bad
        assert "Invalid post frontmatter" in result.errors[0].error
        assert "title" in result.errors[0].error
        assert await _count(session_factory, Post) == 4

        logs = await _logs(session_factory)
        assert len(logs) == 5
        failed = [log for log in logs if log.status == "error"]
        assert len(failed) == 1
        assert failed[0].file_path == bad
        assert failed[0].resource_id == "broken"
        assert failed[0].error_message == result.errors[0].error

    @pytest.mark.asyncio
    async def test_malformed_yaml(
        self, sync_engine: SyncEngine, fake_fetcher: FakeFetcher
    ) -> None:
        fake_fetcher.files[POST_PATH] = "---\ntitle: [unclosed\n---\nBody\n"
        result = await sync_engine.process_push(_push(added=[POST_PATH]))
        assert result.processed == 0
        assert "Invalid frontmatter YAML" in result.errors[0].error
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_impossible_yaml_date_is_a_validation_error(
        self, sync_engine: SyncEngine, fake_fetcher: FakeFetcher
    ) -> None:
        fake_fetcher.files[POST_PATH] = (
            "---\ntitle: Hi\nauthor: john-doe\npublishedAt: 2024-13-45\n---\nBody\n"
        )
        result = await sync_engine.process_push(_push(added=[POST_PATH]))
        assert result.processed == 0
        assert result.errors[0].error.startswith("Invalid frontmatter YAML")

    @pytest.mark.asyncio
    async def test_fetch_failure(
        self, sync_engine: SyncEngine, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await sync_engine.process_push(_push(modified=[POST_PATH]))

        assert result.success is False
        assert result.processed == 0
        assert "not found" in result.errors[0].error
        logs = await _logs(session_factory)
        assert [(log.event_type, log.status) for log in logs] == [("sync", "error")]

    @pytest.mark.asyncio
    async def test_render_failure_writes_nothing(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[POST_PATH] = post_markdown(body="Trigger RENDER-FAIL here\n")
        fake_fetcher.files[PAGE_PATH] = page_markdown()

        result = await sync_engine.process_push(_push(added=[POST_PATH, PAGE_PATH]))

        assert result.processed == 1
        assert result.errors[0].file == POST_PATH
        assert "rendering" in result.errors[0].error
        assert await _count(session_factory, Post) == 0
        assert await _count(session_factory, Author) == 0
        assert await _count(session_factory, Page) == 1


class TestDeletion:
    @pytest.mark.asyncio
    async def test_removed_post_is_deleted(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[POST_PATH] = post_markdown(tags=["a"])
        await sync_engine.process_push(_push(added=[POST_PATH]))

        result = await sync_engine.process_push(_push(removed=[POST_PATH]))

        assert result.success is True
        assert result.processed == 1
        assert await _count(session_factory, Post) == 0
        assert await _count(session_factory, PostTag) == 0
        assert await _count(session_factory, Tag) == 1
        last = (await _logs(session_factory))[-1]
        assert (last.event_type, last.status, last.resource_type) == ("delete", "success", "post")

    @pytest.mark.asyncio
    async def test_removing_unknown_file_is_skipped(
        self, sync_engine: SyncEngine, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await sync_engine.process_push(_push(removed=[PAGE_PATH]))

        assert result.success is True
        assert result.processed == 1
        log = (await _logs(session_factory))[0]
        assert log.status == "skipped"
        assert log.details["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_rename_to_same_slug_keeps_row(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        old_path = "content/posts/2023-12-31-hello-world.md"
        fake_fetcher.files[old_path] = post_markdown()
        await sync_engine.process_push(_push(added=[old_path]))
        async with session_factory() as session:
            original = await session.scalar(select(Post))
        assert original is not None

        del fake_fetcher.files[old_path]
        fake_fetcher.files[POST_PATH] = post_markdown(title="Hello Again")
        result = await sync_engine.process_push(_push(added=[POST_PATH], removed=[old_path]))

        assert result.success is True
        async with session_factory() as session:
            post = await session.scalar(select(Post))
        assert post is not None
        assert post.id == original.id
        assert post.created_at == original.created_at
        assert post.title == "Hello Again"
        deletes = [log for log in await _logs(session_factory) if log.event_type == "delete"]
        assert [(log.status, log.details["reason"]) for log in deletes] == [
            ("skipped", "superseded")
        ]

    @pytest.mark.asyncio
    async def test_deleting_author_keeps_posts(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[AUTHOR_PATH] = author_markdown()
        fake_fetcher.files[POST_PATH] = post_markdown()
        await sync_engine.process_push(_push(added=[AUTHOR_PATH, POST_PATH]))

        result = await sync_engine.process_push(_push(removed=[AUTHOR_PATH]))

        assert result.success is True
        async with session_factory() as session:
            post = await session.scalar(select(Post))
        assert post is not None
        assert post.author_id is None


class TestPages:
    @pytest.mark.asyncio
    async def test_slug_override_is_ignored(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[PAGE_PATH] = page_markdown(slug="about-us")
        result = await sync_engine.process_push(_push(added=[PAGE_PATH]))

        assert result.success is True
        async with session_factory() as session:
            slugs = list(await session.scalars(select(Page.slug)))
        assert slugs == ["about"]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_many_files_share_tags_and_author(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
    ) -> None:
        fetcher = FakeFetcher(
            {
                f"content/posts/post-{index}.md": post_markdown(
                    author="shared", tags=["common", f"t{index % 3}"]
                )
                for index in range(12)
            }
        )
        settings = test_settings.model_copy(update={"sync_max_workers": 4})
        engine = SyncEngine(session_factory, fetcher, FakeRenderer(), settings)

        result = await engine.process_push(_push(added=sorted(fetcher.files)))

        assert result.success is True
        assert result.processed == 12
        assert await _count(session_factory, Post) == 12
        assert await _count(session_factory, Author) == 1
        assert await _count(session_factory, Tag) == 4
        assert await _count(session_factory, PostTag) == 24


class TestSyncPaths:
    @pytest.mark.asyncio
    async def test_manual_paths(
        self,
        sync_engine: SyncEngine,
        fake_fetcher: FakeFetcher,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        fake_fetcher.files[PAGE_PATH] = page_markdown()
        result = await sync_engine.sync_paths([PAGE_PATH, "docs/readme.md"], "b" * 40)

        assert result.processed == 1
        assert fake_fetcher.calls == [(PAGE_PATH, "b" * 40)]
        log = (await _logs(session_factory))[0]
        assert log.commit_sha == "b" * 40
