"""Shared test fixtures for contentsync."""

from __future__ import annotations

import html
import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contentsync.config import Settings
from contentsync.database import create_engine
from contentsync.exceptions import FetchError, RenderError
from contentsync.main import create_app
from contentsync.models.base import Base
from contentsync.services.signature_service import compute_signature
from contentsync.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_COMMIT_SHA = "a" * 40


class FakeRenderer:
    """Renders a body as one escaped paragraph; raises for bodies containing ``fail_marker``."""

    def __init__(self, fail_marker: str | None = None) -> None:
        self.fail_marker = fail_marker
        self.calls: list[str] = []

    async def render(self, markdown: str) -> str:
        self.calls.append(markdown)
        if self.fail_marker is not None and self.fail_marker in markdown:
            raise RenderError("Pandoc rendering error: simulated failure")
        return f"<p>{html.escape(markdown.strip())}</p>"


class FakeFetcher:
    """In-memory stand-in for the GitHub contents API."""

    def __init__(self, files: dict[str, str] | None = None, head: str = TEST_COMMIT_SHA) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.head = head
        self.calls: list[tuple[str, str]] = []

    @property
    def repository(self) -> str:
        return "acme/content"

    async def fetch(self, path: str, ref: str) -> str:
        self.calls.append((path, ref))
        if path not in self.files:
            raise FetchError(f"{path}@{ref} not found")
        return self.files[path]

    async def list_files(self, directory: str, ref: str) -> list[str]:
        prefix = directory.rstrip("/") + "/"
        return sorted(path for path in self.files if path.startswith(prefix))

    async def resolve_ref(self, branch: str) -> str:
        return self.head

    async def aclose(self) -> None:
        pass


def post_markdown(
    title: str = "Hello World",
    author: str = "john-doe",
    published_at: str = "2024-01-15",
    tags: list[str] | None = None,
    status: str = "published",
    body: str = "This is the first post.\n",
    **extra: Any,
) -> str:
    """Build a post file with valid frontmatter."""
    lines = [
        "---",
        f'title: "{title}"',
        f'author: "{author}"',
        f'publishedAt: "{published_at}"',
        f"tags: {json.dumps(tags if tags is not None else ['test'])}",
        f"status: {status}",
    ]
    lines.extend(f"{key}: {json.dumps(value)}" for key, value in extra.items())
    lines.append("---")
    return "\n".join(lines) + "\n" + body


def author_markdown(name: str = "John Doe", **extra: Any) -> str:
    lines = ["---", f'name: "{name}"']
    lines.extend(f"{key}: {json.dumps(value)}" for key, value in extra.items())
    lines.append("---")
    return "\n".join(lines) + "\nAuthor bio body.\n"


def page_markdown(title: str = "About", body: str = "About this site.\n", **extra: Any) -> str:
    lines = ["---", f'title: "{title}"']
    lines.extend(f"{key}: {json.dumps(value)}" for key, value in extra.items())
    lines.append("---")
    return "\n".join(lines) + "\n" + body


def push_payload(
    added: list[str] | None = None,
    modified: list[str] | None = None,
    removed: list[str] | None = None,
    ref: str = "refs/heads/main",
    sha: str = TEST_COMMIT_SHA,
) -> dict[str, Any]:
    """Minimal GitHub push payload with a single head commit."""
    commit = {
        "id": sha,
        "message": "Update content",
        "timestamp": "2024-01-15T10:00:00Z",
        "author": {"name": "John Doe", "email": "john@example.com"},
        "added": added or [],
        "modified": modified or [],
        "removed": removed or [],
    }
    return {
        "ref": ref,
        "before": "0" * 40,
        "after": sha,
        "repository": {
            "name": "content",
            "full_name": "acme/content",
            "owner": {"name": "acme", "login": "acme"},
        },
        "head_commit": commit,
        "commits": [commit],
    }


def signed_headers(
    body: bytes, event: str = "push", secret: str = TEST_WEBHOOK_SECRET
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "test-delivery",
        "X-Hub-Signature-256": compute_signature(body, secret),
    }


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=False,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        github_webhook_secret=TEST_WEBHOOK_SECRET,
        github_repo_owner="acme",
        github_repo_name="content",
        pandoc_mode="subprocess",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _ = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer(fail_marker="RENDER-FAIL")


@pytest.fixture
def sync_engine(
    session_factory: async_sessionmaker[AsyncSession],
    fake_fetcher: FakeFetcher,
    fake_renderer: FakeRenderer,
    test_settings: Settings,
) -> SyncEngine:
    return SyncEngine(session_factory, fake_fetcher, fake_renderer, test_settings)


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    fetcher: FakeFetcher,
    renderer: FakeRenderer,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB, sync engine)
    because ASGITransport does not trigger it. The GitHub client and pandoc
    are replaced by the given fakes.
    """
    app = create_app(settings)
    settings.validate_required()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.sync_engine = SyncEngine(session_factory, fetcher, renderer, settings)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()
