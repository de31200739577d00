"""CLI for syncing content without a webhook delivery.

Reads files from the configured repository at the head of the content
branch (or ``--ref``) and runs them through the same sync engine the
webhook uses.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from contentsync.config import Settings
from contentsync.database import create_engine
from contentsync.exceptions import FetchError
from contentsync.models import ResourceType
from contentsync.models.base import Base
from contentsync.rendering.pandoc import PandocRenderer
from contentsync.services.changeset_service import ContentLayout
from contentsync.services.github_service import GitHubContentFetcher
from contentsync.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from contentsync.rendering.pandoc import Renderer
    from contentsync.schemas.webhook import SyncResult

_TYPE_CHOICES: dict[str, ResourceType] = {
    "posts": ResourceType.POST,
    "authors": ResourceType.AUTHOR,
    "pages": ResourceType.PAGE,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contentsync-sync",
        description="Manually sync content files from GitHub into the database",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--all", action="store_true", help="Sync every content file")
    target.add_argument(
        "--file", metavar="PATH", help="Sync a single file, e.g. content/posts/x.md"
    )
    target.add_argument(
        "--type", choices=sorted(_TYPE_CHOICES), help="Sync all files of one type"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="List what would be synced without writing"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--ref", help="Commit SHA to read from (default: content branch head)")
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


async def collect_paths(
    args: argparse.Namespace, fetcher: GitHubContentFetcher, layout: ContentLayout, ref: str
) -> list[str]:
    """Resolve the CLI target to a list of content paths."""
    if args.file:
        path = args.file.strip("/")
        if layout.classify_path(path) is None:
            msg = f"{args.file} is not a content file under {layout.root}/"
            raise ValueError(msg)
        return [path]

    if args.type:
        types = [_TYPE_CHOICES[args.type]]
    else:
        types = list(_TYPE_CHOICES.values())

    paths: list[str] = []
    for resource_type in types:
        listed = await fetcher.list_files(layout.directory(resource_type), ref)
        paths.extend(path for path in listed if layout.classify_path(path) is resource_type)
    return paths


def print_result(result: SyncResult, verbose: bool) -> None:
    if result.success:
        headline = "Sync complete."
    elif result.partial:
        headline = "Sync partially complete."
    else:
        headline = "Sync failed."
    print(f"{headline} {result.processed} file(s) processed in {result.duration}ms.")
    if result.errors:
        print(f"{len(result.errors)} file(s) failed:")
        for item in result.errors:
            print(f"  {item.file}: {item.error}")
    elif verbose:
        print("No errors.")


async def run(
    args: argparse.Namespace,
    settings: Settings,
    fetcher: GitHubContentFetcher | None = None,
    renderer: Renderer | None = None,
) -> int:
    """Execute a manual sync and return the process exit code."""
    layout = ContentLayout.from_settings(settings)
    owns_fetcher = fetcher is None
    if fetcher is None:
        fetcher = GitHubContentFetcher.from_settings(settings)

    try:
        try:
            ref = args.ref or await fetcher.resolve_ref(settings.content_branch or "main")
            paths = await collect_paths(args, fetcher, layout, ref)
        except (FetchError, ValueError) as exc:
            print(f"Error: {exc}")
            return 1

        if not paths:
            print(f"No content files found at {ref[:12]}.")
            return 0

        if args.dry_run:
            print(f"Would sync {len(paths)} file(s) from {fetcher.repository} at {ref[:12]}:")
            for path in paths:
                print(f"  {layout.classify_path(path)}\t{layout.extract_slug(path)}\t{path}")
            return 0

        result = await _sync(settings, fetcher, renderer, paths, ref)
    finally:
        if owns_fetcher:
            await fetcher.aclose()

    print_result(result, args.verbose)
    return 0 if result.success else 1


async def _sync(
    settings: Settings,
    fetcher: GitHubContentFetcher,
    renderer: Renderer | None,
    paths: list[str],
    ref: str,
) -> SyncResult:
    engine, session_factory = create_engine(settings)
    owned_renderer: PandocRenderer | None = None
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        if renderer is None:
            # One-shot runs do not need a long-lived pandoc server
            owned_renderer = PandocRenderer(
                mode="subprocess", timeout=settings.pandoc_timeout_seconds
            )
            await owned_renderer.start()
            renderer = owned_renderer
        sync_engine = SyncEngine(session_factory, fetcher, renderer, settings)
        return await sync_engine.sync_paths(paths, ref)
    finally:
        if owned_renderer is not None:
            await owned_renderer.close()
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    settings = Settings()
    try:
        settings.validate_required(webhook=False)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        code = asyncio.run(run(args, settings))
    except RuntimeError as exc:
        # Pandoc missing or unusable
        print(f"Error: {exc}")
        sys.exit(1)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
