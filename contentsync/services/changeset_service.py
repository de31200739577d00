"""Change-set extraction: push paths to classified content changes."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from contentsync.models.sync_log import ResourceType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from contentsync.config import Settings
    from contentsync.schemas.webhook import PushEvent

_DATE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}-")

_SUBDIRECTORIES: dict[str, ResourceType] = {
    "posts": ResourceType.POST,
    "authors": ResourceType.AUTHOR,
    "pages": ResourceType.PAGE,
}


@dataclass(frozen=True)
class ContentLayout:
    """Where content files live inside the repository."""

    root: str = "content"
    extension: str = ".md"

    @classmethod
    def from_settings(cls, settings: Settings) -> ContentLayout:
        return cls(root=settings.content_root.strip("/"), extension=settings.content_extension)

    def directory(self, resource_type: ResourceType) -> str:
        """Repository directory holding files of *resource_type*."""
        for subdir, kind in _SUBDIRECTORIES.items():
            if kind is resource_type:
                return f"{self.root}/{subdir}"
        raise ValueError(f"No content directory for resource type {resource_type}")

    def is_content_path(self, path: str) -> bool:
        return path.startswith(f"{self.root}/") and path.endswith(self.extension)

    def classify_path(self, path: str) -> ResourceType | None:
        """Resource type by path prefix, or None for files outside the content tree."""
        if not self.is_content_path(path):
            return None
        for subdir, resource_type in _SUBDIRECTORIES.items():
            if path.startswith(f"{self.root}/{subdir}/"):
                return resource_type
        return None

    def extract_slug(self, path: str) -> str:
        """Derive the slug: file name without extension, posts also lose a date prefix.

        ``content/posts/2024-01-15-hello-world.md`` -> ``hello-world``
        """
        filename = posixpath.basename(path)
        filename = filename.removesuffix(self.extension)
        if path.startswith(f"{self.root}/posts/"):
            filename = _DATE_PREFIX_RE.sub("", filename)
        return filename

    def filter_content_paths(self, paths: Iterable[str]) -> list[str]:
        return [path for path in paths if self.is_content_path(path)]


DEFAULT_LAYOUT = ContentLayout()


def extract_slug(path: str) -> str:
    """Slug for *path* under the default ``content/`` layout."""
    return DEFAULT_LAYOUT.extract_slug(path)


@dataclass(frozen=True)
class ContentChange:
    """A changed content file with its resource type and derived slug."""

    path: str
    resource_type: ResourceType
    slug: str

    @property
    def key(self) -> tuple[ResourceType, str]:
        """Identity of the row this file maps to."""
        return (self.resource_type, self.slug)


@dataclass
class ChangeSet:
    """Disjoint added / modified / removed content changes of one push."""

    added: list[ContentChange] = field(default_factory=list)
    modified: list[ContentChange] = field(default_factory=list)
    removed: list[ContentChange] = field(default_factory=list)

    @property
    def upserts(self) -> list[ContentChange]:
        """Changes whose file must be fetched and written, in push order."""
        return [*self.added, *self.modified]

    def __len__(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)


def build_change_set(
    added: Iterable[str],
    modified: Iterable[str],
    removed: Iterable[str],
    layout: ContentLayout = DEFAULT_LAYOUT,
) -> ChangeSet:
    """Classify raw path lists, dropping anything that is not a content file.

    A path listed more than once keeps its first classification.
    """
    change_set = ChangeSet()
    seen: set[str] = set()
    buckets = (
        (added, change_set.added),
        (modified, change_set.modified),
        (removed, change_set.removed),
    )
    for paths, bucket in buckets:
        for path in layout.filter_content_paths(paths):
            if path in seen:
                continue
            resource_type = layout.classify_path(path)
            if resource_type is None:
                continue
            slug = layout.extract_slug(path)
            if not slug:
                continue
            seen.add(path)
            bucket.append(ContentChange(path=path, resource_type=resource_type, slug=slug))
    return change_set


def change_set_from_push(event: PushEvent, layout: ContentLayout = DEFAULT_LAYOUT) -> ChangeSet:
    """Net content changes of a push.

    Folds every commit of the push oldest-first so files touched before the
    head commit are not lost; falls back to ``head_commit`` alone when the
    payload carries no commit list.
    """
    commits = event.commits or ([event.head_commit] if event.head_commit is not None else [])

    # path -> (existed before the push, exists after the last commit touching it)
    state: dict[str, tuple[bool, bool]] = {}

    def touch(path: str, *, exists: bool, first_seen_existed: bool) -> None:
        existed = state[path][0] if path in state else first_seen_existed
        state[path] = (existed, exists)

    for commit in commits:
        for path in commit.added:
            touch(path, exists=True, first_seen_existed=False)
        for path in commit.modified:
            touch(path, exists=True, first_seen_existed=True)
        for path in commit.removed:
            touch(path, exists=False, first_seen_existed=True)

    added = [path for path, (existed, exists) in state.items() if exists and not existed]
    modified = [path for path, (existed, exists) in state.items() if exists and existed]
    removed = [path for path, (_, exists) in state.items() if not exists]
    return build_change_set(added, modified, removed, layout)
