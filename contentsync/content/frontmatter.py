"""YAML frontmatter parsing and validation for content files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import frontmatter
import pydantic
import yaml

from contentsync.exceptions import ValidationError
from contentsync.schemas.frontmatter import AuthorFrontmatter, PageFrontmatter, PostFrontmatter

if TYPE_CHECKING:
    from pydantic import BaseModel

_ModelT = TypeVar("_ModelT", bound="BaseModel")


@dataclass(frozen=True)
class ParsedPost:
    """Validated post file."""

    metadata: PostFrontmatter
    body: str


@dataclass(frozen=True)
class ParsedAuthor:
    """Validated author file. The body is kept but not stored."""

    metadata: AuthorFrontmatter
    body: str


@dataclass(frozen=True)
class ParsedPage:
    """Validated page file."""

    metadata: PageFrontmatter
    body: str


ParsedContent = ParsedPost | ParsedAuthor | ParsedPage


def split_frontmatter(raw_content: str) -> tuple[dict[str, Any], str]:
    """Split a file into its metadata mapping and Markdown body.

    Raises ValidationError if the metadata block is not valid YAML or is not
    a mapping. PyYAML reports impossible timestamps such as ``2024-13-45``
    with a plain ValueError, so that is caught too.
    """
    try:
        post = frontmatter.loads(raw_content)
    except (yaml.YAMLError, ValueError) as exc:
        raise ValidationError(f"Invalid frontmatter YAML: {exc}") from exc
    if not isinstance(post.metadata, dict):
        raise ValidationError("Frontmatter must be a mapping of keys to values")
    return dict(post.metadata), post.content


def _format_errors(exc: pydantic.ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "frontmatter"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def _validate(model: type[_ModelT], kind: str, metadata: dict[str, Any]) -> _ModelT:
    try:
        return model.model_validate(metadata)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid {kind} frontmatter: {_format_errors(exc)}") from exc


def parse_post(raw_content: str) -> ParsedPost:
    """Parse and validate a post file."""
    metadata, body = split_frontmatter(raw_content)
    return ParsedPost(metadata=_validate(PostFrontmatter, "post", metadata), body=body)


def parse_author(raw_content: str) -> ParsedAuthor:
    """Parse and validate an author file."""
    metadata, body = split_frontmatter(raw_content)
    return ParsedAuthor(metadata=_validate(AuthorFrontmatter, "author", metadata), body=body)


def parse_page(raw_content: str) -> ParsedPage:
    """Parse and validate a page file."""
    metadata, body = split_frontmatter(raw_content)
    return ParsedPage(metadata=_validate(PageFrontmatter, "page", metadata), body=body)
