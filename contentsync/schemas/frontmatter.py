"""Frontmatter schemas for posts, authors and pages.

Keys are camelCase in the Markdown files and snake_case on the models.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    TypeAdapter,
    field_validator,
)

from contentsync.services.datetime_service import parse_date

_ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
_HTTP_URL: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)


def _coerce_yaml_date(value: object) -> object:
    """YAML loads unquoted ``2024-01-15`` as a ``date``; accept it as its ISO form."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


def _check_calendar_date(value: str | None) -> str | None:
    if value is not None:
        try:
            parse_date(value)
        except ValueError:
            raise ValueError(f"{value!r} is not a valid calendar date") from None
    return value


class _Frontmatter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class PostFrontmatter(_Frontmatter):
    """Metadata block of a post file."""

    title: str = Field(min_length=1, max_length=500)
    excerpt: str | None = Field(default=None, max_length=500)
    author: str = Field(min_length=1, description="Author slug")
    published_at: str = Field(alias="publishedAt", pattern=_ISO_DATE_PATTERN)
    updated_at: str | None = Field(default=None, alias="updatedAt", pattern=_ISO_DATE_PATTERN)
    featured_image: str | None = Field(default=None, alias="featuredImage")
    tags: list[str] = Field(default_factory=list)
    status: Literal["draft", "published", "archived"] = "draft"
    meta_description: str | None = Field(default=None, alias="metaDescription", max_length=160)
    meta_keywords: list[str] | None = Field(default=None, alias="metaKeywords")

    @field_validator("published_at", "updated_at", mode="before")
    @classmethod
    def _date_before(cls, value: object) -> object:
        return _coerce_yaml_date(value)

    @field_validator("published_at", "updated_at")
    @classmethod
    def _date_after(cls, value: str | None) -> str | None:
        return _check_calendar_date(value)

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, value: list[str]) -> list[str]:
        tags = [tag.strip() for tag in value]
        if any(not tag for tag in tags):
            raise ValueError("tags must be non-empty strings")
        return tags


class AuthorSocial(_Frontmatter):
    """Social links of an author. URLs are validated but kept as written."""

    twitter: str | None = None
    github: str | None = None
    linkedin: str | None = None
    website: str | None = None
    youtube: str | None = None
    instagram: str | None = None

    @field_validator("website", "youtube")
    @classmethod
    def _valid_url(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                _HTTP_URL.validate_python(value)
            except ValueError:
                raise ValueError(f"{value!r} is not a valid http(s) URL") from None
        return value


class AuthorFrontmatter(_Frontmatter):
    """Metadata block of an author file."""

    name: str = Field(min_length=1)
    email: EmailStr | None = None
    bio: str | None = None
    avatar: str | None = None
    social: AuthorSocial | None = None


class PageFrontmatter(_Frontmatter):
    """Metadata block of a page file."""

    title: str = Field(min_length=1, max_length=500)
    slug: str | None = Field(default=None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    status: Literal["draft", "published"] = "draft"
    published_at: str | None = Field(
        default=None, alias="publishedAt", pattern=_ISO_DATE_PATTERN
    )
    updated_at: str | None = Field(default=None, alias="updatedAt", pattern=_ISO_DATE_PATTERN)
    meta_description: str | None = Field(default=None, alias="metaDescription", max_length=160)
    template: str | None = None

    @field_validator("published_at", "updated_at", mode="before")
    @classmethod
    def _date_before(cls, value: object) -> object:
        return _coerce_yaml_date(value)

    @field_validator("published_at", "updated_at")
    @classmethod
    def _date_after(cls, value: str | None) -> str | None:
        return _check_calendar_date(value)
