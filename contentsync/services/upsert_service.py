"""Idempotent slug-keyed writes of posts, authors and pages.

Every function runs inside the caller's transaction and never commits, so a
post row and its tag associations become visible together or not at all.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from contentsync.content.markdown import (
    DEFAULT_EXCERPT_LENGTH,
    DEFAULT_WORDS_PER_MINUTE,
    calculate_reading_time,
    extract_excerpt,
    extract_table_of_contents,
)
from contentsync.exceptions import PersistenceError
from contentsync.models import Author, Page, Post, PostTag, ResourceType, Tag
from contentsync.services.datetime_service import now_utc, parse_date
from contentsync.services.entity_service import insert_for, resolve_author, resolve_tag

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from contentsync.content.frontmatter import ParsedAuthor, ParsedPage, ParsedPost
    from contentsync.models.base import Base

logger = logging.getLogger(__name__)


async def _upsert_row(
    session: AsyncSession, model: type[Base], values: dict[str, Any], mutable: list[str]
) -> int:
    """``INSERT ... ON CONFLICT (slug) DO UPDATE`` returning the row id."""
    stmt = insert_for(session, model).values(**values)
    set_ = {name: stmt.excluded[name] for name in mutable}
    set_["updated_at"] = now_utc()
    stmt = stmt.on_conflict_do_update(index_elements=["slug"], set_=set_).returning(model.id)
    row_id = await session.scalar(stmt)
    if row_id is None:
        msg = f"Upsert of {model.__tablename__} {values['slug']!r} returned no id"
        raise PersistenceError(msg)
    return row_id


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


async def replace_post_tags(
    session: AsyncSession, post_id: int, tag_slugs: list[str]
) -> list[int]:
    """Make the post's tag set exactly *tag_slugs*: delete all, then insert.

    Duplicate slugs are linked once. An empty list clears every association.
    """
    await session.execute(delete(PostTag).where(PostTag.post_id == post_id))
    tag_ids: list[int] = []
    for tag_slug in _unique(tag_slugs):
        tag_id = await resolve_tag(session, tag_slug)
        if tag_id in tag_ids:
            continue
        tag_ids.append(tag_id)
    if tag_ids:
        await session.execute(
            insert_for(session, PostTag)
            .values([{"post_id": post_id, "tag_id": tag_id} for tag_id in tag_ids])
            .on_conflict_do_nothing()
        )
    return tag_ids


async def upsert_post(
    session: AsyncSession,
    slug: str,
    parsed: ParsedPost,
    content_html: str,
    *,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    excerpt_max_length: int = DEFAULT_EXCERPT_LENGTH,
) -> int:
    """Write a post keyed by *slug* and replace its tags. Returns the post id.

    A missing frontmatter excerpt is derived from the body. ``views``,
    ``featured`` and ``created_at`` are never overwritten.
    """
    meta = parsed.metadata
    try:
        author_id = await resolve_author(session, meta.author)
        excerpt = meta.excerpt or extract_excerpt(parsed.body, excerpt_max_length) or None
        values: dict[str, Any] = {
            "slug": slug,
            "title": meta.title,
            "excerpt": excerpt,
            "content": parsed.body,
            "content_html": content_html,
            "author_id": author_id,
            "status": meta.status,
            "featured_image": meta.featured_image,
            "reading_time": calculate_reading_time(parsed.body, words_per_minute),
            "meta_description": meta.meta_description,
            "meta_keywords": list(meta.meta_keywords or []),
            "toc": [item.to_dict() for item in extract_table_of_contents(parsed.body)],
            "published_at": parse_date(meta.published_at),
        }
        mutable = [name for name in values if name != "slug"]
        post_id = await _upsert_row(session, Post, values, mutable)
        await replace_post_tags(session, post_id, meta.tags)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to upsert post {slug!r}: {exc}") from exc
    logger.debug("Upserted post %r (id=%d, %d tags)", slug, post_id, len(meta.tags))
    return post_id


async def upsert_author(session: AsyncSession, slug: str, parsed: ParsedAuthor) -> int:
    """Write an author keyed by *slug*, overwriting any placeholder. Returns the id."""
    meta = parsed.metadata
    social = meta.social.model_dump(exclude_none=True) if meta.social is not None else {}
    values: dict[str, Any] = {
        "slug": slug,
        "name": meta.name,
        "email": str(meta.email) if meta.email is not None else None,
        "bio": meta.bio,
        "avatar_url": meta.avatar,
        "website": social.get("website"),
        "social": social,
    }
    try:
        author_id = await _upsert_row(
            session, Author, values, [name for name in values if name != "slug"]
        )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to upsert author {slug!r}: {exc}") from exc
    logger.debug("Upserted author %r (id=%d)", slug, author_id)
    return author_id


async def upsert_page(
    session: AsyncSession, slug: str, parsed: ParsedPage, content_html: str
) -> int:
    """Write a page keyed by *slug*. Returns the page id."""
    meta = parsed.metadata
    values: dict[str, Any] = {
        "slug": slug,
        "title": meta.title,
        "content": parsed.body,
        "content_html": content_html,
        "status": meta.status,
        "template": meta.template,
        "meta_description": meta.meta_description,
        "published_at": parse_date(meta.published_at) if meta.published_at else None,
    }
    try:
        page_id = await _upsert_row(
            session, Page, values, [name for name in values if name != "slug"]
        )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to upsert page {slug!r}: {exc}") from exc
    logger.debug("Upserted page %r (id=%d)", slug, page_id)
    return page_id


_MODELS: dict[ResourceType, type[Post] | type[Author] | type[Page] | type[Tag]] = {
    ResourceType.POST: Post,
    ResourceType.AUTHOR: Author,
    ResourceType.PAGE: Page,
    ResourceType.TAG: Tag,
}


async def delete_resource(
    session: AsyncSession, resource_type: ResourceType, slug: str
) -> int | None:
    """Hard-delete the row with *slug*. Returns its id, or None if nothing matched.

    Dependent rows are handled explicitly: a post's or tag's associations are
    removed and an author's posts are detached.
    """
    model = _MODELS[resource_type]
    try:
        row_id = await session.scalar(select(model.id).where(model.slug == slug))
        if row_id is None:
            return None
        if resource_type is ResourceType.POST:
            await session.execute(delete(PostTag).where(PostTag.post_id == row_id))
        elif resource_type is ResourceType.TAG:
            await session.execute(delete(PostTag).where(PostTag.tag_id == row_id))
        elif resource_type is ResourceType.AUTHOR:
            await session.execute(
                update(Post).where(Post.author_id == row_id).values(author_id=None)
            )
        await session.execute(delete(model).where(model.id == row_id))
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to delete {resource_type} {slug!r}: {exc}") from exc
    logger.debug("Deleted %s %r (id=%d)", resource_type, slug, row_id)
    return row_id
