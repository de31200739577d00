"""Find-or-create resolution of authors and tags referenced by posts."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from contentsync.exceptions import PersistenceError
from contentsync.models import Author, Tag

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from contentsync.models.base import Base

logger = logging.getLogger(__name__)


def insert_for(session: AsyncSession, model: type[Base]) -> Any:
    """Dialect-specific ``INSERT`` supporting ``ON CONFLICT`` for *model*.

    Raises:
        PersistenceError: If the bound database is neither SQLite nor PostgreSQL.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    raise PersistenceError(f"Unsupported database dialect for upserts: {dialect}")


async def _find_or_create(
    session: AsyncSession, model: type[Author] | type[Tag], slug: str
) -> int:
    existing = await session.scalar(select(model.id).where(model.slug == slug))
    if existing is not None:
        return existing

    stmt = (
        insert_for(session, model)
        .values(slug=slug, name=slug)
        .on_conflict_do_nothing(index_elements=["slug"])
        .returning(model.id)
    )
    created = await session.scalar(stmt)
    if created is not None:
        logger.info("Created placeholder %s %r", model.__tablename__[:-1], slug)
        return created

    # Lost a race with a concurrent create: the row exists now
    existing = await session.scalar(select(model.id).where(model.slug == slug))
    if existing is None:
        raise PersistenceError(f"Could not resolve {model.__tablename__[:-1]} {slug!r}")
    return existing


async def resolve_author(session: AsyncSession, slug: str) -> int:
    """Return the id of the author with *slug*, creating a placeholder if absent.

    The placeholder has ``name == slug``; a later sync of the author's own
    file overwrites it.
    """
    try:
        return await _find_or_create(session, Author, slug)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to resolve author {slug!r}: {exc}") from exc


async def resolve_tag(session: AsyncSession, slug: str) -> int:
    """Return the id of the tag with *slug*, creating a minimal tag if absent."""
    try:
        return await _find_or_create(session, Tag, slug)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to resolve tag {slug!r}: {exc}") from exc
