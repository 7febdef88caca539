"""Read and increment like counts in the ``url_likes`` table."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from likecounter.models import LIKE_CEILING, UrlLike

logger = logging.getLogger(__name__)


class CounterStoreError(RuntimeError):
    """Raised when the counter table cannot be read or written."""


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise CounterStoreError(f"Unsupported database dialect: {dialect}")


async def _current_likes(session: AsyncSession, key: str) -> int:
    likes = await session.scalar(select(UrlLike.likes).where(UrlLike.url == key))
    if likes is None:
        raise CounterStoreError(f"Counter row vanished for key={key!r}")
    return int(likes)


async def read_or_init(session: AsyncSession, key: str) -> int:
    """
    Return the like count for ``key``.

    An unseen key gets a zero-count row, so later reads and increments see an
    existing record.
    """

    insert = _insert_for(session)
    statement = (
        insert(UrlLike)
        .values(url=key, likes=0)
        .on_conflict_do_nothing(index_elements=[UrlLike.url])
    )
    try:
        await session.execute(statement)
        likes = await _current_likes(session, key)
        await session.commit()
    except CounterStoreError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        raise CounterStoreError("Counter read failed") from exc
    return likes


async def increment_or_init(
    session: AsyncSession,
    key: str,
    *,
    ceiling: int = LIKE_CEILING,
) -> int:
    """
    Add one like to ``key`` and return the new count.

    The create-or-increment runs as one ``INSERT ... ON CONFLICT DO UPDATE``
    statement, so concurrent increments on the same key are all counted. Once
    the count reaches ``ceiling`` the row is left untouched and the ceiling is
    returned.
    """

    insert = _insert_for(session)
    statement = (
        insert(UrlLike)
        .values(url=key, likes=1)
        .on_conflict_do_update(
            index_elements=[UrlLike.url],
            set_={"likes": UrlLike.likes + 1},
            where=UrlLike.likes < ceiling,
        )
        .returning(UrlLike.likes)
    )
    try:
        likes = (await session.execute(statement)).scalar_one_or_none()
        if likes is None:
            # Conflict filtered out by the ceiling guard; nothing was written.
            likes = await _current_likes(session, key)
            logger.debug("like_ceiling_reached key=%s likes=%s", key, likes)
        await session.commit()
    except CounterStoreError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        raise CounterStoreError("Counter update failed") from exc
    return int(likes)
