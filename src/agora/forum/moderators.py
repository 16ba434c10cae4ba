"""Per-forum moderator assignments."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from agora.db.models import Moderator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def forum_mods(db: AsyncSession, forum_id: int) -> list[int]:
    """User ids moderating `forum_id`."""
    result = await db.execute(select(Moderator.user_id).where(Moderator.forum_id == forum_id).order_by(Moderator.id))
    return list(result.scalars().all())


async def is_mod(db: AsyncSession, forum_id: int, user_id: int | None) -> bool:
    if user_id is None:
        return False
    result = await db.execute(
        select(Moderator.id).where(Moderator.forum_id == forum_id, Moderator.user_id == user_id).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def add_mod(db: AsyncSession, forum_id: int, user_id: int) -> Moderator:
    """Assign a moderator; the caller commits."""
    mod = Moderator(forum_id=forum_id, user_id=user_id)
    db.add(mod)
    await db.flush()
    return mod
