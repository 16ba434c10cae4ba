"""Account lookups and credential checks."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from agora.auth.password import verify_password
from agora.db.models import STATUS_ACTIVE, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Return the active user owning these credentials, or None."""
    user = await get_user_by_username(db, username)
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login_failed", username=username)
        return None
    if user.status != STATUS_ACTIVE:
        logger.info("login_refused_inactive", user_id=user.id, status=user.status)
        return None
    return user
