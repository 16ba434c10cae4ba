"""Thread subscriptions: mailbox-style seen/new markers plus e-mail notices."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, select

from agora.config import get_settings
from agora.db.models import POST_NEW, POST_SEEN, Subscription, Thread, User
from agora.email.queue import queue_email
from agora.forum.content import EMAIL_SUBSCRIPTION, fill, get_content

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agora.cache import Cache
    from agora.config_store import ConfigStore

logger = structlog.get_logger()

CACHE_KEY = "user.subscriptions"


def thread_link(thread_id: int) -> str:
    return f"{get_settings().base_url.rstrip('/')}/api/v1/forum/last/{thread_id}"


async def notify(
    db: AsyncSession,
    thread_id: int,
    config: ConfigStore,
    *,
    exclude_user_id: int | None = None,
) -> list[int]:
    """Flip SEEN subscriptions of a thread to NEW and queue a notice for each.

    Runs inside the caller's transaction. Returns the notified user ids so the
    caller can drop their cached counters after commit.
    """
    stmt = (
        select(Subscription, User)
        .join(User, User.id == Subscription.user_id)
        .where(Subscription.thread_id == thread_id, Subscription.post_seen == POST_SEEN)
    )
    if exclude_user_id is not None:
        stmt = stmt.where(Subscription.user_id != exclude_user_id)
    rows = (await db.execute(stmt)).all()
    if not rows:
        return []

    forum_name = await config.get("name") or ""
    template = await get_content(db, EMAIL_SUBSCRIPTION)
    link = thread_link(thread_id)
    subject = fill(template["topic"], forum=forum_name)
    body = fill(template["content"], forum=forum_name, link=f'<a href="{link}">{link}</a>')

    notified = []
    for subscription, user in rows:
        subscription.post_seen = POST_NEW
        notified.append(user.id)
        if await queue_email(db, user.email, subject, body, user_id=user.id):
            logger.info("subscription_notice_queued", user_id=user.id, thread_id=thread_id)
    await db.flush()
    return notified


async def get_subscription(db: AsyncSession, user_id: int, thread_id: int) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id, Subscription.thread_id == thread_id)
    )
    return result.scalar_one_or_none()


async def add(db: AsyncSession, user_id: int, thread_id: int) -> Subscription:
    """
    Subscribe a user to a thread, pre-marked as seen. The caller commits.

    Raises:
        ValueError: If the thread does not exist or the user already subscribes.
    """
    if await db.get(Thread, thread_id) is None:
        msg = "Thread not found"
        raise ValueError(msg)
    if await get_subscription(db, user_id, thread_id) is not None:
        msg = "Already subscribed"
        raise ValueError(msg)
    subscription = Subscription(user_id=user_id, thread_id=thread_id, post_seen=POST_SEEN)
    db.add(subscription)
    await db.flush()
    return subscription


async def remove(db: AsyncSession, user_id: int, ids: list[int]) -> int:
    """Delete the listed subscriptions owned by `user_id`. The caller commits."""
    if not ids:
        return 0
    result = await db.execute(
        delete(Subscription).where(Subscription.id.in_(ids), Subscription.user_id == user_id)
    )
    return result.rowcount or 0


async def _mark(db: AsyncSession, user_id: int, subscription_id: int, value: int) -> Subscription:
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None or subscription.user_id != user_id:
        msg = "Subscription not found"
        raise ValueError(msg)
    subscription.post_seen = value
    await db.flush()
    return subscription


async def seen(db: AsyncSession, user_id: int, subscription_id: int) -> Subscription:
    return await _mark(db, user_id, subscription_id, POST_SEEN)


async def unseen(db: AsyncSession, user_id: int, subscription_id: int) -> Subscription:
    return await _mark(db, user_id, subscription_id, POST_NEW)


async def list_for_user(db: AsyncSession, user_id: int) -> list[tuple[Subscription, Thread]]:
    """Unread first, newest subscription first."""
    result = await db.execute(
        select(Subscription, Thread)
        .join(Thread, Thread.id == Subscription.thread_id)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.post_seen.asc(), Subscription.id.desc())
    )
    return [(subscription, thread) for subscription, thread in result.all()]


async def count_new(db: AsyncSession, user_id: int, cache: Cache) -> int:
    """Number of subscribed threads with unseen posts (cached per user)."""
    cached = await cache.get_element(CACHE_KEY, user_id)
    if cached is not None:
        return int(cached)
    result = await db.execute(
        select(func.count(Subscription.id)).where(Subscription.user_id == user_id, Subscription.post_seen == POST_NEW)
    )
    count = result.scalar_one()
    await cache.set_element(CACHE_KEY, user_id, count)
    return count


async def invalidate(cache: Cache, user_ids: list[int]) -> None:
    for user_id in user_ids:
        await cache.delete_element(CACHE_KEY, user_id)
