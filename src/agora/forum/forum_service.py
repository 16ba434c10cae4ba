"""Read side of the forum: categories, forums, thread listings and paging."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select

from agora.db.models import Category, Forum, Post, Thread, ThreadView, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agora.config_store import ConfigStore
    from agora.session_store import SessionStore

FILTERS_KEY = "forum-filters"
FILTER_NAMES = ("new", "edit", "hot", "pin", "lock")


async def toggle_filter(session: SessionStore, toggle: str | None) -> dict[str, int]:
    """Flip one thread-list filter kept in the client session; 'all' clears them."""
    filters: dict[str, int] = await session.get(FILTERS_KEY) or {}
    if toggle:
        name = toggle.lower()
        if name == "all":
            filters = {}
        elif name in FILTER_NAMES:
            filters[name] = 0 if filters.get(name) else 1
        await session.set(FILTERS_KEY, filters)
    return filters


async def index(db: AsyncSession, *, guest: bool) -> list[tuple[Category, list[Forum]]]:
    """Categories with their forums, both in display order."""
    stmt = select(Category).order_by(Category.sort, Category.id)
    if guest:
        stmt = stmt.where(Category.visible.is_(True))
    categories = list((await db.execute(stmt)).scalars().all())
    if not categories:
        return []

    forum_stmt = (
        select(Forum)
        .where(Forum.category_id.in_([c.id for c in categories]))
        .order_by(Forum.sort, Forum.id)
    )
    if guest:
        forum_stmt = forum_stmt.where(Forum.visible.is_(True))
    by_category: dict[int, list[Forum]] = {c.id: [] for c in categories}
    for forum in (await db.execute(forum_stmt)).scalars().all():
        by_category[forum.category_id].append(forum)
    return [(category, by_category[category.id]) for category in categories]


async def get_category(db: AsyncSession, category_id: int, *, guest: bool) -> Category | None:
    stmt = select(Category).where(Category.id == category_id)
    if guest:
        stmt = stmt.where(Category.visible.is_(True))
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_forum(db: AsyncSession, category_id: int, forum_id: int, *, guest: bool) -> Forum | None:
    """Forum of the given category; guests only reach visible ones."""
    stmt = (
        select(Forum)
        .join(Category, Category.id == Forum.category_id)
        .where(Forum.id == forum_id, Forum.category_id == category_id)
    )
    if guest:
        stmt = stmt.where(Forum.visible.is_(True), Category.visible.is_(True))
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_thread(
    db: AsyncSession,
    category_id: int,
    forum_id: int,
    thread_id: int,
    *,
    guest: bool,
) -> Thread | None:
    stmt = (
        select(Thread)
        .join(Forum, Forum.id == Thread.forum_id)
        .join(Category, Category.id == Thread.category_id)
        .where(Thread.id == thread_id, Thread.forum_id == forum_id, Thread.category_id == category_id)
    )
    if guest:
        stmt = stmt.where(Forum.visible.is_(True), Category.visible.is_(True))
    return (await db.execute(stmt)).scalar_one_or_none()


def _watermark_join(stmt: Any, user_id: int) -> Any:  # noqa: ANN401
    return stmt.outerjoin(
        ThreadView, and_(ThreadView.thread_id == Thread.id, ThreadView.user_id == user_id)
    )


async def list_threads(
    db: AsyncSession,
    forum_id: int,
    *,
    filters: dict[str, int] | None = None,
    user_id: int | None = None,
    hot_minimum: int = 20,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[Thread], int]:
    """Threads of a forum, pinned first then by latest activity. Returns (page, total)."""
    filters = filters or {}
    stmt = select(Thread).where(Thread.forum_id == forum_id)

    if user_id is not None and (filters.get("new") or filters.get("edit")):
        stmt = _watermark_join(stmt, user_id)
        if filters.get("new"):
            stmt = stmt.where(or_(ThreadView.id.is_(None), Thread.new_post_at > ThreadView.new_last_seen))
        if filters.get("edit"):
            stmt = stmt.where(or_(ThreadView.id.is_(None), Thread.edited_post_at > ThreadView.edited_last_seen))
    if filters.get("hot"):
        stmt = stmt.where(Thread.posts >= hot_minimum)
    if filters.get("pin"):
        stmt = stmt.where(Thread.pinned.is_(True))
    if filters.get("lock"):
        stmt = stmt.where(Thread.locked.is_(True))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    stmt = (
        stmt.order_by(Thread.pinned.desc(), Thread.new_post_at.desc(), Thread.id.desc())
        .offset((max(page, 1) - 1) * per_page)
        .limit(per_page)
    )
    return list((await db.execute(stmt)).scalars().all()), total


async def thread_posts(
    db: AsyncSession,
    thread_id: int,
    *,
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[tuple[Post, User | None]], int]:
    """One page of a thread's posts, oldest first, with their authors."""
    total = (await db.execute(select(func.count(Post.id)).where(Post.thread_id == thread_id))).scalar_one()
    result = await db.execute(
        select(Post, User)
        .outerjoin(User, User.id == Post.author_id)
        .where(Post.thread_id == thread_id)
        .order_by(Post.id.asc())
        .offset((max(page, 1) - 1) * per_page)
        .limit(per_page)
    )
    return [(post, author) for post, author in result.all()], total


async def last_page(db: AsyncSession, thread_id: int, per_page: int = 10) -> int:
    """Page holding the newest post of a thread."""
    count = (await db.execute(select(func.count(Post.id)).where(Post.thread_id == thread_id))).scalar_one()
    return max(1, math.ceil(count / per_page))


async def post_page(db: AsyncSession, post: Post, per_page: int = 10) -> int:
    """Page of the thread on which `post` is shown."""
    before = (
        await db.execute(select(func.count(Post.id)).where(Post.thread_id == post.thread_id, Post.id < post.id))
    ).scalar_one()
    return before // per_page + 1


async def unread_threads(db: AsyncSession, user_id: int, *, limit: int = 50) -> list[Thread]:
    """Threads with posts newer, or edits later, than the member's watermark."""
    stmt = _watermark_join(select(Thread), user_id).where(
        or_(
            ThreadView.id.is_(None),
            Thread.new_post_at > ThreadView.new_last_seen,
            Thread.edited_post_at > ThreadView.edited_last_seen,
        )
    )
    stmt = stmt.order_by(Thread.new_post_at.desc(), Thread.id.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def meta_tags(
    config: ConfigStore,
    keywords: str | None = None,
    description: str | None = None,
) -> dict[str, str]:
    """Page meta data, falling back to the forum-wide settings."""
    return {
        "keywords": keywords or await config.get("meta_keywords") or "",
        "description": description or await config.get("meta_description") or "",
    }
