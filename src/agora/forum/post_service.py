"""
Post lifecycle: create (with merge-on-repost), edit, delete and votes.

Every entry point runs in one transaction. Failures roll back, get logged and
are reported as a falsy return value; IndexingError is the exception and
propagates after the rollback. Thread and forum counters only ever move by
relative SQL updates.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, func, select, update

from agora.config import get_settings
from agora.config_store import ConfigStore
from agora.db.base import utcnow
from agora.db.models import (
    POST_NEW,
    POST_SEEN,
    Category,
    Forum,
    Post,
    PostThumb,
    Subscription,
    Thread,
    ThreadView,
    User,
)
from agora.forum import subscription_service
from agora.forum.words import IndexingError, WordIndexer, derive_words
from agora.i18n import t
from agora.sanitizer import encode, purify

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agora.cache import Cache

logger = structlog.get_logger()

LATEST_KEY = "forum.latestposts"
VOTE_LIMIT = 10


def votes_key(user_id: int) -> str:
    return f"user.votes.{user_id}"


class PostManager:
    """Post operations for one request."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Cache,
        config: ConfigStore | None = None,
        indexer: WordIndexer | None = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self.config = config or ConfigStore(db, cache)
        self.indexer = indexer or WordIndexer(db)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def previous_post(self, thread_id: int) -> Post | None:
        result = await self.db.execute(
            select(Post).where(Post.thread_id == thread_id).order_by(Post.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        thread: Thread,
        author: User,
        content: str,
        *,
        subscribe: bool = False,
    ) -> Post | None:
        """Add a reply, or append it to the author's own last post when merging is on."""
        content = purify(content, "full")
        now = utcnow()
        notified: list[int] = []
        thread_id, author_id = thread.id, author.id
        try:
            previous = await self.previous_post(thread.id)
            same_author = previous is not None and previous.author_id == author.id
            merged = same_author and await self.config.get_flag("merge_posts")

            if merged:
                post = previous
                post.content = post.content + t("forum.merge_separator") + content
                post.edited = True
                post.edited_at = now
                await self.db.flush()
                await self.indexer.reconcile(post.id, derive_words(post.content), created=False)
                await self.mark_seen(post, author.id, update_counters=False)
                await self.db.execute(update(Thread).where(Thread.id == thread.id).values(edited_post_at=now))
            else:
                post = Post(content=content, thread_id=thread.id, forum_id=thread.forum_id, author_id=author.id)
                self.db.add(post)
                await self.db.flush()
                await self.indexer.reconcile(post.id, derive_words(post.content), created=True)
                await self.mark_seen(post, author.id, update_counters=not same_author)
                await self.db.execute(update(Forum).where(Forum.id == thread.forum_id).values(posts=Forum.posts + 1))
                await self.db.execute(
                    update(Thread)
                    .where(Thread.id == thread.id)
                    .values(posts=Thread.posts + 1, new_post_at=now, edited_post_at=now)
                )

            notified = await subscription_service.notify(self.db, thread.id, self.config, exclude_user_id=author.id)

            if subscribe and await subscription_service.get_subscription(self.db, author.id, thread.id) is None:
                self.db.add(Subscription(user_id=author.id, thread_id=thread.id, post_seen=POST_SEEN))
                await self.db.flush()

            await self.db.commit()
        except IndexingError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception("post_create_failed", thread_id=thread_id, author_id=author_id)
            return None

        await self.cache.clear_after("newPost")
        await subscription_service.invalidate(self.cache, [*notified, author.id])
        logger.info("post_added", post_id=post.id, thread_id=thread.id, merged=merged)
        return post

    async def create_thread(
        self,
        forum: Forum,
        author: User,
        name: str,
        content: str,
        *,
        subscribe: bool = False,
    ) -> Thread | None:
        """Open a thread together with its first post."""
        name = encode(name.strip())
        now = utcnow()
        forum_id, author_id = forum.id, author.id
        try:
            thread = Thread(
                category_id=forum.category_id,
                forum_id=forum.id,
                author_id=author.id,
                name=name,
                slug=slugify(name),
                new_post_at=now,
                edited_post_at=now,
            )
            self.db.add(thread)
            await self.db.flush()
            post = Post(
                content=purify(content, "full"), thread_id=thread.id, forum_id=forum.id, author_id=author.id
            )
            self.db.add(post)
            await self.db.flush()
            await self.indexer.reconcile(post.id, derive_words(post.content), created=True)
            await self.mark_seen(post, author.id, update_counters=False)
            await self.db.execute(
                update(Forum).where(Forum.id == forum.id).values(threads=Forum.threads + 1, posts=Forum.posts + 1)
            )
            await self.db.execute(update(Thread).where(Thread.id == thread.id).values(posts=Thread.posts + 1))
            if subscribe:
                self.db.add(Subscription(user_id=author.id, thread_id=thread.id, post_seen=POST_SEEN))
            await self.db.commit()
        except IndexingError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception("thread_create_failed", forum_id=forum_id, author_id=author_id)
            return None

        await self.cache.clear_after("newThread")
        logger.info("thread_added", thread_id=thread.id, forum_id=forum.id)
        return thread

    # ------------------------------------------------------------------
    # Edit / delete
    # ------------------------------------------------------------------

    async def is_first_post(self, post: Post) -> bool:
        result = await self.db.execute(select(func.min(Post.id)).where(Post.thread_id == post.thread_id))
        return result.scalar_one() == post.id

    async def edit(self, post: Post, editor_id: int, content: str, topic: str | None = None) -> bool:
        """Replace the body; the first post of a thread may also rename it."""
        now = utcnow()
        post_id = post.id
        try:
            first = await self.is_first_post(post)
            post.content = purify(content, "full")
            post.edited = True
            post.edited_at = now
            await self.db.flush()
            await self.indexer.reconcile(post.id, derive_words(post.content), created=False)

            values: dict[str, Any] = {"edited_post_at": now}
            if first and topic:
                values["name"] = encode(topic.strip())
            await self.mark_seen(post, editor_id)
            await self.db.execute(update(Thread).where(Thread.id == post.thread_id).values(**values))
            await self.db.commit()
        except IndexingError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception("post_update_failed", post_id=post_id)
            return False

        logger.info("post_updated", post_id=post_id)
        return True

    async def delete(self, post: Post) -> bool:
        """Remove a post; the last post of a thread takes the thread with it."""
        post_id, thread_id, forum_id = post.id, post.thread_id, post.forum_id
        whole_thread = False
        try:
            await self.indexer.forget(post_id)
            await self.db.execute(delete(PostThumb).where(PostThumb.post_id == post_id))
            await self.db.execute(delete(Post).where(Post.id == post_id))

            result = await self.db.execute(select(func.count(Post.id)).where(Post.thread_id == thread_id))
            if result.scalar_one():
                await self.db.execute(update(Thread).where(Thread.id == thread_id).values(posts=Thread.posts - 1))
                await self.db.execute(update(Forum).where(Forum.id == forum_id).values(posts=Forum.posts - 1))
            else:
                whole_thread = True
                await self.db.execute(delete(ThreadView).where(ThreadView.thread_id == thread_id))
                await self.db.execute(delete(Subscription).where(Subscription.thread_id == thread_id))
                await self.db.execute(delete(Thread).where(Thread.id == thread_id))
                await self.db.execute(
                    update(Forum).where(Forum.id == forum_id).values(posts=Forum.posts - 1, threads=Forum.threads - 1)
                )
            await self.db.commit()
        except IndexingError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.exception("post_delete_failed", post_id=post_id)
            return False

        await self.cache.clear_after("threadDelete" if whole_thread else "postDelete")
        logger.info("post_deleted", post_id=post_id, thread_deleted=whole_thread)
        return True

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def vote_count(self, user_id: int) -> int:
        """Votes cast by the user in the current window (0 once it expired)."""
        entry = await self.cache.get_elements(votes_key(user_id))
        if not entry or float(entry.get("expire", 0)) < time.time():
            return 0
        return int(entry.get("count", 0))

    async def thumb(self, post: Post, user_id: int, up: bool) -> bool:
        """Cast a vote. A flip moves both counters by one; a repeat changes nothing."""
        value = 1 if up else -1
        post_id = post.id
        try:
            result = await self.db.execute(
                select(PostThumb).where(PostThumb.post_id == post.id, PostThumb.user_id == user_id)
            )
            existing = result.scalar_one_or_none()
            if existing is None:
                self.db.add(PostThumb(post_id=post.id, user_id=user_id, thumb=value))
                counters = {"likes": Post.likes + 1} if up else {"dislikes": Post.dislikes + 1}
                await self.db.execute(update(Post).where(Post.id == post.id).values(**counters))
            elif existing.thumb != value:
                existing.thumb = value
                await self.db.execute(
                    update(Post)
                    .where(Post.id == post.id)
                    .values(likes=Post.likes + value, dislikes=Post.dislikes - value)
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("post_vote_failed", post_id=post_id, user_id=user_id)
            return False

        count = await self.vote_count(user_id)
        window = get_settings().vote_window_seconds
        if count == 0:
            await self.cache.set_elements(
                votes_key(user_id), {"count": 1, "expire": int(time.time()) + window}, ttl=window
            )
        else:
            await self.cache.set_element(votes_key(user_id), "count", count + 1)
        return True

    # ------------------------------------------------------------------
    # Read markers
    # ------------------------------------------------------------------

    async def mark_seen(self, post: Post, user_id: int, *, update_counters: bool = True) -> bool:
        """Advance the user's thread watermark to `post`. The caller commits.

        Returns True when the watermark moved (the thread got a view).
        """
        result = await self.db.execute(
            select(ThreadView).where(ThreadView.user_id == user_id, ThreadView.thread_id == post.thread_id)
        )
        view = result.scalar_one_or_none()
        latest = max(post.created_at, post.edited_at or post.created_at)

        moved = False
        if view is None:
            self.db.add(
                ThreadView(
                    user_id=user_id,
                    thread_id=post.thread_id,
                    new_last_seen=post.created_at,
                    edited_last_seen=post.edited_at or post.created_at,
                )
            )
            moved = True
        elif post.edited:
            if post.edited_at is not None and view.edited_last_seen < post.edited_at:
                view.edited_last_seen = post.edited_at
                moved = True
        else:
            if view.new_last_seen < post.created_at:
                view.new_last_seen = post.created_at
                moved = True
            if view.edited_last_seen < latest:
                view.edited_last_seen = latest
                moved = True

        if moved and update_counters:
            await self.db.execute(update(Thread).where(Thread.id == post.thread_id).values(views=Thread.views + 1))

        await self.db.execute(
            update(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.thread_id == post.thread_id,
                Subscription.post_seen == POST_NEW,
            )
            .values(post_seen=POST_SEEN)
        )
        await self.db.flush()
        return moved

    async def mark_page_seen(self, posts: list[Post], user_id: int) -> bool:
        """Mark every post of a displayed page; the thread gets at most one view."""
        moved = False
        for post in posts:
            moved = await self.mark_seen(post, user_id, update_counters=False) or moved
        if moved:
            await self.db.execute(
                update(Thread).where(Thread.id == posts[0].thread_id).values(views=Thread.views + 1)
            )
        return moved

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def verify(self, category_id: int, forum_id: int, thread_id: int, post_id: int) -> Post | None:
        """Load a post only when the whole path matches."""
        result = await self.db.execute(
            select(Post)
            .join(Thread, Thread.id == Post.thread_id)
            .where(
                Post.id == post_id,
                Post.thread_id == thread_id,
                Post.forum_id == forum_id,
                Thread.forum_id == forum_id,
                Thread.category_id == category_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest(self, *, guest: bool, limit: int | None = None) -> list[dict[str, Any]]:
        """Newest posts for the sidebar, cached per audience."""
        audience = "guest" if guest else "member"
        cached = await self.cache.get_element(LATEST_KEY, audience)
        if cached is not None:
            return cached

        stmt = (
            select(Post.id, Post.created_at, Thread.name, User)
            .join(Thread, Thread.id == Post.thread_id)
            .outerjoin(User, User.id == Post.author_id)
        )
        if guest:
            stmt = (
                stmt.join(Forum, Forum.id == Post.forum_id)
                .join(Category, Category.id == Forum.category_id)
                .where(Forum.visible.is_(True), Category.visible.is_(True))
            )
        stmt = stmt.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit or get_settings().latest_posts_count)

        latest = [
            {
                "id": post_id,
                "title": title,
                "created": created_at.isoformat(),
                "author": author.tag if author is not None else None,
            }
            for post_id, created_at, title, author in (await self.db.execute(stmt)).all()
        ]
        await self.cache.set_element(LATEST_KEY, audience, latest)
        return latest


def slugify(value: str) -> str:
    """Lowercase ASCII-ish slug; falls back to 'thread' for symbol-only names."""
    slug = "".join(ch if ch.isalnum() else "-" for ch in value.lower())
    slug = "-".join(part for part in slug.split("-") if part)
    return slug[:255] or "thread"
