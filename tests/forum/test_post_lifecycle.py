"""Tests for the post lifecycle: create, merge, edit, delete, votes and read markers."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from agora.config_store import ConfigStore
from agora.db.models import (
    POST_NEW,
    POST_SEEN,
    EmailQueue,
    Forum,
    Post,
    PostThumb,
    Subscription,
    Thread,
    ThreadView,
    VocabularyJunction,
)
from agora.forum.post_service import VOTE_LIMIT, PostManager, slugify, votes_key
from agora.forum.words import IndexingError


async def _count(db, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    return (await db.execute(stmt)).scalar_one()


@pytest.fixture
def manager(installed, cache) -> PostManager:
    return PostManager(installed, cache)


@pytest_asyncio.fixture
async def board(installed, make_forum, make_user):
    forum = await make_forum()
    alice = await make_user("alice")
    bob = await make_user("bob")
    return forum, alice, bob


class TestCreateThread:
    @pytest.mark.asyncio
    async def test_counters_and_first_post(self, manager, board, installed):
        forum, alice, _ = board

        thread = await manager.create_thread(forum, alice, "Hello <b>there</b>", "First post content here")

        assert thread is not None
        await installed.refresh(thread)
        await installed.refresh(forum)
        assert thread.posts == 1
        assert thread.name == "Hello &lt;b&gt;there&lt;/b&gt;"
        assert forum.threads == 1
        assert forum.posts == 1
        # author's own thread does not count as a view
        assert thread.views == 0
        assert await _count(installed, ThreadView, ThreadView.user_id == alice.id) == 1

    @pytest.mark.asyncio
    async def test_subscribe_on_create(self, manager, board, installed):
        forum, alice, _ = board

        thread = await manager.create_thread(forum, alice, "Topic", "Body of the thread", subscribe=True)

        sub = (await installed.execute(select(Subscription).where(Subscription.thread_id == thread.id))).scalar_one()
        assert sub.user_id == alice.id
        assert sub.post_seen == POST_SEEN

    @pytest.mark.asyncio
    async def test_clears_latest_posts_cache(self, manager, board, cache):
        forum, alice, _ = board
        await cache.set_element("forum.latestposts", "guest", [])

        await manager.create_thread(forum, alice, "Topic", "Body of the thread")

        assert await cache.get_element("forum.latestposts", "guest") is None


class TestCreatePost:
    @pytest.mark.asyncio
    async def test_reply_increments_counters(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")

        post = await manager.create(thread, bob, "A reply from bob")

        assert post is not None
        await installed.refresh(thread)
        await installed.refresh(forum)
        assert thread.posts == 2
        assert forum.posts == 2
        assert thread.views == 1
        assert await _count(installed, Post, Post.thread_id == thread.id) == 2
        assert await _count(installed, VocabularyJunction, VocabularyJunction.post_id == post.id) == 3

    @pytest.mark.asyncio
    async def test_merge_on_repost(self, manager, board, installed):
        forum, alice, _ = board
        thread = await manager.create_thread(forum, alice, "Topic", "First body")

        merged = await manager.create(thread, alice, "Second body")

        assert merged is not None
        rows = (await installed.execute(select(Post).where(Post.thread_id == thread.id))).scalars().all()
        assert len(rows) == 1
        await installed.refresh(rows[0])
        assert rows[0].content == "First body<hr>Second body"
        assert rows[0].edited is True
        await installed.refresh(thread)
        assert thread.posts == 1

    @pytest.mark.asyncio
    async def test_no_merge_when_disabled(self, manager, board, installed):
        forum, alice, _ = board
        await ConfigStore(installed, manager.cache).set("merge_posts", "0")
        await installed.commit()
        thread = await manager.create_thread(forum, alice, "Topic", "First body")

        await manager.create(thread, alice, "Second body")

        await installed.refresh(thread)
        assert thread.posts == 2
        # consecutive post by the same author is not a new view
        assert thread.views == 0

    @pytest.mark.asyncio
    async def test_subscribers_notified_except_author(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words", subscribe=True)
        installed.add(Subscription(user_id=bob.id, thread_id=thread.id, post_seen=POST_SEEN))
        await installed.commit()

        await manager.create(thread, bob, "Bob replies")

        subs = {
            s.user_id: s.post_seen
            for s in (await installed.execute(select(Subscription))).scalars().all()
        }
        assert subs == {alice.id: POST_NEW, bob.id: POST_SEEN}
        queued = (await installed.execute(select(EmailQueue))).scalars().all()
        assert [q.email for q in queued] == ["alice@example.com"]
        assert f"/api/v1/forum/last/{thread.id}" in queued[0].content

    @pytest.mark.asyncio
    async def test_indexing_error_propagates(self, installed, cache, board):
        forum, alice, bob = board
        thread = await PostManager(installed, cache).create_thread(forum, alice, "Topic", "Opening words")

        class FailingIndexer:
            async def reconcile(self, post_id, words, *, created):
                raise IndexingError("vocabulary locked")

        manager = PostManager(installed, cache, indexer=FailingIndexer())
        with pytest.raises(IndexingError):
            await manager.create(thread, bob, "This will not be saved")

        assert await _count(installed, Post) == 1


class TestEdit:
    @pytest.mark.asyncio
    async def test_first_post_renames_thread(self, manager, board, installed):
        forum, alice, _ = board
        thread = await manager.create_thread(forum, alice, "Old name", "Old content words")
        post = (await installed.execute(select(Post).where(Post.thread_id == thread.id))).scalar_one()

        assert await manager.edit(post, alice.id, "Brand new content", topic="New name")

        await installed.refresh(thread)
        await installed.refresh(post)
        assert thread.name == "New name"
        assert post.edited is True
        assert post.edited_at is not None

    @pytest.mark.asyncio
    async def test_reply_edit_keeps_thread_name(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Original", "Opening words")
        reply = await manager.create(thread, bob, "Reply words")

        assert await manager.edit(reply, bob.id, "Edited reply words", topic="Hijack")

        await installed.refresh(thread)
        assert thread.name == "Original"


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_reply(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        reply = await manager.create(thread, bob, "Reply words")
        reply_id = reply.id

        assert await manager.delete(reply)

        await installed.refresh(thread)
        await installed.refresh(forum)
        assert thread.posts == 1
        assert forum.posts == 1
        assert forum.threads == 1
        assert await _count(installed, VocabularyJunction, VocabularyJunction.post_id == reply_id) == 0

    @pytest.mark.asyncio
    async def test_delete_last_post_removes_thread(self, manager, board, installed):
        forum, alice, _ = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words", subscribe=True)
        thread_id = thread.id
        post = (await installed.execute(select(Post).where(Post.thread_id == thread_id))).scalar_one()

        assert await manager.delete(post)

        assert await installed.get(Thread, thread_id) is None
        assert await _count(installed, Subscription) == 0
        assert await _count(installed, ThreadView) == 0
        forum = await installed.get(Forum, forum.id)
        await installed.refresh(forum)
        assert forum.posts == 0
        assert forum.threads == 0


class TestThumb:
    @pytest.mark.asyncio
    async def test_up_then_down_flips(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        post = (await installed.execute(select(Post).where(Post.thread_id == thread.id))).scalar_one()

        assert await manager.thumb(post, bob.id, up=True)
        await installed.refresh(post)
        assert (post.likes, post.dislikes) == (1, 0)

        assert await manager.thumb(post, bob.id, up=False)
        await installed.refresh(post)
        assert (post.likes, post.dislikes) == (0, 1)
        vote = (await installed.execute(select(PostThumb))).scalar_one()
        assert vote.thumb == -1

    @pytest.mark.asyncio
    async def test_same_direction_is_noop(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        post = (await installed.execute(select(Post).where(Post.thread_id == thread.id))).scalar_one()

        await manager.thumb(post, bob.id, up=True)
        await manager.thumb(post, bob.id, up=True)

        await installed.refresh(post)
        assert (post.likes, post.dislikes) == (1, 0)
        assert await _count(installed, PostThumb) == 1

    @pytest.mark.asyncio
    async def test_vote_window_counter(self, manager, board, installed, cache):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        post = (await installed.execute(select(Post).where(Post.thread_id == thread.id))).scalar_one()

        assert await manager.vote_count(bob.id) == 0
        await manager.thumb(post, bob.id, up=True)
        await manager.thumb(post, bob.id, up=False)

        assert await manager.vote_count(bob.id) == 2
        entry = await cache.get_elements(votes_key(bob.id))
        assert entry["count"] == 2
        assert VOTE_LIMIT == 10


class TestMarkSeen:
    @pytest.mark.asyncio
    async def test_page_counts_one_view(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        await manager.create(thread, bob, "Reply words")
        posts = (await installed.execute(select(Post).order_by(Post.id))).scalars().all()
        await installed.refresh(thread)
        views_before = thread.views

        moved = await manager.mark_page_seen(list(posts), alice.id)
        await installed.commit()

        assert moved is True
        await installed.refresh(thread)
        assert thread.views == views_before + 1

        again = await manager.mark_page_seen(list(posts), alice.id)
        assert again is False

    @pytest.mark.asyncio
    async def test_flips_subscription_to_seen(self, manager, board, installed):
        forum, alice, bob = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words", subscribe=True)
        reply = await manager.create(thread, bob, "Reply words")
        sub = (await installed.execute(select(Subscription))).scalar_one()
        await installed.refresh(sub)
        assert sub.post_seen == POST_NEW

        await manager.mark_seen(reply, alice.id)
        await installed.commit()

        await installed.refresh(sub)
        assert sub.post_seen == POST_SEEN


class TestLatestAndVerify:
    @pytest.mark.asyncio
    async def test_latest_hides_invisible_forums_from_guests(self, manager, installed, make_forum, make_user):
        alice = await make_user("alice")
        public = await make_forum()
        hidden = await make_forum(visible=False, name="Staff")
        await manager.create_thread(public, alice, "Public topic", "Public words")
        await manager.create_thread(hidden, alice, "Staff topic", "Staff words")

        guest = await manager.latest(guest=True)
        member = await manager.latest(guest=False)

        assert [p["title"] for p in guest] == ["Public topic"]
        assert [p["title"] for p in member] == ["Staff topic", "Public topic"]
        assert member[0]["author"] == "alice"

    @pytest.mark.asyncio
    async def test_verify_requires_matching_path(self, manager, board, installed):
        forum, alice, _ = board
        thread = await manager.create_thread(forum, alice, "Topic", "Opening words")
        post = (await installed.execute(select(Post))).scalar_one()

        assert await manager.verify(forum.category_id, forum.id, thread.id, post.id) is not None
        assert await manager.verify(forum.category_id, forum.id + 99, thread.id, post.id) is None


class TestSlugify:
    def test_basic(self):
        assert slugify("Hello, World!") == "hello-world"

    def test_symbols_only(self):
        assert slugify("!!!") == "thread"
