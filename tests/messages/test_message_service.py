"""Tests for private messages and post reports."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from agora.db.models import (
    MESSAGE_DELETED,
    MESSAGE_NEW,
    MESSAGE_READ,
    STATUS_INACTIVE,
    Message,
    MessageReceiver,
    Post,
    Thread,
)
from agora.forum.moderators import add_mod
from agora.messages import service


async def _messages(db) -> int:
    return (await db.execute(select(func.count()).select_from(Message))).scalar_one()


class TestSend:
    @pytest.mark.asyncio
    async def test_send_to_active_receivers(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol", status=STATUS_INACTIVE)

        message = await service.send(
            installed, cache, session_store, alice.id, [bob.id, carol.id], "Hi <b>there</b>", "<p>Hello</p>"
        )

        assert message is not None
        assert message.topic.split() == ["Hi", "there"]
        assert message.sender_status == MESSAGE_READ
        receivers = await service.get_receivers(installed, message.id)
        assert [(r.receiver_id, r.receiver_status) for r in receivers] == [(bob.id, MESSAGE_NEW)]

    @pytest.mark.asyncio
    async def test_single_inactive_receiver_fails(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        carol = await make_user("carol", status=STATUS_INACTIVE)

        message = await service.send(installed, cache, session_store, alice.id, [carol.id], "Topic", "Body")

        assert message is None
        assert await _messages(installed) == 0

    @pytest.mark.asyncio
    async def test_too_many_receivers(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        receivers = list(range(100, 100 + service.MAX_RECEIVERS + 1))

        assert await service.send(installed, cache, session_store, alice.id, receivers, "Topic", "Body") is None

    @pytest.mark.asyncio
    async def test_new_counter_invalidated_for_receiver(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        assert await service.count_new(installed, cache, bob.id) == 0

        await service.send(installed, cache, session_store, alice.id, [bob.id], "Topic", "Body")

        assert await service.count_new(installed, cache, bob.id) == 1


class TestSpamWindow:
    @pytest.mark.asyncio
    async def test_tenth_message_within_a_minute_blocks(self, session_store):
        now = int(time.time())
        await session_store.set("messages.1", [now] * (service.SPAM_MESSAGES - 1))
        assert await service.too_many(session_store, 1) is False

        await session_store.set("messages.1", [now] * service.SPAM_MESSAGES)
        assert await service.too_many(session_store, 1) is True

    @pytest.mark.asyncio
    async def test_old_stamps_expire(self, session_store):
        old = int(time.time()) - service.SPAM_WAIT_SECONDS - 5
        await session_store.set("messages.1", [old] * service.SPAM_MESSAGES)

        assert await service.too_many(session_store, 1) is False
        assert await session_store.get("messages.1") == []


class TestRemove:
    @pytest.mark.asyncio
    async def test_sender_removal_keeps_receiver_copy(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        message = await service.send(installed, cache, session_store, alice.id, [bob.id], "Topic", "Body")

        assert await service.remove(installed, cache, message)

        await installed.refresh(message)
        assert message.sender_status == MESSAGE_DELETED
        assert await service.received_copy(installed, message.id, bob.id) is not None

    @pytest.mark.asyncio
    async def test_last_copy_deletes_message(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        message = await service.send(installed, cache, session_store, alice.id, [bob.id], "Topic", "Body")
        await service.remove(installed, cache, message)
        copy = await service.received_copy(installed, message.id, bob.id)

        assert await service.remove_received(installed, cache, copy)

        assert await _messages(installed) == 0

    @pytest.mark.asyncio
    async def test_mark_read(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        message = await service.send(installed, cache, session_store, alice.id, [bob.id], "Topic", "Body")
        copy = await service.received_copy(installed, message.id, bob.id)

        assert await service.count_new(installed, cache, bob.id) == 1

        assert await service.mark_read(installed, cache, copy)

        assert copy.receiver_status == MESSAGE_READ
        assert await service.count_new(installed, cache, bob.id) == 0
        assert not await service.mark_read(installed, cache, copy)

    @pytest.mark.asyncio
    async def test_failed_read_keeps_unread_count(self, installed, cache, session_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        message = await service.send(installed, cache, session_store, alice.id, [bob.id], "Topic", "Body")
        copy = await service.received_copy(installed, message.id, bob.id)
        assert await service.count_new(installed, cache, bob.id) == 1

        with patch.object(installed, "commit", new=AsyncMock(side_effect=RuntimeError("database went away"))):
            assert not await service.mark_read(installed, cache, copy)

        assert await cache.get_element(service.NEW_MESSAGES_KEY, bob.id) == 1
        assert await service.count_new(installed, cache, bob.id) == 1


class TestReport:
    @pytest.mark.asyncio
    async def test_report_goes_to_mods_and_admins(self, installed, cache, make_forum, make_user):
        forum = await make_forum()
        author = await make_user("author")
        reporter = await make_user("reporter")
        mod = await make_user("mod", role="moderator")
        admin = await make_user("boss", role="admin")
        await add_mod(installed, forum.id, mod.id)
        await add_mod(installed, forum.id, reporter.id)
        thread = Thread(category_id=forum.category_id, forum_id=forum.id, name="Topic", slug="topic")
        installed.add(thread)
        await installed.flush()
        post = Post(content="<p>rude words</p>", thread_id=thread.id, forum_id=forum.id, author_id=author.id)
        installed.add(post)
        await installed.commit()

        message = await service.report(installed, cache, post, reporter.id, "Please look")

        assert message is not None
        assert message.sender_status == MESSAGE_DELETED
        assert f"#{post.id}" in message.topic
        assert "rude words" in message.content
        receivers = (
            await installed.execute(select(MessageReceiver.receiver_id).where(MessageReceiver.message_id == message.id))
        ).scalars().all()
        assert sorted(receivers) == sorted([mod.id, admin.id])
