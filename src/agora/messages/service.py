"""Private messages between members, plus post complaints sent to moderators."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, insert, select

from agora.config import get_settings
from agora.db.base import utcnow
from agora.db.models import (
    MESSAGE_DELETED,
    MESSAGE_NEW,
    MESSAGE_READ,
    ROLE_ADMIN,
    STATUS_ACTIVE,
    Message,
    MessageReceiver,
    Post,
    User,
)
from agora.forum.moderators import forum_mods
from agora.i18n import t
from agora.sanitizer import purify, strip_tags

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agora.cache import Cache
    from agora.session_store import SessionStore

logger = structlog.get_logger()

MAX_RECEIVERS = 10
SPAM_MESSAGES = 10
SPAM_WAIT_SECONDS = 60

NEW_MESSAGES_KEY = "user.newmessages"


def _spam_key(user_id: int) -> str:
    return f"messages.{user_id}"


async def too_many(session: SessionStore, user_id: int) -> bool:
    """True when the user sent SPAM_MESSAGES messages within the last minute."""
    stamps = await session.get(_spam_key(user_id), [])
    threshold = time.time() - SPAM_WAIT_SECONDS
    recent = [stamp for stamp in stamps if isinstance(stamp, (int, float)) and stamp > threshold]
    await session.set(_spam_key(user_id), recent)
    return len(recent) >= SPAM_MESSAGES


async def _record_sent(session: SessionStore, user_id: int) -> None:
    stamps = await session.get(_spam_key(user_id), [])
    stamps.append(int(time.time()))
    await session.set(_spam_key(user_id), stamps)


async def _is_active(db: AsyncSession, user_id: int) -> bool:
    result = await db.execute(select(User.id).where(User.id == user_id, User.status == STATUS_ACTIVE))
    return result.scalar_one_or_none() is not None


async def send(
    db: AsyncSession,
    cache: Cache,
    session: SessionStore | None,
    sender_id: int,
    receiver_ids: list[int],
    topic: str,
    content: str,
    replyto: int | None = None,
) -> Message | None:
    """Store a message for every active receiver. None on failure (rolled back)."""
    receivers = list(dict.fromkeys(receiver_ids))
    if not receivers or len(receivers) > MAX_RECEIVERS:
        logger.warning("message_receivers_invalid", sender_id=sender_id, count=len(receivers))
        return None

    delivered: list[int] = []
    try:
        message = Message(
            sender_id=sender_id,
            topic=strip_tags(purify(topic)).strip(),
            content=purify(content),
            replyto=replyto,
            sender_status=MESSAGE_READ,
        )
        db.add(message)
        await db.flush()

        for receiver_id in receivers:
            if not await _is_active(db, receiver_id):
                if len(receivers) == 1:
                    msg = "No active receivers to send message to!"
                    raise ValueError(msg)
                continue
            db.add(MessageReceiver(message_id=message.id, receiver_id=receiver_id, receiver_status=MESSAGE_NEW))
            delivered.append(receiver_id)
        if not delivered:
            msg = "No active receivers to send message to!"
            raise ValueError(msg)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("message_send_failed", sender_id=sender_id)
        return None

    for receiver_id in delivered:
        await cache.delete_element(NEW_MESSAGES_KEY, receiver_id)
    if session is not None:
        await _record_sent(session, sender_id)
    logger.info("message_sent", message_id=message.id, receivers=len(delivered))
    return message


async def get_receivers(db: AsyncSession, message_id: int) -> list[MessageReceiver]:
    result = await db.execute(select(MessageReceiver).where(MessageReceiver.message_id == message_id))
    return list(result.scalars().all())


async def remove(db: AsyncSession, cache: Cache, message: Message) -> bool:
    """Sender side removal.

    Without receivers, or once every receiver deleted their copy, the message
    is gone for good; otherwise only the sender copy is hidden.
    """
    message_id, sender_id = message.id, message.sender_id
    clear = message.sender_status == MESSAGE_NEW
    try:
        receivers = await get_receivers(db, message_id)
        if not receivers or all(r.receiver_status == MESSAGE_DELETED for r in receivers):
            await db.execute(delete(MessageReceiver).where(MessageReceiver.message_id == message_id))
            await db.execute(delete(Message).where(Message.id == message_id))
        else:
            message.sender_status = MESSAGE_DELETED
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("message_remove_failed", message_id=message_id)
        return False

    if clear:
        await cache.delete_element(NEW_MESSAGES_KEY, sender_id)
    return True


async def remove_received(db: AsyncSession, cache: Cache, receiver: MessageReceiver) -> bool:
    """Receiver side removal; drops the message once nobody holds a copy."""
    message_id, receiver_id = receiver.message_id, receiver.receiver_id
    clear = receiver.receiver_status == MESSAGE_NEW
    try:
        receiver.receiver_status = MESSAGE_DELETED
        await db.flush()
        message = await db.get(Message, message_id)
        receivers = await get_receivers(db, message_id)
        if (
            message is not None
            and message.sender_status == MESSAGE_DELETED
            and all(r.receiver_status == MESSAGE_DELETED for r in receivers)
        ):
            await db.execute(delete(MessageReceiver).where(MessageReceiver.message_id == message_id))
            await db.execute(delete(Message).where(Message.id == message_id))
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("message_remove_failed", message_id=message_id, receiver_id=receiver_id)
        return False

    if clear:
        await cache.delete_element(NEW_MESSAGES_KEY, receiver_id)
    return True


async def report_receivers(db: AsyncSession, forum_id: int, reporter_id: int) -> list[int]:
    """Forum moderators and active admins, the reporter excluded."""
    result = await db.execute(select(User.id).where(User.role == ROLE_ADMIN, User.status == STATUS_ACTIVE))
    ids = list(dict.fromkeys([*await forum_mods(db, forum_id), *result.scalars().all()]))
    return [user_id for user_id in ids if user_id != reporter_id]


async def report(db: AsyncSession, cache: Cache, post: Post, reporter_id: int, content: str) -> Message | None:
    """Send a complaint about `post` to whoever moderates its forum."""
    post_id = post.id
    link = f"{get_settings().base_url.rstrip('/')}/api/v1/forum/show/{post_id}"
    try:
        receivers = await report_receivers(db, post.forum_id, reporter_id)
        if not receivers:
            msg = "No one to send report to"
            raise ValueError(msg)

        body = (
            purify(content)
            + t("forum.merge_separator")
            + f'<a href="{link}">{t("message.report_link")}</a>'
            + t("forum.merge_separator")
            + f"<p>{t('message.report_contents')}</p><blockquote>{post.content}</blockquote>"
        )
        message = Message(
            sender_id=reporter_id,
            topic=t("message.report_topic", id=post_id),
            content=body,
            sender_status=MESSAGE_DELETED,
        )
        db.add(message)
        await db.flush()

        now = utcnow()
        await db.execute(
            insert(MessageReceiver),
            [
                {
                    "message_id": message.id,
                    "receiver_id": receiver_id,
                    "receiver_status": MESSAGE_NEW,
                    "created_at": now,
                    "updated_at": now,
                }
                for receiver_id in receivers
            ],
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("post_report_failed", post_id=post_id, reporter_id=reporter_id)
        return None

    await cache.delete(NEW_MESSAGES_KEY)
    logger.info("post_reported", post_id=post_id, receivers=len(receivers))
    return message


async def mark_read(db: AsyncSession, cache: Cache, receiver: MessageReceiver) -> bool:
    """Flip a received copy from NEW to READ; the unread counter drops after commit."""
    if receiver.receiver_status != MESSAGE_NEW:
        return False
    message_id, receiver_id = receiver.message_id, receiver.receiver_id
    try:
        receiver.receiver_status = MESSAGE_READ
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("message_read_failed", message_id=message_id, receiver_id=receiver_id)
        return False

    await cache.delete_element(NEW_MESSAGES_KEY, receiver_id)
    return True


async def inbox(db: AsyncSession, user_id: int) -> list[tuple[Message, MessageReceiver]]:
    result = await db.execute(
        select(Message, MessageReceiver)
        .join(MessageReceiver, MessageReceiver.message_id == Message.id)
        .where(MessageReceiver.receiver_id == user_id, MessageReceiver.receiver_status != MESSAGE_DELETED)
        .order_by(Message.id.desc())
    )
    return [(message, receiver) for message, receiver in result.all()]


async def sent(db: AsyncSession, user_id: int) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.sender_id == user_id, Message.sender_status != MESSAGE_DELETED)
        .order_by(Message.id.desc())
    )
    return list(result.scalars().all())


async def received_copy(db: AsyncSession, message_id: int, user_id: int) -> MessageReceiver | None:
    result = await db.execute(
        select(MessageReceiver).where(
            MessageReceiver.message_id == message_id,
            MessageReceiver.receiver_id == user_id,
            MessageReceiver.receiver_status != MESSAGE_DELETED,
        )
    )
    return result.scalar_one_or_none()


async def count_new(db: AsyncSession, cache: Cache, user_id: int) -> int:
    """Unread received messages (cached per user)."""
    cached = await cache.get_element(NEW_MESSAGES_KEY, user_id)
    if cached is not None:
        return int(cached)
    result = await db.execute(
        select(func.count(MessageReceiver.id)).where(
            MessageReceiver.receiver_id == user_id, MessageReceiver.receiver_status == MESSAGE_NEW
        )
    )
    count = result.scalar_one()
    await cache.set_element(NEW_MESSAGES_KEY, user_id, count)
    return count
