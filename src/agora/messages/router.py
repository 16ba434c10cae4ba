"""Messages router: /api/v1/messages/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.rbac import can
from agora.cache import Cache
from agora.database import get_session
from agora.db.models import MESSAGE_DELETED, MESSAGE_NEW, Message, User
from agora.dependencies import forum_gate, get_cache, get_session_store
from agora.i18n import t
from agora.messages import service
from agora.messages.schemas import MessageCountResponse, MessageResponse, MessageSendRequest
from agora.session_store import SessionStore

router = APIRouter(prefix="/api/v1/messages", tags=["Messages"])


def _member(user: User | None) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail=t("forum.members_only"))
    return user


def _to_response(message: Message, *, unread: bool = False) -> MessageResponse:
    response = MessageResponse.model_validate(message)
    response.unread = unread
    return response


@router.post("", response_model=MessageResponse, status_code=201)
async def send_message(
    body: MessageSendRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    session: SessionStore = Depends(get_session_store),
) -> MessageResponse:
    """Send a message to up to ten members."""
    member = _member(user)
    if not await can(db, member.id, "sendMessage"):
        raise HTTPException(status_code=403, detail="Permission denied")
    if await service.too_many(session, member.id):
        raise HTTPException(status_code=429, detail=t("message.too_many"))

    message = await service.send(
        db, cache, session, member.id, body.receivers, body.topic, body.content, body.replyto
    )
    if message is None:
        raise HTTPException(status_code=400, detail=t("message.send_error"))
    return _to_response(message)


@router.get("/inbox", response_model=list[MessageResponse])
async def inbox(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> list[MessageResponse]:
    member = _member(user)
    return [
        _to_response(message, unread=receiver.receiver_status == MESSAGE_NEW)
        for message, receiver in await service.inbox(db, member.id)
    ]


@router.get("/sent", response_model=list[MessageResponse])
async def sent(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> list[MessageResponse]:
    member = _member(user)
    return [_to_response(message) for message in await service.sent(db, member.id)]


@router.get("/count", response_model=MessageCountResponse)
async def count_new(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> MessageCountResponse:
    member = _member(user)
    return MessageCountResponse(count=await service.count_new(db, cache, member.id))


@router.get("/{message_id}", response_model=MessageResponse)
async def view_message(
    message_id: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> MessageResponse:
    """Open a message; a received copy is marked read."""
    member = _member(user)
    receiver = await service.received_copy(db, message_id, member.id)
    if receiver is not None:
        await service.mark_read(db, cache, receiver)
        message = await db.get(Message, message_id)
        return _to_response(message)

    message = await db.get(Message, message_id)
    if message is None or message.sender_id != member.id or message.sender_status == MESSAGE_DELETED:
        raise HTTPException(status_code=404, detail=t("message.missing"))
    return _to_response(message)


@router.delete("/{message_id}", status_code=204)
async def remove_message(
    message_id: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> None:
    """Remove the caller's copy, received or sent."""
    member = _member(user)
    receiver = await service.received_copy(db, message_id, member.id)
    if receiver is not None:
        removed = await service.remove_received(db, cache, receiver)
    else:
        message = await db.get(Message, message_id)
        if message is None or message.sender_id != member.id or message.sender_status == MESSAGE_DELETED:
            raise HTTPException(status_code=404, detail=t("message.missing"))
        removed = await service.remove(db, cache, message)
    if not removed:
        raise HTTPException(status_code=500, detail=t("message.remove_error"))
