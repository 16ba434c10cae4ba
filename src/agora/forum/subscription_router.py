"""Subscriptions router: /api/v1/subscriptions/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from agora.cache import Cache
from agora.database import get_session
from agora.db.models import POST_NEW, Subscription, Thread, User
from agora.dependencies import forum_gate, get_cache
from agora.forum import subscription_service
from agora.forum.schemas import CountResponse, SubscriptionRemoveRequest, SubscriptionResponse
from agora.i18n import t

router = APIRouter(prefix="/api/v1/subscriptions", tags=["Subscriptions"])


def _member(user: User | None) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail=t("forum.members_only"))
    return user


def _to_response(subscription: Subscription, thread: Thread) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        thread_id=thread.id,
        thread_name=thread.name,
        category_id=thread.category_id,
        forum_id=thread.forum_id,
        new_posts=subscription.post_seen == POST_NEW,
    )


@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> list[SubscriptionResponse]:
    member = _member(user)
    rows = await subscription_service.list_for_user(db, member.id)
    return [_to_response(subscription, thread) for subscription, thread in rows]


@router.get("/count", response_model=CountResponse)
async def count_subscriptions(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> CountResponse:
    """Subscribed threads with unseen posts."""
    member = _member(user)
    return CountResponse(count=await subscription_service.count_new(db, member.id, cache))


@router.post("/thread/{thread_id}", response_model=SubscriptionResponse, status_code=201)
async def subscribe(
    thread_id: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> SubscriptionResponse:
    member = _member(user)
    try:
        subscription = await subscription_service.add(db, member.id, thread_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    thread = await db.get(Thread, thread_id)
    await db.commit()
    await subscription_service.invalidate(cache, [member.id])
    return _to_response(subscription, thread)


@router.post("/remove", response_model=CountResponse)
async def unsubscribe(
    body: SubscriptionRemoveRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> CountResponse:
    """Drop the listed subscriptions; returns how many were removed."""
    member = _member(user)
    removed = await subscription_service.remove(db, member.id, body.ids)
    await db.commit()
    await subscription_service.invalidate(cache, [member.id])
    return CountResponse(count=removed)


async def _mark(
    mark: str,
    subscription_id: int,
    member: User,
    db: AsyncSession,
    cache: Cache,
) -> SubscriptionResponse:
    action = subscription_service.seen if mark == "seen" else subscription_service.unseen
    try:
        subscription = await action(db, member.id, subscription_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=t("subscription.error")) from e
    thread = await db.get(Thread, subscription.thread_id)
    await db.commit()
    await subscription_service.invalidate(cache, [member.id])
    return _to_response(subscription, thread)


@router.post("/{subscription_id}/seen", response_model=SubscriptionResponse)
async def mark_seen(
    subscription_id: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> SubscriptionResponse:
    return await _mark("seen", subscription_id, _member(user), db, cache)


@router.post("/{subscription_id}/unseen", response_model=SubscriptionResponse)
async def mark_unseen(
    subscription_id: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> SubscriptionResponse:
    return await _mark("unseen", subscription_id, _member(user), db, cache)
