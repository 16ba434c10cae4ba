"""Forum router: /api/v1/forum/* browsing and posting endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.rbac import can, can_moderate
from agora.cache import Cache
from agora.config import get_settings
from agora.config_store import ConfigStore
from agora.database import get_session
from agora.db.models import Post, Thread, User
from agora.dependencies import forum_gate, get_cache, get_config_store, get_session_store
from agora.forum import forum_service, subscription_service
from agora.forum.post_service import VOTE_LIMIT, PostManager
from agora.forum.schemas import (
    CategoryResponse,
    ForumPageResponse,
    ForumResponse,
    IndexResponse,
    LatestPostResponse,
    LocationResponse,
    MetaResponse,
    PostCreateRequest,
    PostEditRequest,
    PostResponse,
    ReportRequest,
    SearchHitResponse,
    ThreadCreateRequest,
    ThreadPageResponse,
    ThreadResponse,
    VoteRequest,
    VoteResponse,
)
from agora.forum.words import WordIndexer
from agora.i18n import t
from agora.messages import service as message_service
from agora.session_store import SessionStore

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/forum", tags=["Forum"])


def _member(user: User | None) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail=t("forum.members_only"))
    return user


def _post_response(post: Post, author: User | None) -> PostResponse:
    return PostResponse(
        id=post.id,
        thread_id=post.thread_id,
        forum_id=post.forum_id,
        author_id=post.author_id,
        author=author.tag if author is not None else None,
        content=post.content,
        likes=post.likes,
        dislikes=post.dislikes,
        edited=post.edited,
        edited_at=post.edited_at,
        created_at=post.created_at,
    )


def _manager(db: AsyncSession, cache: Cache, config: ConfigStore) -> PostManager:
    return PostManager(db, cache, config)


async def _require(db: AsyncSession, user: User, permission: str) -> None:
    if not await can(db, user.id, permission):
        raise HTTPException(status_code=403, detail="Permission denied")


async def _load_post(
    manager: PostManager, cid: int, fid: int, tid: int, pid: int
) -> Post:
    post = await manager.verify(cid, fid, tid, pid)
    if post is None:
        raise HTTPException(status_code=404, detail=t("forum.post_missing"))
    return post


# ---------------------------------------------------------------------------
# Browsing
# ---------------------------------------------------------------------------


@router.get("", response_model=IndexResponse)
async def forum_index(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    config: ConfigStore = Depends(get_config_store),
) -> IndexResponse:
    """Categories and their forums."""
    categories = await forum_service.index(db, guest=user is None)
    return IndexResponse(
        categories=[
            CategoryResponse(
                id=category.id,
                name=category.name,
                slug=category.slug,
                description=category.description,
                forums=[ForumResponse.model_validate(forum) for forum in forums],
            )
            for category, forums in categories
        ],
        meta=MetaResponse(**await forum_service.meta_tags(config)),
    )


@router.get("/category/{cid}", response_model=CategoryResponse)
async def category(
    cid: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> CategoryResponse:
    guest = user is None
    found = await forum_service.get_category(db, cid, guest=guest)
    if found is None:
        raise HTTPException(status_code=404, detail=t("forum.category_missing"))
    forums = next((f for c, f in await forum_service.index(db, guest=guest) if c.id == cid), [])
    return CategoryResponse(
        id=found.id,
        name=found.name,
        slug=found.slug,
        description=found.description,
        forums=[ForumResponse.model_validate(forum) for forum in forums],
    )


@router.get("/forum/{cid}/{fid}", response_model=ForumPageResponse)
async def forum_page(
    cid: int,
    fid: int,
    toggle: str | None = Query(None, max_length=10),
    page: int = Query(1, ge=1),
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    config: ConfigStore = Depends(get_config_store),
    session: SessionStore = Depends(get_session_store),
) -> ForumPageResponse:
    """Thread list of a forum; `toggle` flips one of the session-kept filters."""
    forum = await forum_service.get_forum(db, cid, fid, guest=user is None)
    if forum is None:
        raise HTTPException(status_code=404, detail=t("forum.forum_missing"))

    filters = await forum_service.toggle_filter(session, toggle)
    per_page = get_settings().posts_per_page
    threads, total = await forum_service.list_threads(
        db,
        forum.id,
        filters=filters,
        user_id=user.id if user is not None else None,
        hot_minimum=await config.get_int("hot_minimum", 20),
        page=page,
        per_page=per_page,
    )
    category_row = await forum_service.get_category(db, cid, guest=False)
    keywords = forum.keywords or (category_row.keywords if category_row else None)
    description = forum.description or (category_row.description if category_row else None)
    return ForumPageResponse(
        forum=ForumResponse.model_validate(forum),
        threads=[ThreadResponse.model_validate(thread) for thread in threads],
        total=total,
        page=page,
        per_page=per_page,
        filters=filters,
        meta=MetaResponse(**await forum_service.meta_tags(config, keywords, description)),
    )


@router.get("/thread/{cid}/{fid}/{tid}", response_model=ThreadPageResponse)
async def thread_page(
    cid: int,
    fid: int,
    tid: int,
    page: int = Query(1, ge=1),
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> ThreadPageResponse:
    """One page of posts; members get their read watermark moved."""
    thread = await forum_service.get_thread(db, cid, fid, tid, guest=user is None)
    if thread is None:
        raise HTTPException(status_code=404, detail=t("forum.thread_missing"))

    per_page = get_settings().posts_per_page
    posts, total = await forum_service.thread_posts(db, thread.id, page=page, per_page=per_page)
    if user is not None and posts:
        await _manager(db, cache, config).mark_page_seen([post for post, _author in posts], user.id)
        await db.commit()
        await subscription_service.invalidate(cache, [user.id])
        await db.refresh(thread)

    forum = await forum_service.get_forum(db, cid, fid, guest=False)
    keywords = forum.keywords if forum else None
    description = forum.description if forum else None
    return ThreadPageResponse(
        thread=ThreadResponse.model_validate(thread),
        posts=[_post_response(post, author) for post, author in posts],
        total=total,
        page=page,
        per_page=per_page,
        meta=MetaResponse(**await forum_service.meta_tags(config, keywords, description)),
    )


@router.get("/last/{tid}", response_model=LocationResponse)
async def last_post(
    tid: int,
    _user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> LocationResponse:
    """Location of the newest post of a thread."""
    thread = await db.get(Thread, tid)
    if thread is None:
        raise HTTPException(status_code=404, detail=t("forum.thread_missing"))
    return LocationResponse(
        category_id=thread.category_id,
        forum_id=thread.forum_id,
        thread_id=thread.id,
        slug=thread.slug,
        page=await forum_service.last_page(db, thread.id, get_settings().posts_per_page),
    )


@router.get("/show/{pid}", response_model=LocationResponse)
async def show_post(
    pid: int,
    _user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> LocationResponse:
    """Location of a single post, with its anchor."""
    post = await db.get(Post, pid)
    thread = await db.get(Thread, post.thread_id) if post is not None else None
    if post is None or thread is None:
        raise HTTPException(status_code=404, detail=t("forum.post_missing"))
    return LocationResponse(
        category_id=thread.category_id,
        forum_id=post.forum_id,
        thread_id=thread.id,
        slug=thread.slug,
        page=await forum_service.post_page(db, post, get_settings().posts_per_page),
        anchor=f"post{post.id}",
    )


@router.get("/latest", response_model=list[LatestPostResponse])
async def latest_posts(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> list[LatestPostResponse]:
    latest = await _manager(db, cache, config).latest(guest=user is None)
    return [LatestPostResponse(**item) for item in latest]


@router.get("/search", response_model=list[SearchHitResponse])
async def search(
    q: str = Query(..., min_length=3, max_length=255),
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> list[SearchHitResponse]:
    hits = await WordIndexer(db).search(q, guest=user is None)
    return [SearchHitResponse(post_id=post_id, thread_id=thread_id) for post_id, thread_id in hits]


@router.get("/unread", response_model=list[ThreadResponse])
async def unread_posts(
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
) -> list[ThreadResponse]:
    """Threads with unseen posts (members only)."""
    member = _member(user)
    threads = await forum_service.unread_threads(db, member.id)
    return [ThreadResponse.model_validate(thread) for thread in threads]


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


@router.post("/forum/{cid}/{fid}/threads", response_model=ThreadResponse, status_code=201)
async def new_thread(
    cid: int,
    fid: int,
    body: ThreadCreateRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> ThreadResponse:
    member = _member(user)
    await _require(db, member, "createThread")
    forum = await forum_service.get_forum(db, cid, fid, guest=False)
    if forum is None:
        raise HTTPException(status_code=404, detail=t("forum.forum_missing"))

    thread = await _manager(db, cache, config).create_thread(
        forum, member, body.name, body.content, subscribe=body.subscribe
    )
    if thread is None:
        raise HTTPException(status_code=500, detail=t("forum.post_error"))
    await db.refresh(thread)
    return ThreadResponse.model_validate(thread)


@router.post("/thread/{cid}/{fid}/{tid}/posts", response_model=PostResponse, status_code=201)
async def new_post(
    cid: int,
    fid: int,
    tid: int,
    body: PostCreateRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> PostResponse:
    """Reply to a thread; a repeated reply by the same author may be merged."""
    member = _member(user)
    await _require(db, member, "createPost")
    thread = await forum_service.get_thread(db, cid, fid, tid, guest=False)
    if thread is None:
        raise HTTPException(status_code=404, detail=t("forum.thread_missing"))
    if thread.locked and not await can_moderate(db, member.id, thread.forum_id):
        raise HTTPException(status_code=403, detail=t("forum.thread_locked"))

    post = await _manager(db, cache, config).create(thread, member, body.content, subscribe=body.subscribe)
    if post is None:
        raise HTTPException(status_code=500, detail=t("forum.post_error"))
    await db.refresh(post)
    return _post_response(post, member)


@router.patch("/post/{cid}/{fid}/{tid}/{pid}", response_model=PostResponse)
async def edit_post(
    cid: int,
    fid: int,
    tid: int,
    pid: int,
    body: PostEditRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> PostResponse:
    member = _member(user)
    manager = _manager(db, cache, config)
    post = await _load_post(manager, cid, fid, tid, pid)
    own = post.author_id == member.id and await can(db, member.id, "updateOwnPost")
    if not own and not await can_moderate(db, member.id, post.forum_id):
        raise HTTPException(status_code=403, detail=t("forum.not_author"))

    if not await manager.edit(post, member.id, body.content, body.topic):
        raise HTTPException(status_code=500, detail=t("forum.post_error"))
    await db.refresh(post)
    author = await db.get(User, post.author_id) if post.author_id is not None else None
    return _post_response(post, author)


@router.delete("/post/{cid}/{fid}/{tid}/{pid}", status_code=204)
async def delete_post(
    cid: int,
    fid: int,
    tid: int,
    pid: int,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> None:
    member = _member(user)
    manager = _manager(db, cache, config)
    post = await _load_post(manager, cid, fid, tid, pid)
    own = post.author_id == member.id and await can(db, member.id, "deleteOwnPost")
    if not own and not await can_moderate(db, member.id, post.forum_id):
        raise HTTPException(status_code=403, detail=t("forum.not_author"))

    if not await manager.delete(post):
        raise HTTPException(status_code=500, detail=t("forum.post_delete_error"))


@router.post("/post/{cid}/{fid}/{tid}/{pid}/vote", response_model=VoteResponse)
async def vote(
    cid: int,
    fid: int,
    tid: int,
    pid: int,
    body: VoteRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> VoteResponse:
    """Thumb a post up or down (not your own), at most VOTE_LIMIT times per window."""
    member = _member(user)
    manager = _manager(db, cache, config)
    post = await _load_post(manager, cid, fid, tid, pid)
    if post.author_id == member.id:
        raise HTTPException(status_code=400, detail="You can not vote for your own post")
    if await manager.vote_count(member.id) >= VOTE_LIMIT:
        raise HTTPException(status_code=429, detail=t("forum.vote_limit"))

    if not await manager.thumb(post, member.id, body.up):
        raise HTTPException(status_code=500, detail=t("forum.vote_error"))
    await db.refresh(post)
    return VoteResponse(likes=post.likes, dislikes=post.dislikes, votes_in_window=await manager.vote_count(member.id))


@router.post("/post/{cid}/{fid}/{tid}/{pid}/report", status_code=201)
async def report_post(
    cid: int,
    fid: int,
    tid: int,
    pid: int,
    body: ReportRequest,
    user: User | None = Depends(forum_gate),
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    config: ConfigStore = Depends(get_config_store),
) -> dict[str, int]:
    """Send a complaint about a post to the forum moderators."""
    member = _member(user)
    post = await _load_post(_manager(db, cache, config), cid, fid, tid, pid)
    message = await message_service.report(db, cache, post, member.id, body.content)
    if message is None:
        raise HTTPException(status_code=400, detail=t("message.report_error"))
    return {"message_id": message.id}
