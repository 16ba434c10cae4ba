"""Pydantic schemas for the forum API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# --- Structure ---


class ForumResponse(BaseModel):
    id: int
    category_id: int
    name: str
    sub: str | None = None
    slug: str
    description: str | None = None
    threads: int
    posts: int

    model_config = {"from_attributes": True}


class CategoryResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: str | None = None
    forums: list[ForumResponse] = []


class MetaResponse(BaseModel):
    keywords: str
    description: str


class IndexResponse(BaseModel):
    categories: list[CategoryResponse]
    meta: MetaResponse


# --- Threads ---


class ThreadResponse(BaseModel):
    id: int
    category_id: int
    forum_id: int
    author_id: int | None
    name: str
    slug: str
    pinned: bool
    locked: bool
    posts: int
    views: int
    new_post_at: datetime
    edited_post_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class ForumPageResponse(BaseModel):
    forum: ForumResponse
    threads: list[ThreadResponse]
    total: int
    page: int
    per_page: int
    filters: dict[str, int]
    meta: MetaResponse


class ThreadCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=10)
    subscribe: bool = False


# --- Posts ---


class PostResponse(BaseModel):
    id: int
    thread_id: int
    forum_id: int
    author_id: int | None
    author: str | None = None
    content: str
    likes: int
    dislikes: int
    edited: bool
    edited_at: datetime | None
    created_at: datetime


class ThreadPageResponse(BaseModel):
    thread: ThreadResponse
    posts: list[PostResponse]
    total: int
    page: int
    per_page: int
    meta: MetaResponse


class PostCreateRequest(BaseModel):
    content: str = Field(..., min_length=10)
    subscribe: bool = False


class PostEditRequest(BaseModel):
    content: str = Field(..., min_length=10)
    topic: str | None = Field(None, max_length=255)


class VoteRequest(BaseModel):
    up: bool


class VoteResponse(BaseModel):
    likes: int
    dislikes: int
    votes_in_window: int


class ReportRequest(BaseModel):
    content: str = Field(..., min_length=1)


# --- Navigation ---


class LocationResponse(BaseModel):
    """Where a thread or post lives, with the page to open."""

    category_id: int
    forum_id: int
    thread_id: int
    slug: str
    page: int
    anchor: str | None = None


class LatestPostResponse(BaseModel):
    id: int
    title: str
    created: str
    author: str | None


class SearchHitResponse(BaseModel):
    post_id: int
    thread_id: int


# --- Subscriptions ---


class SubscriptionResponse(BaseModel):
    id: int
    thread_id: int
    thread_name: str
    category_id: int
    forum_id: int
    new_posts: bool


class SubscriptionRemoveRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1)


class CountResponse(BaseModel):
    count: int
