"""Pydantic schemas for private messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MessageSendRequest(BaseModel):
    receivers: list[int] = Field(..., min_length=1, max_length=10)
    topic: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    replyto: int | None = None


class MessageResponse(BaseModel):
    id: int
    sender_id: int
    topic: str
    content: str
    replyto: int | None = None
    created_at: datetime
    unread: bool = False

    model_config = {"from_attributes": True}


class MessageCountResponse(BaseModel):
    count: int
