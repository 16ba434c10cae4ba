"""Authentication router: /api/v1/auth/*."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.dependencies import get_current_user
from agora.auth.jwt import create_access_token
from agora.auth.rbac import user_items
from agora.auth.service import authenticate
from agora.config import get_settings
from agora.database import get_session
from agora.db.models import User

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    id: int
    username: str | None
    email: str | None
    role: int
    permissions: list[str]


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_session)) -> TokenResponse:
    """Exchange forum credentials for an access token."""
    user = await authenticate(db, body.username, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    logger.info("login_succeeded", user_id=user.id)
    return TokenResponse(
        access_token=create_access_token(user.id, user.username),
        expires_in=get_settings().jwt_access_token_expire_minutes * 60,
    )


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_session)) -> MeResponse:
    granted = await user_items(db, user.id)
    return MeResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        permissions=sorted(granted),
    )
