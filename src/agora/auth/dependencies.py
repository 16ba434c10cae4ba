"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.jwt import verify_token
from agora.auth.service import get_user_by_id
from agora.database import get_session
from agora.db.models import STATUS_BANNED, User
from agora.i18n import t

_bearer = HTTPBearer()
_optional_bearer = HTTPBearer(auto_error=False)


async def _resolve(token: str, db: AsyncSession) -> User:
    try:
        payload = verify_token(token, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, int(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status == STATUS_BANNED:
        raise HTTPException(status_code=403, detail=t("forum.banned"))
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Verify the bearer token and return the signed-in member (401/403 otherwise)."""
    return await _resolve(credentials.credentials, db)


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_optional_bearer),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Same as get_current_user, but guests (no header) get None."""
    if credentials is None:
        return None
    return await _resolve(credentials.credentials, db)
