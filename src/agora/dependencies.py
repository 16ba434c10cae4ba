"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.dependencies import get_optional_user
from agora.cache import Cache
from agora.config import get_settings
from agora.config_store import ConfigStore, installed_version
from agora.database import get_session
from agora.db.models import ROLE_ADMIN, User
from agora.i18n import t
from agora.redis_client import get_redis
from agora.session_store import SessionStore, new_session_id


def get_cache() -> Cache:
    return Cache(get_redis())


def get_config_store(
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
) -> ConfigStore:
    return ConfigStore(db, cache)


def get_session_store(request: Request, response: Response) -> SessionStore:
    """Client session addressed by cookie; a new id is issued when missing."""
    settings = get_settings()
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        session_id = new_session_id()
        response.set_cookie(
            settings.session_cookie_name,
            session_id,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
        )
    return SessionStore(get_redis(), session_id, ttl=settings.session_ttl_seconds)


async def require_installed(db: AsyncSession = Depends(get_session)) -> str:
    """Recorded version; 503 until the installation wizard has run."""
    version = await installed_version(db)
    if version is None:
        raise HTTPException(status_code=503, detail=t("install.not_installed"))
    return version


async def forum_gate(
    _version: str = Depends(require_installed),
    user: User | None = Depends(get_optional_user),
    config: ConfigStore = Depends(get_config_store),
) -> User | None:
    """Installed check plus maintenance mode (admins pass). Yields the viewer."""
    if await config.get_flag("maintenance_mode") and (user is None or user.role != ROLE_ADMIN):
        raise HTTPException(status_code=503, detail=t("forum.maintenance"))
    return user
