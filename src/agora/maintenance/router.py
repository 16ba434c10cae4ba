"""Wizard routers: /api/v1/install/* and /api/v1/update/*.

Each POST advances exactly one step (drop requests run a whole batch). The
progress lives in the client session and is read and written under a
per-session lock, so a second tab gets HTTP 409 instead of a skipped step.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.dependencies import get_optional_user
from agora.cache import Cache
from agora.config import get_settings
from agora.config_store import installed_version
from agora.database import get_session
from agora.db.models import ROLE_ADMIN, User
from agora.dependencies import get_cache, get_session_store
from agora.maintenance.installation import Installation
from agora.maintenance.schemas import ProgressResponse, StepResponse
from agora.maintenance.steps import ProgressState, StepResult
from agora.maintenance.update import Update
from agora.session_store import SessionStore

install_router = APIRouter(prefix="/api/v1/install", tags=["Installation"])
update_router = APIRouter(prefix="/api/v1/update", tags=["Update"])

INSTALL_SESSION_KEY = "agora-installation"
# Set only for the session whose step recorded the version; cleared on completion.
INSTALL_OWNER_KEY = "agora-installation-owner"
UPDATE_SESSION_KEY = "agora-update"


async def _run_locked(
    session: SessionStore,
    key: str,
    action: Callable[[ProgressState], Awaitable[StepResult]],
) -> StepResponse:
    async with session.exclusive("wizard", get_settings().wizard_lock_seconds):
        progress = ProgressState.from_dict(await session.get(key))
        result = await action(progress)
        await session.set(key, progress.to_dict())
    return StepResponse(**result.as_dict())


async def _installer_allowed(
    db: AsyncSession = Depends(get_session),
    session: SessionStore = Depends(get_session_store),
    user: User | None = Depends(get_optional_user),
) -> None:
    """Open while not installed, to the client finishing its own run, and to admins."""
    if await installed_version(db) is None:
        return
    if await session.get(INSTALL_OWNER_KEY):
        progress = ProgressState.from_dict(await session.get(INSTALL_SESSION_KEY))
        if progress.mode == "forward" and not progress.complete:
            return
    if user is not None and user.role == ROLE_ADMIN:
        return
    raise HTTPException(status_code=403, detail="Forum is already installed")


async def _updater_allowed(
    db: AsyncSession = Depends(get_session),
    user: User | None = Depends(get_optional_user),
) -> None:
    if await installed_version(db) is None:
        raise HTTPException(status_code=409, detail="Forum is not installed")
    if user is None or user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Administrator access required")


async def _progress(session: SessionStore, key: str, db: AsyncSession) -> ProgressResponse:
    progress = ProgressState.from_dict(await session.get(key))
    return ProgressResponse(
        **progress.to_dict(),
        installed_version=await installed_version(db),
        app_version=get_settings().app_version,
    )


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------


@install_router.get("/progress", response_model=ProgressResponse, dependencies=[Depends(_installer_allowed)])
async def install_progress(
    db: AsyncSession = Depends(get_session),
    session: SessionStore = Depends(get_session_store),
) -> ProgressResponse:
    return await _progress(session, INSTALL_SESSION_KEY, db)


@install_router.post("/next", response_model=StepResponse, dependencies=[Depends(_installer_allowed)])
async def install_next(
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    session: SessionStore = Depends(get_session_store),
) -> StepResponse:
    """Run the next installation step; a finished run clears the session progress."""
    installation = Installation(db, cache=cache)
    async with session.exclusive("wizard", get_settings().wizard_lock_seconds):
        progress = ProgressState.from_dict(await session.get(INSTALL_SESSION_KEY))
        fresh = await installed_version(db) is None
        result = await installation.next_step(progress)
        if progress.complete:
            await session.delete(INSTALL_SESSION_KEY)
            await session.delete(INSTALL_OWNER_KEY)
        else:
            await session.set(INSTALL_SESSION_KEY, progress.to_dict())
            if fresh and await installed_version(db) is not None:
                await session.set(INSTALL_OWNER_KEY, True)
    return StepResponse(**result.as_dict())


@install_router.post("/drop", response_model=StepResponse, dependencies=[Depends(_installer_allowed)])
async def install_drop(
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    session: SessionStore = Depends(get_session_store),
) -> StepResponse:
    """Drop every created table, then start the installation over."""
    installation = Installation(db, cache=cache)
    response = await _run_locked(session, INSTALL_SESSION_KEY, installation.next_drop)
    await cache.delete("config")
    return response


@install_router.post("/restart", status_code=204, dependencies=[Depends(_installer_allowed)])
async def install_restart(session: SessionStore = Depends(get_session_store)) -> None:
    async with session.exclusive("wizard", get_settings().wizard_lock_seconds):
        await session.set(INSTALL_SESSION_KEY, ProgressState().to_dict())


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


@update_router.get("/progress", response_model=ProgressResponse, dependencies=[Depends(_updater_allowed)])
async def update_progress(
    db: AsyncSession = Depends(get_session),
    session: SessionStore = Depends(get_session_store),
) -> ProgressResponse:
    return await _progress(session, UPDATE_SESSION_KEY, db)


@update_router.post("/next", response_model=StepResponse, dependencies=[Depends(_updater_allowed)])
async def update_next(
    db: AsyncSession = Depends(get_session),
    cache: Cache = Depends(get_cache),
    session: SessionStore = Depends(get_session_store),
) -> StepResponse:
    """Run the next pending update step."""
    update = Update(db, cache=cache)
    return await _run_locked(session, UPDATE_SESSION_KEY, update.next_step)


@update_router.post("/restart", status_code=204, dependencies=[Depends(_updater_allowed)])
async def update_restart(session: SessionStore = Depends(get_session_store)) -> None:
    async with session.exclusive("wizard", get_settings().wizard_lock_seconds):
        await session.delete(UPDATE_SESSION_KEY)
