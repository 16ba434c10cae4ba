"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agora.auth.router import router as auth_router
from agora.config import get_settings
from agora.database import close_db, init_db
from agora.forum.router import router as forum_router
from agora.forum.subscription_router import router as subscriptions_router
from agora.health.router import router as health_router
from agora.maintenance.router import install_router, update_router
from agora.messages.router import router as messages_router
from agora.middleware import setup_middleware
from agora.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Agora Forum API",
        description="Forum backend with step-wise installation and update wizards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(install_router)
    app.include_router(update_router)
    app.include_router(forum_router)
    app.include_router(subscriptions_router)
    app.include_router(messages_router)

    return app


app = create_app()
