"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from agora.config import get_settings
from agora.config_store import installed_version
from agora.database import get_session
from agora.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: database, Redis and installation state."""
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "degraded",
        "installed": checks["database"] == "ok" and await installed_version(db) is not None,
        "checks": checks,
    }


@router.get("/version")
async def version(db: AsyncSession = Depends(get_session)) -> dict[str, str | None]:  # noqa: B008
    """Application version next to the schema version recorded at install/update."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "installed_version": await installed_version(db),
        "environment": settings.environment,
    }
