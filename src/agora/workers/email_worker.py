"""Mail queue arq worker: drains agora_email every minute.

Import path for arq CLI: arq agora.workers.email_worker.EmailWorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from sqlalchemy.ext.asyncio import AsyncSession

from agora.config import get_settings
from agora.config_store import ConfigStore
from agora.database import close_db, get_session, init_db
from agora.email.queue import deliver_pending
from agora.email.service import EmailService
from agora.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def email_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    ctx["redis"] = get_redis()
    ctx["email_service"] = EmailService(redis=ctx["redis"])
    logger.info("Email worker started")


async def email_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Email worker shut down")


async def send_queued_emails(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: deliver one batch of pending e-mails."""
    settings = get_settings()
    db = await _get_db_session()
    try:
        max_attempts = await ConfigStore(db).get_int("max_attempts", 5)
        return await deliver_pending(
            db,
            ctx["email_service"],
            batch_size=settings.email_batch_size,
            max_attempts=max_attempts,
        )
    except Exception:
        logger.exception("Failed to deliver queued e-mails")
        return 0
    finally:
        await db.close()


class EmailWorkerSettings:
    """arq worker settings for the mail queue."""

    functions = [send_queued_emails]
    cron_jobs = [cron(send_queued_emails, second=0, run_at_startup=True)]
    on_startup = email_startup
    on_shutdown = email_shutdown
    max_jobs = 1
    job_timeout = 300
