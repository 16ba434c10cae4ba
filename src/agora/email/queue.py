"""Outgoing mail queue (agora_email) and its delivery pass."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from agora.db.models import EMAIL_GAVE_UP, EMAIL_PENDING, EMAIL_SENT, EmailQueue

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agora.email.service import EmailService

logger = structlog.get_logger()


async def queue_email(
    db: AsyncSession,
    email: str | None,
    subject: str,
    content: str,
    user_id: int | None = None,
) -> bool:
    """Add a message to the queue inside the caller's transaction.

    Returns False (and logs) when the recipient has no address.
    """
    if not email:
        logger.warning("email_queue_no_address", user_id=user_id, subject=subject)
        return False
    db.add(EmailQueue(user_id=user_id, email=email, subject=subject, content=content, status=EMAIL_PENDING))
    await db.flush()
    return True


async def deliver_pending(
    db: AsyncSession,
    service: EmailService,
    *,
    batch_size: int = 50,
    max_attempts: int = 5,
) -> int:
    """Try to send up to `batch_size` pending e-mails; returns how many went out.

    A failed send bumps `attempt`; after `max_attempts` the row is given up.
    """
    result = await db.execute(
        select(EmailQueue).where(EmailQueue.status == EMAIL_PENDING).order_by(EmailQueue.id).limit(batch_size)
    )
    sent = 0
    for row in result.scalars().all():
        if await service.send_email(row.email, row.subject, row.content):
            row.status = EMAIL_SENT
            sent += 1
            continue
        row.attempt += 1
        if row.attempt >= max_attempts:
            row.status = EMAIL_GAVE_UP
            logger.warning("email_gave_up", email_id=row.id, attempts=row.attempt)
    await db.commit()
    logger.info("email_queue_delivered", sent=sent)
    return sent
