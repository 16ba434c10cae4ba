"""Tests for the mail queue, its delivery pass and the rate-limited service."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from agora.config import get_settings
from agora.db.models import EMAIL_GAVE_UP, EMAIL_PENDING, EMAIL_SENT, EmailQueue
from agora.email.queue import deliver_pending, queue_email
from agora.email.service import BaseEmailProvider, EmailService, ResendProvider, SMTPProvider, create_provider
from agora.workers.email_worker import EmailWorkerSettings, send_queued_emails


class RecordingProvider(BaseEmailProvider):
    def __init__(self, *, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = fail_for or set()

    async def send(self, to_email, subject, html_body, text_body):
        if to_email in self.fail_for:
            return False
        self.sent.append((to_email, subject, text_body))
        return True


class TestQueue:
    @pytest.mark.asyncio
    async def test_missing_address_is_not_queued(self, schema, db_session):
        assert await queue_email(db_session, None, "Subject", "Body", user_id=3) is False
        assert await queue_email(db_session, "", "Subject", "Body") is False

        rows = (await db_session.execute(select(EmailQueue))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_queued_as_pending(self, schema, db_session):
        assert await queue_email(db_session, "a@example.com", "Subject", "<p>Body</p>", user_id=3)
        await db_session.commit()

        row = (await db_session.execute(select(EmailQueue))).scalar_one()
        assert (row.email, row.status, row.attempt) == ("a@example.com", EMAIL_PENDING, 0)


class TestDelivery:
    @pytest.mark.asyncio
    async def test_sent_rows_leave_the_queue(self, schema, db_session):
        await queue_email(db_session, "a@example.com", "One", "<p>first</p>")
        await queue_email(db_session, "b@example.com", "Two", "<p>second</p>")
        await db_session.commit()
        provider = RecordingProvider()

        sent = await deliver_pending(db_session, EmailService(provider=provider))

        assert sent == 2
        assert [s[0] for s in provider.sent] == ["a@example.com", "b@example.com"]
        statuses = (await db_session.execute(select(EmailQueue.status))).scalars().all()
        assert statuses == [EMAIL_SENT, EMAIL_SENT]

    @pytest.mark.asyncio
    async def test_failures_counted_then_given_up(self, schema, db_session):
        await queue_email(db_session, "down@example.com", "Subject", "Body")
        await db_session.commit()
        service = EmailService(provider=RecordingProvider(fail_for={"down@example.com"}))

        assert await deliver_pending(db_session, service, max_attempts=2) == 0
        row = (await db_session.execute(select(EmailQueue))).scalar_one()
        assert (row.status, row.attempt) == (EMAIL_PENDING, 1)

        await deliver_pending(db_session, service, max_attempts=2)
        assert (row.status, row.attempt) == (EMAIL_GAVE_UP, 2)

        # given-up rows are not retried
        await deliver_pending(db_session, service, max_attempts=2)
        assert row.attempt == 2

    @pytest.mark.asyncio
    async def test_batch_size(self, schema, db_session):
        for n in range(3):
            await queue_email(db_session, f"u{n}@example.com", "Subject", "Body")
        await db_session.commit()

        assert await deliver_pending(db_session, EmailService(provider=RecordingProvider()), batch_size=2) == 2


class TestEmailService:
    @pytest.mark.asyncio
    async def test_text_body_derived_from_html(self):
        provider = RecordingProvider()

        assert await EmailService(provider=provider).send_email("a@example.com", "Hi", "<p>Hello <b>you</b></p>")

        assert provider.sent == [("a@example.com", "Hi", "Hello you")]

    @pytest.mark.asyncio
    async def test_rate_limit_per_recipient(self, fake_redis):
        provider = RecordingProvider()
        service = EmailService(provider=provider, redis=fake_redis)

        for _ in range(EmailService.RATE_LIMIT_MAX):
            assert await service.send_email("a@example.com", "Hi", "Body")
        assert await service.send_email("a@example.com", "Hi", "Body") is False
        assert await service.send_email("b@example.com", "Hi", "Body") is True
        assert EmailService.RATE_LIMIT_WINDOW in fake_redis.ttls.values()


class TestProviders:
    def _smtp(self) -> SMTPProvider:
        return SMTPProvider("smtp.example.com", 587, "user", "secret", "noreply@example.com", "Agora")

    @pytest.mark.asyncio
    async def test_smtp_builds_multipart_message(self):
        with patch("agora.email.service.aiosmtplib.send", new_callable=AsyncMock) as send:
            assert await self._smtp().send("a@example.com", "Hi", "<p>Hi</p>", "Hi")

        message = send.call_args.args[0]
        assert message["To"] == "a@example.com"
        assert message["From"] == "Agora <noreply@example.com>"
        assert send.call_args.kwargs["hostname"] == "smtp.example.com"

    @pytest.mark.asyncio
    async def test_smtp_failure_is_false(self):
        with patch("agora.email.service.aiosmtplib.send", new=AsyncMock(side_effect=OSError("refused"))):
            assert await self._smtp().send("a@example.com", "Hi", "<p>Hi</p>", "Hi") is False

    @pytest.mark.asyncio
    async def test_resend_failure_is_false(self):
        with patch("agora.email.service.httpx.AsyncClient.post", new=AsyncMock(side_effect=OSError("offline"))):
            assert await ResendProvider("key", "noreply@example.com", "Agora").send("a@example.com", "Hi", "x", "x") is False

    def test_unknown_provider(self, monkeypatch):
        monkeypatch.setenv("AGORA_EMAIL_PROVIDER", "pigeon")
        get_settings.cache_clear()
        try:
            with pytest.raises(ValueError, match="pigeon"):
                create_provider()
        finally:
            get_settings.cache_clear()


class TestWorker:
    @pytest.mark.asyncio
    async def test_cron_task_drains_queue(self, schema, db_session):
        await queue_email(db_session, "a@example.com", "Subject", "Body")
        await db_session.commit()
        provider = RecordingProvider()

        sent = await send_queued_emails({"email_service": EmailService(provider=provider)})

        assert sent == 1
        assert [s[0] for s in provider.sent] == ["a@example.com"]

    def test_worker_settings(self):
        assert send_queued_emails in EmailWorkerSettings.functions
        assert EmailWorkerSettings.max_jobs == 1
