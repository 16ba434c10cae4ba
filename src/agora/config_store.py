"""Runtime forum settings: the agora_config table with a cached read path."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.cache import Cache
from agora.db.models import Config

logger = logging.getLogger(__name__)

CACHE_KEY = "config"

DEFAULTS: dict[str, str] = {
    "name": "Agora",
    "version": "0.3.0",
    "hot_minimum": "20",
    "members_visible": "1",
    "from_email": "no-reply@change.me",
    "from_name": "Agora",
    "maintenance_mode": "0",
    "max_attempts": "5",
    "use_captcha": "1",
    "merge_posts": "1",
    "recaptcha_sitekey": "",
    "recaptcha_secretkey": "",
    "password_reset_token_expire": "86400",
    "email_token_expire": "86400",
    "activation_token_expire": "259200",
    "meta_keywords": "agora,forum",
    "meta_description": "Agora forum",
    "registration_off": "0",
}

_FALSE_STRINGS = {"", "0", "false", "no", "off"}


class ConfigStore:
    """Read/write accessor for forum settings.

    Values are strings. Rows override DEFAULTS; the merged map is cached as
    one entry and dropped on every write.
    """

    def __init__(self, db: AsyncSession, cache: Cache | None = None) -> None:
        self._db = db
        self._cache = cache

    async def all(self) -> dict[str, str]:
        if self._cache is not None:
            cached = await self._cache.get(CACHE_KEY)
            if cached is not None:
                return cached

        merged = dict(DEFAULTS)
        result = await self._db.execute(select(Config.name, Config.value))
        merged.update({name: value for name, value in result.all()})

        if self._cache is not None:
            await self._cache.set(CACHE_KEY, merged)
        return merged

    async def get(self, name: str, default: str | None = None) -> str | None:
        values = await self.all()
        if name in values:
            return values[name]
        return default

    async def get_flag(self, name: str) -> bool:
        value = await self.get(name)
        return (value or "").strip().lower() not in _FALSE_STRINGS

    async def get_int(self, name: str, default: int = 0) -> int:
        value = await self.get(name)
        try:
            return int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return default

    async def set(self, name: str, value: Any) -> None:  # noqa: ANN401
        """Insert or update a setting. The caller commits."""
        row = await self._db.get(Config, name)
        if row is None:
            self._db.add(Config(name=name, value=str(value)))
        else:
            row.value = str(value)
        await self._db.flush()
        if self._cache is not None:
            await self._cache.delete(CACHE_KEY)


async def installed_version(db: AsyncSession) -> str | None:
    """Return the recorded schema version, or None when not installed."""
    try:
        result = await db.execute(select(Config.value).where(Config.name == "version"))
        return result.scalar_one_or_none()
    except SQLAlchemyError:
        await db.rollback()
        logger.debug("Config table not readable, treating forum as not installed", exc_info=True)
        return None
