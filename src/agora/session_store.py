"""Per-client server-side session state kept in Redis.

A client is identified by an opaque id carried in a cookie. Each session is
one Redis hash; values are JSON encoded and the whole hash expires after
`session_ttl_seconds` of inactivity.
"""

from __future__ import annotations

import json
import secrets
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

_PREFIX = "agora:session:"
_LOCK_PREFIX = "agora:lock:"


class SessionBusyError(RuntimeError):
    """Another request of the same session holds the lock."""


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionStore:
    """Key/value accessor for one client session."""

    def __init__(self, redis: Any, session_id: str, ttl: int = 86_400) -> None:  # noqa: ANN401
        self._redis = redis
        self.session_id = session_id
        self._ttl = ttl

    @property
    def _key(self) -> str:
        return f"{_PREFIX}{self.session_id}"

    async def get(self, name: str, default: Any = None) -> Any:  # noqa: ANN401
        raw = await self._redis.hget(self._key, name)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, name: str, value: Any) -> None:  # noqa: ANN401
        await self._redis.hset(self._key, name, json.dumps(value, default=str))
        await self._redis.expire(self._key, self._ttl)

    async def has(self, name: str) -> bool:
        return bool(await self._redis.hexists(self._key, name))

    async def delete(self, name: str) -> None:
        await self._redis.hdel(self._key, name)

    @asynccontextmanager
    async def exclusive(self, name: str, timeout: int = 30) -> AsyncIterator[None]:
        """Serialize a critical section across requests of this session.

        Raises SessionBusyError immediately when the lock is already held.
        The lock auto-expires after `timeout` seconds so a crashed request
        can not wedge the session.
        """
        lock_key = f"{_LOCK_PREFIX}{self.session_id}:{name}"
        token = secrets.token_hex(8)
        acquired = await self._redis.set(lock_key, token, nx=True, ex=timeout)
        if not acquired:
            msg = f"Session {self.session_id} is busy with {name}"
            raise SessionBusyError(msg)
        try:
            yield
        finally:
            if await self._redis.get(lock_key) == token:
                await self._redis.delete(lock_key)
