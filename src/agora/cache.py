"""Redis-backed cache with whole-key and per-element addressing.

A plain key holds one JSON value. An "element" key is a Redis hash whose
fields hold JSON values, so a single entry (one user's unread counter, the
guest variant of a listing) can be dropped without touching the others.

Every operation is best effort: a Redis failure is logged and reported as a
miss, never raised, so a broken cache can only serve stale data.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

logger = structlog.get_logger()

_PREFIX = "agora:cache:"

# Keys (or key/element pairs) to drop once a write operation commits.
CLEAR_AFTER: dict[str, list[str]] = {
    "newThread": ["forum.latestposts", "user.subscriptions"],
    "newPost": ["forum.latestposts"],
    "postDelete": ["forum.latestposts"],
    "threadDelete": ["forum.latestposts"],
}


def _dumps(value: Any) -> str:  # noqa: ANN401
    return json.dumps(value, default=str)


def _loads(raw: str | None) -> Any:  # noqa: ANN401
    if raw is None:
        return None
    return json.loads(raw)


class Cache:
    """Thin JSON layer over a redis.asyncio client."""

    def __init__(self, redis: Any) -> None:  # noqa: ANN401
        self._redis = redis

    @staticmethod
    def _key(key: str) -> str:
        return f"{_PREFIX}{key}"

    async def get(self, key: str) -> Any:  # noqa: ANN401
        try:
            return _loads(await self._redis.get(self._key(key)))
        except Exception:
            logger.warning("cache_get_failed", key=key, exc_info=True)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:  # noqa: ANN401
        try:
            await self._redis.set(self._key(key), _dumps(value), ex=ttl)
            return True
        except Exception:
            logger.warning("cache_set_failed", key=key, exc_info=True)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._redis.delete(self._key(key))
            return True
        except Exception:
            logger.warning("cache_delete_failed", key=key, exc_info=True)
            return False

    async def get_element(self, key: str, element: str | int) -> Any:  # noqa: ANN401
        try:
            return _loads(await self._redis.hget(self._key(key), str(element)))
        except Exception:
            logger.warning("cache_get_failed", key=key, element=element, exc_info=True)
            return None

    async def get_elements(self, key: str) -> dict[str, Any]:
        try:
            raw = await self._redis.hgetall(self._key(key))
        except Exception:
            logger.warning("cache_get_failed", key=key, exc_info=True)
            return {}
        return {field: _loads(value) for field, value in raw.items()}

    async def set_element(self, key: str, element: str | int, value: Any) -> bool:  # noqa: ANN401
        try:
            await self._redis.hset(self._key(key), str(element), _dumps(value))
            return True
        except Exception:
            logger.warning("cache_set_failed", key=key, element=element, exc_info=True)
            return False

    async def set_elements(self, key: str, values: dict[str, Any], ttl: int | None = None) -> bool:
        """Replace a whole element key at once, optionally expiring it."""
        full_key = self._key(key)
        try:
            await self._redis.delete(full_key)
            await self._redis.hset(full_key, mapping={k: _dumps(v) for k, v in values.items()})
            if ttl:
                await self._redis.expire(full_key, ttl)
            return True
        except Exception:
            logger.warning("cache_set_failed", key=key, exc_info=True)
            return False

    async def delete_element(self, key: str, element: str | int) -> bool:
        try:
            await self._redis.hdel(self._key(key), str(element))
            return True
        except Exception:
            logger.warning("cache_delete_failed", key=key, element=element, exc_info=True)
            return False

    async def clear_after(self, event: str) -> None:
        """Drop every key registered for a write event."""
        for key in CLEAR_AFTER.get(event, []):
            await self.delete(key)
