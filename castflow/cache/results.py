"""Generic result cache for expensive computations."""

import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel
from redis.asyncio import Redis

from castflow.core.errors import CacheCorruptedError
from castflow.core.logging import get_logger
from castflow.core.metrics import CACHE_REQUESTS_TOTAL

logger = get_logger().bind(module="result_cache")

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    if isinstance(value, list) and value and all(
        isinstance(item, BaseModel) for item in value
    ):
        return json.dumps([item.model_dump(mode="json", by_alias=True) for item in value])
    return json.dumps(value)


def _decode(key: str, raw: str | bytes) -> Any:
    text = raw.decode() if isinstance(raw, bytes) else raw
    if not text.startswith(("{", "[")):
        return text
    parsed = json.loads(text)
    if parsed == {} or parsed == []:
        raise CacheCorruptedError(key)
    return parsed


class ResultCache:
    """Read-through cache keyed by ``{prefix}{key}``.

    Strings are stored raw and everything else as JSON. ``None`` is never
    written, so a miss always means the computation has not produced a
    usable value yet.
    """

    def __init__(
        self, redis: Redis, enabled: bool = True, ttl_seconds: int | None = None
    ) -> None:
        """Initialize the cache.

        Args:
            redis: Async Redis client
            enabled: When False every lookup misses and nothing is written
            ttl_seconds: Optional expiry applied to written entries
        """
        self.redis = redis
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds

    async def get_cached_result(self, key: str, prefix: str) -> Any | None:
        """Return the cached value, or None on a miss.

        Raises:
            CacheCorruptedError: If the stored JSON is an empty object or list
        """
        if not self.enabled:
            return None
        full_key = f"{prefix}{key}"
        raw = await self.redis.get(full_key)
        if raw is None:
            CACHE_REQUESTS_TOTAL.labels(prefix=prefix, result="miss").inc()
            return None
        CACHE_REQUESTS_TOTAL.labels(prefix=prefix, result="hit").inc()
        return _decode(full_key, raw)

    async def get_cached_model(
        self, key: str, prefix: str, model: type[M]
    ) -> M | None:
        """Return the cached value validated into ``model``."""
        cached = await self.get_cached_result(key, prefix)
        if cached is None:
            return None
        return model.model_validate(cached)

    async def set_cached_result(self, key: str, prefix: str, value: Any) -> None:
        """Store a value unless caching is off or the value is empty."""
        if not self.enabled or value is None or value == "":
            return
        full_key = f"{prefix}{key}"
        if self.ttl_seconds:
            await self.redis.set(full_key, _encode(value), ex=self.ttl_seconds)
        else:
            await self.redis.set(full_key, _encode(value))

    async def cache_result(
        self, key: str, prefix: str, fetch_fn: Callable[[], Awaitable[T]]
    ) -> T:
        """Return the cached value or compute, store and return it.

        ``fetch_fn`` is not called when the cache already holds a value.

        Args:
            key: Entity key
            prefix: Namespace of the cached concern
            fetch_fn: Coroutine factory computing the value on a miss

        Returns:
            The cached or freshly computed value
        """
        cached = await self.get_cached_result(key, prefix)
        if cached is not None:
            logger.debug("Cache hit", prefix=prefix, key=key)
            return cached

        result = await fetch_fn()
        await self.set_cached_result(key, prefix, result)
        return result
