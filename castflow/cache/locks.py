"""Short-lived per-entity locks."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis

from castflow.core.logging import get_logger

logger = get_logger().bind(module="locks")

LOCK_VALUE = "locked"
DEFAULT_LOCK_TTL_MS = 4 * 60 * 60 * 1000


class LockManager:
    """Set-if-absent locks keyed by ``{prefix}{entity_id}``.

    Locks expire on their own so a crashed worker cannot hold an entity
    forever.
    """

    def __init__(self, redis: Redis, ttl_ms: int = DEFAULT_LOCK_TTL_MS) -> None:
        self.redis = redis
        self.ttl_ms = ttl_ms

    async def acquire(
        self, prefix: str, entity_id: str | int, ttl_ms: int | None = None
    ) -> bool:
        """Try to take the lock.

        Returns:
            True if this caller now holds the lock
        """
        acquired = await self.redis.set(
            f"{prefix}{entity_id}", LOCK_VALUE, nx=True, px=ttl_ms or self.ttl_ms
        )
        return bool(acquired)

    async def release(self, prefix: str, entity_id: str | int) -> None:
        await self.redis.delete(f"{prefix}{entity_id}")

    @asynccontextmanager
    async def hold(
        self, prefix: str, entity_id: str | int, ttl_ms: int | None = None
    ) -> AsyncIterator[bool]:
        """Hold the lock for the duration of the block.

        Yields whether the lock was acquired. A held lock is released on
        every exit path, including errors.
        """
        acquired = await self.acquire(prefix, entity_id, ttl_ms)
        if not acquired:
            logger.info("Entity is locked, skipping", lock_key=f"{prefix}{entity_id}")
            yield False
            return
        try:
            yield True
        finally:
            await self.release(prefix, entity_id)
