"""Content fingerprints and the dedup index built on them."""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from castflow.cache.keys import content_prefix
from castflow.core.logging import get_logger

logger = get_logger().bind(module="dedup_cache")


def compute_hash(
    content: str,
    type: str | Enum,
    hash_suffix: str | None = None,
    urls: list[str] | None = None,
) -> str:
    """Compute the fingerprint of a submission.

    The digest covers the content type, the text, an optional suffix and the
    attachment urls in the order given.

    Args:
        content: Text content of the submission
        type: Content type
        hash_suffix: Extra discriminator supplied by the caller
        urls: Attachment urls

    Returns:
        Lowercase SHA-256 hex digest
    """
    type_value = type.value if isinstance(type, Enum) else type
    url_part = ",".join(urls) if urls else ""
    material = f"{type_value}-{content}-{hash_suffix or ''}-{url_part}"
    return hashlib.sha256(material.encode()).hexdigest()


@dataclass(frozen=True)
class DedupResult:
    """Outcome of a dedup lookup."""

    exists: bool
    content_hash: str
    existing_job_id: str | None = None


class DedupCache:
    """Maps content hashes to the job that processed them.

    Keys are versioned so a change to how embeddings are produced can
    invalidate the whole index by bumping the version.
    """

    def __init__(self, redis: Redis, version: int = 21) -> None:
        self.redis = redis
        self.prefix = content_prefix(version)

    def key(self, content_hash: str) -> str:
        return f"{self.prefix}{content_hash}"

    async def check_exists(self, content_hash: str) -> DedupResult:
        """Look up a content hash.

        Args:
            content_hash: Fingerprint from :func:`compute_hash`

        Returns:
            DedupResult carrying the recorded job id when present
        """
        existing: Any = await self.redis.get(self.key(content_hash))
        if existing is None:
            return DedupResult(exists=False, content_hash=content_hash)
        if isinstance(existing, bytes):
            existing = existing.decode()
        return DedupResult(
            exists=True, content_hash=content_hash, existing_job_id=str(existing)
        )

    async def record(self, content_hash: str, job_id: str) -> None:
        """Mark a content hash as processed by a job."""
        await self.redis.set(self.key(content_hash), job_id)
        logger.debug("Recorded content hash", content_hash=content_hash, job_id=job_id)

    async def delete(self, content_hash: str) -> None:
        """Forget a content hash so the same content may be submitted again."""
        await self.redis.delete(self.key(content_hash))
        logger.debug("Deleted content hash", content_hash=content_hash)
