"""Construction of the clients a job or request works with."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis as AsyncRedis

from castflow.cache.hashing import DedupCache
from castflow.cache.locks import LockManager
from castflow.cache.results import ResultCache
from castflow.core.config import Settings, settings
from castflow.database.repository import SqlDataStore
from castflow.database.session import create_engine, create_session_factory
from castflow.database.store import DataStore
from castflow.llm.client import LLMClient
from castflow.llm.invoker import AIInvoker
from castflow.llm.providers.embeddings import EmbeddingProvider
from castflow.llm.providers.gemini import GeminiMediaClient
from castflow.llm.providers.openrouter import OpenRouterProvider
from castflow.media.describer import MediaDescriber
from castflow.queue.queues import PipelineQueues, create_redis_connection


@dataclass
class Services:
    """Everything a stage handler depends on."""

    settings: Settings
    redis: AsyncRedis
    store: DataStore
    cache: ResultCache
    dedup: DedupCache
    locks: LockManager
    llm: LLMClient
    embeddings: EmbeddingProvider
    describer: MediaDescriber
    queues: PipelineQueues


def create_queues(config: Settings) -> PipelineQueues:
    return PipelineQueues(
        create_redis_connection(config.REDIS_URL, config.REDIS_POOL_SIZE),
        result_ttl=config.REDIS_TTL_SECONDS,
        max_retries=config.JOB_MAX_RETRIES,
        retry_intervals=config.JOB_RETRY_INTERVALS,
    )


@asynccontextmanager
async def create_services(config: Settings = settings) -> AsyncIterator[Services]:
    """Open every client for one unit of work and close them afterwards.

    Async clients are bound to the running event loop, so each job gets its
    own set.
    """
    redis = AsyncRedis.from_url(config.REDIS_URL, decode_responses=True)
    engine = create_engine(config.DATABASE_URL, config.MAX_CONNECTIONS)
    session_factory = create_session_factory(engine)
    http = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
    queues = create_queues(config)

    try:
        async with session_factory() as session:
            store = SqlDataStore(session)
            cache = ResultCache(redis, enabled=config.CACHE_ENABLED)
            invoker = AIInvoker(
                retries=config.AI_MAX_RETRIES, base_delay=config.AI_BASE_DELAY_SECONDS
            )
            describer = MediaDescriber(
                cache=cache,
                gemini=GeminiMediaClient(config.GOOGLE_AI_STUDIO_KEY, http),
                invoker=invoker,
                http=http,
                store=store,
                model_name=config.MEDIA_MODEL_NAME,
                allowed_domains=config.MEDIA_ALLOWED_IMAGE_DOMAINS,
                temp_dir=config.MEDIA_TEMP_DIR,
                poll_interval=config.MEDIA_POLL_INTERVAL_SECONDS,
                poll_max_attempts=config.MEDIA_POLL_MAX_ATTEMPTS,
                image_width=config.MEDIA_IMAGE_WIDTH,
                image_quality=config.MEDIA_IMAGE_QUALITY,
                max_image_bytes=config.MEDIA_MAX_IMAGE_BYTES,
            )
            yield Services(
                settings=config,
                redis=redis,
                store=store,
                cache=cache,
                dedup=DedupCache(redis, version=config.EMBEDDING_CACHE_VERSION),
                locks=LockManager(redis, ttl_ms=config.LOCK_TTL_MS),
                llm=LLMClient(
                    OpenRouterProvider(
                        config.OPENROUTER_API_KEY, base_url=config.OPENROUTER_BASE_URL
                    ),
                    invoker,
                ),
                embeddings=EmbeddingProvider(
                    config.OPENAI_API_KEY,
                    model=config.EMBEDDING_MODEL,
                    dimensions=config.EMBEDDING_DIMENSIONS,
                ),
                describer=describer,
                queues=queues,
            )
    finally:
        await http.aclose()
        await redis.aclose()
        await engine.dispose()
        queues.connection.close()
