"""RQ queue definitions and enqueueing."""

import asyncio
import logging
from typing import Any

import redis
from rq import Queue, Retry
from rq.job import Job

from castflow.core.metrics import JOBS_ENQUEUED_TOTAL
from castflow.queue.stages import STAGES, get_stage

logger = logging.getLogger(__name__)


def create_redis_pool(redis_url: str, max_connections: int = 50) -> redis.ConnectionPool:
    """Create the connection pool shared by queues and workers."""
    return redis.ConnectionPool.from_url(
        redis_url,
        max_connections=max_connections,
        socket_timeout=5,
        socket_connect_timeout=5,
        socket_keepalive=True,
    )


def create_redis_connection(redis_url: str, max_connections: int = 50) -> redis.Redis:
    """Create and verify a synchronous Redis connection for RQ.

    Raises:
        redis.ConnectionError: If Redis cannot be reached
    """
    connection = redis.Redis(
        connection_pool=create_redis_pool(redis_url, max_connections),
        decode_responses=False,
    )
    try:
        connection.ping()
        logger.debug("Connected to Redis at %s", redis_url)
    except redis.RedisError as e:
        logger.error("Failed to connect to Redis at %s: %s", redis_url, e)
        raise
    return connection


class PipelineQueues:
    """One RQ queue per stage, sharing a single connection.

    Jobs inherit their timeout from the stage's lock duration so a job that
    outlives it is treated as lost and retried.
    """

    def __init__(
        self,
        connection: redis.Redis,
        result_ttl: int = 2592000,
        max_retries: int = 2,
        retry_intervals: list[int] | None = None,
    ) -> None:
        self.connection = connection
        self.result_ttl = result_ttl
        self.max_retries = max_retries
        self.retry_intervals = retry_intervals or [60, 300]
        self._queues: dict[str, Queue] = {}

    def queue(self, name: str) -> Queue:
        get_stage(name)
        if name not in self._queues:
            self._queues[name] = Queue(name, connection=self.connection)
        return self._queues[name]

    def all_queues(self) -> list[Queue]:
        return [self.queue(name) for name in STAGES]

    def enqueue_sync(
        self, stage_name: str, payload: Any, job_name: str | None = None
    ) -> Job:
        """Enqueue a payload for a stage's job function."""
        stage = get_stage(stage_name)
        retry = (
            Retry(max=self.max_retries, interval=self.retry_intervals)
            if self.max_retries > 0
            else None
        )
        job = self.queue(stage_name).enqueue_call(
            func=stage.func,
            args=(payload,),
            timeout=stage.lock_duration,
            result_ttl=self.result_ttl,
            failure_ttl=self.result_ttl,
            description=job_name or stage.job_name,
            retry=retry,
        )
        JOBS_ENQUEUED_TOTAL.labels(stage=stage_name).inc()
        logger.debug("Enqueued job %s on %s", job.id, stage_name)
        return job

    async def enqueue(
        self, stage_name: str, payload: Any, job_name: str | None = None
    ) -> Job:
        """Enqueue without blocking the event loop."""
        return await asyncio.to_thread(self.enqueue_sync, stage_name, payload, job_name)
