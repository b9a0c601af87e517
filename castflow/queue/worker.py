"""RQ worker for a single pipeline stage."""

import logging
import os
import signal
from typing import Any

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from rq import Worker
from rq.worker import WorkerStatus

from castflow.core.config import Settings, settings
from castflow.queue.stages import StageSpec, get_stage
from castflow.services import create_queues

logger = logging.getLogger(__name__)


class StageWorker:
    """Consumes one stage's queue.

    The worker heartbeat runs every ``lock_renew`` seconds while a job is
    executing, and jobs time out after the stage's ``lock_duration``.
    """

    def __init__(self, stage_name: str, config: Settings = settings) -> None:
        self.stage: StageSpec = get_stage(stage_name)
        self.config = config
        self.redis_conn: redis.Redis | None = None
        self.rq_worker: Worker | None = None
        self._shutdown_requested = False

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum: int, frame: Any) -> None:
            logger.info(
                "Received signal %s, stopping %s worker", signum, self.stage.name
            )
            self._shutdown_requested = True
            if self.rq_worker:
                self.rq_worker.request_stop(signum, frame)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def setup(self) -> None:
        """Connect to Redis and create the RQ worker.

        Raises:
            RuntimeError: If Redis cannot be reached
        """
        try:
            queues = create_queues(self.config)
            self.redis_conn = queues.connection
            self.rq_worker = Worker(
                queues=[queues.queue(self.stage.name)],
                connection=self.redis_conn,
                name=f"{self.stage.job_name}-{os.getpid()}",
                job_monitoring_interval=self.stage.lock_renew,
            )
        except RedisConnectionError as e:
            logger.error("Failed to connect to Redis: %s", e)
            raise RuntimeError(f"Redis connection failed: {e}") from e
        logger.info(
            "Stage worker ready: queue=%s, timeout=%ss, heartbeat=%ss",
            self.stage.name,
            self.stage.lock_duration,
            self.stage.lock_renew,
        )

    def work(self, burst: bool = False, max_jobs: int | None = None) -> None:
        """Process jobs until stopped, or until the queue is empty in burst mode."""
        if not self.rq_worker:
            self.setup()
        if not self.rq_worker:
            raise RuntimeError("Worker not properly initialized")

        self._setup_signal_handlers()
        try:
            self.rq_worker.work(burst=burst, max_jobs=max_jobs)
        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
        finally:
            self.teardown()

    def teardown(self) -> None:
        if self.rq_worker:
            try:
                if self.rq_worker.get_state() == WorkerStatus.BUSY:
                    logger.info("Waiting for current job to complete...")
                    self.rq_worker.request_stop(signal.SIGTERM, None)
            except redis.RedisError as e:
                logger.error("Error stopping worker: %s", e)

        if self.redis_conn:
            try:
                self.redis_conn.close()
            except redis.RedisError as e:
                logger.error("Error closing Redis connection: %s", e)

        logger.info("%s worker shutdown complete", self.stage.name)

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "stage": self.stage.name,
            "initialized": self.rq_worker is not None,
            "shutdown_requested": self._shutdown_requested,
        }
        if self.rq_worker:
            status.update(
                {
                    "state": str(self.rq_worker.get_state()),
                    "current_job": self.rq_worker.get_current_job_id(),
                    "successful_job_count": self.rq_worker.successful_job_count,
                    "failed_job_count": self.rq_worker.failed_job_count,
                }
            )
        return status


def run_stage_worker(
    stage_name: str, burst: bool = False, max_jobs: int | None = None
) -> None:
    """Process target that runs one stage worker to completion."""
    StageWorker(stage_name).work(burst=burst, max_jobs=max_jobs)
