"""Bridge between synchronous RQ job functions and async stage handlers."""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from rq import get_current_job

from castflow.core.metrics import JOBS_TOTAL
from castflow.queue.context import JobContext
from castflow.services import Services, create_services

ServicesFactory = Callable[[], AbstractAsyncContextManager[Services]]
Handler = Callable[[Any, Services, JobContext], Awaitable[Any]]

_services_factory: ServicesFactory | None = None


def get_services_factory() -> ServicesFactory:
    """Get the factory used to open services for each job."""
    return _services_factory or create_services


def set_services_factory(factory: ServicesFactory) -> None:
    global _services_factory
    _services_factory = factory


def reset_services_factory() -> None:
    """Reset to the default factory. Used for testing."""
    global _services_factory
    _services_factory = None


async def run_handler(stage: str, handler: Handler, payload: Any, context: JobContext) -> Any:
    async with get_services_factory()() as services:
        return await handler(payload, services, context)


def run_job(stage: str, handler: Handler, payload: Any) -> Any:
    """Run an async stage handler for the current RQ job.

    Args:
        stage: Queue name of the stage
        handler: Coroutine function taking payload, services and job context
        payload: Job payload as enqueued

    Returns:
        The handler's result, stored by RQ as the job result

    Raises:
        Exception: Any handler error, so RQ can retry or fail the job
    """
    context = JobContext(get_current_job(), stage)
    try:
        result = asyncio.run(run_handler(stage, handler, payload, context))
    except Exception as e:
        JOBS_TOTAL.labels(stage=stage, status="failed").inc()
        context.logger.error("Job failed", error=str(e), exc_info=True)
        raise
    JOBS_TOTAL.labels(stage=stage, status="completed").inc()
    return result
