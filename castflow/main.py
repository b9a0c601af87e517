"""FastAPI application accepting pipeline jobs."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.asyncio import Redis

from castflow.api.routes import router
from castflow.cache.hashing import DedupCache
from castflow.core.config import settings
from castflow.core.logging import configure_logging, get_logger
from castflow.middleware.correlation import CorrelationMiddleware
from castflow.middleware.errors import ErrorHandlingMiddleware, register_exception_handlers
from castflow.middleware.metrics import MetricsMiddleware
from castflow.services import create_queues

logger = get_logger().bind(module="api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    queues = await asyncio.to_thread(create_queues, settings)
    app.state.dedup = DedupCache(redis, settings.EMBEDDING_CACHE_VERSION)
    app.state.queues = queues
    logger.info("API started", redis_url=settings.REDIS_URL)
    try:
        yield
    finally:
        await redis.aclose()
        queues.connection.close()
        logger.info("API stopped")


app = FastAPI(
    title="castflow",
    description="Enrichment pipeline for casts, grants and stories",
    default_response_class=JSONResponse,
    lifespan=lifespan,
)

# Added inside -> out: errors innermost, correlation outermost
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(CorrelationMiddleware)
register_exception_handlers(app)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)
