"""Correlation ID middleware for request tracking."""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from structlog.contextvars import bind_contextvars, clear_contextvars


def _is_valid_correlation_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and binds it to the logging context.

    A valid UUID in ``X-Request-ID`` is reused; anything else is replaced.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        clear_contextvars()

        header_value = request.headers.get("X-Request-ID", "")
        correlation_id = (
            header_value if _is_valid_correlation_id(header_value) else str(uuid.uuid4())
        )

        bind_contextvars(correlation_id=correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response
