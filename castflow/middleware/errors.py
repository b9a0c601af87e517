"""Error handling: consistent JSON error bodies."""

from typing import Any

import pydantic
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from castflow.core.errors import ValidationError
from castflow.core.logging import get_logger

logger = get_logger()

VALIDATION_ERRORS = (RequestValidationError, pydantic.ValidationError, ValidationError)


def _validation_details(exc: Exception) -> list[dict[str, Any]]:
    if isinstance(exc, (RequestValidationError, pydantic.ValidationError)):
        return [
            {
                "loc": [str(part) for part in error.get("loc", ())],
                "msg": error.get("msg", ""),
                "type": error.get("type", ""),
            }
            for error in exc.errors()
        ]
    return [{"loc": [], "msg": str(exc), "type": "value_error"}]


def error_response(request: Request, exc: Exception) -> JSONResponse:
    """Build the JSON error body for an exception and log it."""
    correlation_id = getattr(request.state, "correlation_id", None)
    content: dict[str, Any] = {"error": exc.__class__.__name__}

    if isinstance(exc, VALIDATION_ERRORS):
        status_code = HTTP_400_BAD_REQUEST
        content["message"] = "Invalid request body"
        content["details"] = _validation_details(exc)
    elif isinstance(exc, HTTPException):
        status_code = exc.status_code
        content["message"] = str(exc.detail)
    else:
        status_code = HTTP_500_INTERNAL_SERVER_ERROR
        content["message"] = str(exc.args[0] if exc.args else exc)

    content["status_code"] = status_code
    content["correlation_id"] = correlation_id or "unknown"

    logger.error(
        "request_error",
        error_type=exc.__class__.__name__,
        error_message=content["message"],
        status_code=status_code,
        path=request.url.path,
        method=request.method,
        correlation_id=correlation_id,
    )

    response = JSONResponse(status_code=status_code, content=content)
    if correlation_id:
        response.headers["X-Request-ID"] = correlation_id
    return response


async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
    return error_response(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    for exc_type in (*VALIDATION_ERRORS, HTTPException):
        app.add_exception_handler(exc_type, handle_exception)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns exceptions that escape the routes into JSON 500 responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return error_response(request, exc)
