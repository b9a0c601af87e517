"""API key check for the job submission routes."""

import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from starlette.status import HTTP_401_UNAUTHORIZED

from castflow.core.config import settings

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


async def require_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """Reject requests without the configured ``x-api-key``.

    Raises:
        HTTPException: 401 when the key is missing, wrong, or not configured
    """
    expected = settings.API_KEY
    if not expected or not api_key or not secrets.compare_digest(api_key, expected):
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return api_key
