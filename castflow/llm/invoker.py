"""Retry and model-fallback strategy shared by every AI call."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx
from openai import APIConnectionError, APITimeoutError

from castflow.core.logging import get_logger
from castflow.core.metrics import AI_ATTEMPTS_TOTAL

logger = get_logger().bind(module="ai_invoker")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]
AttemptFactory = Callable[[str], Callable[[], Awaitable[T]]]

RATE_LIMIT_PHRASES = (
    "too_many_requests",
    "rate limit",
    "429",
    "resource_exhausted",
    "quota exceeded",
    "rate_limit_error",
)
TRANSIENT_CODES = ("ENOTFOUND", "ECONNRESET", "ETIMEDOUT", "EAI_AGAIN")
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    APITimeoutError,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def _status_of(error: BaseException) -> int | None:
    for attr in ("status", "status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(error: BaseException) -> bool:
    """Whether the provider rejected the call for quota or rate reasons."""
    if _status_of(error) == 429:
        return True
    message = str(error).lower()
    return any(phrase in message for phrase in RATE_LIMIT_PHRASES)


def is_transient_error(error: BaseException) -> bool:
    """Whether retrying the same call could succeed."""
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.upper() in TRANSIENT_CODES:
        return True
    status = _status_of(error)
    if status is not None and status >= 500:
        return True
    return is_rate_limit_error(error)


async def invoke(
    factory: AttemptFactory[T],
    models: Sequence[str],
    retries: int = 4,
    delay: float = 20.0,
    model_index: int = 0,
    context: str = "",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run an AI call with fallback across models and backoff on failures.

    A rate-limited call moves on to the next model with the same number of
    retries left. Other transient failures, and rate limits on the last model,
    wait and retry the same model; the wait is doubled (quadrupled for
    rate limits) and becomes the base for the following attempt.

    Args:
        factory: Returns the zero-argument coroutine function for a model id
        models: Model ids in preference order
        retries: Retry attempts left
        delay: Current base delay in seconds
        model_index: Index of the model to try
        context: Label used in logs
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The first successful result

    Raises:
        Exception: The last error once retries are exhausted or on a fatal error
    """
    if not models:
        raise ValueError("At least one model is required")

    model = models[model_index]
    try:
        result = await factory(model)()
        AI_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        return result
    except Exception as error:
        rate_limited = is_rate_limit_error(error)

        if rate_limited and model_index < len(models) - 1:
            AI_ATTEMPTS_TOTAL.labels(outcome="fallback").inc()
            logger.warning(
                "Rate limited, switching model",
                context=context,
                model=model,
                next_model=models[model_index + 1],
            )
            return await invoke(
                factory,
                models,
                retries=retries,
                delay=delay,
                model_index=model_index + 1,
                context=context,
                sleep=sleep,
            )

        if retries > 0 and is_transient_error(error):
            wait = delay * 4 if rate_limited else delay * 2
            AI_ATTEMPTS_TOTAL.labels(outcome="retry").inc()
            logger.warning(
                "Transient AI error, retrying",
                context=context,
                model=model,
                retries_left=retries,
                wait_seconds=wait,
                error=str(error),
            )
            await sleep(wait)
            return await invoke(
                factory,
                models,
                retries=retries - 1,
                delay=wait,
                model_index=model_index,
                context=context,
                sleep=sleep,
            )

        AI_ATTEMPTS_TOTAL.labels(outcome="failure").inc()
        logger.error("AI call failed", context=context, model=model, error=str(error))
        raise


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Retry a non-AI operation on transient failures, doubling the delay."""
    attempt_delay = delay
    while True:
        try:
            return await fn()
        except Exception as error:
            if retries <= 0 or not is_transient_error(error):
                raise
            logger.debug(
                "Retrying after transient error",
                retries_left=retries,
                wait_seconds=attempt_delay,
                error=str(error),
            )
            await sleep(attempt_delay)
            retries -= 1
            attempt_delay *= 2


class AIInvoker:
    """Binds retry defaults and a sleep function to :func:`invoke`."""

    def __init__(
        self, retries: int = 4, base_delay: float = 20.0, sleep: Sleep = asyncio.sleep
    ) -> None:
        self.retries = retries
        self.base_delay = base_delay
        self.sleep = sleep

    async def __call__(
        self, factory: AttemptFactory[T], models: Sequence[str], context: str = ""
    ) -> T:
        return await invoke(
            factory,
            models,
            retries=self.retries,
            delay=self.base_delay,
            context=context,
            sleep=self.sleep,
        )
