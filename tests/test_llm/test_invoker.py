"""Tests for retry and model fallback."""

import httpx
import pytest

from castflow.llm.invoker import (
    AIInvoker,
    invoke,
    is_rate_limit_error,
    is_transient_error,
    retry_with_backoff,
)


class StatusError(Exception):
    def __init__(self, status_code: int, message: str = "error") -> None:
        super().__init__(message)
        self.status_code = status_code


class Recorder:
    """Scripted attempt factory recording which model each attempt used."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.models: list[str] = []
        self.waits: list[float] = []

    def factory(self, model):
        async def attempt():
            self.models.append(model)
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        return attempt

    async def sleep(self, seconds):
        self.waits.append(seconds)


@pytest.mark.parametrize(
    "error",
    [
        StatusError(429),
        Exception("Rate limit reached for requests"),
        Exception("RESOURCE_EXHAUSTED: quota"),
        Exception("too_many_requests"),
    ],
)
def test_should_detect_rate_limits(error):
    assert is_rate_limit_error(error)
    assert is_transient_error(error)


@pytest.mark.parametrize(
    "error",
    [
        StatusError(503),
        httpx.ConnectError("refused"),
        ConnectionError("reset"),
        TimeoutError(),
    ],
)
def test_should_detect_transient_errors(error):
    assert is_transient_error(error)
    assert not is_rate_limit_error(error)


@pytest.mark.parametrize("error", [StatusError(400), ValueError("bad schema")])
def test_should_treat_client_errors_as_fatal(error):
    assert not is_transient_error(error)


@pytest.mark.asyncio
async def test_should_fall_back_to_next_model_on_rate_limit():
    recorder = Recorder(StatusError(429), "ok")

    result = await invoke(recorder.factory, ["a", "b", "c"], sleep=recorder.sleep)

    assert result == "ok"
    assert recorder.models == ["a", "b"]
    assert recorder.waits == []


@pytest.mark.asyncio
async def test_should_wait_and_retry_last_model_when_rate_limited():
    recorder = Recorder(StatusError(429), StatusError(429), "ok")

    result = await invoke(
        recorder.factory, ["a", "b"], retries=4, delay=20, sleep=recorder.sleep
    )

    assert result == "ok"
    assert recorder.models == ["a", "b", "b"]
    assert recorder.waits == [80]


@pytest.mark.asyncio
async def test_should_double_delay_for_transient_errors():
    recorder = Recorder(StatusError(500), StatusError(502), "ok")

    result = await invoke(recorder.factory, ["a"], retries=4, delay=20, sleep=recorder.sleep)

    assert result == "ok"
    assert recorder.models == ["a", "a", "a"]
    assert recorder.waits == [40, 80]


@pytest.mark.asyncio
async def test_should_raise_after_retries_exhausted():
    errors = [StatusError(500, f"fail {i}") for i in range(3)]
    recorder = Recorder(*errors)

    with pytest.raises(StatusError, match="fail 2"):
        await invoke(recorder.factory, ["a"], retries=2, delay=1, sleep=recorder.sleep)

    assert len(recorder.models) == 3
    assert recorder.waits == [2, 4]


@pytest.mark.asyncio
async def test_should_raise_fatal_errors_immediately():
    recorder = Recorder(ValueError("invalid"), "never")

    with pytest.raises(ValueError):
        await invoke(recorder.factory, ["a", "b"], sleep=recorder.sleep)

    assert recorder.models == ["a"]


@pytest.mark.asyncio
async def test_should_require_models():
    with pytest.raises(ValueError):
        await invoke(lambda model: None, [])


@pytest.mark.asyncio
async def test_should_bind_defaults_in_invoker():
    recorder = Recorder(StatusError(500), "ok")
    invoker = AIInvoker(retries=1, base_delay=5, sleep=recorder.sleep)

    assert await invoker(recorder.factory, ["a"]) == "ok"
    assert recorder.waits == [10]


@pytest.mark.asyncio
async def test_should_retry_transient_operation_with_backoff():
    recorder = Recorder(httpx.ReadTimeout("slow"), "data")

    result = await retry_with_backoff(
        recorder.factory("download"), retries=3, delay=1, sleep=recorder.sleep
    )

    assert result == "data"
    assert recorder.waits == [1]
