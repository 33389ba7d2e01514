"""Retry policy tests.

Tests focus on:
- Backoff delays (exponential, capped)
- Retryable vs fatal classification
- with_retry never raising, except on cancellation
- synthesize_with_retry treating empty output as transient
"""

import asyncio

import httpx
import pytest

from brandforge.services.exceptions import (
    InsufficientEntitlementError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTransientError,
    ProviderValidationError,
    StorageNetworkError,
)
from brandforge.services.retry import (
    RetryDecision,
    RetryPolicy,
    classify_error,
    describe_error,
    with_retry,
)
from brandforge.services.synthesis.base import synthesize_with_retry


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://provider.test/predictions")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def test_delay_is_exponential_and_capped():
    """Delay doubles per attempt and never exceeds max_delay."""
    policy = RetryPolicy(max_retries=5, base_delay=1.0, max_delay=10.0, multiplier=2.0)

    assert [policy.delay_for(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


@pytest.mark.parametrize(
    "error,expected",
    [
        (ProviderTransientError("boom"), RetryDecision.RETRY),
        (ProviderRateLimitError("slow down", status_code=429), RetryDecision.RETRY),
        (StorageNetworkError("gateway down"), RetryDecision.RETRY),
        (ProviderAuthError("bad token", status_code=401), RetryDecision.FATAL),
        (ProviderValidationError("bad input", status_code=422), RetryDecision.FATAL),
        (httpx.ConnectTimeout("connect timeout"), RetryDecision.RETRY),
        (TimeoutError(), RetryDecision.RETRY),
        (ConnectionResetError(), RetryDecision.RETRY),
        (http_status_error(503), RetryDecision.RETRY),
        (http_status_error(429), RetryDecision.RETRY),
        (http_status_error(404), RetryDecision.FATAL),
        (RuntimeError("Network unreachable"), RetryDecision.RETRY),
        (RuntimeError("request timed out"), RetryDecision.RETRY),
        (ValueError("invalid prompt"), RetryDecision.FATAL),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) is expected


def test_describe_error_messages():
    """User-facing explanations never leak internal details."""
    assert "Rate limit" in describe_error(ProviderRateLimitError("429 from upstream"))
    assert "Authentication" in describe_error(ProviderAuthError("token abc123 invalid"))
    assert "temporarily unavailable" in describe_error(http_status_error(502))
    assert "Network" in describe_error(TimeoutError())
    assert "costs 50 credits" in describe_error(
        InsufficientEntitlementError(cost=50, balance=30, reason="insufficient_balance")
    )
    assert "unexpected" in describe_error(KeyError("internal detail"))


@pytest.mark.asyncio
async def test_with_retry_succeeds_after_transient_failures():
    """Transient failures are retried with backoff until an attempt succeeds."""
    sleep = SleepRecorder()
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise ProviderTransientError("temporary")
        return "ok"

    policy = RetryPolicy(max_retries=3, base_delay=1.0, max_delay=10.0, multiplier=2.0)
    result = await with_retry(operation, policy=policy, sleep=sleep)

    assert result.success is True
    assert result.data == "ok"
    assert result.attempts == 3
    assert result.error is None
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_with_retry_total_time_covers_backoff():
    """With real sleeps, elapsed time is at least the sum of the backoff delays."""
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise StorageNetworkError("connection reset")
        return "ok"

    policy = RetryPolicy(max_retries=3, base_delay=0.05, max_delay=1.0, multiplier=2.0)
    result = await with_retry(operation, policy=policy)

    assert result.success is True
    assert result.attempts == 3
    assert result.total_time >= policy.base_delay + policy.base_delay * policy.multiplier


@pytest.mark.asyncio
async def test_with_retry_stops_on_fatal_error():
    """A fatal error ends the sequence after one attempt, without sleeping."""
    sleep = SleepRecorder()
    calls = []

    async def operation():
        calls.append(1)
        raise ProviderAuthError("unauthorized", status_code=401)

    result = await with_retry(operation, sleep=sleep)

    assert result.success is False
    assert result.decision is RetryDecision.FATAL
    assert isinstance(result.error, ProviderAuthError)
    assert result.attempts == 1
    assert len(calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_with_retry_exhausts_attempts():
    """At most max_retries + 1 attempts are made; the last error is reported."""
    sleep = SleepRecorder()
    calls = []

    async def operation():
        calls.append(1)
        raise ProviderTransientError(f"failure {len(calls)}")

    policy = RetryPolicy(max_retries=2, base_delay=0.5, max_delay=10.0, multiplier=2.0)
    result = await with_retry(operation, policy=policy, sleep=sleep)

    assert result.success is False
    assert result.decision is RetryDecision.RETRY
    assert result.attempts == 3
    assert len(calls) == 3
    assert str(result.error) == "failure 3"
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_with_retry_reports_every_attempt():
    """on_attempt receives the attempt number and the error (None on success)."""
    seen = []
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) == 1:
            raise ProviderTransientError("first")
        return 42

    await with_retry(
        operation,
        sleep=SleepRecorder(),
        on_attempt=lambda number, error: seen.append((number, type(error).__name__)),
    )

    assert seen == [(1, "ProviderTransientError"), (2, "NoneType")]


@pytest.mark.asyncio
async def test_with_retry_propagates_cancellation():
    async def operation():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await with_retry(operation, sleep=SleepRecorder())


@pytest.mark.asyncio
async def test_synthesize_with_retry_treats_empty_output_as_transient():
    """A provider returning no images is retried like a transient failure."""

    class FlakySynthesizer:
        name = "flaky"

        def __init__(self):
            self.calls = 0

        async def synthesize(self, prompt, params=None):
            self.calls += 1
            return [] if self.calls == 1 else [b"image"]

    synthesizer = FlakySynthesizer()
    result, attempts = await synthesize_with_retry(
        synthesizer, "a fox", {"num_outputs": 1}, sleep=SleepRecorder()
    )

    assert result.success is True
    assert result.data == [b"image"]
    assert synthesizer.calls == 2
    assert [a.succeeded for a in attempts] == [False, True]
    assert attempts[0].error.startswith("ProviderTransientError")
    assert attempts[1].images == 1
