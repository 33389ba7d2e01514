"""Retry-with-backoff policy for external provider and storage calls.

``with_retry`` never raises: callers branch on ``RetryResult.success``. The same
``classify_error`` decision is used by the dispatcher to pick the apology shown
to the user, so "retry me" and "stop everything" are decided in one place.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

import httpx
import structlog

from brandforge.services.exceptions import (
    InsufficientEntitlementError,
    PermanentError,
    ProviderAuthError,
    ProviderRateLimitError,
    ServiceError,
    StorageAuthError,
    StorageRateLimitError,
    TransientError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
FATAL_STATUS_CODES = frozenset({400, 401, 403, 404, 422})
RETRYABLE_MESSAGE_MARKERS = ("timeout", "timed out", "network", "connection error")


class RetryDecision(str, Enum):
    """Outcome of classifying a failed attempt."""

    RETRY = "retry"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff parameters (delays in seconds).

    ``max_retries`` counts retries, so an operation runs at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt_index: int) -> float:
        """Backoff before retry number ``attempt_index + 1``.

        delay = min(max_delay, base_delay * multiplier ** attempt_index)
        """
        return min(self.max_delay, self.base_delay * self.multiplier**attempt_index)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            multiplier=settings.retry_multiplier,
        )


DEFAULT_POLICY = RetryPolicy()
PROVIDER_POLICY = RetryPolicy(max_retries=3, base_delay=2.0, max_delay=15.0, multiplier=2.0)


@dataclass
class RetryResult(Generic[T]):
    """Structured outcome of ``with_retry``.

    Attributes:
        success: True if an attempt returned normally
        data: Value returned by the successful attempt
        error: Last exception raised when unsuccessful
        decision: Classification of the last error (None on success)
        attempts: Number of times the operation was actually invoked
        total_time: Wall-clock seconds spent, including backoff sleeps
    """

    success: bool
    data: T | None = None
    error: BaseException | None = None
    decision: RetryDecision | None = None
    attempts: int = 0
    total_time: float = 0.0


def _status_code_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    return status if isinstance(status, int) else None


def classify_error(error: BaseException) -> RetryDecision:
    """Classify a failed attempt as retryable or fatal.

    Classification rules (first match wins):
        - TransientError subclasses → RETRY
        - PermanentError subclasses → FATAL
        - httpx timeouts / transport errors, TimeoutError, ConnectionError → RETRY
        - HTTP 429/500/502/503/504 → RETRY
        - Other HTTP 4xx → FATAL
        - Message mentions timeout / network / connection error → RETRY
        - Anything else → FATAL

    Args:
        error: Exception raised by the operation

    Returns:
        RetryDecision.RETRY or RetryDecision.FATAL
    """
    if isinstance(error, TransientError):
        return RetryDecision.RETRY
    if isinstance(error, PermanentError):
        return RetryDecision.FATAL

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return RetryDecision.RETRY
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return RetryDecision.RETRY

    status = _status_code_of(error)
    if status is not None:
        if status in RETRYABLE_STATUS_CODES:
            return RetryDecision.RETRY
        if 400 <= status < 500:
            return RetryDecision.FATAL

    message = str(error).lower()
    if any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS):
        return RetryDecision.RETRY

    return RetryDecision.FATAL


def describe_error(error: BaseException) -> str:
    """Map an error to the user-facing explanation shown next to the apology.

    Args:
        error: Exception that ended the job or sub-generation

    Returns:
        Short human-readable explanation (no internal details)
    """
    if isinstance(error, InsufficientEntitlementError):
        return (
            f"This generation costs {error.cost} credits but your balance is "
            f"{error.balance}. Please top up and try again."
        )
    if isinstance(error, (ProviderRateLimitError, StorageRateLimitError)):
        return "Rate limit exceeded. Please wait a moment and try again."
    if isinstance(error, (ProviderAuthError, StorageAuthError)):
        return "Authentication error. Please contact support."

    status = _status_code_of(error)
    if status == 429:
        return "Rate limit exceeded. Please wait a moment and try again."
    if status in (401, 403):
        return "Authentication error. Please contact support."
    if status is not None and status >= 500:
        return "Service temporarily unavailable. Please try again in a few minutes."

    if classify_error(error) is RetryDecision.RETRY:
        return "Network connection issue. Please try again in a few minutes."
    if isinstance(error, ServiceError) and isinstance(error, PermanentError):
        return "The request could not be processed. Please adjust it and try again."
    return "An unexpected error occurred. Please try again later."


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    classify: Callable[[BaseException], RetryDecision] = classify_error,
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation_name: str = "operation",
    on_attempt: Callable[[int, BaseException | None], None] | None = None,
) -> RetryResult[T]:
    """Run ``operation`` with bounded exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt
        classify: Decides whether a raised error is worth retrying
        policy: Backoff parameters
        sleep: Awaitable sleep function (injectable for tests)
        operation_name: Label for log events
        on_attempt: Callback receiving (attempt_number, error_or_None) after each attempt

    Returns:
        RetryResult describing the outcome. Never raises, except for task
        cancellation which is propagated.
    """
    start_time = time.monotonic()
    last_error: BaseException | None = None
    decision: RetryDecision | None = None
    attempts = 0

    for attempt_index in range(policy.max_retries + 1):
        attempts = attempt_index + 1
        try:
            data = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            decision = classify(e)
            if on_attempt is not None:
                on_attempt(attempts, e)

            logger.warning(
                "retry.attempt.failed",
                operation=operation_name,
                attempt_number=attempts,
                max_attempts=policy.max_retries + 1,
                decision=decision.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )

            if decision is RetryDecision.FATAL or attempt_index >= policy.max_retries:
                break

            await sleep(policy.delay_for(attempt_index))
            continue

        if on_attempt is not None:
            on_attempt(attempts, None)
        total_time = time.monotonic() - start_time
        if attempts > 1:
            logger.info(
                "retry.succeeded",
                operation=operation_name,
                attempt_number=attempts,
                duration_seconds=total_time,
            )
        return RetryResult(success=True, data=data, attempts=attempts, total_time=total_time)

    total_time = time.monotonic() - start_time
    logger.error(
        "retry.exhausted",
        operation=operation_name,
        attempts=attempts,
        decision=decision.value if decision else None,
        duration_seconds=total_time,
    )
    return RetryResult(
        success=False,
        error=last_error,
        decision=decision,
        attempts=attempts,
        total_time=total_time,
    )
