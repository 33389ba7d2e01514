"""Image-synthesis seam and the retrying call wrapper used by every pipeline."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import structlog

from brandforge.services.exceptions import ProviderTransientError
from brandforge.services.retry import PROVIDER_POLICY, RetryPolicy, RetryResult, with_retry

logger = structlog.get_logger(__name__)


class Synthesizer(Protocol):
    """Image-synthesis provider.

    ``params`` may contain ``num_outputs``, ``aspect_ratio`` and ``image``
    (source image bytes for edits and icon extraction).
    """

    name: str

    async def synthesize(self, prompt: str, params: dict[str, Any] | None = None) -> list[bytes]:
        ...


@dataclass(frozen=True)
class SynthesisAttempt:
    """One provider call inside a retry sequence. Logged, never persisted."""

    prompt: str
    provider: str
    attempt: int
    images: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def synthesize_with_retry(
    synthesizer: Synthesizer,
    prompt: str,
    params: dict[str, Any] | None = None,
    policy: RetryPolicy = PROVIDER_POLICY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "synthesis",
) -> tuple[RetryResult[list[bytes]], list[SynthesisAttempt]]:
    """Call the provider through the retry policy.

    An empty output list counts as a transient failure.

    Args:
        synthesizer: Provider to call
        prompt: Synthesis prompt
        params: Provider parameters
        policy: Backoff parameters
        sleep: Awaitable sleep (injectable for tests)
        label: Name used in log events (e.g. "logo.concept.1")

    Returns:
        (retry result with the image bytes on success, attempts made)
    """
    attempts: list[SynthesisAttempt] = []
    last_images: list[int] = []

    async def call() -> list[bytes]:
        images = await synthesizer.synthesize(prompt, params)
        if not images:
            raise ProviderTransientError(f"{synthesizer.name} returned no images")
        last_images.append(len(images))
        return images

    def record(attempt_number: int, error: BaseException | None) -> None:
        attempt = SynthesisAttempt(
            prompt=prompt,
            provider=synthesizer.name,
            attempt=attempt_number,
            images=last_images[-1] if error is None and last_images else None,
            error=None if error is None else f"{type(error).__name__}: {error}",
        )
        attempts.append(attempt)
        logger.info(
            "synthesis.attempt",
            label=label,
            provider=attempt.provider,
            attempt_number=attempt.attempt,
            succeeded=attempt.succeeded,
            images=attempt.images,
            error=attempt.error,
        )

    result = await with_retry(
        call, policy=policy, sleep=sleep, operation_name=label, on_attempt=record
    )
    return result, attempts
