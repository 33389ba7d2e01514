"""Replicate API client for image synthesis with error classification."""

import asyncio
import io
from typing import Any

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from brandforge.services.exceptions import (
    ContentPolicyError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
    ProviderValidationError,
)

logger = structlog.get_logger(__name__)


def classify_replicate_error(exception: Exception) -> ProviderError:
    """Classify a Replicate SDK error into the provider error hierarchy.

    Classification rules:
        - 429 / "rate limit" → ProviderRateLimitError
        - 5xx / "service unavailable" / timeout → ProviderTransientError
        - 401/403 / authentication wording → ProviderAuthError
        - Safety filter wording (nsfw, content policy) → ContentPolicyError
        - Anything else → ProviderValidationError

    Args:
        exception: Original exception from the Replicate SDK

    Returns:
        Classified ProviderError instance (caller raises it)
    """
    status = getattr(exception, "status", None)
    status = status if isinstance(status, int) else None
    message = str(exception)
    lowered = message.lower()

    if status == 429 or "rate limit" in lowered:
        return ProviderRateLimitError(f"Rate limit exceeded: {message}", status_code=429)
    if (status is not None and status >= 500) or "service unavailable" in lowered:
        return ProviderTransientError(f"Service unavailable: {message}", status_code=status)
    if "timeout" in lowered or "timed out" in lowered:
        return ProviderTransientError(f"Network timeout: {message}", status_code=status)
    if (
        status in (401, 403)
        or "unauthorized" in lowered
        or "forbidden" in lowered
        or "invalid api token" in lowered
    ):
        return ProviderAuthError(f"Authentication failed: {message}", status_code=status)
    if "nsfw" in lowered or "content policy" in lowered or "safety" in lowered:
        return ContentPolicyError(f"Content policy violation: {message}", status_code=status)
    return ProviderValidationError(f"Request rejected: {message}", status_code=status)


class ReplicateSynthesizer:
    """Synthesizer backed by Replicate models.

    Text-to-image requests go to ``model`` (flux-schnell by default); requests
    carrying a source ``image`` go to ``edit_model``.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        model: str = "black-forest-labs/flux-schnell",
        edit_model: str = "black-forest-labs/flux-kontext-pro",
        timeout_seconds: float = 120.0,
        client: Any = None,
    ):
        """Initialize the synthesizer.

        Args:
            api_token: Replicate API token
            model: Text-to-image model identifier
            edit_model: Image-conditioned model identifier
            timeout_seconds: How long to wait for one prediction
            client: Pre-built replicate.Client (tests pass a stub)
        """
        self.model = model
        self.edit_model = edit_model
        self.timeout_seconds = timeout_seconds
        # Without a token the service still starts (development); calls fail as auth errors
        self._client = client or (replicate.Client(api_token=api_token) if api_token else None)

    def _build_input(self, prompt: str, params: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        params = dict(params)
        image = params.pop("image", None)
        model_input: dict[str, Any] = {"prompt": prompt, "output_format": "png"}

        if image is not None:
            model_input["input_image"] = io.BytesIO(image)
            model_input["aspect_ratio"] = params.get("aspect_ratio", "match_input_image")
            return self.edit_model, model_input

        model_input["aspect_ratio"] = params.get("aspect_ratio", "1:1")
        model_input["num_outputs"] = max(1, min(int(params.get("num_outputs", 1)), 4))
        return self.model, model_input

    async def synthesize(self, prompt: str, params: dict[str, Any] | None = None) -> list[bytes]:
        """Run one prediction and return the produced images.

        The SDK is synchronous, so the call runs in a worker thread. On timeout
        we stop waiting; the thread finishes in the background and its result
        is discarded.

        Raises:
            ProviderTransientError: Timeout, network failure or 5xx
            ProviderRateLimitError: 429
            ProviderAuthError: Invalid token
            ContentPolicyError: Safety filter rejection
            ProviderValidationError: Other rejections or unexpected output
        """
        if self._client is None:
            raise ProviderAuthError("REPLICATE_API_TOKEN not configured")
        model, model_input = self._build_input(prompt, params or {})

        try:
            output = await asyncio.wait_for(
                asyncio.to_thread(self._client.run, model, input=model_input),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("replicate.timeout", model=model, timeout_seconds=self.timeout_seconds)
            raise ProviderTransientError(
                f"Prediction timed out after {self.timeout_seconds}s"
            ) from e
        except ReplicateAPIError as e:
            raise classify_replicate_error(e) from e
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"Connection error: {e}") from e
        except (ConnectionError, OSError) as e:
            raise ProviderTransientError(f"Connection error: {e}") from e

        items = output if isinstance(output, list) else [output]
        return [await self._read_output(item) for item in items if item is not None]

    async def _read_output(self, item: Any) -> bytes:
        """Turn a FileOutput, URL string or raw bytes into image bytes."""
        if isinstance(item, bytes):
            return item
        if hasattr(item, "read"):
            return await asyncio.to_thread(item.read)
        if isinstance(item, str):
            try:
                async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                    response = await client.get(item)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPStatusError as e:
                raise ProviderTransientError(
                    f"Output download failed ({e.response.status_code})",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise ProviderTransientError(f"Output download failed: {e}") from e
        raise ProviderValidationError(f"Unexpected output format from Replicate: {type(item)}")
