"""Object storage for generated media (Pinata IPFS pinning + gateway URLs)."""

import base64
import binascii
import json
from typing import Protocol
from urllib.parse import unquote_to_bytes

import httpx

from brandforge.services.exceptions import (
    StorageAuthError,
    StorageNetworkError,
    StorageRateLimitError,
    StorageValidationError,
)


class ObjectStorage(Protocol):
    """Storage seam used by the pipelines."""

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        """Store bytes under ``key`` and return a public URL."""
        ...

    async def download(self, url: str) -> bytes:
        """Fetch bytes from a URL previously returned by ``upload`` (or any http URL)."""
        ...


def decode_data_url(url: str) -> bytes:
    """Decode a ``data:`` URL into bytes.

    Raises:
        StorageValidationError: If the URL is malformed
    """
    try:
        header, payload = url.split(",", 1)
    except ValueError as e:
        raise StorageValidationError("Malformed data URL") from e
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise StorageValidationError(f"Malformed base64 data URL: {e}") from e
    return unquote_to_bytes(payload)


def raise_for_storage_status(response: httpx.Response, operation: str) -> None:
    """Translate an HTTP status into the storage error hierarchy.

    Raises:
        StorageRateLimitError: 429
        StorageNetworkError: 5xx
        StorageAuthError: 401, 403
        StorageValidationError: Other 4xx
    """
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise StorageRateLimitError(f"{operation}: rate limit exceeded: {response.text}")
    if status >= 500:
        raise StorageNetworkError(f"{operation}: service unavailable ({status}): {response.text}")
    if status == 401:
        raise StorageAuthError(
            f"{operation}: unauthorized. Check PINATA_JWT configuration and verify the JWT "
            "is active at https://app.pinata.cloud/developers/api-keys"
        )
    if status == 403:
        raise StorageAuthError(
            f"{operation}: forbidden. Check PINATA_JWT permissions (requires pinFileToIPFS) "
            "and account quota at https://app.pinata.cloud/billing"
        )
    raise StorageValidationError(f"{operation}: bad request ({status}): {response.text}")


class PinataStorage:
    """ObjectStorage backed by the Pinata pinning service."""

    def __init__(
        self,
        jwt_token: str,
        gateway_domain: str = "gateway.pinata.cloud",
        timeout_seconds: float = 30.0,
        base_url: str = "https://api.pinata.cloud",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Pinata storage.

        Args:
            jwt_token: Pinata API JWT token (from PINATA_JWT env var)
            gateway_domain: Gateway domain for URL generation
            timeout_seconds: Per-request timeout for uploads and downloads
            base_url: Pinata API base URL
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.gateway_domain = gateway_domain
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url
        self.headers = {"Authorization": f"Bearer {jwt_token}"}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport, follow_redirects=True
        )

    def get_gateway_url(self, cid: str) -> str:
        """Convert CID to gateway URL for browser access."""
        return f"https://{self.gateway_domain}/ipfs/{cid}"

    async def upload(self, data: bytes, key: str, content_type: str = "image/png") -> str:
        """Pin bytes to IPFS and return the gateway URL.

        Args:
            data: File contents
            key: Logical object key, used as the pinned file name
            content_type: MIME type of the contents

        Returns:
            Gateway URL of the pinned file

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401), forbidden (403), bad request (400)
        """
        filename = key.rsplit("/", 1)[-1]
        pinata_metadata = {"name": key, "keyvalues": {"key": key}}

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/pinning/pinFileToIPFS",
                    headers=self.headers,
                    files={"file": (filename, data, content_type)},
                    data={
                        "pinataOptions": '{"cidVersion": 1}',
                        "pinataMetadata": json.dumps(pinata_metadata),
                    },
                )
        except httpx.TimeoutException as e:
            raise StorageNetworkError(f"Upload timeout after {self.timeout_seconds}s: {e}") from e
        except httpx.HTTPError as e:
            raise StorageNetworkError(f"Upload network error: {e}") from e

        raise_for_storage_status(response, "upload")
        try:
            cid = response.json()["IpfsHash"]
        except (ValueError, KeyError) as e:
            raise StorageValidationError(f"Unexpected pin response: {response.text}") from e
        return self.get_gateway_url(cid)

    async def download(self, url: str) -> bytes:
        """Fetch bytes from a gateway (or any http) URL, or decode a data URL.

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Auth failure or other 4xx
        """
        if url.startswith("data:"):
            return decode_data_url(url)

        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise StorageNetworkError(
                f"Download timeout after {self.timeout_seconds}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageNetworkError(f"Download network error: {e}") from e

        raise_for_storage_status(response, "download")
        return response.content
