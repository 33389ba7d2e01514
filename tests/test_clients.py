"""External client tests: Pinata storage, front end callback and Replicate.

HTTP clients run against httpx.MockTransport; the Replicate SDK client is
replaced with a stub object exposing ``run``.
"""

import json

import httpx
import pytest

from brandforge.services.exceptions import (
    ContentPolicyError,
    DeliveryNetworkError,
    DeliveryRejectedError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTransientError,
    ProviderValidationError,
    StorageAuthError,
    StorageNetworkError,
    StorageRateLimitError,
    StorageValidationError,
)
from brandforge.services.messaging import Button, CallbackMessageSender, OutgoingMessage
from brandforge.services.storage import PinataStorage, decode_data_url
from brandforge.services.synthesis.replicate_client import (
    ReplicateSynthesizer,
    classify_replicate_error,
)


class TestPinataStorage:
    @pytest.mark.asyncio
    async def test_upload_returns_gateway_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.content
            return httpx.Response(200, json={"IpfsHash": "bafyTestCid"})

        storage = PinataStorage(
            jwt_token="jwt", gateway_domain="gw.test", transport=httpx.MockTransport(handler)
        )

        url = await storage.upload(b"png-bytes", "logos/acme-1024.png")

        assert url == "https://gw.test/ipfs/bafyTestCid"
        assert seen["url"] == "https://api.pinata.cloud/pinning/pinFileToIPFS"
        assert seen["auth"] == "Bearer jwt"
        assert b"acme-1024.png" in seen["body"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [
            (429, StorageRateLimitError),
            (503, StorageNetworkError),
            (401, StorageAuthError),
            (403, StorageAuthError),
            (400, StorageValidationError),
        ],
    )
    async def test_upload_errors_are_classified(self, status, error):
        storage = PinataStorage(
            jwt_token="jwt",
            transport=httpx.MockTransport(lambda request: httpx.Response(status, text="nope")),
        )

        with pytest.raises(error):
            await storage.upload(b"data", "key.png")

    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        storage = PinataStorage(jwt_token="jwt", transport=httpx.MockTransport(handler))

        with pytest.raises(StorageNetworkError):
            await storage.download("https://gw.test/ipfs/cid")

    @pytest.mark.asyncio
    async def test_download_data_url(self):
        storage = PinataStorage(jwt_token="jwt")

        assert await storage.download("data:image/png;base64,aGVsbG8=") == b"hello"

    def test_malformed_data_url(self):
        with pytest.raises(StorageValidationError):
            decode_data_url("data:image/png;base64")
        with pytest.raises(StorageValidationError):
            decode_data_url("data:image/png;base64,***")


class TestCallbackMessageSender:
    @pytest.mark.asyncio
    async def test_posts_message_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200)

        sender = CallbackMessageSender(
            "https://bot.test/notify", token="secret", transport=httpx.MockTransport(handler)
        )
        message = OutgoingMessage(
            text="Logo Concept 1",
            image_url="https://gw.test/ipfs/cid",
            buttons=(Button(label="👍 Like", action="feedback_like:1:0"),),
        )

        await sender.send_message(42, message)

        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["chat_id"] == 42
        assert seen["body"]["message"]["image_url"] == "https://gw.test/ipfs/cid"
        assert seen["body"]["message"]["buttons"] == [
            {"label": "👍 Like", "action": "feedback_like:1:0"}
        ]
        assert seen["body"]["message"]["kind"] == "result"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [(500, DeliveryNetworkError), (429, DeliveryNetworkError), (400, DeliveryRejectedError)],
    )
    async def test_failures_are_classified(self, status, error):
        sender = CallbackMessageSender(
            "https://bot.test/notify",
            transport=httpx.MockTransport(lambda request: httpx.Response(status)),
        )

        with pytest.raises(error):
            await sender.send_message(1, OutgoingMessage(text="hi"))


class FakeReplicateError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class StubReplicateClient:
    def __init__(self, output=None, error: Exception | None = None):
        self.output = output
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def run(self, model, input):
        self.calls.append((model, input))
        if self.error is not None:
            raise self.error
        return self.output


class TestReplicateSynthesizer:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (FakeReplicateError("too many requests", status=429), ProviderRateLimitError),
            (FakeReplicateError("internal error", status=502), ProviderTransientError),
            (FakeReplicateError("request timed out"), ProviderTransientError),
            (FakeReplicateError("Unauthorized", status=401), ProviderAuthError),
            (FakeReplicateError("NSFW content detected"), ContentPolicyError),
            (FakeReplicateError("invalid aspect ratio", status=422), ProviderValidationError),
        ],
    )
    def test_classify_replicate_error(self, error, expected):
        assert isinstance(classify_replicate_error(error), expected)

    @pytest.mark.asyncio
    async def test_text_to_image_call(self):
        client = StubReplicateClient(output=[b"img-1", b"img-2"])
        synthesizer = ReplicateSynthesizer(api_token="", client=client)

        images = await synthesizer.synthesize("a fox", {"num_outputs": 9})

        assert images == [b"img-1", b"img-2"]
        model, model_input = client.calls[0]
        assert model == "black-forest-labs/flux-schnell"
        assert model_input["num_outputs"] == 4
        assert model_input["aspect_ratio"] == "1:1"

    @pytest.mark.asyncio
    async def test_image_conditioned_call_uses_edit_model(self):
        client = StubReplicateClient(output=b"edited")
        synthesizer = ReplicateSynthesizer(api_token="", client=client)

        images = await synthesizer.synthesize("add a hat", {"image": b"source"})

        assert images == [b"edited"]
        model, model_input = client.calls[0]
        assert model == "black-forest-labs/flux-kontext-pro"
        assert model_input["input_image"].read() == b"source"
        assert "num_outputs" not in model_input

    @pytest.mark.asyncio
    async def test_missing_token_fails_as_auth_error(self):
        synthesizer = ReplicateSynthesizer(api_token="")

        with pytest.raises(ProviderAuthError):
            await synthesizer.synthesize("a fox")

    @pytest.mark.asyncio
    async def test_connection_errors_are_transient(self):
        client = StubReplicateClient(error=ConnectionResetError("reset by peer"))
        synthesizer = ReplicateSynthesizer(api_token="", client=client)

        with pytest.raises(ProviderTransientError):
            await synthesizer.synthesize("a fox")
