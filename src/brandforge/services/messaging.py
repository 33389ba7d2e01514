"""Outgoing notifications to the chat front end.

The front end owns the chat platform; this backend only describes what to send
(text, media URLs, follow-up buttons) and hands it to a MessageSender.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from brandforge.services.exceptions import DeliveryNetworkError, DeliveryRejectedError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Button:
    """Follow-up action rendered by the front end (e.g. regenerate, download)."""

    label: str
    action: str


@dataclass(frozen=True)
class OutgoingMessage:
    """One message to a chat.

    Attributes:
        text: Message text (caption when media is attached)
        image_url: Photo to show
        sticker_url: Sticker to send as a sticker
        document_url: File to attach (archives, full-resolution images)
        buttons: Follow-up actions
        kind: Hint for the front end: "result", "progress", "apology", "summary", "referral"
    """

    text: str = ""
    image_url: str | None = None
    sticker_url: str | None = None
    document_url: str | None = None
    buttons: tuple[Button, ...] = field(default_factory=tuple)
    kind: str = "result"

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["buttons"] = [asdict(button) for button in self.buttons]
        return payload


class MessageSender(Protocol):
    async def send_message(
        self, chat_id: int, content: OutgoingMessage, options: dict[str, Any] | None = None
    ) -> None:
        ...


class CallbackMessageSender:
    """MessageSender that POSTs each message to the front end's callback endpoint."""

    def __init__(
        self,
        callback_url: str,
        token: str = "",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.callback_url = callback_url
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def send_message(
        self, chat_id: int, content: OutgoingMessage, options: dict[str, Any] | None = None
    ) -> None:
        """Deliver a message.

        Raises:
            TransientError: Network failure, 429 or 5xx from the front end
            PermanentError: Other 4xx from the front end
        """
        body = {"chat_id": chat_id, "message": content.to_payload(), "options": options or {}}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.callback_url, json=body, headers=self.headers)
        except httpx.HTTPError as e:
            raise DeliveryNetworkError(f"Front end callback failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise DeliveryNetworkError(
                f"Front end callback unavailable ({response.status_code}): {response.text}"
            )
        if response.status_code >= 400:
            raise DeliveryRejectedError(
                f"Front end rejected message ({response.status_code}): {response.text}"
            )
        logger.debug("message.sent", chat_id=chat_id, kind=content.kind)
