"""
Messaging Provider Base

Abstract interface for messaging platform APIs.
Implementations: Meta WhatsApp Cloud API, Meta Messenger, Stub (for development).

Webhook bodies are parsed into a closed set of events:
InboundMessageEvent and StatusUpdateEvent. Anything else is dropped by the
parser with a log line.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from messaging_engine.persistence.models import Platform


class ProviderError(Exception):
    """Error from a messaging provider."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class ContentType(str, Enum):
    """Content of an inbound message as reported by the platform."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACTS = "contacts"
    INTERACTIVE = "interactive"
    BUTTON = "button"
    REACTION = "reaction"
    UNKNOWN = "unknown"


MEDIA_CONTENT_TYPES = frozenset(
    {ContentType.IMAGE, ContentType.DOCUMENT, ContentType.AUDIO, ContentType.VIDEO, ContentType.STICKER}
)


@dataclass(frozen=True)
class InboundMessageEvent:
    """
    A message sent by a contact to a tenant's channel.

    channel_id is the WhatsApp phone_number_id or Messenger page id the
    message was addressed to; contact_id is the sender's phone or PSID.
    """

    platform: Platform
    channel_id: str
    provider_message_id: str
    contact_id: str
    timestamp: datetime
    content_type: ContentType = ContentType.TEXT
    text: str | None = None
    contact_name: str | None = None
    media_id: str | None = None
    media_url: str | None = None
    caption: str | None = None
    context_message_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class StatusUpdateEvent:
    """A delivery status callback for a message we sent."""

    platform: Platform
    channel_id: str
    provider_message_id: str
    status: str  # sent, delivered, read, failed
    timestamp: datetime
    recipient_id: str = ""
    error_code: str | None = None
    error_message: str | None = None


WebhookEvent = Union[InboundMessageEvent, StatusUpdateEvent]


@dataclass(frozen=True)
class ChannelCredentials:
    """What a provider needs to send on behalf of one channel binding."""

    external_id: str
    access_token: str


@dataclass
class ProviderResponse:
    """
    Response from provider after sending a message.
    """

    success: bool
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False
    raw_response: dict[str, Any] = field(default_factory=dict)


class MessagingProvider(ABC):
    """
    Abstract interface for messaging providers.

    Send methods return a ProviderResponse for definite outcomes. They may
    still raise on transport errors; callers treat that as a failed send.
    """

    platform: Platform

    @abstractmethod
    async def send_text(
        self,
        channel: ChannelCredentials,
        to: str,
        text: str,
        reply_to: str | None = None,
    ) -> ProviderResponse:
        """
        Send a free-form text message.

        Args:
            channel: Sending channel credentials
            to: Recipient (E.164 phone or platform user id)
            text: Message text
            reply_to: Provider message id to reply to (optional)

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def send_template(
        self,
        channel: ChannelCredentials,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        """
        Send a pre-approved template message.

        Args:
            channel: Sending channel credentials
            to: Recipient
            template_name: Approved template name
            language_code: Template language code (e.g., "en_US")
            components: Template components (header, body, buttons variables)

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def send_media(
        self,
        channel: ChannelCredentials,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: str | None = None,
    ) -> ProviderResponse:
        """
        Send a media message by public URL.

        Args:
            channel: Sending channel credentials
            to: Recipient
            media_url: Publicly reachable media URL
            media_type: image, video, audio or document
            caption: Optional caption

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    async def send_interactive(
        self,
        channel: ChannelCredentials,
        to: str,
        body_text: str,
        buttons: list[dict[str, str]],
    ) -> ProviderResponse:
        """
        Send a message with reply buttons.

        Args:
            channel: Sending channel credentials
            to: Recipient
            body_text: Main message body
            buttons: List of buttons [{id, title}] (max 3)

        Returns:
            ProviderResponse with message ID if successful
        """
        ...

    @abstractmethod
    def validate_webhook_signature(
        self,
        payload: bytes,
        signature: str,
        app_secret: str,
    ) -> bool:
        """
        Validate webhook signature.

        Args:
            payload: Raw request body
            signature: X-Hub-Signature-256 header value
            app_secret: App secret

        Returns:
            True if signature is valid
        """
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> list[WebhookEvent]:
        """
        Parse a webhook body into internal events.

        Unknown or malformed parts are logged and skipped; this never raises.
        """
        ...

    def verify_webhook_challenge(
        self,
        mode: str,
        token: str,
        challenge: str,
        verify_token: str,
    ) -> str | None:
        """
        Handle the subscription handshake.

        Returns:
            challenge string if mode is "subscribe" and the token matches, None otherwise
        """
        if mode == "subscribe" and verify_token and token == verify_token:
            return challenge
        return None

    async def close(self) -> None:
        """Release network resources."""
        return None
