"""
Stub Messaging Provider

Development provider that logs all operations without making real API calls.
Useful for local development and testing.
"""

import asyncio
import logging
from typing import Any
from uuid import uuid4

from messaging_engine.persistence.models import Platform
from messaging_engine.providers.base import (
    ChannelCredentials,
    MessagingProvider,
    ProviderResponse,
    WebhookEvent,
)
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)


class StubProvider(MessagingProvider):
    """
    Stub provider for development and testing.

    - Records every outbound message in sent_messages
    - Accepts any webhook signature
    - Generates fake message IDs
    - Failures, exceptions and latency are injected explicitly, never at random
    """

    def __init__(self, platform: Platform = Platform.WHATSAPP, delay: float = 0.0):
        self.platform = Platform(platform)
        self.delay = delay
        self.sent_messages: list[dict[str, Any]] = []
        self._failures: list[ProviderResponse] = []
        self._exceptions: list[Exception] = []

    def fail_next(
        self,
        error_code: str = "STUB_SIMULATED_FAILURE",
        error_message: str = "Simulated failure for testing",
        retryable: bool = False,
    ) -> None:
        """Make the next send return a failed ProviderResponse."""
        self._failures.append(
            ProviderResponse(
                success=False,
                error_code=error_code,
                error_message=error_message,
                retryable=retryable,
            )
        )

    def raise_next(self, exc: Exception) -> None:
        """Make the next send raise `exc` (simulates a transport error)."""
        self._exceptions.append(exc)

    async def _record(self, channel: ChannelCredentials, to: str, kind: str, **data: Any) -> ProviderResponse:
        if self.delay:
            await asyncio.sleep(self.delay)

        if self._exceptions:
            raise self._exceptions.pop(0)

        message_id = f"stub_{kind}_{uuid4().hex[:16]}"
        self.sent_messages.append(
            {
                "type": kind,
                "channel_id": channel.external_id,
                "to": to,
                "message_id": message_id,
                "timestamp": utcnow().isoformat(),
                **data,
            }
        )
        logger.info(f"[STUB] Sending {kind} message", extra={"to": to, "message_id": message_id})

        if self._failures:
            return self._failures.pop(0)

        return ProviderResponse(
            success=True,
            message_id=message_id,
            raw_response={"stub": True, "message_id": message_id},
        )

    async def send_text(
        self,
        channel: ChannelCredentials,
        to: str,
        text: str,
        reply_to: str | None = None,
    ) -> ProviderResponse:
        return await self._record(channel, to, "text", text=text, reply_to=reply_to)

    async def send_template(
        self,
        channel: ChannelCredentials,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        return await self._record(
            channel,
            to,
            "template",
            template_name=template_name,
            language_code=language_code,
            components=components,
        )

    async def send_media(
        self,
        channel: ChannelCredentials,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: str | None = None,
    ) -> ProviderResponse:
        return await self._record(channel, to, "media", media_url=media_url, media_type=media_type, caption=caption)

    async def send_interactive(
        self,
        channel: ChannelCredentials,
        to: str,
        body_text: str,
        buttons: list[dict[str, str]],
    ) -> ProviderResponse:
        return await self._record(channel, to, "interactive", body_text=body_text, buttons=buttons)

    def validate_webhook_signature(self, payload: bytes, signature: str, app_secret: str) -> bool:
        """Stub accepts any signature."""
        return True

    def parse_webhook(self, payload: dict[str, Any]) -> list[WebhookEvent]:
        """Stub channels receive the same webhook bodies as real ones."""
        from messaging_engine.providers import get_webhook_parser

        return get_webhook_parser(self.platform).parse_webhook(payload)
