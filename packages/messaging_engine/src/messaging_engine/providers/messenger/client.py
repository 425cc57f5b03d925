"""
Messenger Provider

Facebook Messenger Send API and page webhooks.

Messenger has no template messages and no expiring service window in this
system, so send_template always fails without calling the API.
"""

import logging
from typing import Any

import httpx

from messaging_engine.persistence.models import Platform
from messaging_engine.providers.base import (
    ChannelCredentials,
    ContentType,
    InboundMessageEvent,
    MessagingProvider,
    ProviderResponse,
    StatusUpdateEvent,
    WebhookEvent,
)
from messaging_engine.providers.graph import GraphTransport, as_list, safe_get, safe_text, validate_signature
from relaycore.timeutil import from_unix

logger = logging.getLogger(__name__)

_ATTACHMENT_TYPES = {
    "image": ContentType.IMAGE,
    "video": ContentType.VIDEO,
    "audio": ContentType.AUDIO,
    "file": ContentType.DOCUMENT,
    "location": ContentType.LOCATION,
}


def _message_id(response: dict[str, Any]) -> str | None:
    return response.get("message_id")


class MessengerProvider(MessagingProvider):
    """Meta Messenger provider for Facebook pages."""

    platform = Platform.MESSENGER

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.graph = GraphTransport(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.graph.close()

    async def _send(self, channel: ChannelCredentials, to: str, message: dict[str, Any]) -> ProviderResponse:
        payload = {
            "recipient": {"id": to},
            "message": message,
            "messaging_type": "RESPONSE",
        }
        return await self.graph.post_message(
            f"/{channel.external_id}/messages",
            channel.access_token,
            payload,
            _message_id,
            {"to": to, "page_id": channel.external_id},
        )

    async def send_text(
        self,
        channel: ChannelCredentials,
        to: str,
        text: str,
        reply_to: str | None = None,
    ) -> ProviderResponse:
        return await self._send(channel, to, {"text": text})

    async def send_template(
        self,
        channel: ChannelCredentials,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        return ProviderResponse(
            success=False,
            error_code="TEMPLATES_UNSUPPORTED",
            error_message="Messenger does not support template messages",
        )

    async def send_media(
        self,
        channel: ChannelCredentials,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: str | None = None,
    ) -> ProviderResponse:
        """Send an attachment by URL. Messenger has no captions, so caption is dropped."""
        attachment_type = "file" if media_type == "document" else media_type
        return await self._send(
            channel,
            to,
            {"attachment": {"type": attachment_type, "payload": {"url": media_url, "is_reusable": True}}},
        )

    async def send_interactive(
        self,
        channel: ChannelCredentials,
        to: str,
        body_text: str,
        buttons: list[dict[str, str]],
    ) -> ProviderResponse:
        """Send quick replies (the Messenger counterpart of reply buttons)."""
        quick_replies = [
            {
                "content_type": "text",
                "title": btn.get("title", f"Option {i + 1}")[:20],
                "payload": btn.get("id", f"btn_{i}"),
            }
            for i, btn in enumerate(buttons[:13])
        ]
        return await self._send(channel, to, {"text": body_text, "quick_replies": quick_replies})

    def validate_webhook_signature(self, payload: bytes, signature: str, app_secret: str) -> bool:
        return validate_signature(payload, signature, app_secret)

    def parse_webhook(self, payload: dict[str, Any]) -> list[WebhookEvent]:
        """
        Parse a page webhook into events.

        Webhook format:
        {
            "object": "page",
            "entry": [{
                "id": "PAGE_ID",
                "messaging": [
                    {"sender": {"id": PSID}, "timestamp": ms, "message": {"mid": ..., "text": ...}},
                    {"sender": {"id": PSID}, "delivery": {"mids": [...], "watermark": ms}}
                ]
            }]
        }

        Echoes of our own sends are skipped. Read receipts only carry a
        watermark, not message ids, so they are skipped too.
        """
        events: list[WebhookEvent] = []
        if not isinstance(payload, dict) or payload.get("object") != "page":
            return events

        for entry in as_list(payload.get("entry")):
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            page_id = str(entry["id"])

            for item in as_list(entry.get("messaging")):
                if not isinstance(item, dict):
                    continue
                if isinstance(item.get("message"), dict):
                    event = self._parse_message(page_id, item)
                    if event:
                        events.append(event)
                elif isinstance(item.get("delivery"), dict):
                    events.extend(self._parse_delivery(page_id, item))

        return events

    def _parse_message(self, page_id: str, item: dict[str, Any]) -> InboundMessageEvent | None:
        message = item["message"]
        if message.get("is_echo"):
            return None

        sender = safe_get(item.get("sender"), "id")
        mid = safe_text(message, "mid")
        if not isinstance(sender, (str, int)) or not sender or not mid:
            logger.warning("Dropping malformed Messenger message", extra={"payload": item})
            return None

        content_type = ContentType.TEXT
        media_url = None
        attachments = as_list(message.get("attachments"))
        if attachments and isinstance(attachments[0], dict):
            content_type = _ATTACHMENT_TYPES.get(safe_text(attachments[0], "type"), ContentType.UNKNOWN)
            media_url = safe_text(attachments[0].get("payload"), "url")

        if isinstance(message.get("quick_reply"), dict):
            content_type = ContentType.INTERACTIVE

        try:
            timestamp = from_unix(item.get("timestamp"))
        except (TypeError, ValueError):
            logger.warning("Invalid message timestamp", extra={"message_id": mid})
            return None

        return InboundMessageEvent(
            platform=Platform.MESSENGER,
            channel_id=page_id,
            provider_message_id=str(mid),
            contact_id=str(sender),
            timestamp=timestamp,
            content_type=content_type,
            text=safe_text(message, "text"),
            media_url=media_url,
            context_message_id=safe_text(message.get("reply_to"), "mid"),
            raw_payload=item,
        )

    def _parse_delivery(self, page_id: str, item: dict[str, Any]) -> list[StatusUpdateEvent]:
        delivery = item["delivery"]
        try:
            timestamp = from_unix(delivery.get("watermark") or item.get("timestamp"))
        except (TypeError, ValueError):
            timestamp = from_unix(None)

        recipient = str(safe_get(item.get("sender"), "id") or "")
        return [
            StatusUpdateEvent(
                platform=Platform.MESSENGER,
                channel_id=page_id,
                provider_message_id=str(mid),
                status="delivered",
                timestamp=timestamp,
                recipient_id=recipient,
            )
            for mid in as_list(delivery.get("mids"))
            if isinstance(mid, str) and mid
        ]
