"""
Meta Cloud API WhatsApp Provider

Production provider for the WhatsApp Business Cloud API.
Sends through POST /{phone_number_id}/messages and parses
whatsapp_business_account webhooks.
"""

import logging
from typing import Any

import httpx

from messaging_engine.persistence.models import Platform
from messaging_engine.providers.base import (
    MEDIA_CONTENT_TYPES,
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


def _first_message_id(response: dict[str, Any]) -> str | None:
    messages = response.get("messages") or [{}]
    return messages[0].get("id")


class MetaCloudWhatsAppProvider(MessagingProvider):
    """
    Meta Cloud API provider for WhatsApp Business.

    Uses the Graph API to send messages and handle webhooks.
    """

    platform = Platform.WHATSAPP

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.graph = GraphTransport(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.graph.close()

    async def _send(self, channel: ChannelCredentials, to: str, body: dict[str, Any]) -> ProviderResponse:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            **body,
        }
        return await self.graph.post_message(
            f"/{channel.external_id}/messages",
            channel.access_token,
            payload,
            _first_message_id,
            {"to": to, "type": body.get("type")},
        )

    async def send_text(
        self,
        channel: ChannelCredentials,
        to: str,
        text: str,
        reply_to: str | None = None,
    ) -> ProviderResponse:
        """Send a text message via Graph API."""
        body: dict[str, Any] = {
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        if reply_to:
            body["context"] = {"message_id": reply_to}
        return await self._send(channel, to, body)

    async def send_template(
        self,
        channel: ChannelCredentials,
        to: str,
        template_name: str,
        language_code: str,
        components: list[dict[str, Any]] | None = None,
    ) -> ProviderResponse:
        """Send a template message via Graph API."""
        template: dict[str, Any] = {
            "name": template_name,
            "language": {"code": language_code},
        }
        if components:
            template["components"] = components
        return await self._send(channel, to, {"type": "template", "template": template})

    async def send_media(
        self,
        channel: ChannelCredentials,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: str | None = None,
    ) -> ProviderResponse:
        """Send an image, video, audio or document by link."""
        media: dict[str, Any] = {"link": media_url}
        if caption and media_type in ("image", "video", "document"):
            media["caption"] = caption
        return await self._send(channel, to, {"type": media_type, media_type: media})

    async def send_interactive(
        self,
        channel: ChannelCredentials,
        to: str,
        body_text: str,
        buttons: list[dict[str, str]],
    ) -> ProviderResponse:
        """Send an interactive reply-button message via Graph API."""
        # Max 3 buttons, titles max 20 chars
        button_rows = [
            {
                "type": "reply",
                "reply": {
                    "id": btn.get("id", f"btn_{i}"),
                    "title": btn.get("title", f"Button {i + 1}")[:20],
                },
            }
            for i, btn in enumerate(buttons[:3])
        ]
        interactive = {
            "type": "button",
            "body": {"text": body_text},
            "action": {"buttons": button_rows},
        }
        return await self._send(channel, to, {"type": "interactive", "interactive": interactive})

    def validate_webhook_signature(self, payload: bytes, signature: str, app_secret: str) -> bool:
        """Validate X-Hub-Signature-256 (HMAC-SHA256 of the raw body)."""
        is_valid = validate_signature(payload, signature, app_secret)
        if not is_valid:
            logger.warning("Webhook signature validation failed")
        return is_valid

    def parse_webhook(self, payload: dict[str, Any]) -> list[WebhookEvent]:
        """
        Parse a Meta webhook payload into events.

        Webhook format:
        {
            "object": "whatsapp_business_account",
            "entry": [{
                "id": "WABA_ID",
                "changes": [{
                    "value": {
                        "metadata": {"display_phone_number": "...", "phone_number_id": "..."},
                        "contacts": [...],
                        "messages": [...],
                        "statuses": [...]
                    },
                    "field": "messages"
                }]
            }]
        }
        """
        events: list[WebhookEvent] = []

        if not isinstance(payload, dict) or payload.get("object") != "whatsapp_business_account":
            logger.debug("Ignoring non-WhatsApp webhook", extra={"object": safe_get(payload, "object")})
            return events

        for entry in as_list(payload.get("entry")):
            for change in as_list(safe_get(entry, "changes")):
                if safe_get(change, "field") != "messages":
                    continue

                value = safe_get(change, "value") or {}
                metadata = safe_get(value, "metadata") or {}
                channel_id = str(safe_get(metadata, "phone_number_id") or "")
                if not channel_id:
                    logger.warning("Dropping webhook change without phone_number_id")
                    continue

                names = {
                    c.get("wa_id"): safe_text(c.get("profile"), "name")
                    for c in as_list(safe_get(value, "contacts"))
                    if isinstance(c, dict) and isinstance(c.get("wa_id"), str)
                }

                for msg_data in as_list(safe_get(value, "messages")):
                    event = self._parse_message(channel_id, names, msg_data)
                    if event:
                        events.append(event)

                for status_data in as_list(safe_get(value, "statuses")):
                    event = self._parse_status(channel_id, status_data)
                    if event:
                        events.append(event)

        return events

    def _parse_message(
        self,
        channel_id: str,
        names: dict[str, str | None],
        msg_data: Any,
    ) -> InboundMessageEvent | None:
        """Parse a single message from webhook."""
        if not isinstance(msg_data, dict) or not msg_data.get("id") or not msg_data.get("from"):
            logger.warning("Dropping malformed inbound message", extra={"payload": msg_data})
            return None

        type_str = msg_data.get("type", "unknown")
        try:
            content_type = ContentType(type_str)
        except ValueError:
            content_type = ContentType.UNKNOWN

        text = None
        caption = None
        media_id = None

        if content_type == ContentType.TEXT:
            text = safe_text(msg_data.get("text"), "body")

        elif content_type in MEDIA_CONTENT_TYPES:
            media = msg_data.get(type_str)
            media_id = safe_text(media, "id")
            caption = safe_text(media, "caption")

        elif content_type == ContentType.INTERACTIVE:
            interactive = msg_data.get("interactive")
            reply = safe_get(interactive, "button_reply") or safe_get(interactive, "list_reply")
            text = safe_text(reply, "title")

        elif content_type == ContentType.BUTTON:
            text = safe_text(msg_data.get("button"), "text")

        try:
            timestamp = from_unix(msg_data.get("timestamp"))
        except (TypeError, ValueError):
            logger.warning("Invalid message timestamp", extra={"message_id": msg_data.get("id")})
            return None

        sender = str(msg_data["from"])
        return InboundMessageEvent(
            platform=Platform.WHATSAPP,
            channel_id=channel_id,
            provider_message_id=str(msg_data["id"]),
            contact_id=sender,
            contact_name=names.get(sender),
            timestamp=timestamp,
            content_type=content_type,
            text=text,
            media_id=media_id,
            caption=caption,
            context_message_id=safe_text(msg_data.get("context"), "id"),
            raw_payload=msg_data,
        )

    def _parse_status(self, channel_id: str, status_data: Any) -> StatusUpdateEvent | None:
        """Parse a single status update from webhook."""
        if not isinstance(status_data, dict) or not status_data.get("id") or not status_data.get("status"):
            logger.warning("Dropping malformed status update", extra={"payload": status_data})
            return None

        error_code = None
        error_message = None
        errors = as_list(status_data.get("errors"))
        if errors and isinstance(errors[0], dict):
            error_code = str(errors[0].get("code", ""))
            error_message = safe_text(errors[0], "message") or safe_text(errors[0], "title")

        try:
            timestamp = from_unix(status_data.get("timestamp"))
        except (TypeError, ValueError):
            timestamp = from_unix(None)

        return StatusUpdateEvent(
            platform=Platform.WHATSAPP,
            channel_id=channel_id,
            provider_message_id=str(status_data["id"]),
            status=str(status_data["status"]),
            timestamp=timestamp,
            recipient_id=str(status_data.get("recipient_id", "")),
            error_code=error_code,
            error_message=error_message,
        )

