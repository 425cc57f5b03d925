"""
Stream Payload Models

Pydantic models for the payloads carried in StreamEnvelope.payload.
The webhook endpoint serializes parsed provider events with these; the
worker validates them back before processing.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from messaging_engine.persistence.models import Platform
from messaging_engine.providers.base import ContentType, InboundMessageEvent, StatusUpdateEvent


class InboundMessagePayload(BaseModel):
    """Payload for INBOUND_MESSAGE entries."""

    platform: Platform = Field(..., description="Platform the message arrived on")
    channel_id: str = Field(..., description="phone_number_id or page id the message was sent to")
    provider_message_id: str = Field(..., description="Provider message ID (dedupe key)")
    contact_id: str = Field(..., description="Sender phone number or PSID")
    contact_name: str | None = Field(None, description="Sender profile name")
    timestamp: datetime = Field(..., description="Message timestamp from provider")
    content_type: ContentType = Field(default=ContentType.TEXT, description="Type of content")
    text: str | None = Field(None, description="Text content or selected button title")
    media_id: str | None = Field(None, description="Provider media ID")
    media_url: str | None = Field(None, description="Media URL when the provider sends one")
    caption: str | None = Field(None, description="Media caption")
    context_message_id: str | None = Field(None, description="Replied-to message ID")
    raw_payload: dict[str, Any] = Field(default_factory=dict, description="Raw provider payload")

    @classmethod
    def from_event(cls, event: InboundMessageEvent) -> "InboundMessagePayload":
        return cls(
            platform=event.platform,
            channel_id=event.channel_id,
            provider_message_id=event.provider_message_id,
            contact_id=event.contact_id,
            contact_name=event.contact_name,
            timestamp=event.timestamp,
            content_type=event.content_type,
            text=event.text,
            media_id=event.media_id,
            media_url=event.media_url,
            caption=event.caption,
            context_message_id=event.context_message_id,
            raw_payload=event.raw_payload,
        )

    def to_event(self) -> InboundMessageEvent:
        return InboundMessageEvent(**self.model_dump())


class StatusUpdatePayload(BaseModel):
    """Payload for STATUS_UPDATE entries."""

    platform: Platform
    channel_id: str
    provider_message_id: str = Field(..., description="Provider ID of the message we sent")
    status: str = Field(..., description="sent, delivered, read or failed")
    timestamp: datetime
    recipient_id: str = ""
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_event(cls, event: StatusUpdateEvent) -> "StatusUpdatePayload":
        return cls(
            platform=event.platform,
            channel_id=event.channel_id,
            provider_message_id=event.provider_message_id,
            status=event.status,
            timestamp=event.timestamp,
            recipient_id=event.recipient_id,
            error_code=event.error_code,
            error_message=event.error_message,
        )

    def to_event(self) -> StatusUpdateEvent:
        return StatusUpdateEvent(**self.model_dump())
