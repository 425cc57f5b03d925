"""
Realtime Events

What agent dashboards receive over the WebSocket channel.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from messaging_engine.contracts.event_types import RealtimeEventType
from relaycore.timeutil import utcnow

CHANNEL_PREFIX = "relay:rt:"


def channel_for(tenant_id: UUID | str) -> str:
    """Redis pub/sub channel carrying one tenant's events."""
    return f"{CHANNEL_PREFIX}{tenant_id}"


class RealtimeEvent(BaseModel):
    type: RealtimeEventType
    tenant_id: UUID
    data: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)

    def to_message(self) -> dict[str, Any]:
        """JSON-ready dict sent to WebSocket clients."""
        return self.model_dump(mode="json")


def message_data(message) -> dict[str, Any]:
    """Realtime representation of a Message row."""
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "direction": message.direction,
        "kind": message.kind,
        "body": message.body,
        "media_url": message.media_url,
        "template_name": message.template_name,
        "status": message.status,
        "provider_message_id": message.provider_message_id,
        "is_auto_reply": message.is_auto_reply,
        "error_code": message.error_code,
        "error_message": message.error_message,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }
