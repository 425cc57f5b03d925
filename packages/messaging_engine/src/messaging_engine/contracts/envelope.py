"""
Stream Envelope

Wrapper for entries on the engine's Redis streams. Stream fields must be
flat strings, so the payload and metadata travel as JSON.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from relaycore.timeutil import utcnow


@dataclass
class StreamEnvelope:
    """
    Standard event envelope for engine stream entries.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: StreamEventType value
        tenant_id: Tenant resolved from the channel binding
        occurred_at: When the webhook was received (UTC)
        payload: Event-specific data (see contracts.payloads)
        correlation_id: Provider message id, for tracing
        metadata: Stream bookkeeping (stream_msg_id, source, dlq error)
    """

    event_id: UUID
    event_type: str
    tenant_id: UUID
    occurred_at: datetime
    payload: dict[str, Any]
    version: int = 1
    correlation_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: str,
        tenant_id: UUID,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "StreamEnvelope":
        """Create a new envelope with a fresh event_id and timestamp."""
        return cls(
            event_id=uuid4(),
            event_type=str(event_type),
            tenant_id=tenant_id,
            occurred_at=utcnow(),
            payload=payload,
            correlation_id=correlation_id,
            metadata=metadata or {},
        )

    @classmethod
    def from_stream_message(cls, msg_id: str, data: dict[str, str]) -> "StreamEnvelope":
        """
        Parse a Redis stream entry.

        Raises:
            KeyError, ValueError: the entry is not a valid envelope
        """
        metadata = json.loads(data.get("metadata") or "{}")
        metadata["stream_msg_id"] = msg_id
        occurred_at = data.get("occurred_at")

        return cls(
            event_id=UUID(data["event_id"]),
            event_type=data["event_type"],
            tenant_id=UUID(data["tenant_id"]),
            occurred_at=datetime.fromisoformat(occurred_at) if occurred_at else utcnow(),
            version=int(data.get("version") or 1),
            payload=json.loads(data["payload"]),
            correlation_id=data.get("correlation_id") or None,
            metadata=metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary (used for DLQ entries)."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "tenant_id": str(self.tenant_id),
            "occurred_at": self.occurred_at.isoformat(),
            "version": self.version,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "metadata": self.metadata,
        }

    def to_stream_data(self) -> dict[str, str]:
        """Flatten into string fields for XADD."""
        fields = self.to_dict()
        fields["version"] = str(self.version)
        fields["correlation_id"] = self.correlation_id or ""
        for key in ("payload", "metadata"):
            fields[key] = json.dumps(fields[key], default=str)
        return fields
