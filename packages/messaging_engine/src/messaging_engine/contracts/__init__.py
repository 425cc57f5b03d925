"""
Messaging Engine Contracts

Event types, payloads, and envelope definitions for the inbound stream
and realtime channel.
"""

from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.contracts.event_types import RealtimeEventType, StreamEventType
from messaging_engine.contracts.payloads import InboundMessagePayload, StatusUpdatePayload

__all__ = [
    "StreamEnvelope",
    "StreamEventType",
    "RealtimeEventType",
    "InboundMessagePayload",
    "StatusUpdatePayload",
]
