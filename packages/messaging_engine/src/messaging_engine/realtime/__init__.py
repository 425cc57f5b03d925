"""
Realtime Fan-out

Tenant-scoped push of engine events to connected agent dashboards.
"""

from messaging_engine.realtime.events import RealtimeEvent, channel_for
from messaging_engine.realtime.manager import ConnectionManager, manager
from messaging_engine.realtime.publisher import (
    EventPublisher,
    LocalEventPublisher,
    NullEventPublisher,
    RedisEventPublisher,
)

__all__ = [
    "RealtimeEvent",
    "channel_for",
    "ConnectionManager",
    "manager",
    "EventPublisher",
    "LocalEventPublisher",
    "NullEventPublisher",
    "RedisEventPublisher",
]
