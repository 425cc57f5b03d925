"""
Event Publishers

Best-effort, at-most-once delivery of RealtimeEvents. A publish failure is
logged and never propagates into the operation that produced the event.
"""

import json
import logging
from abc import ABC, abstractmethod

from messaging_engine.realtime.events import RealtimeEvent, channel_for

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    async def publish(self, event: RealtimeEvent) -> None:
        """Deliver an event, logging and swallowing delivery errors."""
        try:
            await self._deliver(event)
        except Exception as e:
            logger.warning(
                f"Realtime publish failed: {e}",
                extra={"tenant_id": str(event.tenant_id), "event_type": event.type.value},
            )

    @abstractmethod
    async def _deliver(self, event: RealtimeEvent) -> None: ...


class RedisEventPublisher(EventPublisher):
    """Publishes JSON on relay:rt:<tenant_id> for the API process to forward."""

    def __init__(self, redis_client):
        # redis.asyncio.Redis
        self.redis = redis_client

    async def _deliver(self, event: RealtimeEvent) -> None:
        await self.redis.publish(channel_for(event.tenant_id), json.dumps(event.to_message()))


class LocalEventPublisher(EventPublisher):
    """Delivers straight to an in-process ConnectionManager."""

    def __init__(self, manager):
        self.manager = manager

    async def _deliver(self, event: RealtimeEvent) -> None:
        await self.manager.send_to_tenant(event.tenant_id, event.to_message())


class NullEventPublisher(EventPublisher):
    """Discards events (CLI and maintenance jobs)."""

    async def _deliver(self, event: RealtimeEvent) -> None:
        return None
