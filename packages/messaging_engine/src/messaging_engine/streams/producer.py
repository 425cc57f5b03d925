"""
Stream Producer

Publishes parsed webhook events to the inbound stream, and failed entries
to the dead letter stream.
"""

import logging
from uuid import UUID

import redis

from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.contracts.event_types import StreamEventType
from messaging_engine.contracts.payloads import InboundMessagePayload, StatusUpdatePayload
from messaging_engine.providers.base import InboundMessageEvent, WebhookEvent
from messaging_engine.streams.groups import DLQ_STREAM, INBOUND_STREAM

logger = logging.getLogger(__name__)


class StreamProducer:
    def __init__(self, redis_client: redis.Redis, max_len: int = 100000):
        self.redis = redis_client
        self.max_len = max_len

    def publish_event(self, tenant_id: UUID, event: WebhookEvent) -> str:
        """
        Publish one webhook event for the worker.

        Returns:
            Stream message ID
        """
        if isinstance(event, InboundMessageEvent):
            event_type = StreamEventType.INBOUND_MESSAGE
            payload = InboundMessagePayload.from_event(event).model_dump(mode="json")
        else:
            event_type = StreamEventType.STATUS_UPDATE
            payload = StatusUpdatePayload.from_event(event).model_dump(mode="json")

        envelope = StreamEnvelope.create(
            event_type=event_type.value,
            tenant_id=tenant_id,
            payload=payload,
            correlation_id=event.provider_message_id,
            metadata={"source": event.platform.value, "channel_id": event.channel_id},
        )
        return self._publish(INBOUND_STREAM, envelope)

    def publish_to_dlq(self, envelope: StreamEnvelope, error: str, delivery_count: int) -> str:
        """
        Park an entry that could not be processed.

        Returns:
            Stream message ID
        """
        dlq_envelope = StreamEnvelope.create(
            event_type=StreamEventType.DLQ_ENTRY.value,
            tenant_id=envelope.tenant_id,
            payload={
                "original_event": envelope.to_dict(),
                "error": error,
                "delivery_count": delivery_count,
            },
            correlation_id=envelope.correlation_id,
        )
        logger.error(
            "Moving stream entry to DLQ",
            extra={"event_id": str(envelope.event_id), "delivery_count": delivery_count, "error": error},
        )
        return self._publish(DLQ_STREAM, dlq_envelope)

    def replay_dlq(self, count: int = 100) -> int:
        """
        Move up to `count` DLQ entries back onto the inbound stream.

        Returns:
            Number of entries replayed
        """
        entries = self.redis.xrange(DLQ_STREAM, count=count)
        replayed = 0
        for msg_id, data in entries:
            try:
                dlq_envelope = StreamEnvelope.from_stream_message(msg_id, data)
                original = dlq_envelope.payload["original_event"]
                envelope = StreamEnvelope(
                    event_id=UUID(original["event_id"]),
                    event_type=original["event_type"],
                    tenant_id=UUID(original["tenant_id"]),
                    occurred_at=dlq_envelope.occurred_at,
                    payload=original["payload"],
                    version=original.get("version", 1),
                    correlation_id=original.get("correlation_id"),
                    metadata={"replayed_from": msg_id},
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Skipping unreadable DLQ entry {msg_id}: {e}")
                continue

            self._publish(INBOUND_STREAM, envelope)
            self.redis.xdel(DLQ_STREAM, msg_id)
            replayed += 1

        return replayed

    def _publish(self, stream_name: str, envelope: StreamEnvelope) -> str:
        msg_id = self.redis.xadd(
            stream_name,
            envelope.to_stream_data(),
            maxlen=self.max_len,
            approximate=True,
        )
        logger.debug(
            f"Published {envelope.event_type} to {stream_name}",
            extra={"msg_id": msg_id, "event_id": str(envelope.event_id), "tenant_id": str(envelope.tenant_id)},
        )
        return msg_id
