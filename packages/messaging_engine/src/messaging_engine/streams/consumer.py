"""
Stream Consumer

Reads the inbound stream with XREADGROUP and reclaims idle pending entries
from crashed consumers. Entries that are not valid envelopes are ACKed and
dropped, since no amount of retrying will fix them.
"""

import logging
from dataclasses import dataclass

import redis

from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.streams.groups import ENGINE_GROUP

logger = logging.getLogger(__name__)


@dataclass
class StreamEntry:
    msg_id: str
    envelope: StreamEnvelope
    delivery_count: int = 1


class StreamConsumer:
    """Consumer-group reader for one worker process."""

    def __init__(self, redis_client: redis.Redis, consumer_name: str, group_name: str = ENGINE_GROUP):
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.group_name = group_name

    def read(self, stream_name: str, count: int = 10, block_ms: int = 5000) -> list[StreamEntry]:
        """Read new entries for this consumer."""
        try:
            result = self.redis.xreadgroup(
                self.group_name,
                self.consumer_name,
                {stream_name: ">"},
                count=count,
                block=block_ms,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                logger.error(f"Consumer group {self.group_name} does not exist for {stream_name}")
            raise

        entries = []
        for _stream, messages in result or []:
            for msg_id, data in messages:
                entry = self._parse(stream_name, msg_id, data, delivery_count=1)
                if entry:
                    entries.append(entry)
        return entries

    def ack(self, stream_name: str, msg_id: str) -> int:
        return self.redis.xack(stream_name, self.group_name, msg_id)

    def reclaim_idle(self, stream_name: str, min_idle_ms: int = 60000, count: int = 100) -> list[StreamEntry]:
        """
        Claim entries idle for at least min_idle_ms from any consumer.

        Each returned entry carries its delivery count including this claim.
        """
        try:
            pending = self.redis.xpending_range(
                stream_name,
                self.group_name,
                min="-",
                max="+",
                count=count,
                idle=min_idle_ms,
            )
        except redis.ResponseError as e:
            logger.error(f"Failed to list pending entries: {e}")
            return []

        if not pending:
            return []

        deliveries = {p["message_id"]: p["times_delivered"] for p in pending}
        try:
            claimed = self.redis.xclaim(
                stream_name,
                self.group_name,
                self.consumer_name,
                min_idle_ms,
                list(deliveries),
            )
        except redis.ResponseError as e:
            logger.error(f"Failed to claim entries: {e}")
            return []

        entries = []
        for msg_id, data in claimed:
            if data is None:
                # Trimmed from the stream while pending
                self.ack(stream_name, msg_id)
                continue
            entry = self._parse(stream_name, msg_id, data, delivery_count=deliveries.get(msg_id, 0) + 1)
            if entry:
                entries.append(entry)

        if entries:
            logger.info(f"Reclaimed {len(entries)} idle entries from {stream_name}")
        return entries

    def _parse(self, stream_name: str, msg_id: str, data: dict, delivery_count: int) -> StreamEntry | None:
        try:
            envelope = StreamEnvelope.from_stream_message(msg_id, data)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Dropping unparseable stream entry {msg_id}: {e}")
            self.ack(stream_name, msg_id)
            return None
        return StreamEntry(msg_id=msg_id, envelope=envelope, delivery_count=delivery_count)
