"""
Redis Streams transport between the webhook endpoint and the worker.
"""

from messaging_engine.streams.consumer import StreamConsumer, StreamEntry
from messaging_engine.streams.groups import (
    DLQ_STREAM,
    ENGINE_GROUP,
    INBOUND_STREAM,
    ensure_engine_streams,
    get_pending_count,
)
from messaging_engine.streams.producer import StreamProducer

__all__ = [
    "DLQ_STREAM",
    "ENGINE_GROUP",
    "INBOUND_STREAM",
    "StreamConsumer",
    "StreamEntry",
    "StreamProducer",
    "ensure_engine_streams",
    "get_pending_count",
]
