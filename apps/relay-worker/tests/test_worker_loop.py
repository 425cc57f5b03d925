"""
Tests for the worker's per-entry processing.
"""

from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from messaging_engine.contracts.envelope import StreamEnvelope
from messaging_engine.contracts.event_types import StreamEventType
from messaging_engine.persistence.models import MessagingBase
from messaging_engine.realtime.publisher import NullEventPublisher
from messaging_engine.service.ingestion import IngestionPipeline
from messaging_engine.streams.consumer import StreamEntry
from messaging_engine.streams.groups import INBOUND_STREAM
from relay_worker.main import process_entry


class RecordingConsumer:
    def __init__(self):
        self.acked: list[tuple[str, str]] = []

    def ack(self, stream_name, msg_id):
        self.acked.append((stream_name, msg_id))
        return 1


class RecordingProducer:
    def __init__(self):
        self.parked: list[tuple[StreamEnvelope, str, int]] = []

    def publish_to_dlq(self, envelope, error, delivery_count):
        self.parked.append((envelope, error, delivery_count))
        return f"{len(self.parked)}-0"


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'worker.db'}")
    MessagingBase.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def consumer():
    return RecordingConsumer()


@pytest.fixture
def producer():
    return RecordingProducer()


def entry(event_type: str, payload: dict, delivery_count: int = 1) -> StreamEntry:
    envelope = StreamEnvelope.create(event_type=event_type, tenant_id=uuid4(), payload=payload)
    return StreamEntry(msg_id="1700000000000-0", envelope=envelope, delivery_count=delivery_count)


async def run(item, consumer, producer, session_factory, max_deliveries=5):
    return await process_entry(item, consumer, producer, NullEventPublisher(), session_factory, max_deliveries)


class TestProcessEntry:
    """Ack, dead-letter and retry decisions."""

    async def test_handled_entry_is_acked(self, consumer, producer, session_factory):
        item = entry("reaction", {})

        assert await run(item, consumer, producer, session_factory) is True
        assert consumer.acked == [(INBOUND_STREAM, "1700000000000-0")]
        assert producer.parked == []

    async def test_invalid_payload_is_dead_lettered(self, consumer, producer, session_factory):
        item = entry(StreamEventType.INBOUND_MESSAGE.value, {"platform": "whatsapp"})

        assert await run(item, consumer, producer, session_factory) is True
        assert consumer.acked == [(INBOUND_STREAM, item.msg_id)]
        envelope, error, count = producer.parked[0]
        assert envelope.event_id == item.envelope.event_id
        assert error.startswith("invalid payload")
        assert count == 1

    async def test_exhausted_entry_is_dead_lettered_unprocessed(self, consumer, producer, session_factory, monkeypatch):
        async def fail(self, envelope):
            raise AssertionError("should not be processed")

        monkeypatch.setattr(IngestionPipeline, "handle_envelope", fail)
        item = entry(StreamEventType.STATUS_UPDATE.value, {}, delivery_count=6)

        assert await run(item, consumer, producer, session_factory) is True
        assert producer.parked[0][1] == "max deliveries exceeded"
        assert producer.parked[0][2] == 6
        assert consumer.acked == [(INBOUND_STREAM, item.msg_id)]

    async def test_transient_failure_stays_pending(self, consumer, producer, session_factory, monkeypatch):
        async def fail(self, envelope):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(IngestionPipeline, "handle_envelope", fail)
        item = entry(StreamEventType.STATUS_UPDATE.value, {})

        assert await run(item, consumer, producer, session_factory) is False
        assert consumer.acked == []
        assert producer.parked == []
