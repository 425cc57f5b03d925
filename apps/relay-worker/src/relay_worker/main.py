"""
Relay Worker Service

Consumes webhook events from the inbound Redis stream and runs them through
the ingestion pipeline.

Features:
- XREADGROUP consumer for horizontal scaling
- PEL reclaim of entries left by crashed consumers; reclaimed entries are
  processed again (ingestion dedupes them)
- DLQ for entries that exceed WORKER_MAX_DELIVERIES or fail validation
- Periodic expiry of held (ambiguous) dispatches
- Graceful shutdown on SIGTERM/SIGINT
"""

import asyncio
import logging
import os
import signal
import socket
import time
from typing import Callable

from sqlalchemy.orm import Session

from messaging_engine.realtime.publisher import EventPublisher, RedisEventPublisher
from messaging_engine.service.enforcement import CreditEnforcementService
from messaging_engine.service.ingestion import IngestionPipeline
from messaging_engine.streams.consumer import StreamConsumer, StreamEntry
from messaging_engine.streams.groups import INBOUND_STREAM, ensure_engine_streams
from messaging_engine.streams.producer import StreamProducer
from relaycore.db import get_sessionmaker
from relaycore.logging import setup_logging
from relaycore.redis import get_async_redis_client, get_redis_client
from relaycore.settings import get_settings

logger = logging.getLogger(__name__)

# Graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


def consumer_name() -> str:
    return get_settings().WORKER_CONSUMER_NAME or f"relay-worker-{socket.gethostname()}-{os.getpid()}"


async def process_entry(
    entry: StreamEntry,
    consumer: StreamConsumer,
    producer: StreamProducer,
    publisher: EventPublisher,
    session_factory: Callable[[], Session],
    max_deliveries: int,
) -> bool:
    """
    Process one stream entry.

    Returns:
        True if the entry was acknowledged (processed, dead-lettered or dropped),
        False if it stays pending for a later reclaim
    """
    envelope = entry.envelope

    if entry.delivery_count > max_deliveries:
        producer.publish_to_dlq(envelope, "max deliveries exceeded", entry.delivery_count)
        consumer.ack(INBOUND_STREAM, entry.msg_id)
        return True

    with session_factory() as db:
        try:
            enforcement = CreditEnforcementService(db, publisher=publisher, session_factory=session_factory)
            pipeline = IngestionPipeline(db, enforcement=enforcement, publisher=publisher)
            result = await pipeline.handle_envelope(envelope)
        except ValueError as e:
            # Payload failed validation; retrying cannot fix it
            db.rollback()
            producer.publish_to_dlq(envelope, f"invalid payload: {e}", entry.delivery_count)
            consumer.ack(INBOUND_STREAM, entry.msg_id)
            return True
        except Exception as e:
            db.rollback()
            logger.error(
                f"Failed to process stream entry {entry.msg_id}: {e}",
                extra={"event_id": str(envelope.event_id), "delivery_count": entry.delivery_count},
                exc_info=True,
            )
            # Not ACKed: reclaimed after WORKER_RECLAIM_IDLE_MS
            return False

    consumer.ack(INBOUND_STREAM, entry.msg_id)
    logger.debug("Processed stream entry", extra={"msg_id": entry.msg_id, "result": result})
    return True


async def expire_ambiguous(publisher: EventPublisher, session_factory: Callable[[], Session]) -> int:
    with session_factory() as db:
        service = CreditEnforcementService(db, publisher=publisher, session_factory=session_factory)
        try:
            return len(await service.expire_ambiguous_dispatches())
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to expire ambiguous dispatches: {e}", exc_info=True)
            return 0


async def main_loop():
    """Main worker loop."""
    settings = get_settings()
    redis_client = get_redis_client()
    ensure_engine_streams(redis_client)

    name = consumer_name()
    consumer = StreamConsumer(redis_client, name)
    producer = StreamProducer(redis_client)
    async_redis = get_async_redis_client()
    publisher = RedisEventPublisher(async_redis)
    session_factory = get_sessionmaker()

    async def handle(entries: list[StreamEntry]) -> int:
        done = 0
        for entry in entries:
            if await process_entry(entry, consumer, producer, publisher, session_factory, settings.WORKER_MAX_DELIVERIES):
                done += 1
        return done

    logger.info(
        f"Starting relay worker (consumer={name}, batch={settings.WORKER_BATCH_SIZE}, "
        f"max_deliveries={settings.WORKER_MAX_DELIVERIES})"
    )

    last_maintenance = time.monotonic()
    try:
        while not shutdown_requested:
            try:
                # Blocking read runs in a thread so held dispatches keep settling
                entries = await asyncio.to_thread(
                    consumer.read, INBOUND_STREAM, settings.WORKER_BATCH_SIZE, settings.WORKER_BLOCK_MS
                )
                processed = await handle(entries)
                if processed:
                    logger.info(f"Processed {processed} inbound events")

                if time.monotonic() - last_maintenance >= settings.WORKER_RECLAIM_INTERVAL_SEC:
                    last_maintenance = time.monotonic()
                    reclaimed = consumer.reclaim_idle(INBOUND_STREAM, min_idle_ms=settings.WORKER_RECLAIM_IDLE_MS)
                    if reclaimed:
                        logger.info(f"Reprocessed {await handle(reclaimed)} of {len(reclaimed)} reclaimed events")

                    expired = await expire_ambiguous(publisher, session_factory)
                    if expired:
                        logger.warning(f"Expired {expired} ambiguous dispatches")

            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                await asyncio.sleep(1)
    finally:
        await async_redis.aclose()

    logger.info("Relay worker shutting down gracefully")


def main():
    """Entry point."""
    setup_logging()
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    logger.info("Relay worker starting...")
    asyncio.run(main_loop())


if __name__ == "__main__":
    main()
