"""
Realtime Bridge

Runs inside the API process: subscribes to every tenant channel on Redis and
forwards events to the local ConnectionManager.
"""

import asyncio
import json
import logging

from messaging_engine.realtime.events import CHANNEL_PREFIX
from messaging_engine.realtime.manager import ConnectionManager

logger = logging.getLogger(__name__)


async def forward_message(manager: ConnectionManager, message: dict) -> bool:
    """
    Forward one pub/sub message to the tenant's sockets.

    Returns:
        True if the message was a well-formed tenant event
    """
    if message.get("type") != "pmessage":
        return False

    channel = message.get("channel") or ""
    if not channel.startswith(CHANNEL_PREFIX):
        return False

    try:
        payload = json.loads(message["data"])
    except (TypeError, ValueError):
        logger.warning("Dropping non-JSON realtime message", extra={"channel": channel})
        return False

    await manager.send_to_tenant(channel[len(CHANNEL_PREFIX):], payload)
    return True


async def run_bridge(redis_client, manager: ConnectionManager) -> None:
    """
    Forward tenant events until cancelled.

    Reconnects with a short backoff when the subscription drops.
    """
    while True:
        pubsub = redis_client.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            logger.info("Realtime bridge subscribed")
            async for message in pubsub.listen():
                try:
                    await forward_message(manager, message)
                except ValueError:
                    logger.warning("Dropping realtime message for invalid tenant", extra={"channel": message.get("channel")})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime bridge error: {e}")
            await asyncio.sleep(1)
        finally:
            await pubsub.aclose()
