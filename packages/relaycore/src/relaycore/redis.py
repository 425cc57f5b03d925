"""
Redis connections.

The blocking client carries stream traffic (XADD, XREADGROUP) and the
worker's realtime publishes; the asyncio client backs the API's pub/sub
listener. Neither connects until first used.
"""

import functools

import redis
import redis.asyncio as aioredis

from relaycore.settings import get_settings


@functools.lru_cache()
def get_redis_client() -> redis.Redis:
    """Shared blocking client for REDIS_URL, decoding replies to str."""
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)


def get_async_redis_client() -> aioredis.Redis:
    """
    New asyncio client for REDIS_URL.

    Each caller owns and closes its client; asyncio connections belong to
    the loop that opened them.
    """
    return aioredis.from_url(get_settings().REDIS_URL, decode_responses=True)
