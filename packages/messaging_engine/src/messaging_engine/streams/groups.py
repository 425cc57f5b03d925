"""
Stream names and consumer group setup.

The webhook endpoint writes to INBOUND_STREAM; every worker reads it
through ENGINE_GROUP. DLQ_STREAM has no group: entries there are only
inspected and replayed by operators.
"""

import logging

import redis

logger = logging.getLogger(__name__)

INBOUND_STREAM = "relay:inbound"
DLQ_STREAM = "relay:dlq"

ENGINE_GROUP = "relay-engine"

# (stream, group, first id to deliver); "0" replays history, "$" only new entries
ENGINE_GROUPS: tuple[tuple[str, str, str], ...] = ((INBOUND_STREAM, ENGINE_GROUP, "0"),)


def ensure_stream_group(client: redis.Redis, stream_name: str, group_name: str, start_id: str = "0") -> bool:
    """
    Create `group_name` on `stream_name`, creating the stream too if needed.

    Returns:
        False when the group was already there
    """
    try:
        client.xgroup_create(stream_name, group_name, id=start_id, mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise
        logger.debug(f"Group {group_name} exists on {stream_name}")
        return False

    logger.info(f"Created group {group_name} on {stream_name}")
    return True


def ensure_engine_streams(client: redis.Redis) -> None:
    """Run at API and worker startup."""
    for stream_name, group_name, start_id in ENGINE_GROUPS:
        ensure_stream_group(client, stream_name, group_name, start_id)


def get_pending_count(client: redis.Redis, stream_name: str, group_name: str = ENGINE_GROUP) -> int:
    """Entries delivered to the group but not yet acknowledged; 0 if the group is missing."""
    try:
        summary = client.xpending(stream_name, group_name)
    except redis.ResponseError:
        return 0
    return summary["pending"] if summary else 0
