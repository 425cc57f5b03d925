"""
Tests for tenant-scoped realtime fan-out.
"""

import json
from uuid import uuid4

import pytest

from messaging_engine.contracts.event_types import RealtimeEventType
from messaging_engine.realtime.bridge import forward_message
from messaging_engine.realtime.events import RealtimeEvent, channel_for
from messaging_engine.realtime.manager import ConnectionManager
from messaging_engine.realtime.publisher import LocalEventPublisher, RedisEventPublisher


class FakeWebSocket:
    def __init__(self, broken: bool = False):
        self.accepted = False
        self.sent: list[dict] = []
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))


class FailingRedis:
    async def publish(self, channel, data):
        raise ConnectionError("redis down")


class RecordingRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel, data):
        self.published.append((channel, data))
        return 1


@pytest.fixture
def manager():
    return ConnectionManager()


class TestConnectionManager:
    """Events reach only the sockets of the owning tenant."""

    async def test_tenant_isolation(self, manager):
        acme, globex = uuid4(), uuid4()
        acme_ws, globex_ws = FakeWebSocket(), FakeWebSocket()
        await manager.connect(acme_ws, acme)
        await manager.connect(globex_ws, globex)

        delivered = await manager.send_to_tenant(acme, {"type": "balance.changed"})

        assert delivered == 1
        assert acme_ws.accepted
        assert acme_ws.sent == [{"type": "balance.changed"}]
        assert globex_ws.sent == []

    async def test_broken_sockets_are_dropped(self, manager):
        tenant_id = uuid4()
        await manager.connect(FakeWebSocket(broken=True), tenant_id)
        await manager.connect(FakeWebSocket(), tenant_id)

        assert await manager.send_to_tenant(str(tenant_id), {"n": 1}) == 1
        assert manager.get_connected_count(tenant_id) == 1

    async def test_disconnect(self, manager):
        tenant_id = uuid4()
        ws = FakeWebSocket()
        await manager.connect(ws, tenant_id)

        await manager.disconnect(ws, tenant_id)
        await manager.disconnect(ws, tenant_id)

        assert manager.get_total_connections() == 0
        assert await manager.send_to_tenant(tenant_id, {"n": 1}) == 0


class TestPublishers:
    async def test_local_publisher(self, manager):
        tenant_id = uuid4()
        ws = FakeWebSocket()
        await manager.connect(ws, tenant_id)

        await LocalEventPublisher(manager).publish(
            RealtimeEvent(type=RealtimeEventType.BALANCE_CHANGED, tenant_id=tenant_id, data={"balance": "4.00"})
        )

        assert ws.sent[0]["type"] == "balance.changed"
        assert ws.sent[0]["tenant_id"] == str(tenant_id)
        assert ws.sent[0]["data"] == {"balance": "4.00"}

    async def test_redis_publisher_uses_tenant_channel(self):
        client = RecordingRedis()
        tenant_id = uuid4()

        await RedisEventPublisher(client).publish(
            RealtimeEvent(type=RealtimeEventType.CONVERSATION_ASSIGNED, tenant_id=tenant_id)
        )

        channel, data = client.published[0]
        assert channel == channel_for(tenant_id)
        assert json.loads(data)["type"] == "conversation.assigned"

    async def test_publish_failure_is_swallowed(self):
        await RedisEventPublisher(FailingRedis()).publish(
            RealtimeEvent(type=RealtimeEventType.MESSAGE_CREATED, tenant_id=uuid4())
        )


class TestBridge:
    """Pub/sub messages forwarded to local sockets."""

    async def test_forwards_tenant_event(self, manager):
        tenant_id = uuid4()
        ws = FakeWebSocket()
        await manager.connect(ws, tenant_id)

        forwarded = await forward_message(
            manager,
            {"type": "pmessage", "channel": channel_for(tenant_id), "data": json.dumps({"type": "message.created"})},
        )

        assert forwarded is True
        assert ws.sent == [{"type": "message.created"}]

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "psubscribe", "channel": "relay:rt:*", "data": 1},
            {"type": "pmessage", "channel": "other:chan", "data": "{}"},
            {"type": "pmessage", "channel": "relay:rt:abc", "data": "not json"},
        ],
    )
    async def test_ignores_other_messages(self, manager, message):
        assert await forward_message(manager, message) is False
