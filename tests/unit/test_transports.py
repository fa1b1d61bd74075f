"""Transport tests."""

import pytest

from orderflow.config import OrderflowConfig
from orderflow.constants import STAGE_CHANGED_TOPIC
from orderflow.contracts import OrderStatus, StageChangedEvent, TransitionSource
from orderflow.transports import get_transport
from orderflow.transports.inmemory import InMemoryTransport


def _event() -> StageChangedEvent:
    return StageChangedEvent(
        order_id="ord-1",
        workflow_id="standard-shipping",
        from_stage_id="processing",
        to_stage_id="shipped",
        stage_label="Shipped",
        category=OrderStatus.SHIPPED,
        order_status=OrderStatus.SHIPPED,
        source=TransitionSource.AUTOMATIC_SYNC,
    )


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()

    await transport.publish(STAGE_CHANGED_TOPIC, _event())
    assert [e.order_id for e in transport.pending(STAGE_CHANGED_TOPIC)] == ["ord-1"]

    message_received = False
    async for raw_msg, event in transport.subscribe(STAGE_CHANGED_TOPIC):
        assert event.to_stage_id == "shipped"
        assert event.order_status is OrderStatus.SHIPPED

        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending(STAGE_CHANGED_TOPIC) == []


@pytest.mark.asyncio
async def test_inmemory_subscribe_respects_lifespan():
    transport = InMemoryTransport()
    received = [event async for _, event in transport.subscribe("empty", lifespan=0.2)]
    assert received == []


def test_redis_transport_defaults():
    from orderflow.transports.redis import RedisTransport

    transport = RedisTransport()
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert transport.queue_name(STAGE_CHANGED_TOPIC) == f"orderflow:{STAGE_CHANGED_TOPIC}"


def test_redis_transport_custom_prefix():
    from orderflow.transports.redis import RedisTransport

    transport = RedisTransport(topic_prefix="shop-eu")
    assert transport.queue_name("events") == "shop-eu:events"


def test_get_transport_rejects_unknown_backend(monkeypatch):
    monkeypatch.delenv("ORDERFLOW_TRANSPORT", raising=False)
    with pytest.raises(ValueError, match="Unsupported transport backend"):
        get_transport("kafka", config=OrderflowConfig())


class FakeRedis:
    """Records the list commands the transport sends."""

    instances: list["FakeRedis"] = []

    def __init__(self, **options) -> None:
        self.options = options
        self.lists: dict[str, list[str]] = {}
        self.pings = 0
        self.closed = False
        FakeRedis.instances.append(self)

    async def ping(self) -> bool:
        self.pings += 1
        return True

    async def lpush(self, name: str, value: str) -> int:
        self.lists.setdefault(name, []).insert(0, value)
        return len(self.lists[name])

    async def llen(self, name: str) -> int:
        return len(self.lists.get(name, []))

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_redis_transport_opens_one_client_lazily(monkeypatch):
    from orderflow.transports import redis as redis_transport

    FakeRedis.instances = []
    monkeypatch.setattr(redis_transport.redis, "Redis", FakeRedis)
    transport = redis_transport.RedisTransport(host="cache", topic_prefix="shop-eu")

    await transport.publish(STAGE_CHANGED_TOPIC, _event())
    await transport.publish(STAGE_CHANGED_TOPIC, _event())

    assert len(FakeRedis.instances) == 1
    client = FakeRedis.instances[0]
    assert client.options["host"] == "cache"
    assert client.pings == 1
    assert await transport.queue_length(STAGE_CHANGED_TOPIC) == 2
    assert StageChangedEvent.from_json(
        client.lists[f"shop-eu:{STAGE_CHANGED_TOPIC}"][0]
    ).order_id == "ord-1"

    await transport.disconnect()
    assert client.closed
