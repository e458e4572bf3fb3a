"""Event broker fan-out and publish failure handling."""

import asyncio
import logging

from tortillas.schemas import EventType, SyncEvent
from tortillas.services.events import MemoryEventBroker, get_event_broker, reset_event_broker


async def next_event(events) -> SyncEvent:
    return await asyncio.wait_for(events.__anext__(), timeout=1)


async def test_every_subscriber_gets_the_event():
    broker = MemoryEventBroker()

    async with broker.subscribe() as first, broker.subscribe() as second:
        assert broker.subscriber_count == 2
        assert await broker.publish(EventType.ORDERS, {"order_id": 1}) is True

        assert (await next_event(first)).data == {"order_id": 1}
        assert (await next_event(second)).type == EventType.ORDERS

    assert broker.subscriber_count == 0


async def test_slow_subscriber_loses_oldest_events():
    broker = MemoryEventBroker(queue_size=2)

    async with broker.subscribe() as events:
        for order_id in (1, 2, 3):
            await broker.publish(EventType.ORDER_STATUS, {"order_id": order_id})

        received = [(await next_event(events)).data["order_id"] for _ in range(2)]

    assert received == [2, 3]


async def test_publish_failure_is_logged_not_raised(caplog):
    class BrokenBroker(MemoryEventBroker):
        async def _publish(self, event):
            raise ConnectionError("redis down")

    with caplog.at_level(logging.WARNING):
        accepted = await BrokenBroker().publish(EventType.TABLES, {"table_id": 3})

    assert accepted is False
    assert "redis down" in caplog.text


def test_development_uses_memory_broker():
    reset_event_broker()
    try:
        broker = get_event_broker()
        assert broker.provider_name == "memory"
        assert get_event_broker() is broker
    finally:
        reset_event_broker()
