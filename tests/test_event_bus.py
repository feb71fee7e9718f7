"""Tests for EventBus."""

import asyncio

import pytest

from tandem.core.event_bus import EventBus


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber():
    bus = EventBus()
    first = bus.subscribe("task.completed")
    second = bus.subscribe("task.completed")

    delivered = await bus.publish("task.completed", {"session_id": "ses_1"})

    assert delivered == 2
    assert first.get_nowait() == {"session_id": "ses_1"}
    assert second.get_nowait() == {"session_id": "ses_1"}


@pytest.mark.asyncio
async def test_topics_are_isolated():
    bus = EventBus()
    failed = bus.subscribe("task.failed")

    assert await bus.publish("task.completed", "x") == 0
    assert failed.empty()


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking():
    bus = EventBus()
    bus.subscribe("task.completed", maxsize=1)

    assert await bus.publish("task.completed", 1) == 1
    assert await bus.publish("task.completed", 2) == 0


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    queue = bus.subscribe("task.cancelled")
    assert bus.subscriber_count("task.cancelled") == 1

    bus.unsubscribe("task.cancelled", queue)
    bus.unsubscribe("task.cancelled", queue)

    assert bus.subscriber_count("task.cancelled") == 0
    assert await bus.publish("task.cancelled", "x") == 0


@pytest.mark.asyncio
async def test_listen_stops_at_end_marker():
    bus = EventBus()
    queue = bus.subscribe("task.completed")

    async def collect():
        return [event async for event in bus.listen(queue)]

    collector = asyncio.create_task(collect())
    await bus.publish("task.completed", "a")
    await bus.publish("task.completed", "b")
    await bus.publish_end("task.completed")

    assert await asyncio.wait_for(collector, timeout=1.0) == ["a", "b"]
