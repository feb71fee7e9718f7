"""
Event Bus — async pub/sub for background sub-agent notifications.

Topics:
- task.completed  — a background sub-agent finished successfully
- task.failed     — a background sub-agent raised or returned an error
- task.cancelled  — a background sub-agent was cancelled

Each subscriber owns an asyncio.Queue; publish() never blocks.

Usage:
    bus = EventBus()
    queue = bus.subscribe("task.completed")
    async for event in bus.listen(queue):
        ...
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

_STREAM_END = object()


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    async def publish(self, topic: str, event: Any) -> int:
        """Deliver to every subscriber of `topic`. Returns the delivery count."""
        delivered = 0
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, dropping event", topic)
        return delivered

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(topic)
        if not queues or queue not in queues:
            return
        queues.remove(queue)
        if not queues:
            del self._subscribers[topic]

    async def publish_end(self, topic: str) -> None:
        """Stop every listen() loop on `topic`."""
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, end marker dropped", topic)

    async def listen(self, queue: asyncio.Queue) -> AsyncIterator[Any]:
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
