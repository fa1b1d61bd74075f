"""In-process transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import StageChangedEvent
from .base import BaseTransport

# serialized payload alongside the event it was built from
Delivery = Tuple[str, StageChangedEvent]

POLL_INTERVAL_SECONDS = 0.05


class InMemoryTransport(BaseTransport[Delivery]):
    """One FIFO queue of events per topic, shared by every consumer."""

    def __init__(self) -> None:
        self._topics: Dict[str, Deque[Delivery]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, event: StageChangedEvent) -> None:
        async with self._lock:
            self._topics[topic].append((event.to_json(), event))

    def pending(self, topic: str) -> List[StageChangedEvent]:
        """Events queued on ``topic`` and not consumed yet."""
        return [event for _, event in self._topics[topic]]

    async def _pop(self, topic: str) -> Optional[Delivery]:
        async with self._lock:
            queue = self._topics[topic]
            return queue.popleft() if queue else None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Delivery, StageChangedEvent]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            delivery = await self._pop(topic)
            if delivery is None:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
                continue
            yield delivery, delivery[1]

    async def ack(self, raw_message: Delivery) -> None:
        return None
