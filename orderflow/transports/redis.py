"""Redis transport so notification consumers can run in other processes.

Each topic is a Redis list named ``<topic_prefix>:<topic>``. Publishers push
on the left and consumers pop from the right, so events for a topic are
delivered in publish order and each to a single consumer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import StageChangedEvent
from .base import BaseTransport

logger = logging.getLogger(__name__)

POP_TIMEOUT_SECONDS = 1


class RedisTransport(BaseTransport[str]):
    """Deliver stage-changed events through Redis lists."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        topic_prefix: str = "orderflow",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.topic_prefix = topic_prefix
        self._client: Optional[redis.Redis] = None

    def queue_name(self, topic: str) -> str:
        return f"{self.topic_prefix}:{topic}"

    async def _ensure_client(self) -> redis.Redis:
        if self._client is None:
            client = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
            await client.ping()
            logger.debug(f"Connected to Redis at {self.host}:{self.port}/{self.db}")
            self._client = client
        return self._client

    async def connect(self) -> None:
        await self._ensure_client()

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def publish(self, topic: str, event: StageChangedEvent) -> None:
        client = await self._ensure_client()
        await client.lpush(self.queue_name(topic), event.to_json())

    async def queue_length(self, topic: str) -> int:
        """Number of events waiting on ``topic``."""
        client = await self._ensure_client()
        return int(await client.llen(self.queue_name(topic)))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, StageChangedEvent]]:
        """Pop events as they arrive, for ``lifespan`` seconds or forever.

        Payloads that are not valid events are logged and dropped.
        """
        client = await self._ensure_client()
        queue = self.queue_name(topic)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            popped = await client.brpop(queue, timeout=POP_TIMEOUT_SECONDS)
            if not popped:
                continue
            _, payload = popped
            try:
                event = StageChangedEvent.from_json(payload)
            except ValidationError as exc:
                logger.warning(f"Dropping malformed event on {queue}: {exc}")
                continue
            yield payload, event

    async def ack(self, raw_message: str) -> None:
        # BRPOP already removed the event from the list
        return None
