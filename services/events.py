"""
Publish/subscribe for live battle progress.

Clients subscribe to ``battle:<id>`` instead of re-querying the battle every
few seconds. Events are a push hint, not the source of truth: a subscriber
that misses one re-reads the battle through the API.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set

from config import Settings
from services.redis_client import RedisEventBus

logger = logging.getLogger(__name__)


def battle_channel(battle_id: int) -> str:
    return f"battle:{battle_id}"


class Subscription:
    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        return await self._queue.get()


class InMemoryEventBus:
    """Single-process bus; each subscriber gets its own bounded queue"""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    async def publish(self, channel: str, event: dict) -> int:
        queues = list(self._subscribers.get(channel, ()))
        for queue in queues:
            if queue.full():
                # Slow subscriber: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(event)
        return len(queues)

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[Subscription]:
        queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[channel].add(queue)
        try:
            yield Subscription(queue)
        finally:
            self._subscribers[channel].discard(queue)
            if not self._subscribers[channel]:
                del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def close(self):
        self._subscribers.clear()


def build_event_bus(settings: Settings):
    if settings.REDIS_URL:
        logger.info("Using Redis pub/sub for battle events")
        return RedisEventBus(settings.REDIS_URL)
    return InMemoryEventBus()
