import redis.asyncio as redis
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional


logger = logging.getLogger(__name__)


class RedisCache:
    """JSON values in Redis with a TTL on every key"""

    def __init__(self, url: str, default_ttl: int = 300, prefix: str = "cache:"):
        self.url = url
        self.default_ttl = default_ttl
        self.prefix = prefix
        self.redis = None

    async def connect(self):
        """Open the connection and ping it"""
        try:
            self.redis = redis.from_url(self.url, decode_responses=True)
            await self.redis.ping()
            logger.info("✅ Redis cache connected")
        except redis.RedisError as e:
            logger.error(f"❌ Redis connection failed: {e}")
            raise

    async def get(self, key: str) -> Optional[Any]:
        if not self.redis:
            await self.connect()
        data = await self.redis.get(self.prefix + key)
        if data is None:
            return None
        return json.loads(data)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        if not self.redis:
            await self.connect()
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            # SETEX rejects a non-positive expiry
            await self.redis.delete(self.prefix + key)
            return
        await self.redis.setex(
            self.prefix + key,
            ttl,
            json.dumps(value, default=str)
        )

    async def delete(self, key: str):
        if not self.redis:
            await self.connect()
        await self.redis.delete(self.prefix + key)

    async def clear(self):
        if not self.redis:
            await self.connect()
        async for key in self.redis.scan_iter(match=f"{self.prefix}*"):
            await self.redis.delete(key)

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None


class RedisSubscription:
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        message = await self.pubsub.get_message(
            ignore_subscribe_messages=True,
            timeout=timeout if timeout is not None else 1.0,
        )
        if not message:
            return None
        return json.loads(message["data"])

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        while True:
            event = await self.get(timeout=1.0)
            if event is not None:
                return event


class RedisEventBus:
    """Battle events over Redis pub/sub, shared by every worker process"""

    def __init__(self, url: str):
        self.url = url
        self.redis = redis.from_url(url, decode_responses=True)

    async def publish(self, channel: str, event: dict) -> int:
        try:
            return await self.redis.publish(channel, json.dumps(event, default=str))
        except redis.RedisError as e:
            # Subscribers re-read state from the API; a lost event is not fatal
            logger.error(f"❌ Failed to publish to {channel}: {e}")
            return 0

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[RedisSubscription]:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            yield RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

    async def close(self):
        await self.redis.aclose()
