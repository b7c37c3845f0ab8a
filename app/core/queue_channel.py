"""Keyed publish/subscribe channels carrying live queue snapshots."""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

import anyio
import structlog
from redis import asyncio as aioredis

from app.config import settings
from app.core.redis_client import get_redis_client

logger = structlog.get_logger(__name__)


class QueueChannel(ABC):
    """
    Last-write-wins document store with change notification.

    A write merges fields into the document under a key, bumps its ``seq``
    counter and pushes the merged snapshot to every subscriber of the key.
    """

    @abstractmethod
    async def read(self, key: str) -> dict[str, Any] | None:
        """Current snapshot, or None if nothing was written yet."""

    @abstractmethod
    async def write(self, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge fields into the snapshot and publish it. Returns the new snapshot."""

    @abstractmethod
    def subscribe(self, key: str) -> AsyncIterator[dict[str, Any]]:
        """Yield the current snapshot (empty if none), then every later snapshot."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryQueueChannel(QueueChannel):
    """Process-local channel for tests and single-instance deployments."""

    def __init__(self):
        self._documents: dict[str, dict[str, Any]] = {}
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def read(self, key: str) -> dict[str, Any] | None:
        document = self._documents.get(key)
        return dict(document) if document is not None else None

    async def write(self, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        document = {**self._documents.get(key, {}), **fields}
        document["seq"] = int(document.get("seq", 0)) + 1
        self._documents[key] = document

        for subscriber in list(self._subscribers.get(key, ())):
            subscriber.put_nowait(dict(document))
        return dict(document)

    async def subscribe(self, key: str) -> AsyncIterator[dict[str, Any]]:
        inbox: asyncio.Queue = asyncio.Queue()
        self._subscribers[key].add(inbox)
        try:
            yield dict(self._documents.get(key, {}))
            while True:
                yield await inbox.get()
        finally:
            self._subscribers[key].discard(inbox)
            if not self._subscribers[key]:
                del self._subscribers[key]

    def subscriber_count(self, key: str) -> int:
        """Number of live subscriptions on a key."""
        return len(self._subscribers.get(key, ()))


class RedisQueueChannel(QueueChannel):
    """
    Redis-backed channel.

    Each document is a hash whose field values are JSON encoded; ``seq`` is
    kept with HINCRBY. Snapshots are published on ``<key>:updates``.
    """

    def __init__(self, client: aioredis.Redis, ttl_seconds: int):
        self.redis = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def updates_channel(key: str) -> str:
        return f"{key}:updates"

    @staticmethod
    def _decode(raw: dict) -> dict[str, Any]:
        document = {}
        for field, value in raw.items():
            if isinstance(field, bytes):
                field = field.decode()
            document[field] = json.loads(value)
        return document

    async def read(self, key: str) -> dict[str, Any] | None:
        raw = await self.redis.hgetall(key)
        return self._decode(raw) if raw else None

    async def write(self, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        encoded = {field: json.dumps(value, default=str) for field, value in fields.items()}
        async with self.redis.pipeline(transaction=True) as pipe:
            if encoded:
                pipe.hset(key, mapping=encoded)
            pipe.hincrby(key, "seq", 1)
            pipe.expire(key, self.ttl_seconds)
            pipe.hgetall(key)
            results = await pipe.execute()

        document = self._decode(results[-1])
        await self.redis.publish(self.updates_channel(key), json.dumps(document, default=str))
        return document

    async def subscribe(self, key: str) -> AsyncIterator[dict[str, Any]]:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.updates_channel(key))
        try:
            yield await self.read(key) or {}
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                yield json.loads(message["data"])
        finally:
            with anyio.CancelScope(shield=True):
                await pubsub.unsubscribe(self.updates_channel(key))
                await pubsub.aclose()


# Global channel instance
_queue_channel: QueueChannel | None = None


def get_queue_channel() -> QueueChannel:
    """
    Get or create the configured queue channel.

    Returns:
        Redis channel, or the in-memory one when ``QUEUE_CHANNEL_BACKEND=memory``
    """
    global _queue_channel

    if _queue_channel is None:
        if settings.queue_channel_backend == "memory":
            _queue_channel = InMemoryQueueChannel()
        else:
            _queue_channel = RedisQueueChannel(
                get_redis_client(),
                ttl_seconds=settings.queue_projection_ttl_seconds,
            )
        logger.info("queue_channel_ready", backend=settings.queue_channel_backend)

    return _queue_channel


async def close_queue_channel() -> None:
    """Close the queue channel."""
    global _queue_channel

    if _queue_channel is not None:
        await _queue_channel.close()
        _queue_channel = None
