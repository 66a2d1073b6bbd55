"""Relay networks: address-based message delivery, in-memory and Redis.

A subscriber registers a callback per relay address. The callback gets
each message as a string, and ``None`` once when the channel is torn down
(unsubscribe, network close, or the Redis connection dropping).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    MessageCallback = Callable[[str | None], Awaitable[None]]

logger = logging.getLogger(__name__)


class RelayNetwork(ABC):
    """Abstract relay network interface."""

    @abstractmethod
    async def subscribe(self, address: str, callback: MessageCallback) -> None:
        """Deliver messages addressed to ``address`` to ``callback``."""

    @abstractmethod
    async def unsubscribe(self, address: str) -> None:
        """Stop delivery for ``address``; its callback receives ``None``."""

    @abstractmethod
    async def publish(self, address: str, message: str) -> None:
        """Send ``message`` to whoever listens on ``address``."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down every subscription and the connection."""


class MemoryRelay(RelayNetwork):
    """In-process relay. Share one instance between sessions to connect them."""

    def __init__(self) -> None:
        self._subscribers: dict[str, MessageCallback] = {}

    def has_subscriber(self, address: str) -> bool:
        return address in self._subscribers

    async def subscribe(self, address: str, callback: MessageCallback) -> None:
        if address in self._subscribers:
            msg = f"relay address {address} already has a listener"
            raise RuntimeError(msg)
        self._subscribers[address] = callback

    async def unsubscribe(self, address: str) -> None:
        callback = self._subscribers.pop(address, None)
        if callback is not None:
            await callback(None)

    async def publish(self, address: str, message: str) -> None:
        callback = self._subscribers.get(address)
        if callback is None:
            logger.warning("No relay listener on %s; message dropped", address)
            return
        try:
            await callback(message)
        except Exception:
            logger.exception("MemoryRelay callback error on %s", address)

    async def close(self) -> None:
        for address in list(self._subscribers):
            await self.unsubscribe(address)


class RedisRelay(RelayNetwork):
    """Redis-backed relay: one prefixed pub/sub channel per address.

    Uses ``redis.asyncio`` pub/sub. Each subscription spawns an asyncio
    task that reads from its own Redis subscription.
    """

    def __init__(self, redis_url: str, *, prefix: str = "slate_") -> None:
        self._redis_url = redis_url
        self._prefix = prefix
        self._redis: Any = None
        self._subscriptions: dict[str, tuple[Any, asyncio.Task[None]]] = {}

    async def _ensure_connection(self) -> None:
        """Lazy-connect to Redis."""
        if self._redis is not None:
            return
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(self._redis_url)

    async def subscribe(self, address: str, callback: MessageCallback) -> None:
        await self._ensure_connection()
        channel = f"{self._prefix}{address}"
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        async def _reader() -> None:
            try:
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    data = message["data"]
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    try:
                        await callback(data)
                    except Exception:
                        logger.exception("RedisRelay callback error on %s", channel)
            finally:
                await callback(None)

        self._subscriptions[address] = (pubsub, asyncio.create_task(_reader()))
        logger.info("Subscribed to relay channel %s", channel)

    async def unsubscribe(self, address: str) -> None:
        entry = self._subscriptions.pop(address, None)
        if entry is None:
            return
        pubsub, task = entry
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await pubsub.aclose()

    async def publish(self, address: str, message: str) -> None:
        await self._ensure_connection()
        await self._redis.publish(f"{self._prefix}{address}", message)

    async def close(self) -> None:
        for address in list(self._subscriptions):
            await self.unsubscribe(address)
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
