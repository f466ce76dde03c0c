"""
Cross-process transports for status events.

A transport carries persisted StatusEvents between StatusBus instances
that live in different processes. Each message is tagged with the
publishing bus's instance id so a bus can drop its own echoes.

Transports:
    - LocalTransport: attaches to a LocalBroker inside one process
    - RedisTransport: Redis pub/sub, one channel per order
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError, TimeoutError as RedisTimeoutError

from ..execution.order import StatusEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportMessage:
    """Status event plus the id of the bus that published it."""

    origin: str
    event: StatusEvent

    def to_json(self) -> str:
        return json.dumps({"origin": self.origin, "event": self.event.to_dict()}, default=str)

    @classmethod
    def from_json(cls, raw: str) -> "TransportMessage":
        data = json.loads(raw)
        return cls(origin=data["origin"], event=StatusEvent.from_dict(data["event"]))


MessageHandler = Callable[[TransportMessage], None]


class StatusTransport(ABC):
    """Publish/subscribe channel shared by every bus instance."""

    @abstractmethod
    async def start(self, handler: MessageHandler) -> None:
        """Begin delivering remote messages to handler."""

    @abstractmethod
    async def publish(self, message: TransportMessage) -> None:
        """Send a message to every attached bus (including the sender)."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering and release connections."""


class LocalBroker:
    """
    In-process stand-in for a message broker.

    Several LocalTransports attached to the same broker behave like
    separate server processes sharing one Redis instance.
    """

    def __init__(self):
        self._handlers: List[MessageHandler] = []

    def attach(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def detach(self, handler: MessageHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, message: TransportMessage) -> int:
        handlers = list(self._handlers)
        for handler in handlers:
            handler(message)
        return len(handlers)


class LocalTransport(StatusTransport):
    """Transport over a LocalBroker."""

    def __init__(self, broker: Optional[LocalBroker] = None):
        self.broker = broker or LocalBroker()
        self._handler: Optional[MessageHandler] = None

    async def start(self, handler: MessageHandler) -> None:
        self._handler = handler
        self.broker.attach(handler)

    async def publish(self, message: TransportMessage) -> None:
        self.broker.publish(message)

    async def close(self) -> None:
        if self._handler is not None:
            self.broker.detach(self._handler)
            self._handler = None


class RedisTransport(StatusTransport):
    """
    Redis pub/sub transport.

    Publishes each event on ``<prefix><orderId>`` and pattern-subscribes to
    ``<prefix>*`` so every process sees every order's events. Uses separate
    connections for publishing and subscribing. A dropped subscription is
    re-established with exponential backoff; events published while it is
    down are not replayed.
    """

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379",
        channel_prefix: str = "order:status:",
        client: Optional[aioredis.Redis] = None,
        reconnect_delay: float = 0.5,
        max_reconnect_delay: float = 30.0,
    ):
        self.url = url
        self.channel_prefix = channel_prefix
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._client = client
        self._pubsub = None
        self._reader: Optional[asyncio.Task] = None

    def channel_for(self, order_id: str) -> str:
        return f"{self.channel_prefix}{order_id}"

    async def _subscribe(self) -> None:
        self._pubsub = self._client.pubsub()
        await self._pubsub.psubscribe(f"{self.channel_prefix}*")

    async def _drop_subscription(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(f"Ignoring error while closing dead subscription: {e}")

    async def start(self, handler: MessageHandler) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        await self._subscribe()
        self._reader = asyncio.create_task(self._read_loop(handler))
        self._reader.add_done_callback(self._reader_done)
        logger.info(f"Subscribed to {self.channel_prefix}* on {self.url}")

    def _reader_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Status subscription on {self.channel_prefix}* stopped; "
                f"events from other processes will not arrive",
                exc_info=error,
            )

    async def _read_loop(self, handler: MessageHandler) -> None:
        delay = self.reconnect_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    logger.info(f"Resubscribed to {self.channel_prefix}* on {self.url}")
                    delay = self.reconnect_delay
                async for message in self._pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    try:
                        parsed = TransportMessage.from_json(message["data"])
                    except (ValueError, KeyError, TypeError) as e:
                        logger.warning(f"Dropping malformed status message on {message.get('channel')}: {e}")
                        continue
                    handler(parsed)
                return
            except (RedisConnectionError, RedisTimeoutError) as e:
                logger.warning(f"Status subscription lost ({e}); reconnecting in {delay:g}s")
                await self._drop_subscription()
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)

    async def publish(self, message: TransportMessage) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        await self._client.publish(self.channel_for(message.event.order_id), message.to_json())

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
