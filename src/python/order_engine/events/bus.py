"""
Status distribution bus.

Every status transition goes through StatusBus.emit_status:

1. The event is appended to the order store. If that fails the error
   propagates and nothing is broadcast.
2. The persisted event is delivered to every listener registered for the
   order at the moment delivery starts.
3. The event is published on the transport so buses in other processes
   can deliver it to their own listeners.

Late subscribers must read history from the store; the bus keeps none.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from ..database.store import OrderStore
from ..execution.order import OrderStatus, StatusEvent
from .transport import StatusTransport, TransportMessage

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusEvent], None]


class Subscription:
    """Handle returned by StatusBus.subscribe."""

    def __init__(self, bus: "StatusBus", order_id: str, listener: StatusListener):
        self.bus = bus
        self.order_id = order_id
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self.active:
            self.active = False
            self.bus._remove(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"<Subscription({self.order_id}, {state})>"


class StatusBus:
    """
    Persist-then-broadcast event bus keyed by order id.

    Example:
        >>> bus = StatusBus(store, transport=RedisTransport(url))
        >>> await bus.start()
        >>> sub = bus.subscribe(order_id, lambda event: print(event.status))
        >>> await bus.emit_status(order_id, OrderStatus.ROUTING, {"message": "..."})
        >>> sub.unsubscribe()
    """

    def __init__(
        self,
        store: OrderStore,
        transport: Optional[StatusTransport] = None,
        instance_id: Optional[str] = None,
    ):
        self.store = store
        self.transport = transport
        self.instance_id = instance_id or uuid.uuid4().hex
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)
        self._started = False

    async def start(self) -> None:
        """Attach to the transport so remote events reach local listeners."""
        if self._started:
            return
        if self.transport is not None:
            await self.transport.start(self._on_remote)
        self._started = True
        logger.info(f"StatusBus {self.instance_id[:8]} started")

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()
        self._started = False

    async def emit_status(
        self,
        order_id: str,
        status: OrderStatus,
        detail: Optional[Dict[str, Any]] = None,
    ) -> StatusEvent:
        """
        Persist a status event, then fan it out.

        Returns:
            The event as persisted by the store

        Raises:
            OrderNotFoundError, PersistenceError, ValueError: From the
                store; no listener sees the event in that case

        A transport failure after the event is persisted is logged, not
        raised: the event is already durable and local listeners have it.
        """
        event = await asyncio.to_thread(self.store.append_event, order_id, status, detail)

        delivered = self._deliver(event)
        logger.debug(f"{order_id} -> {status.value} ({delivered} local listeners)")

        if self.transport is not None:
            try:
                await self.transport.publish(TransportMessage(origin=self.instance_id, event=event))
            except Exception:
                logger.exception(f"Failed to publish {status.value} for {order_id} to other processes")

        return event

    def subscribe(self, order_id: str, listener: StatusListener) -> Subscription:
        """Register a listener for one order's events."""
        subscription = Subscription(self, order_id, listener)
        with self._lock:
            self._subscribers[order_id].append(subscription)
        return subscription

    def subscriber_count(self, order_id: Optional[str] = None) -> int:
        with self._lock:
            if order_id is not None:
                return len(self._subscribers.get(order_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.order_id)
            if not subs:
                return
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                del self._subscribers[subscription.order_id]

    def _deliver(self, event: StatusEvent) -> int:
        with self._lock:
            targets = list(self._subscribers.get(event.order_id, ()))

        delivered = 0
        for subscription in targets:
            # Unsubscribed while this broadcast was running
            if not subscription.active:
                continue
            try:
                subscription.listener(event)
                delivered += 1
            except Exception:
                logger.exception(f"Status listener for {event.order_id} raised")
        return delivered

    def _on_remote(self, message: TransportMessage) -> None:
        if message.origin == self.instance_id:
            return
        self._deliver(message.event)
