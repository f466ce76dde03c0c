"""
Order store interface and in-memory implementation.

The store owns orders and their append-only status history. The interface
exposes no way to update or delete an event, so every backend keeps the
history append-only.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..errors import DuplicateOrderError, OrderNotFoundError
from ..execution.order import Order, OrderStatus, StatusEvent, utcnow

logger = logging.getLogger(__name__)


class OrderStore(ABC):
    """Narrow persistence interface used by the bus, worker and service."""

    @abstractmethod
    def create_order(self, order: Order) -> Order:
        """
        Persist a new order.

        Raises:
            DuplicateOrderError: If the order id already exists
            PersistenceError: If the backing store fails
        """

    @abstractmethod
    def append_event(
        self,
        order_id: str,
        status: OrderStatus,
        detail: Optional[Dict[str, Any]] = None,
    ) -> StatusEvent:
        """
        Append a status event and return it as persisted.

        The timestamp is assigned here and never goes backwards for an order.
        An order's first event must be PENDING.

        Raises:
            OrderNotFoundError: If the order does not exist
            ValueError: If the first event of an order is not PENDING
            PersistenceError: If the backing store fails
        """

    @abstractmethod
    def get_history(self, order_id: str) -> List[StatusEvent]:
        """Events for an order, oldest first. Empty for unknown orders."""

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        """Order by id, or None."""

    @abstractmethod
    def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        """All orders, newest first."""

    def ping(self) -> bool:
        """Cheap liveness probe for health checks."""
        return True

    def close(self) -> None:
        """Release resources."""


class InMemoryOrderStore(OrderStore):
    """
    Process-local store.

    A single lock guards both maps; appends for different orders are
    short critical sections so readers are never blocked for long.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._history: Dict[str, List[StatusEvent]] = {}
        self._event_ids = itertools.count(1)

    def create_order(self, order: Order) -> Order:
        with self._lock:
            if order.order_id in self._orders:
                raise DuplicateOrderError(order.order_id)
            self._orders[order.order_id] = order
            self._history[order.order_id] = []
        logger.debug(f"Created order {order.order_id}")
        return order

    def append_event(
        self,
        order_id: str,
        status: OrderStatus,
        detail: Optional[Dict[str, Any]] = None,
    ) -> StatusEvent:
        with self._lock:
            history = self._history.get(order_id)
            if history is None:
                raise OrderNotFoundError(order_id)
            if not history and status is not OrderStatus.PENDING:
                raise ValueError(f"First event for {order_id} must be pending, got {status.value}")

            timestamp = utcnow()
            if history and history[-1].timestamp > timestamp:
                timestamp = history[-1].timestamp

            event = StatusEvent(
                event_id=next(self._event_ids),
                order_id=order_id,
                status=status,
                detail=detail,
                timestamp=timestamp,
            )
            history.append(event)
        return event

    def get_history(self, order_id: str) -> List[StatusEvent]:
        with self._lock:
            return list(self._history.get(order_id, ()))

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(order_id)

    def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        with self._lock:
            orders = list(self._orders.values())
        # Insertion order breaks created_at ties
        orders = [o for _, o in sorted(enumerate(orders), key=lambda p: (p[1].created_at, p[0]), reverse=True)]
        return orders[:limit] if limit is not None else orders
