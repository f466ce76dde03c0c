"""
Order submission and query service.

Submission order is fixed: validate, create the order record, persist and
broadcast ``pending``, then enqueue the execution job. A worker can
therefore never dequeue an order whose ``pending`` event is missing.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .config import QueueConfig
from .database.store import OrderStore
from .errors import OrderNotFoundError, ValidationError
from .events.bus import StatusBus
from .execution.order import Order, OrderStatus, StatusEvent
from .jobs.job import Job
from .jobs.queue import JobQueue

logger = logging.getLogger(__name__)


class OrderRequest(BaseModel):
    """Swap order submission payload."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    token_in: str = Field(..., alias="tokenIn", min_length=1, description="Token sold")
    token_out: str = Field(..., alias="tokenOut", min_length=1, description="Token bought")
    amount: float = Field(..., gt=0, description="Amount of token_in to swap")
    wallet: Optional[str] = Field(None, description="Destination wallet")

    @field_validator("amount")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("amount must be a finite number")
        return value


def _field_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


class OrderService:
    """
    Entry point used by the HTTP layer and the CLI.

    Example:
        >>> service = OrderService(store, bus, queue)
        >>> order = await service.submit_order({"tokenIn": "SOL", "tokenOut": "USDC", "amount": 1.5})
        >>> async for message in service.watch(order.order_id):
        ...     print(message["type"], message["data"])
    """

    def __init__(
        self,
        store: OrderStore,
        bus: StatusBus,
        queue: JobQueue,
        queue_config: Optional[QueueConfig] = None,
    ):
        self.store = store
        self.bus = bus
        self.queue = queue
        self.queue_config = queue_config or QueueConfig()

    @staticmethod
    def validate(payload: Union[OrderRequest, Mapping[str, Any]]) -> OrderRequest:
        """
        Validate a submission payload.

        Raises:
            ValidationError: With one entry per offending field
        """
        if isinstance(payload, OrderRequest):
            return payload
        if not isinstance(payload, Mapping):
            raise ValidationError("Order payload must be an object", [{"field": "", "message": "expected an object"}])
        try:
            return OrderRequest.model_validate(dict(payload))
        except PydanticValidationError as e:
            errors = _field_errors(e)
            fields = ", ".join(err["field"] for err in errors)
            raise ValidationError(f"Invalid order: {fields}", errors) from None

    async def submit_order(self, payload: Union[OrderRequest, Mapping[str, Any]]) -> Order:
        """
        Accept an order for asynchronous execution.

        Returns:
            The created Order (carries order_id and created_at)

        Raises:
            ValidationError: Payload rejected; nothing was persisted
            PersistenceError: Store failed; the job was not enqueued
        """
        request = self.validate(payload)
        order = Order(
            token_in=request.token_in,
            token_out=request.token_out,
            amount=request.amount,
            wallet=request.wallet,
        )

        await asyncio.to_thread(self.store.create_order, order)
        await self.bus.emit_status(order.order_id, OrderStatus.PENDING, {"note": "Order queued for routing"})

        job = Job(
            order_id=order.order_id,
            payload=order.to_dict(),
            max_attempts=self.queue_config.max_attempts,
            backoff_ms=self.queue_config.backoff_ms,
        )
        await self.queue.enqueue(job)

        logger.info(
            f"Accepted order {order.order_id}: {order.amount} {order.token_in}->{order.token_out} "
            f"(job {job.job_id})"
        )
        return order

    async def get_history(self, order_id: str) -> List[StatusEvent]:
        return await asyncio.to_thread(self.store.get_history, order_id)

    async def get_order(self, order_id: str) -> Order:
        order = await asyncio.to_thread(self.store.get_order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders(self, limit: Optional[int] = None) -> List[Order]:
        return await asyncio.to_thread(self.store.list_orders, limit)

    async def watch(self, order_id: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream an order's status.

        Yields ``{"type": "history", "data": [...]}`` once, then
        ``{"type": "update", "data": {...}}`` per live event. The listener is
        registered before history is read, so an event persisted in between
        is neither lost nor repeated. Unknown ids get an empty history.
        """
        loop = asyncio.get_running_loop()
        updates: asyncio.Queue[StatusEvent] = asyncio.Queue()

        def _listener(event: StatusEvent) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                updates.put_nowait(event)
            else:
                loop.call_soon_threadsafe(updates.put_nowait, event)

        subscription = self.bus.subscribe(order_id, _listener)
        try:
            history = await self.get_history(order_id)
            seen = {event.event_id for event in history}
            yield {"type": "history", "data": [event.to_dict() for event in history]}

            while True:
                event = await updates.get()
                if event.event_id in seen:
                    continue
                seen.add(event.event_id)
                yield {"type": "update", "data": event.to_dict()}
        finally:
            subscription.unsubscribe()
