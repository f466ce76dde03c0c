"""
Order execution worker.

Drives one job through the swap state machine:

    routing -> building -> submitted -> confirmed

emitting one status event per stage through the StatusBus. Any error
emits a single ``failed`` event carrying the reason and is re-raised so
the job queue's retry policy applies. A retried job starts again at
``routing``; events from earlier attempts stay in the order's history.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import VenueError
from .events.bus import StatusBus
from .execution.order import Order, OrderStatus
from .execution.routing import DexRouter, ExecutionResult
from .jobs.job import Job
from .monitoring.logging import BoundLogger

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderWorker:
    """
    Job handler for swap orders.

    Example:
        >>> worker = OrderWorker(router, bus, build_delay=0.4)
        >>> processor = JobProcessor(queue, worker.handle, concurrency=5)
    """

    def __init__(
        self,
        router: DexRouter,
        bus: StatusBus,
        build_delay: float = 0.4,
        stage_timeout: Optional[float] = None,
    ):
        """
        Args:
            router: Quotes, selects and executes against venues
            bus: Persists and broadcasts status events
            build_delay: Seconds between building and submitted
            stage_timeout: Upper bound in seconds for quote and execution calls
        """
        self.router = router
        self.bus = bus
        self.build_delay = build_delay
        self.stage_timeout = stage_timeout

    async def _bounded(self, stage: str, awaitable: Awaitable[T]) -> T:
        if self.stage_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.stage_timeout)
        except asyncio.TimeoutError:
            raise VenueError(f"{stage} timed out after {self.stage_timeout:g}s") from None

    async def handle(self, job: Job) -> ExecutionResult:
        """Execute one attempt of a job."""
        order = Order.from_dict(job.payload)
        order_id = job.order_id

        with BoundLogger(order_id=order_id, job_id=job.job_id, attempt=job.attempt):
            logger.info(f"Processing {order.amount} {order.token_in}->{order.token_out}")
            try:
                await self.bus.emit_status(order_id, OrderStatus.ROUTING, {"message": "Fetching DEX quotes"})
                quotes = await self._bounded("quote", self.router.get_quotes(order))
                best = self.router.select_best_quote(quotes)

                await self.bus.emit_status(
                    order_id,
                    OrderStatus.BUILDING,
                    {
                        "chosenDex": best.dex,
                        "bestPrice": best.price,
                        "feeBps": best.fee_bps,
                        "quotes": {name: q.to_dict() for name, q in quotes.items()},
                    },
                )

                await asyncio.sleep(self.build_delay)
                await self.bus.emit_status(
                    order_id,
                    OrderStatus.SUBMITTED,
                    {"chosenDex": best.dex, "note": "Mock transaction broadcasted"},
                )

                execution = await self._bounded("execution", self.router.execute_swap(order, best))
                await self.bus.emit_status(order_id, OrderStatus.CONFIRMED, execution.to_dict())
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning(f"Attempt {job.attempt} failed: {reason}")
                await self.bus.emit_status(
                    order_id,
                    OrderStatus.FAILED,
                    {"reason": reason, "attempt": job.attempt},
                )
                raise

            logger.info(f"Confirmed on {execution.dex}: {execution.output_amount:.6f} {order.token_out}")
            return execution
