"""
Tests for the order worker state machine.

Tests cover:
- Happy path event sequence and details
- Failure at the quote stage
- Stage timeouts
- Retries through the job processor
"""

import asyncio

import numpy as np
import pytest

from order_engine.errors import VenueError
from order_engine.events.bus import StatusBus
from order_engine.events.transport import LocalTransport
from order_engine.execution import DexRouter, Order, OrderStatus, QuoteSource, default_venues
from order_engine.jobs import Job, JobProcessor, JobState
from order_engine.worker import OrderWorker

AFTER_PENDING = [OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED, OrderStatus.CONFIRMED]


class FlakyQuoteSource(QuoteSource):
    """Fails the first `failures` quote requests."""

    def __init__(self, venue, failures, **kwargs):
        super().__init__(venue, base_price=0.0025, latency_ms=(0.0, 0.0), **kwargs)
        self.failures = failures
        self.calls = 0

    async def quote(self, order):
        self.calls += 1
        if self.calls <= self.failures:
            raise VenueError("quote source unavailable", venue=self.name)
        return await super().quote(order)


class DroppingTransport(LocalTransport):
    """Raises on the first publish of a given status."""

    def __init__(self, status):
        super().__init__()
        self.status = status
        self.dropped = 0

    async def publish(self, message):
        if message.event.status == self.status and not self.dropped:
            self.dropped += 1
            raise ConnectionError("broker connection reset")
        await super().publish(message)


def make_router(sources):
    return DexRouter(sources, settlement_latency_ms=(0.0, 0.0), rng=np.random.default_rng(0))


async def submit(store, bus, max_attempts=3):
    order = store.create_order(Order(token_in="SOL", token_out="USDC", amount=1.5))
    await bus.emit_status(order.order_id, OrderStatus.PENDING, {"note": "Order queued for routing"})
    return order, Job(order_id=order.order_id, payload=order.to_dict(), max_attempts=max_attempts, backoff_ms=10.0)


class TestOrderWorker:
    """Tests for a single attempt."""

    @pytest.mark.asyncio
    async def test_happy_path_sequence(self, store, bus, router):
        order, job = await submit(store, bus)
        worker = OrderWorker(router, bus, build_delay=0.0)

        result = await worker.handle(job)
        history = store.get_history(order.order_id)

        assert [e.status for e in history] == [OrderStatus.PENDING] + AFTER_PENDING
        assert history[-1].detail == result.to_dict()
        assert result.tx_hash
        assert result.output_amount > 0

    @pytest.mark.asyncio
    async def test_stage_details(self, store, bus, router):
        order, job = await submit(store, bus)
        worker = OrderWorker(router, bus, build_delay=0.0)

        result = await worker.handle(job)
        routing, building, submitted, confirmed = store.get_history(order.order_id)[1:]

        assert routing.detail == {"message": "Fetching DEX quotes"}
        assert building.detail["chosenDex"] in ("raydium", "meteora")
        assert building.detail["feeBps"] in (30.0, 20.0)
        assert building.detail["bestPrice"] > 0
        assert submitted.detail == {"chosenDex": building.detail["chosenDex"], "note": "Mock transaction broadcasted"}
        assert set(confirmed.detail) == {"dex", "txHash", "executedPrice", "outputAmount"}
        assert confirmed.detail["dex"] == result.dex == building.detail["chosenDex"]

    @pytest.mark.asyncio
    async def test_chooses_highest_expected_output(self, store, bus, router):
        order, job = await submit(store, bus)
        worker = OrderWorker(router, bus, build_delay=0.0)

        await worker.handle(job)
        building = store.get_history(order.order_id)[2]
        quotes = building.detail["quotes"]
        best = max(quotes.values(), key=lambda q: q["expectedOutput"])

        assert building.detail["chosenDex"] == best["dex"]

    @pytest.mark.asyncio
    async def test_failing_quote_source_emits_failed(self, store, bus):
        """Test a raising quote source yields pending, routing, failed."""
        venues = default_venues()
        router = make_router([FlakyQuoteSource(venues[0], failures=1), FlakyQuoteSource(venues[1], failures=0)])
        order, job = await submit(store, bus)
        worker = OrderWorker(router, bus, build_delay=0.0)

        with pytest.raises(VenueError):
            await worker.handle(job)
        history = store.get_history(order.order_id)

        assert [e.status for e in history] == [OrderStatus.PENDING, OrderStatus.ROUTING, OrderStatus.FAILED]
        assert history[-1].detail == {"reason": "quote source unavailable", "attempt": 1}

    @pytest.mark.asyncio
    async def test_error_without_message_uses_type_name(self, store, bus, router):
        order, job = await submit(store, bus)

        async def broken_execute(order, quote):
            raise RuntimeError()

        router.execute_swap = broken_execute
        worker = OrderWorker(router, bus, build_delay=0.0)

        with pytest.raises(RuntimeError):
            await worker.handle(job)
        history = store.get_history(order.order_id)

        assert [e.status for e in history] == [OrderStatus.PENDING] + AFTER_PENDING[:3] + [OrderStatus.FAILED]
        assert history[-1].detail["reason"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_stage_timeout_becomes_venue_error(self, store, bus):
        slow = [QuoteSource(v, base_price=0.0025, latency_ms=(500.0, 500.0)) for v in default_venues()]
        order, job = await submit(store, bus)
        worker = OrderWorker(make_router(slow), bus, build_delay=0.0, stage_timeout=0.05)

        with pytest.raises(VenueError) as excinfo:
            await worker.handle(job)

        assert "timed out" in str(excinfo.value)
        assert store.get_history(order.order_id)[-1].status == OrderStatus.FAILED

    @pytest.mark.asyncio
    async def test_subscriber_sees_each_stage_once(self, store, bus, router):
        order, job = await submit(store, bus)
        received = []
        bus.subscribe(order.order_id, received.append)
        worker = OrderWorker(router, bus, build_delay=0.0)

        await worker.handle(job)

        assert [e.status for e in received] == AFTER_PENDING


class TestWorkerRetries:
    """Worker driven by the job processor."""

    @pytest.mark.asyncio
    async def test_retry_restarts_at_routing_and_keeps_history(self, store, bus, queue):
        venues = default_venues()
        router = make_router([FlakyQuoteSource(venues[0], failures=1), FlakyQuoteSource(venues[1], failures=0)])
        worker = OrderWorker(router, bus, build_delay=0.0)
        processor = JobProcessor(queue, worker.handle, concurrency=1, poll_interval=0.05)
        order, job = await submit(store, bus)

        await processor.start()
        await queue.enqueue(job)
        await queue.join(timeout=3.0)
        await processor.stop()

        statuses = [e.status for e in store.get_history(order.order_id)]
        assert statuses == [
            OrderStatus.PENDING,
            OrderStatus.ROUTING,
            OrderStatus.FAILED,
            OrderStatus.ROUTING,
            OrderStatus.BUILDING,
            OrderStatus.SUBMITTED,
            OrderStatus.CONFIRMED,
        ]
        assert statuses.count(OrderStatus.PENDING) == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_end_failed(self, store, bus, queue):
        venues = default_venues()
        router = make_router([FlakyQuoteSource(venues[0], failures=99), FlakyQuoteSource(venues[1], failures=99)])
        worker = OrderWorker(router, bus, build_delay=0.0)
        processor = JobProcessor(queue, worker.handle, concurrency=1, poll_interval=0.05)
        order, job = await submit(store, bus, max_attempts=3)

        await processor.start()
        await queue.enqueue(job)
        await queue.join(timeout=3.0)
        await processor.stop()

        history = store.get_history(order.order_id)
        assert [e.status for e in history] == [OrderStatus.PENDING] + [OrderStatus.ROUTING, OrderStatus.FAILED] * 3
        assert [e.detail["attempt"] for e in history if e.status == OrderStatus.FAILED] == [1, 2, 3]
        assert job.state == JobState.FAILED
        assert await queue.failed_jobs() == [job]

    @pytest.mark.asyncio
    async def test_concurrent_orders_complete_independently(self, store, bus, queue, router):
        worker = OrderWorker(router, bus, build_delay=0.01)
        processor = JobProcessor(queue, worker.handle, concurrency=5, poll_interval=0.05)
        await processor.start()

        orders = []
        for _ in range(10):
            order, job = await submit(store, bus)
            orders.append(order)
            await queue.enqueue(job)
        await queue.join(timeout=5.0)
        await processor.stop()

        for order in orders:
            statuses = [e.status for e in store.get_history(order.order_id)]
            assert statuses == [OrderStatus.PENDING] + AFTER_PENDING

    @pytest.mark.asyncio
    async def test_lost_broadcast_after_confirmed_does_not_retry(self, store, queue, router, caplog):
        transport = DroppingTransport(OrderStatus.CONFIRMED)
        bus = StatusBus(store, transport=transport)
        await bus.start()
        worker = OrderWorker(router, bus, build_delay=0.0)
        processor = JobProcessor(queue, worker.handle, concurrency=1, poll_interval=0.05)
        order, job = await submit(store, bus)

        await processor.start()
        await queue.enqueue(job)
        await queue.join(timeout=3.0)
        await processor.stop()
        await bus.close()

        history = store.get_history(order.order_id)
        assert [e.status for e in history] == [OrderStatus.PENDING] + AFTER_PENDING
        assert len({e.detail["txHash"] for e in history if e.status == OrderStatus.CONFIRMED}) == 1
        assert transport.dropped == 1
        assert processor.stats.completed == 1
        assert processor.stats.retried == 0
        assert "Failed to publish confirmed" in caplog.text


def test_worker_with_standalone_bus(store, router):
    """Test the worker in a fresh event loop."""
    bus = StatusBus(store)

    async def run():
        order, job = await submit(store, bus)
        await OrderWorker(router, bus, build_delay=0.0).handle(job)
        return order

    order = asyncio.run(run())

    assert store.get_history(order.order_id)[-1].status == OrderStatus.CONFIRMED
