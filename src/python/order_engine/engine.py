"""
Order Engine Orchestrator

Builds and owns every component of one engine process:
- Order store (memory or SQL)
- Status bus and its cross-process transport
- Job queue and the bounded-concurrency processor
- DEX router and the order worker
- Submission/query service and health checks

API servers run the processor embedded; dedicated worker processes run
only the processor against a shared Redis queue.
"""

import logging
from typing import Any, Dict, Optional

from .config import Config, load_config, setup_logging
from .database.db import SQLOrderStore
from .database.store import InMemoryOrderStore, OrderStore
from .events.bus import StatusBus
from .events.transport import LocalTransport, RedisTransport, StatusTransport
from .execution.routing import DexRouter
from .jobs.processor import JobProcessor
from .jobs.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from .monitoring.health import HealthChecker, HealthReport, RedisHealthCheck, StoreHealthCheck
from .service import OrderService
from .worker import OrderWorker

logger = logging.getLogger(__name__)


def build_store(config: Config) -> OrderStore:
    backend = config.database.backend
    if backend == "memory":
        return InMemoryOrderStore()
    if backend == "sql":
        store = SQLOrderStore(
            config.database.url,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
            echo=config.database.echo,
        )
        store.create_tables()
        return store
    raise ValueError(f"Unknown store backend: {backend}")


def build_transport(config: Config) -> StatusTransport:
    if config.redis.enabled:
        return RedisTransport(config.redis.url, channel_prefix=config.redis.channel_prefix)
    return LocalTransport()


def build_queue(config: Config) -> JobQueue:
    backend = config.queue.backend
    if backend == "memory":
        return InMemoryJobQueue(config.queue.name)
    if backend == "redis":
        return RedisJobQueue(config.redis.url, name=config.queue.name, lock_duration=config.queue.lock_duration)
    raise ValueError(f"Unknown queue backend: {backend}")


class OrderEngine:
    """
    Main engine that wires all components together.

    Usage:
        engine = OrderEngine(config)
        await engine.start()

        order = await engine.service.submit_order({"tokenIn": "SOL", "tokenOut": "USDC", "amount": 1.5})

        await engine.stop()

    Components may be injected (tests share one LocalBroker or store
    between several engines to stand in for separate processes).
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[OrderStore] = None,
        transport: Optional[StatusTransport] = None,
        queue: Optional[JobQueue] = None,
        router: Optional[DexRouter] = None,
    ):
        self.config = config or load_config()

        self.store = store or build_store(self.config)
        self.transport = transport or build_transport(self.config)
        self.bus = StatusBus(self.store, self.transport)
        self.queue = queue or build_queue(self.config)
        self.router = router or DexRouter.from_config(self.config.venues)

        venues = self.config.venues
        self.worker = OrderWorker(
            self.router,
            self.bus,
            build_delay=venues.build_delay_ms / 1000.0,
            stage_timeout=venues.stage_timeout_s,
        )
        self.processor = JobProcessor(
            self.queue,
            self.worker.handle,
            concurrency=self.config.queue.concurrency,
            poll_interval=self.config.queue.poll_interval,
        )
        self.service = OrderService(self.store, self.bus, self.queue, self.config.queue)

        self.health = HealthChecker([StoreHealthCheck(self.store)])
        if self.config.redis.enabled or self.config.queue.backend == "redis":
            self.health.register(RedisHealthCheck(self.config.redis.url))

        self._started = False
        logger.info(
            f"OrderEngine created (store={type(self.store).__name__}, "
            f"queue={type(self.queue).__name__}, transport={type(self.transport).__name__})"
        )

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self, run_worker: bool = True) -> None:
        """Start the bus and, unless disabled, the job processor."""
        if self._started:
            return
        await self.bus.start()
        if run_worker:
            await self.processor.start()
        self._started = True
        venues = ", ".join(self.router.venue_names)
        logger.info(f"OrderEngine started (worker={'on' if run_worker else 'off'}, venues={venues})")

    async def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Drain in-flight jobs, then release every resource."""
        if not self._started:
            return
        logger.info("Shutting down order engine...")
        if self.processor.is_running:
            await self.processor.stop(graceful=True, timeout=timeout)
        await self.bus.close()
        await self.queue.close()
        self.store.close()
        self._started = False
        logger.info("Order engine shutdown complete")

    def check_health(self) -> HealthReport:
        return self.health.run_all()

    async def get_status(self) -> Dict[str, Any]:
        """Get current engine status."""
        stats = self.processor.stats
        return {
            "running": self._started,
            "env": self.config.env,
            "venues": list(self.router.venue_names),
            "queue": {
                "name": self.queue.name,
                "counts": await self.queue.counts(),
            },
            "processor": {
                "running": self.processor.is_running,
                "concurrency": self.processor.concurrency,
                "in_flight": self.processor.in_flight,
                "started": stats.started,
                "completed": stats.completed,
                "retried": stats.retried,
                "failed": stats.failed,
            },
            "subscribers": self.bus.subscriber_count(),
        }


def create_order_engine(config_file: Optional[str] = None, config: Optional[Config] = None) -> OrderEngine:
    """Factory function to create a configured order engine."""
    config = config or load_config(config_file)
    setup_logging(config.logging)
    return OrderEngine(config)
