"""
Bounded-concurrency job processor.

Runs a fixed number of consumer tasks against a JobQueue. A job succeeds
only when the handler returns; any exception is handed to the queue,
which schedules a retry or marks the job permanently failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from .job import Job, JobState
from .queue import JobQueue

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


@dataclass
class ProcessorStats:
    """Counters since start."""

    started: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class JobProcessor:
    """
    Pool of consumer slots.

    Example:
        >>> processor = JobProcessor(queue, worker.handle, concurrency=5)
        >>> await processor.start()
        >>> ...
        >>> await processor.stop()
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 5,
        poll_interval: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.stats = ProcessorStats()
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._in_flight = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume(slot), name=f"{self.queue.name}-slot-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(f"Job processor started on {self.queue.name} with {self.concurrency} slots")

    async def stop(self, graceful: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop consuming.

        Args:
            graceful: Let in-flight jobs finish; otherwise cancel them
            timeout: Cancel whatever is still running after this many seconds
        """
        self._running = False
        if not graceful:
            for task in self._tasks:
                task.cancel()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"Job processor stopped on {self.queue.name}")

    async def _consume(self, slot: int) -> None:
        while self._running:
            try:
                job = await self.queue.reserve(timeout=self.poll_interval)
                if job is None:
                    continue
                await self.process(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    f"Consumer {slot} on {self.queue.name} hit a queue error; "
                    f"resuming in {self.poll_interval:g}s"
                )
                await asyncio.sleep(self.poll_interval)

    async def process(self, job: Job) -> None:
        """Run one reserved job through the handler and settle it on the queue."""
        self._in_flight += 1
        self.stats.started += 1
        try:
            await self.handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job = await self.queue.fail(job, e)
            if job.state is JobState.FAILED:
                self.stats.failed += 1
                logger.error(
                    f"Job {job.job_id} for order {job.order_id} failed permanently "
                    f"after {job.attempts_made} attempts: {job.last_error}"
                )
            else:
                self.stats.retried += 1
                logger.warning(
                    f"Job {job.job_id} for order {job.order_id} failed "
                    f"(attempt {job.attempts_made}/{job.max_attempts}): {job.last_error}; retrying"
                )
        else:
            await self.queue.complete(job)
            self.stats.completed += 1
        finally:
            self._in_flight -= 1
