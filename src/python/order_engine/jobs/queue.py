"""
Retrying job queues.

Both backends hand each job to one consumer at a time, redeliver failed
jobs after an exponential backoff until the attempt budget is spent, and
keep permanently failed jobs for inspection. Completed jobs are dropped.

Backends:
    - InMemoryJobQueue: asyncio-only, single process
    - RedisJobQueue: durable, shared by any number of worker processes
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import redis.asyncio as aioredis

from ..errors import StalledJobError
from .job import Job, JobState

logger = logging.getLogger(__name__)


class JobQueue(ABC):
    """Queue contract consumed by JobProcessor."""

    name: str

    @abstractmethod
    async def enqueue(self, job: Job) -> Job:
        """Add a job, ready immediately."""

    @abstractmethod
    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        """
        Take the next eligible job and mark it active.

        Returns:
            The job, or None if nothing became eligible within timeout
        """

    @abstractmethod
    async def complete(self, job: Job) -> None:
        """Acknowledge a successful attempt; the job is removed."""

    @abstractmethod
    async def fail(self, job: Job, error: BaseException) -> Job:
        """Record a failed attempt; schedules a retry or marks the job failed."""

    @abstractmethod
    async def failed_jobs(self) -> List[Job]:
        """Jobs whose attempt budget is exhausted."""

    @abstractmethod
    async def counts(self) -> Dict[str, int]:
        """Number of jobs per state."""

    async def close(self) -> None:
        """Release connections."""


class InMemoryJobQueue(JobQueue):
    """
    Process-local queue on asyncio primitives.

    Example:
        >>> queue = InMemoryJobQueue()
        >>> await queue.enqueue(Job(order_id="abc"))
        >>> job = await queue.reserve(timeout=0.5)
        >>> await queue.complete(job)
    """

    def __init__(self, name: str = "order-execution"):
        self.name = name
        self._waiting: Deque[Job] = deque()
        self._delayed: List[Tuple[float, int, Job]] = []
        self._active: Dict[str, Job] = {}
        self._failed: Dict[str, Job] = {}
        self._completed = 0
        self._seq = itertools.count()
        self._cond: Optional[asyncio.Condition] = None

    @property
    def _condition(self) -> asyncio.Condition:
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    def _promote_due(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job = heapq.heappop(self._delayed)
            job.state = JobState.WAITING
            job.next_attempt_at = None
            self._waiting.append(job)

    def _idle(self) -> bool:
        return not (self._waiting or self._delayed or self._active)

    async def enqueue(self, job: Job) -> Job:
        async with self._condition:
            job.state = JobState.WAITING
            self._waiting.append(job)
            self._condition.notify_all()
        logger.debug(f"Enqueued job {job.job_id} for order {job.order_id}")
        return job

    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with self._condition:
            while True:
                self._promote_due(time.time())
                if self._waiting:
                    job = self._waiting.popleft()
                    job.state = JobState.ACTIVE
                    self._active[job.job_id] = job
                    return job

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = remaining
                if self._delayed:
                    wait = min(wait, max(0.001, self._delayed[0][0] - time.time()))
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass

    async def complete(self, job: Job) -> None:
        async with self._condition:
            self._active.pop(job.job_id, None)
            job.state = JobState.COMPLETED
            self._completed += 1
            self._condition.notify_all()

    async def fail(self, job: Job, error: BaseException) -> Job:
        async with self._condition:
            self._active.pop(job.job_id, None)
            job.record_failure(error)
            if job.state is JobState.FAILED:
                self._failed[job.job_id] = job
            else:
                heapq.heappush(self._delayed, (job.next_attempt_at, next(self._seq), job))
            self._condition.notify_all()
        return job

    async def failed_jobs(self) -> List[Job]:
        return list(self._failed.values())

    async def counts(self) -> Dict[str, int]:
        return {
            JobState.WAITING.value: len(self._waiting),
            JobState.DELAYED.value: len(self._delayed),
            JobState.ACTIVE.value: len(self._active),
            JobState.COMPLETED.value: self._completed,
            JobState.FAILED.value: len(self._failed),
        }

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is waiting, delayed or active."""
        async def _wait() -> None:
            async with self._condition:
                await self._condition.wait_for(self._idle)

        await asyncio.wait_for(_wait(), timeout=timeout)


class RedisJobQueue(JobQueue):
    """
    Durable queue on Redis.

    Layout under ``<prefix>:<name>:``:
        jobs       hash of job id -> job JSON
        wait       list of ready job ids (LPUSH in, BLMOVE out)
        active     list of job ids held by a consumer
        leases     sorted set of active job ids scored by lease expiry
        delayed    sorted set of job ids scored by eligible time
        failed     sorted set of exhausted job ids scored by failure time
        completed  counter

    A job whose lease expires before complete() or fail() is treated as
    stalled (its worker died): the next reserve() takes it off ``active``
    and charges it one attempt, so it is retried or failed like any other
    failure.
    """

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379",
        name: str = "order-execution",
        prefix: str = "order-engine",
        client: Optional[aioredis.Redis] = None,
        lock_duration: float = 30.0,
    ):
        self.url = url
        self.name = name
        self.prefix = prefix
        self.lock_duration = lock_duration
        self._owns_client = client is None
        self._client = client or aioredis.from_url(url, decode_responses=True)

    def _key(self, suffix: str) -> str:
        return f"{self.prefix}:{self.name}:{suffix}"

    async def _save(self, job: Job) -> None:
        await self._client.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict()))

    async def _load(self, job_id: str) -> Optional[Job]:
        raw = await self._client.hget(self._key("jobs"), job_id)
        return Job.from_dict(json.loads(raw)) if raw is not None else None

    async def _promote_due(self) -> None:
        now = time.time()
        due = await self._client.zrangebyscore(self._key("delayed"), "-inf", now)
        for job_id in due:
            # ZREM returning 1 means this caller won the promotion
            if await self._client.zrem(self._key("delayed"), job_id):
                job = await self._load(job_id)
                if job is None:
                    continue
                job.state = JobState.WAITING
                job.next_attempt_at = None
                await self._save(job)
                await self._client.lpush(self._key("wait"), job_id)

    async def _reclaim_stalled(self) -> None:
        expired = await self._client.zrangebyscore(self._key("leases"), "-inf", time.time())
        for job_id in expired:
            if not await self._client.zrem(self._key("leases"), job_id):
                continue
            job = await self._load(job_id)
            if job is None:
                await self._client.lrem(self._key("active"), 0, job_id)
                continue
            job.record_failure(StalledJobError(f"lease expired after {self.lock_duration:g}s"))
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 0, job_id)
                pipe.hset(self._key("jobs"), job_id, json.dumps(job.to_dict()))
                if job.state is JobState.FAILED:
                    pipe.zadd(self._key("failed"), {job_id: time.time()})
                else:
                    pipe.zadd(self._key("delayed"), {job_id: job.next_attempt_at})
                await pipe.execute()
            logger.warning(
                f"Reclaimed stalled job {job_id} for order {job.order_id} "
                f"(attempt {job.attempts_made}/{job.max_attempts}, now {job.state.value})"
            )

    async def _next_due_in(self) -> Optional[float]:
        head = await self._client.zrange(self._key("delayed"), 0, 0, withscores=True)
        if not head:
            return None
        return max(0.0, float(head[0][1]) - time.time())

    async def enqueue(self, job: Job) -> Job:
        job.state = JobState.WAITING
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict()))
            pipe.lpush(self._key("wait"), job.job_id)
            await pipe.execute()
        logger.debug(f"Enqueued job {job.job_id} for order {job.order_id} on {self._key('wait')}")
        return job

    async def reserve(self, timeout: float = 1.0) -> Optional[Job]:
        await self._reclaim_stalled()
        await self._promote_due()

        wait = timeout
        due_in = await self._next_due_in()
        if due_in is not None:
            wait = min(wait, max(0.01, due_in))

        job_id = await self._client.blmove(self._key("wait"), self._key("active"), wait, "RIGHT", "LEFT")
        if job_id is None:
            return None

        job = await self._load(job_id)
        if job is None:
            logger.warning(f"Dropping job id {job_id} with no stored record")
            await self._client.lrem(self._key("active"), 0, job_id)
            return None

        job.state = JobState.ACTIVE
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict()))
            pipe.zadd(self._key("leases"), {job.job_id: time.time() + self.lock_duration})
            await pipe.execute()
        return job

    async def complete(self, job: Job) -> None:
        job.state = JobState.COMPLETED
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 0, job.job_id)
            pipe.zrem(self._key("leases"), job.job_id)
            pipe.hdel(self._key("jobs"), job.job_id)
            pipe.incr(self._key("completed"))
            await pipe.execute()

    async def fail(self, job: Job, error: BaseException) -> Job:
        job.record_failure(error)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 0, job.job_id)
            pipe.zrem(self._key("leases"), job.job_id)
            pipe.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict()))
            if job.state is JobState.FAILED:
                pipe.zadd(self._key("failed"), {job.job_id: time.time()})
            else:
                pipe.zadd(self._key("delayed"), {job.job_id: job.next_attempt_at})
            await pipe.execute()
        return job

    async def failed_jobs(self) -> List[Job]:
        job_ids = await self._client.zrange(self._key("failed"), 0, -1)
        if not job_ids:
            return []
        raws = await self._client.hmget(self._key("jobs"), job_ids)
        return [Job.from_dict(json.loads(raw)) for raw in raws if raw is not None]

    async def counts(self) -> Dict[str, int]:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.llen(self._key("wait"))
            pipe.zcard(self._key("delayed"))
            pipe.llen(self._key("active"))
            pipe.get(self._key("completed"))
            pipe.zcard(self._key("failed"))
            waiting, delayed, active, completed, failed = await pipe.execute()
        return {
            JobState.WAITING.value: int(waiting),
            JobState.DELAYED.value: int(delayed),
            JobState.ACTIVE.value: int(active),
            JobState.COMPLETED.value: int(completed or 0),
            JobState.FAILED.value: int(failed),
        }

    async def clear(self) -> None:
        """Delete every key of this queue (tests and operator resets)."""
        await self._client.delete(
            *(self._key(s) for s in ("jobs", "wait", "active", "leases", "delayed", "failed", "completed"))
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
