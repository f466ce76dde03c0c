"""
Job queue module.

Handles:
- Job records with queue-owned retry metadata
- In-memory and Redis-backed retrying queues
- Bounded-concurrency processing
"""

from .job import Job, JobState, backoff_delay
from .queue import JobQueue, InMemoryJobQueue, RedisJobQueue
from .processor import JobProcessor, JobHandler, ProcessorStats

__all__ = [
    "Job",
    "JobState",
    "backoff_delay",
    "JobQueue",
    "InMemoryJobQueue",
    "RedisJobQueue",
    "JobProcessor",
    "JobHandler",
    "ProcessorStats",
]
