"""
Job records for the order execution queue.

A Job wraps one order's execution request. Attempt counts, retry delay
and state belong to the queue; the worker only reads ``order_id`` and
``payload``.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class JobState(Enum):
    """Queue-side job states."""

    WAITING = "waiting"  # Ready for a consumer
    DELAYED = "delayed"  # Waiting out a retry backoff
    ACTIVE = "active"  # Held by exactly one consumer slot
    COMPLETED = "completed"
    FAILED = "failed"  # Attempt budget exhausted


def backoff_delay(attempt: int, base_ms: float) -> float:
    """
    Exponential retry delay in seconds.

    Args:
        attempt: Number of attempts already made (1 after the first failure)
        base_ms: Delay before the first retry, in milliseconds

    Returns:
        base_ms * 2 ** (attempt - 1), converted to seconds
    """
    if attempt < 1:
        return 0.0
    return base_ms * (2 ** (attempt - 1)) / 1000.0


@dataclass
class Job:
    """
    Queue entry for one order.

    Attributes:
        order_id: Order to execute
        payload: Order wire dict as submitted
        job_id: Queue-assigned id
        name: Job kind
        attempts_made: Finished attempts so far
        max_attempts: Attempt budget, including the first
        backoff_ms: Base delay for exponential backoff
        state: Current JobState
        next_attempt_at: Epoch seconds when a delayed job becomes eligible
        last_error: Message of the most recent failure
        created_at: Epoch seconds at enqueue
    """

    order_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "execute-order"
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_ms: float = 1500.0
    state: JobState = JobState.WAITING
    next_attempt_at: Optional[float] = None
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def attempt(self) -> int:
        """1-based number of the attempt currently running or next to run."""
        return self.attempts_made + 1

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_made)

    def record_failure(self, error: BaseException, now: Optional[float] = None) -> float:
        """
        Count a failed attempt and decide what happens next.

        Returns:
            Retry delay in seconds, or -1.0 when the job is now permanently failed
        """
        now = time.time() if now is None else now
        self.attempts_made += 1
        self.last_error = str(error) or type(error).__name__

        if self.attempts_made >= self.max_attempts:
            self.state = JobState.FAILED
            self.next_attempt_at = None
            return -1.0

        delay = backoff_delay(self.attempts_made, self.backoff_ms)
        self.state = JobState.DELAYED
        self.next_attempt_at = now + delay
        return delay

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "orderId": self.order_id,
            "name": self.name,
            "payload": self.payload,
            "attemptsMade": self.attempts_made,
            "maxAttempts": self.max_attempts,
            "backoffMs": self.backoff_ms,
            "state": self.state.value,
            "nextAttemptAt": self.next_attempt_at,
            "lastError": self.last_error,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["jobId"],
            order_id=data["orderId"],
            name=data.get("name", "execute-order"),
            payload=data.get("payload") or {},
            attempts_made=int(data.get("attemptsMade", 0)),
            max_attempts=int(data.get("maxAttempts", 3)),
            backoff_ms=float(data.get("backoffMs", 1500.0)),
            state=JobState(data.get("state", JobState.WAITING.value)),
            next_attempt_at=data.get("nextAttemptAt"),
            last_error=data.get("lastError"),
            created_at=float(data.get("createdAt", time.time())),
        )
