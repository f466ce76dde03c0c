"""
Health checks for the order execution engine.

Checks are synchronous and cheap; the API runs them off the event loop.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from ..database.store import OrderStore

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check status values."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "latency_ms": round(self.latency_ms, 3),
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


CheckOutcome = Tuple[HealthStatus, str, Dict[str, Any]]


class HealthCheck(ABC):
    """Base class for health checks."""

    def __init__(self, name: str, timeout_seconds: float = 5.0, critical: bool = True):
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.critical = critical

    @abstractmethod
    def check(self) -> HealthCheckResult:
        """Execute the health check."""

    def _timed_check(self, check_func: Callable[[], CheckOutcome]) -> HealthCheckResult:
        """Execute check with timing."""
        start = time.time()
        try:
            status, message, details = check_func()
        except Exception as e:
            return HealthCheckResult(
                name=self.name,
                status=HealthStatus.UNHEALTHY,
                message=f"Check failed: {e}",
                latency_ms=(time.time() - start) * 1000,
                details={"error": str(e)},
            )
        return HealthCheckResult(
            name=self.name,
            status=status,
            message=message,
            latency_ms=(time.time() - start) * 1000,
            details=details,
        )


class StoreHealthCheck(HealthCheck):
    """Order store reachability."""

    def __init__(self, store: OrderStore, name: str = "order_store"):
        super().__init__(name, critical=True)
        self.store = store

    def check(self) -> HealthCheckResult:
        def _check() -> CheckOutcome:
            details = {"backend": type(self.store).__name__}
            if self.store.ping():
                return HealthStatus.HEALTHY, "Order store reachable", details
            return HealthStatus.UNHEALTHY, "Order store ping failed", details

        return self._timed_check(_check)


class RedisHealthCheck(HealthCheck):
    """Health check for Redis connectivity."""

    def __init__(self, url: str, name: str = "redis", timeout_seconds: float = 2.0, critical: bool = True):
        super().__init__(name, timeout_seconds, critical)
        self.url = url

    def check(self) -> HealthCheckResult:
        """Check Redis connectivity."""
        def _check() -> CheckOutcome:
            client = redis.Redis.from_url(
                self.url,
                socket_timeout=self.timeout_seconds,
                socket_connect_timeout=self.timeout_seconds,
            )
            try:
                if client.ping():
                    return HealthStatus.HEALTHY, "Redis connection successful", {"url": self.url}
                return HealthStatus.UNHEALTHY, "Redis ping failed", {"url": self.url}
            finally:
                client.close()

        return self._timed_check(_check)


@dataclass
class HealthReport:
    """Aggregate of all check results."""

    status: HealthStatus
    checks: List[HealthCheckResult]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "checks": [c.to_dict() for c in self.checks],
        }


class HealthChecker:
    """Runs registered checks and derives an overall status."""

    def __init__(self, checks: Optional[List[HealthCheck]] = None):
        self._checks: Dict[str, HealthCheck] = {}
        for check in checks or []:
            self.register(check)

    def register(self, check: HealthCheck) -> None:
        self._checks[check.name] = check

    def run_all(self) -> HealthReport:
        results = []
        for name, check in self._checks.items():
            result = check.check()
            if result.status is not HealthStatus.HEALTHY:
                logger.warning(f"Health check '{name}': {result.status.value} ({result.message})")
            results.append(result)

        if not results:
            overall = HealthStatus.UNKNOWN
        elif any(r.status is HealthStatus.UNHEALTHY and self._checks[r.name].critical for r in results):
            overall = HealthStatus.UNHEALTHY
        elif all(r.status is HealthStatus.HEALTHY for r in results):
            overall = HealthStatus.HEALTHY
        else:
            overall = HealthStatus.DEGRADED

        return HealthReport(status=overall, checks=results)
