"""
Monitoring module.

Handles:
- Structured logging with per-task context
- Health checks for the store and Redis
"""

from .logging import (
    BoundLogger,
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    bind,
    clear_context,
    configure_logging,
    get_context,
)
from .health import (
    HealthCheck,
    HealthChecker,
    HealthCheckResult,
    HealthReport,
    HealthStatus,
    RedisHealthCheck,
    StoreHealthCheck,
)

__all__ = [
    "BoundLogger",
    "ConsoleFormatter",
    "JsonFormatter",
    "LogContext",
    "bind",
    "clear_context",
    "configure_logging",
    "get_context",
    "HealthCheck",
    "HealthChecker",
    "HealthCheckResult",
    "HealthReport",
    "HealthStatus",
    "RedisHealthCheck",
    "StoreHealthCheck",
]
