"""
Tests for the Monitoring Module.

Tests cover:
- Log context binding across asyncio tasks
- JSON and console formatting
- Handler installation
- Health checks and the aggregate report
"""

import asyncio
import json
import logging
import sys

import pytest

from order_engine.database.store import InMemoryOrderStore
from order_engine.monitoring import (
    BoundLogger,
    ConsoleFormatter,
    HealthChecker,
    HealthCheck,
    HealthCheckResult,
    HealthStatus,
    JsonFormatter,
    RedisHealthCheck,
    StoreHealthCheck,
    bind,
    clear_context,
    configure_logging,
    get_context,
)
from order_engine.monitoring import logging as engine_logging


def make_record(msg="Test message", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="order_engine.test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class StaticCheck(HealthCheck):
    """Check returning a fixed status."""

    def __init__(self, name, status, critical=True):
        super().__init__(name, critical=critical)
        self.status = status

    def check(self) -> HealthCheckResult:
        return self._timed_check(lambda: (self.status, self.status.value, {}))


class TestLogContext:
    """Tests for context binding."""

    def setup_method(self):
        clear_context()

    def test_bind_and_clear(self):
        bind(order_id="o-1")
        bind(attempt=2)
        assert get_context().copy() == {"order_id": "o-1", "attempt": 2}

        clear_context()
        assert get_context().fields == {}

    def test_bound_logger_restores_previous(self):
        bind(order_id="outer")

        with BoundLogger(order_id="inner", job_id="j-1"):
            assert get_context().copy() == {"order_id": "inner", "job_id": "j-1"}

        assert get_context().copy() == {"order_id": "outer"}
        clear_context()

    @pytest.mark.asyncio
    async def test_tasks_keep_separate_context(self):
        """Test concurrent tasks never see each other's fields."""
        seen = {}

        async def job(order_id):
            with BoundLogger(order_id=order_id):
                await asyncio.sleep(0.01)
                seen[order_id] = get_context().copy()["order_id"]

        await asyncio.gather(*(job(f"o-{i}") for i in range(5)))

        assert seen == {f"o-{i}": f"o-{i}" for i in range(5)}
        assert get_context().fields == {}


class TestFormatters:
    """Tests for log formatting."""

    def setup_method(self):
        clear_context()

    def test_json_formatter(self):
        formatter = JsonFormatter(extra_fields={"service": "order-engine"})

        with BoundLogger(order_id="o-7"):
            parsed = json.loads(formatter.format(make_record(dex="raydium")))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "order_engine.test"
        assert parsed["context"] == {"order_id": "o-7"}
        assert parsed["dex"] == "raydium"
        assert parsed["service"] == "order-engine"
        assert parsed["source"]["line"] == 1
        assert "@timestamp" in parsed

    def test_json_formatter_exception(self):
        try:
            raise RuntimeError("venue down")
        except RuntimeError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        parsed = json.loads(JsonFormatter(include_source=False).format(record))

        assert parsed["exception"]["type"] == "RuntimeError"
        assert parsed["exception"]["message"] == "venue down"
        assert "source" not in parsed

    def test_console_formatter(self):
        formatter = ConsoleFormatter(use_colors=False)

        with BoundLogger(order_id="o-9"):
            output = formatter.format(make_record("Console test"))

        assert "Console test" in output
        assert "INFO" in output
        assert "order_id=o-9" in output
        assert "\033[" not in output


class TestConfigureLogging:
    """Tests for root handler installation."""

    def teardown_method(self):
        root = logging.getLogger()
        for handler in engine_logging._installed_handlers:
            root.removeHandler(handler)
            handler.close()
        engine_logging._installed_handlers.clear()

    def test_repeated_calls_replace_handlers(self):
        root = logging.getLogger()
        before = len(root.handlers)

        configure_logging(level="DEBUG")
        configure_logging(level="WARNING", json_output=True)

        assert len(root.handlers) == before + 1
        assert root.level == logging.WARNING
        assert isinstance(engine_logging._installed_handlers[0].formatter, JsonFormatter)

    def test_file_output_is_json(self, tmp_path):
        log_file = tmp_path / "engine.log"

        configure_logging(level=logging.INFO, console_output=False, file_output=str(log_file))
        logging.getLogger("order_engine.test").info("written to file")
        for handler in engine_logging._installed_handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "written to file"


class TestHealthChecks:
    """Tests for health checks and the aggregate report."""

    def test_health_status_enum(self):
        assert HealthStatus.HEALTHY.value == "healthy"
        assert HealthStatus.DEGRADED.value == "degraded"
        assert HealthStatus.UNHEALTHY.value == "unhealthy"

    def test_store_check(self):
        store = InMemoryOrderStore()

        result = StoreHealthCheck(store).check()

        assert result.status is HealthStatus.HEALTHY
        assert result.details["backend"] == "InMemoryOrderStore"

    def test_store_check_ping_failure(self):
        store = InMemoryOrderStore()
        store.ping = lambda: False

        assert StoreHealthCheck(store).check().status is HealthStatus.UNHEALTHY

    def test_raising_check_is_unhealthy(self):
        store = InMemoryOrderStore()

        def broken_ping():
            raise ConnectionError("refused")

        store.ping = broken_ping
        result = StoreHealthCheck(store).check()

        assert result.status is HealthStatus.UNHEALTHY
        assert "refused" in result.message

    def test_unreachable_redis(self):
        check = RedisHealthCheck("redis://127.0.0.1:1", timeout_seconds=0.5)

        result = check.check()

        assert result.status is HealthStatus.UNHEALTHY
        assert result.name == "redis"

    @pytest.mark.parametrize("statuses,expected", [
        ([], HealthStatus.UNKNOWN),
        ([(HealthStatus.HEALTHY, True)], HealthStatus.HEALTHY),
        ([(HealthStatus.HEALTHY, True), (HealthStatus.UNHEALTHY, True)], HealthStatus.UNHEALTHY),
        ([(HealthStatus.HEALTHY, True), (HealthStatus.UNHEALTHY, False)], HealthStatus.DEGRADED),
        ([(HealthStatus.HEALTHY, True), (HealthStatus.DEGRADED, True)], HealthStatus.DEGRADED),
    ])
    def test_overall_status(self, statuses, expected):
        checker = HealthChecker([
            StaticCheck(f"check_{i}", status, critical) for i, (status, critical) in enumerate(statuses)
        ])

        report = checker.run_all()

        assert report.status is expected
        assert len(report.checks) == len(statuses)

    def test_report_json_form(self):
        report = HealthChecker([StaticCheck("store", HealthStatus.HEALTHY)]).run_all()

        body = report.to_dict()

        assert body["status"] == "healthy"
        assert body["checks"][0]["name"] == "store"
        assert "timestamp" in body
