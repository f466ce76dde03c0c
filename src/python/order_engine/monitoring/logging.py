"""
Structured Logging for the order execution engine.

Provides:
- JSON-formatted log output for aggregation (ELK, Loki)
- Human-readable console output
- Contextual fields (order_id, job_id, attempt) bound per asyncio task
"""

import contextvars
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional, Union


@dataclass
class LogContext:
    """Context fields attached to every record logged by the current task."""

    fields: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> Dict[str, Any]:
        """Return a copy of context fields."""
        return self.fields.copy()


# Each asyncio task inherits a snapshot, so concurrent jobs keep separate fields
_context_var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "order_engine_log_context", default={}
)


def get_context() -> LogContext:
    """Get the current logging context."""
    return LogContext(fields=dict(_context_var.get()))


def bind(**kwargs) -> None:
    """Bind fields to the current logging context."""
    fields = dict(_context_var.get())
    fields.update(kwargs)
    _context_var.set(fields)


def clear_context() -> None:
    """Clear all fields from the current logging context."""
    _context_var.set({})


class BoundLogger:
    """Context manager for temporarily binding log context."""

    def __init__(self, **kwargs):
        self.bindings = kwargs
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> 'BoundLogger':
        fields = dict(_context_var.get())
        fields.update(self.bindings)
        self._token = _context_var.set(fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _context_var.reset(self._token)
            self._token = None


_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName',
}


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        include_context: bool = True,
        include_source: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        self.include_context = include_context
        self.include_source = include_source
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        result: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if self.include_context:
            context = get_context().copy()
            if context:
                result["context"] = context

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith('_'):
                result[key] = value

        result.update(self.extra_fields)

        if record.exc_info:
            result["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_source:
            result["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(result, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with colors."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(
        self,
        use_colors: bool = True,
        include_context: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        super().__init__()
        self.use_colors = use_colors
        self.include_context = include_context
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        timestamp = datetime.fromtimestamp(record.created).strftime(self.timestamp_format)
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, '')
            level_str = f"{color}{level:8}{self.RESET}"
        else:
            level_str = f"{level:8}"

        parts = [f"{timestamp} {level_str} [{record.name}] {record.getMessage()}"]

        if self.include_context:
            context = get_context().copy()
            if context:
                context_str = " ".join(f"{k}={v}" for k, v in context.items())
                parts[0] += f"  | {context_str}"

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return "\n".join(parts)


_installed_handlers: List[logging.Handler] = []


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    console_output: bool = True,
    file_output: Optional[str] = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
    extra_fields: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Configure root logging.

    Replaces handlers installed by a previous call, so it is safe to call
    again after reloading config.
    """
    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(level)

    json_formatter = JsonFormatter(extra_fields=extra_fields)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        if json_output:
            console_handler.setFormatter(json_formatter)
        else:
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stdout.isatty()))
        root.addHandler(console_handler)
        _installed_handlers.append(console_handler)

    if file_output:
        file_handler = RotatingFileHandler(file_output, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(json_formatter)
        root.addHandler(file_handler)
        _installed_handlers.append(file_handler)
