"""
Configuration management for the order execution engine.

Supports loading from:
- Environment variables
- YAML/JSON config files
- Command-line arguments
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """HTTP/WebSocket server configuration."""
    host: str = "0.0.0.0"
    port: int = 4000
    embedded_worker: bool = True  # Run the job processor inside the API process


@dataclass
class DatabaseConfig:
    """Order store configuration."""
    backend: str = "memory"  # memory, sql
    url: str = "sqlite:///order_engine.db"
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


@dataclass
class RedisConfig:
    """Redis connection used for cross-process status fan-out and the durable queue."""
    url: str = "redis://127.0.0.1:6379"
    enabled: bool = False
    channel_prefix: str = "order:status:"


@dataclass
class QueueConfig:
    """Job queue configuration."""
    backend: str = "memory"  # memory, redis
    name: str = "order-execution"
    max_attempts: int = 3
    backoff_ms: float = 1500.0
    concurrency: int = 5
    poll_interval: float = 1.0
    lock_duration: float = 30.0  # Seconds before an unfinished Redis job counts as stalled


@dataclass
class VenueConfig:
    """Simulated venue behaviour."""
    base_price: float = 0.0025  # 0.0025 SOL per token
    raydium_fee_bps: float = 30.0
    meteora_fee_bps: float = 20.0
    quote_latency_ms: Tuple[float, float] = (180.0, 360.0)
    settlement_latency_ms: Tuple[float, float] = (1800.0, 2600.0)
    build_delay_ms: float = 400.0
    max_slippage: float = 0.01  # +/-1%
    failure_rate: float = 0.0  # Probability a quote request raises
    stage_timeout_s: Optional[float] = None  # Bound on quote/execution calls
    seed: Optional[int] = None


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    json_output: bool = False
    file: Optional[str] = None


@dataclass
class Config:
    """Main configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    venues: VenueConfig = field(default_factory=VenueConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Environment
    env: str = "development"  # development, staging, production
    debug: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls()

        if "server" in data:
            config.server = ServerConfig(**data["server"])
        if "database" in data:
            config.database = DatabaseConfig(**data["database"])
        if "redis" in data:
            config.redis = RedisConfig(**data["redis"])
        if "queue" in data:
            config.queue = QueueConfig(**data["queue"])
        if "venues" in data:
            venues = dict(data["venues"])
            for key in ("quote_latency_ms", "settlement_latency_ms"):
                if key in venues:
                    venues[key] = tuple(venues[key])
            config.venues = VenueConfig(**venues)
        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])
        if "env" in data:
            config.env = data["env"]
        if "debug" in data:
            config.debug = data["debug"]

        return config

    @classmethod
    def from_file(cls, path: str) -> "Config":
        """Load config from JSON or YAML file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load config from environment variables."""
        config = cls()
        apply_env(config)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "embedded_worker": self.server.embedded_worker,
            },
            "database": {
                "backend": self.database.backend,
                "url": self.database.url,
                "pool_size": self.database.pool_size,
                "max_overflow": self.database.max_overflow,
                "echo": self.database.echo,
            },
            "redis": {
                "url": self.redis.url,
                "enabled": self.redis.enabled,
                "channel_prefix": self.redis.channel_prefix,
            },
            "queue": {
                "backend": self.queue.backend,
                "name": self.queue.name,
                "max_attempts": self.queue.max_attempts,
                "backoff_ms": self.queue.backoff_ms,
                "concurrency": self.queue.concurrency,
                "poll_interval": self.queue.poll_interval,
                "lock_duration": self.queue.lock_duration,
            },
            "venues": {
                "base_price": self.venues.base_price,
                "raydium_fee_bps": self.venues.raydium_fee_bps,
                "meteora_fee_bps": self.venues.meteora_fee_bps,
                "quote_latency_ms": list(self.venues.quote_latency_ms),
                "settlement_latency_ms": list(self.venues.settlement_latency_ms),
                "build_delay_ms": self.venues.build_delay_ms,
                "max_slippage": self.venues.max_slippage,
                "failure_rate": self.venues.failure_rate,
                "stage_timeout_s": self.venues.stage_timeout_s,
                "seed": self.venues.seed,
            },
            "logging": {
                "level": self.logging.level,
                "json_output": self.logging.json_output,
                "file": self.logging.file,
            },
            "env": self.env,
            "debug": self.debug,
        }

    def save(self, path: str) -> None:
        """Save config to JSON or YAML file (by extension)."""
        with open(path, "w") as f:
            if Path(path).suffix in (".yaml", ".yml"):
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)


def _number_from_env(name: str, fallback: float, cast: Callable[[str], Any] = float) -> Any:
    """Read a numeric env var, keeping the fallback when unset or malformed."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return fallback
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {fallback}")
        return fallback


def _flag_from_env(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


def apply_env(config: Config) -> Config:
    """Override config values with any environment variables that are set."""
    config.server.port = _number_from_env("PORT", config.server.port, int)

    # Redis
    if redis_url := os.getenv("REDIS_URL"):
        config.redis.url = redis_url
        config.redis.enabled = True
    if (enabled := _flag_from_env("REDIS_ENABLED")) is not None:
        config.redis.enabled = enabled

    # Queue
    if queue_name := os.getenv("ORDER_QUEUE_NAME"):
        config.queue.name = queue_name
    if queue_backend := os.getenv("ORDER_QUEUE_BACKEND"):
        config.queue.backend = queue_backend
    config.queue.max_attempts = _number_from_env("ORDER_MAX_ATTEMPTS", config.queue.max_attempts, int)
    config.queue.backoff_ms = _number_from_env("ORDER_BACKOFF_MS", config.queue.backoff_ms)
    config.queue.concurrency = _number_from_env("ORDER_CONCURRENCY", config.queue.concurrency, int)

    # Venues
    config.venues.base_price = _number_from_env("MOCK_BASE_PRICE", config.venues.base_price)
    config.venues.raydium_fee_bps = _number_from_env("RAYDIUM_FEE_BPS", config.venues.raydium_fee_bps)
    config.venues.meteora_fee_bps = _number_from_env("METEORA_FEE_BPS", config.venues.meteora_fee_bps)

    # Store
    if db_url := os.getenv("DATABASE_URL"):
        config.database.url = db_url
        config.database.backend = "sql"
    if store_backend := os.getenv("ORDER_STORE_BACKEND"):
        config.database.backend = store_backend

    # Environment
    if env := os.getenv("ORDER_ENGINE_ENV"):
        config.env = env
    if (debug := _flag_from_env("ORDER_ENGINE_DEBUG")) is not None:
        config.debug = debug

    # Logging
    if log_level := os.getenv("ORDER_ENGINE_LOG_LEVEL"):
        config.logging.level = log_level
    if (json_output := _flag_from_env("ORDER_ENGINE_LOG_JSON")) is not None:
        config.logging.json_output = json_output
    if log_file := os.getenv("ORDER_ENGINE_LOG_FILE"):
        config.logging.file = log_file

    return config


def load_config(
    config_file: Optional[str] = None,
    use_env: bool = True
) -> Config:
    """
    Load configuration with precedence:
    1. Environment variables (if use_env=True)
    2. Config file (if provided)
    3. Defaults
    """
    config = Config()

    if config_file:
        try:
            config = Config.from_file(config_file)
            logger.info(f"Loaded config from {config_file}")
        except FileNotFoundError:
            logger.warning(f"Config file not found: {config_file}, using defaults")

    if use_env:
        apply_env(config)

    return config


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging based on config."""
    from .monitoring.logging import configure_logging

    configure_logging(
        level=config.level,
        json_output=config.json_output,
        file_output=config.file,
    )
