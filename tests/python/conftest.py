"""
Pytest configuration for order_engine tests.
"""

import sys
from pathlib import Path

import pytest

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src" / "python"))

from order_engine.config import Config, QueueConfig, VenueConfig
from order_engine.database.db import SQLOrderStore
from order_engine.database.store import InMemoryOrderStore
from order_engine.events.bus import StatusBus
from order_engine.execution.routing import DexRouter
from order_engine.jobs.queue import InMemoryJobQueue


@pytest.fixture
def venue_config():
    """Venues with no simulated latency and a fixed seed."""
    return VenueConfig(
        quote_latency_ms=(0.0, 0.0),
        settlement_latency_ms=(0.0, 0.0),
        build_delay_ms=0.0,
        seed=42,
    )


@pytest.fixture
def queue_config():
    """Short backoff so retry tests finish quickly."""
    return QueueConfig(max_attempts=3, backoff_ms=10.0, concurrency=5, poll_interval=0.05)


@pytest.fixture
def config(venue_config, queue_config):
    """Engine config for in-process tests."""
    return Config(venues=venue_config, queue=queue_config)


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def sql_store():
    """SQLite in-memory order store."""
    db = SQLOrderStore("sqlite:///:memory:")
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def bus(store):
    return StatusBus(store)


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def router(venue_config):
    return DexRouter.from_config(venue_config)
