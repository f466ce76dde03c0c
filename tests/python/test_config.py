"""
Tests for configuration loading.
"""

import json

import pytest
import yaml

from order_engine.config import Config, QueueConfig, VenueConfig, apply_env, load_config

ENV_VARS = [
    "PORT", "REDIS_URL", "REDIS_ENABLED", "ORDER_QUEUE_NAME", "ORDER_QUEUE_BACKEND",
    "ORDER_MAX_ATTEMPTS", "ORDER_BACKOFF_MS", "ORDER_CONCURRENCY", "MOCK_BASE_PRICE",
    "RAYDIUM_FEE_BPS", "METEORA_FEE_BPS", "DATABASE_URL", "ORDER_STORE_BACKEND",
    "ORDER_ENGINE_ENV", "ORDER_ENGINE_DEBUG", "ORDER_ENGINE_LOG_LEVEL",
    "ORDER_ENGINE_LOG_JSON", "ORDER_ENGINE_LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_defaults(self):
        config = Config()

        assert config.server.port == 4000
        assert config.queue == QueueConfig(max_attempts=3, backoff_ms=1500.0, concurrency=5)
        assert config.venues.raydium_fee_bps == 30.0
        assert config.venues.meteora_fee_bps == 20.0
        assert config.venues.base_price == 0.0025
        assert config.database.backend == "memory"
        assert not config.redis.enabled


class TestFromDict:

    def test_sections_and_latency_tuples(self):
        config = Config.from_dict({
            "queue": {"max_attempts": 5},
            "venues": {"quote_latency_ms": [1, 2], "settlement_latency_ms": [3, 4]},
            "env": "staging",
        })

        assert config.queue.max_attempts == 5
        assert config.venues.quote_latency_ms == (1, 2)
        assert config.venues.settlement_latency_ms == (3, 4)
        assert config.env == "staging"

    def test_to_dict_round_trip(self):
        config = Config.from_dict({"venues": {"seed": 7, "failure_rate": 0.1}, "debug": True})

        assert Config.from_dict(config.to_dict()) == config

    def test_unknown_key_rejected(self):
        with pytest.raises(TypeError):
            Config.from_dict({"queue": {"retries": 5}})


class TestFiles:

    def test_yaml_save_and_load(self, tmp_path):
        path = tmp_path / "engine.yaml"
        config = Config(venues=VenueConfig(seed=3, quote_latency_ms=(10.0, 20.0)))

        config.save(str(path))

        assert yaml.safe_load(path.read_text())["venues"]["seed"] == 3
        assert Config.from_file(str(path)) == config

    def test_json_save_and_load(self, tmp_path):
        path = tmp_path / "engine.json"
        config = Config(queue=QueueConfig(name="swaps", backend="redis"))

        config.save(str(path))

        assert json.loads(path.read_text())["queue"]["name"] == "swaps"
        assert Config.from_file(str(path)) == config

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_file(str(tmp_path / "absent.yaml"))

    def test_load_config_falls_back_to_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"), use_env=False)

        assert config == Config()


class TestEnvironment:

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("ORDER_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("ORDER_BACKOFF_MS", "250")
        monkeypatch.setenv("RAYDIUM_FEE_BPS", "25")
        monkeypatch.setenv("ORDER_ENGINE_LOG_JSON", "true")

        config = Config.from_env()

        assert config.server.port == 8080
        assert config.queue.max_attempts == 4
        assert config.queue.backoff_ms == 250.0
        assert config.venues.raydium_fee_bps == 25.0
        assert config.logging.json_output is True

    def test_redis_url_enables_redis(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")

        config = Config.from_env()

        assert config.redis.url == "redis://cache:6379/2"
        assert config.redis.enabled

    def test_database_url_selects_sql_store(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://orders@db/orders")

        config = Config.from_env()

        assert config.database.backend == "sql"
        assert config.database.url == "postgresql://orders@db/orders"

    def test_non_numeric_value_keeps_fallback(self, monkeypatch, caplog):
        monkeypatch.setenv("ORDER_CONCURRENCY", "lots")

        config = apply_env(Config())

        assert config.queue.concurrency == 5
        assert "ORDER_CONCURRENCY" in caplog.text

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.json"
        Config(queue=QueueConfig(max_attempts=9)).save(str(path))
        monkeypatch.setenv("ORDER_MAX_ATTEMPTS", "2")

        assert load_config(str(path)).queue.max_attempts == 2
        assert load_config(str(path), use_env=False).queue.max_attempts == 9
