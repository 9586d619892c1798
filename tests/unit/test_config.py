"""
Unit tests for configuration loading and the engine factory.
"""

import logging

import json_log_formatter
import pytest

from unistore.config import EngineBackend, ObservabilityConfig, SqliteConfig, StoreConfig
from unistore.engine import InMemoryEngine, SqliteEngine, create_engine
from unistore.observability import setup_logging


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("STORE_BACKEND", "SQLITE_PATH", "SQLITE_BUSY_TIMEOUT_MS", "SQLITE_WAL_MODE", "LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)

        config = StoreConfig.from_env()

        assert config.backend == EngineBackend.MEMORY
        assert config.sqlite == SqliteConfig()
        assert config.observability.log_format == "json"

    def test_sqlite_from_env(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "SQLITE")
        monkeypatch.setenv("SQLITE_PATH", "/tmp/x.db")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = StoreConfig.from_env()

        assert config.backend == EngineBackend.SQLITE
        assert config.sqlite == SqliteConfig(path="/tmp/x.db", busy_timeout_ms=250, wal_mode=False)

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "mongo")

        with pytest.raises(ValueError, match="STORE_BACKEND"):
            StoreConfig.from_env()

    def test_invalid_log_format(self):
        config = StoreConfig(observability=ObservabilityConfig(log_format="xml"))

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_negative_timeout(self):
        config = StoreConfig(backend=EngineBackend.SQLITE, sqlite=SqliteConfig(busy_timeout_ms=-1))

        with pytest.raises(ValueError):
            config.validate()

    def test_config_is_immutable(self):
        with pytest.raises(AttributeError):
            SqliteConfig().path = "other.db"  # type: ignore[misc]


class TestCreateEngine:
    """Tests for create_engine()."""

    def test_memory(self):
        engine = create_engine(StoreConfig(), "users", unique_indexes=["email"])

        assert isinstance(engine, InMemoryEngine)
        assert engine.unique_indexes == ["email"]

    def test_sqlite(self, tmp_path):
        config = StoreConfig(backend=EngineBackend.SQLITE, sqlite=SqliteConfig(path=str(tmp_path / "s.db")))

        engine = create_engine(config, "users", unique_indexes=["email"])

        assert isinstance(engine, SqliteEngine)
        assert engine.collection == "users"
        assert engine.database.path == str(tmp_path / "s.db")


class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_level="DEBUG")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        setup_logging(StoreConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
