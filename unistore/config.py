"""
Configuration management for unistore.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable; deprecate by logging a warning
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class EngineBackend(Enum):
    """Supported storage engine backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite engine configuration.

    Attributes:
        path: Database file path (":memory:" for a private in-memory database)
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: Enable SQLite WAL journal mode
    """

    path: str = "unistore.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "unistore.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class StoreConfig:
    """Complete unistore configuration.

    Attributes:
        backend: Which storage engine to build
        sqlite: SQLite configuration (if backend is SQLITE)
        observability: Logging configuration
    """

    backend: EngineBackend = EngineBackend.MEMORY
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "memory").lower()
        try:
            backend = EngineBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite")

        config = cls(
            backend=backend,
            sqlite=SqliteConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backend == EngineBackend.SQLITE:
            if not self.sqlite.path:
                raise ValueError("SQLITE_PATH is required when STORE_BACKEND=sqlite")
            if self.sqlite.busy_timeout_ms < 0:
                raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Store configuration loaded",
            extra={
                "backend": self.backend.value,
                "sqlite_path": self.sqlite.path if self.backend == EngineBackend.SQLITE else None,
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
            },
        )
