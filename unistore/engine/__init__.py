"""
Storage engine adapters for unistore.

This module provides the engine contract and its implementations:
- StorageEngine: Protocol every backing-store adapter satisfies
- InMemoryEngine: Dict-backed engine for tests and local development
- SqliteEngine: One collection stored in a shared SqliteDatabase

Engines return a Result from every operation; optional capabilities
(get_indexes, get_unique_indexes) are detected with engine_capabilities().
"""

from .base import (
    Document,
    EngineCapability,
    StorageEngine,
    create_engine,
    engine_capabilities,
)
from .memory import InMemoryEngine
from .sqlite import SqliteDatabase, SqliteEngine, compile_where

__all__ = [
    "Document",
    "EngineCapability",
    "StorageEngine",
    "create_engine",
    "engine_capabilities",
    "InMemoryEngine",
    "SqliteDatabase",
    "SqliteEngine",
    "compile_where",
]
