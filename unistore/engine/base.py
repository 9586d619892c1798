"""
Base protocol and capabilities for storage engine adapters.

This module defines the StorageEngine protocol that every backing-store
adapter must implement, the optional index capabilities, and a factory that
builds an engine from configuration.

Invariants:
    - Every operation returns a Result; exceptions never cross the protocol
    - connect() and disconnect() are idempotent
    - find() applies predicate, sort, pagination and projection in that order
    - create()/update() report uniqueness violations as ConstraintViolationError

How to change safely:
    - Protocol changes require updating all implementations
    - New optional capabilities get an EngineCapability member and are
      detected with engine_capabilities(), never assumed
"""

from __future__ import annotations

from abc import abstractmethod
from enum import Enum
from typing import (
    Any,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    TYPE_CHECKING,
    runtime_checkable,
)
import logging

from ..query import QueryFilter
from ..result import Result

if TYPE_CHECKING:
    from ..config import StoreConfig
    from .sqlite import SqliteDatabase

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class EngineCapability(Enum):
    """Optional engine capabilities."""

    INDEXES = "get_indexes"
    UNIQUE_INDEXES = "get_unique_indexes"


@runtime_checkable
class StorageEngine(Protocol):
    """Protocol for storage engine adapters.

    Connection contract:
        - connect() returns a handle; calling it again while connected
          returns the same handle without reconnecting
        - disconnect() succeeds as a no-op when not connected

    Query contract:
        - Filters are QueryFilter values compiled with compile_filter()
        - An absent filter matches every document

    Optional capabilities (detected with engine_capabilities()):
        - get_indexes() -> Result[list[str]]
        - get_unique_indexes() -> Result[list[str]]

    Example:
        >>> engine = InMemoryEngine(unique_indexes=["email"])
        >>> await engine.connect()
        >>> result = await engine.create({"email": "a@example.com"})
        >>> result.ok
        True
    """

    @abstractmethod
    async def connect(self) -> Result[Any]:
        """Establish the connection.

        Returns:
            Result with the connection handle, or EngineConnectionError
        """
        ...

    @abstractmethod
    async def disconnect(self) -> Result[None]:
        """Release the connection."""
        ...

    @abstractmethod
    async def find(self, query_filter: Optional[QueryFilter] = None) -> Result[List[Document]]:
        """Find documents matching a filter.

        Args:
            query_filter: Filter with optional page/limit/sort/fields

        Returns:
            Result with matching documents in sort order
        """
        ...

    @abstractmethod
    async def create(self, entity: Mapping[str, Any]) -> Result[Document]:
        """Store a new document.

        Returns:
            Result with the stored document, ConstraintViolationError on a
            uniqueness violation, or StorageEngineError
        """
        ...

    @abstractmethod
    async def update(
        self,
        query_filter: QueryFilter,
        patch: Mapping[str, Any],
    ) -> Result[List[Document]]:
        """Shallow-merge a patch onto every matching document.

        Each document is persisted individually; a failure stops the loop
        and leaves earlier documents updated.

        Returns:
            Result with all post-update documents
        """
        ...

    @abstractmethod
    async def delete(self, query_filter: Optional[QueryFilter] = None) -> Result[int]:
        """Delete every matching document.

        Returns:
            Result with the number of deleted documents
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...


def engine_capabilities(engine: Any) -> FrozenSet[EngineCapability]:
    """Detect which optional capabilities an engine implements."""
    return frozenset(
        capability
        for capability in EngineCapability
        if callable(getattr(engine, capability.value, None))
    )


def create_engine(
    config: "StoreConfig",
    collection: str,
    unique_indexes: Sequence[str] = (),
    indexes: Sequence[str] = (),
    database: Optional["SqliteDatabase"] = None,
) -> StorageEngine:
    """Factory function to create a storage engine from configuration.

    Args:
        config: Store configuration
        collection: Collection (table) name
        unique_indexes: Fields covered by uniqueness constraints
        indexes: Additional non-unique indexed fields
        database: Shared SQLite database (created from config if omitted)

    Returns:
        Appropriate StorageEngine implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import EngineBackend
    from .memory import InMemoryEngine
    from .sqlite import SqliteDatabase, SqliteEngine

    if config.backend == EngineBackend.MEMORY:
        return InMemoryEngine(unique_indexes=unique_indexes, indexes=indexes)
    elif config.backend == EngineBackend.SQLITE:
        if database is None:
            database = SqliteDatabase(
                config.sqlite.path,
                busy_timeout_ms=config.sqlite.busy_timeout_ms,
                wal_mode=config.sqlite.wal_mode,
            )
        return SqliteEngine(
            database,
            collection,
            unique_indexes=unique_indexes,
            indexes=indexes,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
