"""
Engine-agnostic CRUD facade.

BaseDataStore wraps one StorageEngine and exposes its operations with the
same Result-returning contract, optionally binding a pydantic model so that
callers pass and receive typed entities instead of plain documents.

Invariants:
    - Optional engine capabilities are detected once, at construction
    - A missing capability fails with UnsupportedOperationError, never raises
    - Engines only ever see plain documents

How to change safely:
    - New engine operations need a delegating method here and, if optional,
      an EngineCapability member
"""

from __future__ import annotations

import logging
from typing import Any, Generic, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from ..engine.base import Document, EngineCapability, StorageEngine, engine_capabilities
from ..errors import UnsupportedOperationError
from ..query import QueryFilter
from ..result import Result, returns_result
from ..utils import to_document

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseDataStore(Generic[T]):
    """CRUD operations delegated to a storage engine.

    Attributes:
        engine: Backing storage engine
        model: Optional pydantic model entities are validated into

    Example:
        >>> store = BaseDataStore(InMemoryEngine(unique_indexes=["email"]), model=User)
        >>> await store.connect()
        >>> result = await store.create(User(email="a@example.com", name="A"))
        >>> result.data
        User(email='a@example.com', name='A')
    """

    def __init__(
        self,
        engine: StorageEngine,
        model: Optional[Type[BaseModel]] = None,
    ) -> None:
        self.engine = engine
        self.model = model
        self._capabilities = engine_capabilities(engine)

    def supports(self, capability: EngineCapability) -> bool:
        """Whether the engine implements an optional capability."""
        return capability in self._capabilities

    def _to_document(self, entity: Union[T, Mapping[str, Any]]) -> Document:
        return to_document(entity)

    def _from_document(self, document: Document) -> Any:
        if self.model is None:
            return document
        return self.model.model_validate(document)

    @returns_result("connect")
    async def connect(self) -> Result[Any]:
        """Connect the engine. Returns the engine's connection handle."""
        return await self.engine.connect()

    @returns_result("disconnect")
    async def disconnect(self) -> Result[None]:
        """Disconnect the engine."""
        return await self.engine.disconnect()

    @returns_result("find")
    async def find(self, query_filter: Optional[QueryFilter] = None) -> Result[List[T]]:
        """Find entities matching a filter.

        Projected results (filters with ``fields``) are returned as plain
        documents even when a model is bound, since they are partial.
        """
        result = await self.engine.find(query_filter)
        if not result.ok:
            return result
        if query_filter is not None and query_filter.fields is not None:
            return Result.success(result.data)
        return Result.success([self._from_document(doc) for doc in result.data])

    @returns_result("create")
    async def create(self, entity: Union[T, Mapping[str, Any]]) -> Result[T]:
        """Create an entity."""
        result = await self.engine.create(self._to_document(entity))
        if not result.ok:
            return result
        return Result.success(self._from_document(result.data))

    @returns_result("update")
    async def update(
        self,
        query_filter: QueryFilter,
        patch: Union[T, Mapping[str, Any]],
    ) -> Result[List[T]]:
        """Shallow-merge a patch onto every matching entity."""
        result = await self.engine.update(query_filter, self._to_document(patch))
        if not result.ok:
            return result
        return Result.success([self._from_document(doc) for doc in result.data])

    @returns_result("delete")
    async def delete(self, query_filter: Optional[QueryFilter] = None) -> Result[int]:
        """Delete every matching entity. Returns the deleted count."""
        return await self.engine.delete(query_filter)

    @returns_result("get_indexes")
    async def get_indexes(self) -> Result[List[str]]:
        """List indexed fields (optional engine capability)."""
        if not self.supports(EngineCapability.INDEXES):
            raise UnsupportedOperationError("get_indexes")
        return await self.engine.get_indexes()  # type: ignore[attr-defined]

    @returns_result("get_unique_indexes")
    async def get_unique_indexes(self) -> Result[List[str]]:
        """List fields covered by uniqueness constraints (optional engine capability)."""
        if not self.supports(EngineCapability.UNIQUE_INDEXES):
            raise UnsupportedOperationError("get_unique_indexes")
        return await self.engine.get_unique_indexes()  # type: ignore[attr-defined]
