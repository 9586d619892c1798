"""
In-memory storage engine.

This module provides a dict-backed engine for:
- Unit tests
- Local development without a database file
- Reference behavior for other engines

Invariants:
    - All data is lost when the engine is discarded (not on disconnect)
    - Declared unique indexes are enforced on create and update
    - Documents are deep-copied on the way in and out

How to change safely:
    - Keep behavior aligned with SqliteEngine; shared tests cover both
    - Keep interface compatible with the StorageEngine protocol
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, List, Mapping, Optional, Sequence

from ..errors import ConstraintViolationError, EngineConnectionError
from ..query import (
    QueryFilter,
    apply_pagination,
    apply_projection,
    apply_sort,
    compile_filter,
    matches,
    resolve_path,
    values_equal,
)
from ..query.matcher import MISSING
from ..result import returns_result
from .base import Document

logger = logging.getLogger(__name__)


class InMemoryEngine:
    """In-memory implementation of StorageEngine.

    Attributes:
        unique_indexes: Fields covered by uniqueness constraints
        indexes: Additional indexed fields (reported by get_indexes only)

    Thread safety:
        Writes are serialized with an asyncio lock. Safe to use from
        multiple coroutines on one event loop.

    Example:
        >>> engine = InMemoryEngine(unique_indexes=["email"])
        >>> await engine.connect()
        >>> await engine.create({"email": "a@example.com", "name": "A"})
        >>> (await engine.create({"email": "a@example.com"})).error.code
        'CONSTRAINT_VIOLATION'
    """

    def __init__(
        self,
        unique_indexes: Sequence[str] = (),
        indexes: Sequence[str] = (),
    ) -> None:
        """Initialize in-memory engine.

        Args:
            unique_indexes: Fields covered by uniqueness constraints
            indexes: Additional non-unique indexed fields
        """
        self.unique_indexes = list(unique_indexes)
        self.indexes = list(indexes)
        self._documents: List[Document] = []
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected."""
        return self._connected

    @property
    def documents(self) -> List[Document]:
        """Stored documents (testing helper, not a copy)."""
        return self._documents

    def _require_connection(self) -> None:
        if not self._connected:
            raise EngineConnectionError("Not connected to in-memory engine", target="memory")

    def _check_unique(self, candidate: Mapping[str, Any], skip: Optional[Document] = None) -> None:
        for field in self.unique_indexes:
            value = resolve_path(candidate, field)
            if value is MISSING or value is None:
                continue
            for existing in self._documents:
                if existing is skip:
                    continue
                if values_equal(resolve_path(existing, field), value):
                    raise ConstraintViolationError(
                        f"Duplicate key error: {field} {value!r} already exists",
                        fields=[field],
                    )

    def _select(self, query_filter: Optional[QueryFilter]) -> List[Document]:
        native = compile_filter(query_filter)
        return [doc for doc in self._documents if matches(doc, native)]

    @returns_result("connect")
    async def connect(self) -> "InMemoryEngine":
        """Connect (marks the engine usable). Returns the engine as handle."""
        if not self._connected:
            self._connected = True
            logger.debug("InMemoryEngine connected")
        return self

    @returns_result("disconnect")
    async def disconnect(self) -> None:
        """Disconnect. Stored documents are kept."""
        if self._connected:
            self._connected = False
            logger.debug("InMemoryEngine disconnected")

    @returns_result("find")
    async def find(self, query_filter: Optional[QueryFilter] = None) -> List[Document]:
        """Find documents: predicate, sort, pagination, projection."""
        self._require_connection()
        selected = self._select(query_filter)
        if query_filter is not None:
            selected = apply_sort(selected, query_filter.sort)
            selected = apply_pagination(selected, query_filter.page, query_filter.limit)
            fields = query_filter.fields
        else:
            fields = None
        return [apply_projection(copy.deepcopy(doc), fields) for doc in selected]

    @returns_result("create")
    async def create(self, entity: Mapping[str, Any]) -> Document:
        """Store a copy of the entity."""
        self._require_connection()
        document = copy.deepcopy(dict(entity))
        async with self._lock:
            self._check_unique(document)
            self._documents.append(document)
        return copy.deepcopy(document)

    @returns_result("update")
    async def update(self, query_filter: QueryFilter, patch: Mapping[str, Any]) -> List[Document]:
        """Shallow-merge the patch onto each match, one document at a time."""
        self._require_connection()
        updated: List[Document] = []
        async with self._lock:
            for document in self._select(query_filter):
                candidate = {**document, **copy.deepcopy(dict(patch))}
                self._check_unique(candidate, skip=document)
                document.clear()
                document.update(candidate)
                updated.append(copy.deepcopy(document))
        return updated

    @returns_result("delete")
    async def delete(self, query_filter: Optional[QueryFilter] = None) -> int:
        """Remove every match and return how many were removed."""
        self._require_connection()
        async with self._lock:
            doomed = {id(doc) for doc in self._select(query_filter)}
            self._documents = [doc for doc in self._documents if id(doc) not in doomed]
        return len(doomed)

    @returns_result("get_indexes")
    async def get_indexes(self) -> List[str]:
        """All indexed fields, unique ones first."""
        return list(dict.fromkeys([*self.unique_indexes, *self.indexes]))

    @returns_result("get_unique_indexes")
    async def get_unique_indexes(self) -> List[str]:
        """Fields covered by uniqueness constraints."""
        return list(self.unique_indexes)
