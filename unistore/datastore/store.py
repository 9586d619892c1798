"""
DataStore with the create-or-update-by-unique-indexes upsert.

The upsert is conflict driven: it always tries create() first and only
reconciles when the engine reports a uniqueness violation.

    create(data)
      ├─ ok ─────────────────────────────► [created]
      ├─ other failure ──────────────────► failure (unchanged)
      └─ constraint violation
           get_unique_indexes()
           find(AND of unique fields present in data)
           for each existing entity:
               equal to data ─► keep (no write)
               otherwise ─────► update(same filter, data), keep all returned

Invariants:
    - Repeating an upsert with identical data performs no write
    - Unique indexes are fetched on every reconciliation, never cached
    - The first find/update failure aborts the loop and is returned
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

from ..errors import DataStoreError, is_constraint_violation
from ..query import QueryFilter, get_query_conditions_by_unique_indexes
from ..result import Result, returns_result
from ..utils import deep_equal
from .base import BaseDataStore, T

logger = logging.getLogger(__name__)


def _is_constraint_failure(error: Optional[DataStoreError]) -> bool:
    if error is None:
        return False
    return is_constraint_violation(error) or is_constraint_violation(error.details.get("cause"))


class DataStore(BaseDataStore[T]):
    """Engine-agnostic store with an idempotent unique-index upsert.

    Example:
        >>> store = DataStore(InMemoryEngine(unique_indexes=["email"]))
        >>> await store.connect()
        >>> await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "A"})
        >>> result = await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "B"})
        >>> result.data
        [{'email': 'a@x.io', 'name': 'B'}]
    """

    @staticmethod
    def should_update(
        existing: Any,
        new: Any,
        fields: Optional[Sequence[str]] = None,
    ) -> bool:
        """Whether an existing entity differs from the new one.

        Args:
            existing: Stored entity
            new: Incoming entity
            fields: Compare only these fields; None compares whole entities
        """
        return not deep_equal(existing, new, fields)

    async def _get_query_filter_by_unique_indexes(self, data: Mapping[str, Any]) -> Result[QueryFilter]:
        unique_indexes = await self.get_unique_indexes()
        if not unique_indexes.ok:
            return Result.failure(unique_indexes.error or "Failed to fetch unique indexes")
        if not unique_indexes.data:
            return Result.failure("Failed to fetch unique indexes")

        conditions = get_query_conditions_by_unique_indexes(data, unique_indexes.data)
        if not conditions.ok:
            return Result.failure(conditions.error)
        return Result.success(QueryFilter(conditions=conditions.data))

    @returns_result("create_or_update_by_unique_indexes")
    async def create_or_update_by_unique_indexes(
        self,
        data: Union[T, Mapping[str, Any]],
    ) -> Result[List[T]]:
        """Create an entity, or reconcile it with the entities it collides with.

        Returns:
            Result with the created entity, or every matched entity after
            reconciliation (unchanged ones as stored, changed ones as updated)
        """
        document = self._to_document(data)

        created = await self.engine.create(document)
        if created.ok:
            return Result.success([self._from_document(created.data)])
        if not _is_constraint_failure(created.error):
            return created

        logger.debug(f"Unique constraint violated, reconciling: {created.error}")

        query_filter = await self._get_query_filter_by_unique_indexes(document)
        if not query_filter.ok:
            return query_filter

        found = await self.engine.find(query_filter.data)
        if not found.ok:
            return found

        results: List[Any] = []
        for existing in found.data:
            if not self.should_update(existing, document):
                logger.debug("Existing entity is identical, skipping update")
                results.append(self._from_document(existing))
                continue

            updated = await self.engine.update(query_filter.data, document)
            if not updated.ok:
                return updated
            results.extend(self._from_document(doc) for doc in updated.data)

        return Result.success(results)
