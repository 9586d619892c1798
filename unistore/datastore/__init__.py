"""
Datastores: engine-agnostic CRUD plus the unique-index upsert.

- BaseDataStore: delegates CRUD to a StorageEngine, optional typed entities
- DataStore: adds create_or_update_by_unique_indexes() and should_update()
"""

from .base import BaseDataStore
from .store import DataStore

__all__ = ["BaseDataStore", "DataStore"]
