"""
unistore - storage-engine-agnostic data access.

Architecture:
    QueryFilter ──compile_filter()──► native filter ──► StorageEngine
                                                          ├─ InMemoryEngine
                                                          └─ SqliteEngine
    DataStore(engine) ── CRUD + create_or_update_by_unique_indexes()
    DataStoreContainer ── named datastores, lifecycle hooks, child scopes

Invariants:
    - Public operations return a Result; exceptions do not cross components
    - Only uniqueness violations trigger upsert reconciliation
    - Optional engine capabilities are detected, never assumed

Example:
    >>> from unistore import DataStore, InMemoryEngine, QueryFilter
    >>> store = DataStore(InMemoryEngine(unique_indexes=["email"]))
    >>> await store.connect()
    >>> await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "A"})
    >>> (await store.find(QueryFilter(conditions=[{"name": "A"}]))).data
    [{'email': 'a@x.io', 'name': 'A'}]
"""

from ._version import __version__
from .config import EngineBackend, ObservabilityConfig, SqliteConfig, StoreConfig
from .container import ContainerOptions, DataStoreContainer, LifecycleHooks, RegisteredInstance
from .datastore import BaseDataStore, DataStore
from .engine import (
    EngineCapability,
    InMemoryEngine,
    SqliteDatabase,
    SqliteEngine,
    StorageEngine,
    create_engine,
    engine_capabilities,
)
from .errors import (
    DUPLICATE_KEY_CODE,
    AggregateTeardownError,
    ConstraintViolationError,
    DataStoreError,
    EngineConnectionError,
    InvalidFilterError,
    LifecycleHookError,
    NotFoundError,
    StorageEngineError,
    UnsupportedOperationError,
    is_constraint_violation,
)
from .observability import setup_logging
from .query import (
    FieldsOptions,
    QueryConditionOperators,
    QueryFilter,
    SortOptions,
    compile_filter,
    get_query_conditions_by_unique_indexes,
)
from .result import Result, ResultError, returns_result
from .utils import deep_equal

__all__ = [
    "__version__",
    # Configuration
    "StoreConfig",
    "SqliteConfig",
    "ObservabilityConfig",
    "EngineBackend",
    "setup_logging",
    # Query
    "QueryFilter",
    "QueryConditionOperators",
    "SortOptions",
    "FieldsOptions",
    "compile_filter",
    "get_query_conditions_by_unique_indexes",
    # Engines
    "StorageEngine",
    "EngineCapability",
    "engine_capabilities",
    "create_engine",
    "InMemoryEngine",
    "SqliteDatabase",
    "SqliteEngine",
    # Datastores
    "BaseDataStore",
    "DataStore",
    "deep_equal",
    # Container
    "DataStoreContainer",
    "ContainerOptions",
    "LifecycleHooks",
    "RegisteredInstance",
    # Results and errors
    "Result",
    "ResultError",
    "returns_result",
    "DataStoreError",
    "EngineConnectionError",
    "ConstraintViolationError",
    "NotFoundError",
    "UnsupportedOperationError",
    "LifecycleHookError",
    "AggregateTeardownError",
    "StorageEngineError",
    "InvalidFilterError",
    "DUPLICATE_KEY_CODE",
    "is_constraint_violation",
]
