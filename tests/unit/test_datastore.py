"""
Unit tests for DataStore.

Tests cover:
- Delegated CRUD and capability detection
- Idempotent create_or_update_by_unique_indexes
- Reconciliation failures and error propagation
- Typed entities through a bound pydantic model
"""

from collections import Counter
from typing import Optional

import pytest
from pydantic import BaseModel

from unistore.datastore import DataStore
from unistore.engine import EngineCapability, InMemoryEngine
from unistore.errors import ConstraintViolationError, StorageEngineError
from unistore.query import FieldsOptions, QueryFilter
from unistore.result import Result


class CountingEngine(InMemoryEngine):
    """In-memory engine that counts calls per operation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = Counter()

    async def create(self, entity):
        self.calls["create"] += 1
        return await super().create(entity)

    async def find(self, query_filter=None):
        self.calls["find"] += 1
        return await super().find(query_filter)

    async def update(self, query_filter, patch):
        self.calls["update"] += 1
        return await super().update(query_filter, patch)


class MinimalEngine:
    """Engine without the optional index capabilities."""

    def __init__(self, create_error=None):
        self._inner = InMemoryEngine()
        self.create_error = create_error

    @property
    def is_connected(self):
        return self._inner.is_connected

    async def connect(self):
        return await self._inner.connect()

    async def disconnect(self):
        return await self._inner.disconnect()

    async def find(self, query_filter=None):
        return await self._inner.find(query_filter)

    async def create(self, entity):
        if self.create_error is not None:
            return Result.failure(self.create_error)
        return await self._inner.create(entity)

    async def update(self, query_filter, patch):
        return await self._inner.update(query_filter, patch)

    async def delete(self, query_filter=None):
        return await self._inner.delete(query_filter)


class DriverDuplicateKey(Exception):
    """Stand-in for a driver error carrying the duplicate key code."""

    code = 11000


class User(BaseModel):
    email: str
    name: str
    age: Optional[int] = None


class TestDataStoreCrud:
    """Tests for delegated CRUD."""

    @pytest.fixture
    def store(self):
        return DataStore(InMemoryEngine(unique_indexes=["email"], indexes=["name"]))

    @pytest.mark.asyncio
    async def test_crud_round(self, store):
        await store.connect()

        created = await store.create({"email": "a@x.io", "name": "A"})
        updated = await store.update(QueryFilter(conditions=[{"email": "a@x.io"}]), {"name": "B"})
        deleted = await store.delete(QueryFilter(conditions=[{"name": "B"}]))
        remaining = await store.find()

        assert created.data == {"email": "a@x.io", "name": "A"}
        assert updated.data == [{"email": "a@x.io", "name": "B"}]
        assert deleted.data == 1
        assert remaining.data == []

    @pytest.mark.asyncio
    async def test_indexes_supported(self, store):
        assert store.supports(EngineCapability.INDEXES)
        assert (await store.get_indexes()).data == ["email", "name"]
        assert (await store.get_unique_indexes()).data == ["email"]

    @pytest.mark.asyncio
    async def test_indexes_unsupported(self):
        store = DataStore(MinimalEngine())

        indexes = await store.get_indexes()
        unique = await store.get_unique_indexes()

        assert not store.supports(EngineCapability.UNIQUE_INDEXES)
        assert indexes.error.code == "UNSUPPORTED"
        assert str(indexes.error) == "get_indexes is not implemented"
        assert unique.error.code == "UNSUPPORTED"

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self, store):
        result = await store.create({"email": "a@x.io"})
        assert result.error.code == "CONNECTION_ERROR"


class TestCreateOrUpdateByUniqueIndexes:
    """Tests for the unique-index upsert."""

    @pytest.fixture
    def engine(self):
        return CountingEngine(unique_indexes=["email"])

    @pytest.fixture
    def store(self, engine):
        return DataStore(engine)

    @pytest.mark.asyncio
    async def test_creates_when_new(self, store, engine):
        await store.connect()

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "A"})

        assert result.ok
        assert result.data == [{"email": "a@x.io", "name": "A"}]
        assert engine.calls == Counter(create=1)

    @pytest.mark.asyncio
    async def test_second_identical_call_writes_nothing(self, store, engine):
        await store.connect()
        data = {"email": "a@x.io", "name": "A"}

        first = await store.create_or_update_by_unique_indexes(data)
        second = await store.create_or_update_by_unique_indexes(data)

        assert first.ok and second.ok
        assert second.data == [data]
        assert engine.calls["update"] == 0
        assert engine.calls["find"] == 1
        assert len(engine.documents) == 1

    @pytest.mark.asyncio
    async def test_key_order_does_not_trigger_update(self, store, engine):
        await store.connect()
        await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "A"})

        result = await store.create_or_update_by_unique_indexes({"name": "A", "email": "a@x.io"})

        assert result.ok
        assert engine.calls["update"] == 0

    @pytest.mark.asyncio
    async def test_changed_entity_is_updated(self, store, engine):
        await store.connect()
        await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "A"})

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "B"})

        assert result.ok
        assert result.data == [{"email": "a@x.io", "name": "B"}]
        assert engine.calls["update"] == 1
        assert engine.documents == [{"email": "a@x.io", "name": "B"}]

    @pytest.mark.asyncio
    async def test_conditions_are_anded(self):
        engine = CountingEngine(unique_indexes=["email", "username"])
        store = DataStore(engine)
        await store.connect()
        await engine.create({"email": "a@x.io", "username": "a", "name": "A"})
        await engine.create({"email": "b@x.io", "username": "b", "name": "B"})

        # Collides with both rows, but no single row has both values
        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io", "username": "b"})

        assert result.ok
        assert result.data == []
        assert engine.calls["update"] == 0

    @pytest.mark.asyncio
    async def test_non_constraint_failure_propagates(self):
        store = DataStore(MinimalEngine(create_error=StorageEngineError("create", "disk full")))
        await store.connect()

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io"})

        assert not result.ok
        assert result.error.code == "ENGINE_ERROR"
        assert "disk full" in str(result.error)

    @pytest.mark.asyncio
    async def test_missing_unique_index_capability(self):
        store = DataStore(MinimalEngine(create_error=ConstraintViolationError("dup")))
        await store.connect()

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io"})

        assert not result.ok
        assert result.error.code == "UNSUPPORTED"

    @pytest.mark.asyncio
    async def test_empty_unique_indexes(self):
        class NoUniqueEngine(InMemoryEngine):
            async def create(self, entity):
                return Result.failure(ConstraintViolationError("dup"))

        store = DataStore(NoUniqueEngine())
        await store.connect()

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io"})

        assert not result.ok
        assert str(result.error) == "Failed to fetch unique indexes"

    @pytest.mark.asyncio
    async def test_entity_without_unique_fields(self):
        class AlwaysDuplicate(InMemoryEngine):
            async def create(self, entity):
                return Result.failure(ConstraintViolationError("dup"))

        store = DataStore(AlwaysDuplicate(unique_indexes=["email"]))
        await store.connect()

        result = await store.create_or_update_by_unique_indexes({"name": "A"})

        assert not result.ok
        assert "email" in str(result.error)

    @pytest.mark.asyncio
    async def test_driver_duplicate_code_triggers_reconciliation(self):
        class DriverEngine(CountingEngine):
            async def create(self, entity):
                self.calls["create"] += 1
                return Result.failure(DriverDuplicateKey("E11000 duplicate key"))

        engine = DriverEngine(unique_indexes=["email"])
        store = DataStore(engine)
        await store.connect()
        await InMemoryEngine.create(engine, {"email": "a@x.io", "name": "A"})

        result = await store.create_or_update_by_unique_indexes({"email": "a@x.io", "name": "B"})

        assert result.ok
        assert result.data == [{"email": "a@x.io", "name": "B"}]
        assert engine.calls["find"] == 1


class SharedUniqueValueEngine(CountingEngine):
    """Engine whose rows may share a unique value.

    create() always reports a duplicate, and updates skip the uniqueness
    check, so several stored rows can collide with one entity.
    """

    def _check_unique(self, candidate, skip=None):
        return None

    async def create(self, entity):
        self.calls["create"] += 1
        return Result.failure(ConstraintViolationError("dup", fields=["email"]))


class TestReconciliationLoop:
    """Tests for reconciling against several colliding entities."""

    @pytest.fixture
    def engine(self):
        return SharedUniqueValueEngine(unique_indexes=["email"])

    @pytest.mark.asyncio
    async def test_each_differing_entity_repeats_the_update(self, engine):
        store = DataStore(engine)
        await store.connect()
        engine.documents.extend([{"email": "a", "name": "X"}, {"email": "a", "name": "Y"}])

        result = await store.create_or_update_by_unique_indexes({"email": "a", "name": "Z"})

        assert result.ok
        assert engine.calls["update"] == 2
        assert len(result.data) == 4
        assert all(doc == {"email": "a", "name": "Z"} for doc in result.data)

    @pytest.mark.asyncio
    async def test_equal_entities_are_kept_without_update(self, engine):
        store = DataStore(engine)
        await store.connect()
        engine.documents.extend([{"email": "a", "name": "Z"}, {"email": "a", "name": "Y"}])

        result = await store.create_or_update_by_unique_indexes({"email": "a", "name": "Z"})

        assert result.ok
        assert engine.calls["update"] == 1
        assert len(result.data) == 3
        assert result.data[0] == {"email": "a", "name": "Z"}

    @pytest.mark.asyncio
    async def test_update_failure_stops_the_loop(self):
        class FailingUpdateEngine(SharedUniqueValueEngine):
            async def update(self, query_filter, patch):
                self.calls["update"] += 1
                return Result.failure(StorageEngineError("update", "database is locked"))

        engine = FailingUpdateEngine(unique_indexes=["email"])
        store = DataStore(engine)
        await store.connect()
        engine.documents.extend([{"email": "a", "name": "X"}, {"email": "a", "name": "Y"}])

        result = await store.create_or_update_by_unique_indexes({"email": "a", "name": "Z"})

        assert not result.ok
        assert "database is locked" in str(result.error)
        assert engine.calls["update"] == 1

    @pytest.mark.asyncio
    async def test_nested_unique_field(self):
        store = DataStore(InMemoryEngine(unique_indexes=["profile.email"]))
        await store.connect()
        await store.create_or_update_by_unique_indexes({"profile": {"email": "a@x.io"}, "name": "A"})

        result = await store.create_or_update_by_unique_indexes({"profile": {"email": "a@x.io"}, "name": "B"})

        assert result.ok
        assert result.data == [{"profile": {"email": "a@x.io"}, "name": "B"}]


class TestShouldUpdate:
    """Tests for DataStore.should_update()."""

    def test_equal_entities(self):
        assert not DataStore.should_update({"a": 1, "b": {"c": 2}}, {"b": {"c": 2}, "a": 1})

    def test_different_entities(self):
        assert DataStore.should_update({"a": 1}, {"a": 2})

    def test_field_subset(self):
        assert not DataStore.should_update({"a": 1, "b": 2}, {"a": 1, "b": 3}, fields=["a"])
        assert DataStore.should_update({"a": 1, "b": 2}, {"a": 1, "b": 3}, fields=["b"])


class TestTypedDataStore:
    """Tests for a DataStore bound to a pydantic model."""

    @pytest.fixture
    def store(self):
        return DataStore(InMemoryEngine(unique_indexes=["email"]), model=User)

    @pytest.mark.asyncio
    async def test_create_and_find_models(self, store):
        await store.connect()

        created = await store.create(User(email="a@x.io", name="A"))
        found = await store.find(QueryFilter(conditions=[{"name": "A"}]))

        assert created.data == User(email="a@x.io", name="A", age=None)
        assert found.data == [User(email="a@x.io", name="A", age=None)]

    @pytest.mark.asyncio
    async def test_projection_returns_documents(self, store):
        await store.connect()
        await store.create(User(email="a@x.io", name="A", age=3))

        found = await store.find(QueryFilter(fields=FieldsOptions(include=["name"])))

        assert found.data == [{"name": "A"}]

    @pytest.mark.asyncio
    async def test_upsert_with_models(self, store):
        await store.connect()
        await store.create_or_update_by_unique_indexes(User(email="a@x.io", name="A"))

        again = await store.create_or_update_by_unique_indexes(User(email="a@x.io", name="A"))
        changed = await store.create_or_update_by_unique_indexes(User(email="a@x.io", name="A", age=4))

        assert again.data == [User(email="a@x.io", name="A", age=None)]
        assert changed.data == [User(email="a@x.io", name="A", age=4)]
