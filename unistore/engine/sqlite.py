"""
SQLite storage engine.

Documents of one collection live in one table as canonical JSON text:

    "<collection>":
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - document TEXT (JSON, keys sorted)
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    unistore_indexes:
        - collection TEXT
        - field TEXT
        - is_unique INTEGER
        - PRIMARY KEY (collection, field, is_unique)

Indexes are expression indexes on json_extract(document, '$.<field>'),
created when an engine connects and recorded in unistore_indexes, which is
read on every get_indexes()/get_unique_indexes() call.

Native filters are compiled to SQL WHERE clauses; sorting and pagination run
in SQL, projection in Python.

Invariants:
    - One SqliteDatabase (one connection) can back many collections
    - Statements on one database are serialized by the database lock
    - Unique index violations surface as ConstraintViolationError
    - Field and collection names are validated before entering SQL

How to change safely:
    - Keep filter semantics aligned with query.matcher; shared tests cover both
    - Schema changes must keep existing collection tables readable
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import (
    ConstraintViolationError,
    EngineConnectionError,
    InvalidFilterError,
)
from ..query import QueryFilter, apply_projection, compile_filter
from ..result import returns_result
from .base import Document

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

_METADATA_TABLE = "unistore_indexes"


def _regexp(pattern: str, value: Any) -> int:
    """SQLite REGEXP implementation: ``value REGEXP pattern``."""
    if not isinstance(value, str):
        return 0
    return 1 if re.search(pattern, value) else 0


def _encode(document: Mapping[str, Any]) -> str:
    return json.dumps(document, sort_keys=True, separators=(",", ":"))


# Type rank for sorting, aligned with query.matcher: missing and null <
# numbers < text < objects < arrays < booleans.
def _sort_rank(field: str) -> str:
    return (
        f"CASE json_type(document, '$.{field}') "
        "WHEN 'integer' THEN 1 WHEN 'real' THEN 1 WHEN 'text' THEN 2 "
        "WHEN 'object' THEN 3 WHEN 'array' THEN 4 "
        "WHEN 'true' THEN 5 WHEN 'false' THEN 5 ELSE 0 END"
    )


def _validate_field(field: str) -> str:
    if not _FIELD_RE.match(field):
        raise InvalidFilterError(f"Invalid field name '{field}'")
    return field


class SqliteDatabase:
    """Shared SQLite connection for one database file.

    connect() is idempotent: repeated calls return the open connection.
    Engines for different collections share one SqliteDatabase.

    Attributes:
        path: Database file path (":memory:" for an in-memory database)
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Enable SQLite WAL journal mode
        lock: Serializes statements issued through this database

    Example:
        >>> database = SqliteDatabase("/var/lib/app/store.db")
        >>> users = SqliteEngine(database, "users", unique_indexes=["email"])
        >>> orders = SqliteEngine(database, "orders")
    """

    def __init__(
        self,
        path: str,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self.lock = asyncio.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_connected(self) -> bool:
        """Whether the connection is open."""
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection.

        Raises:
            EngineConnectionError: If not connected
        """
        if self._conn is None:
            raise EngineConnectionError(f"Not connected to SQLite database: {self.path}", target=self.path)
        return self._conn

    def connect(self) -> sqlite3.Connection:
        """Open the connection (or return the open one).

        Raises:
            EngineConnectionError: If the database cannot be opened
        """
        if self._conn is not None:
            return self._conn

        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit, explicit transactions
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            if self.wal_mode and self.path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.create_function("REGEXP", 2, _regexp, deterministic=True)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {_METADATA_TABLE} (
                    collection TEXT NOT NULL,
                    field TEXT NOT NULL,
                    is_unique INTEGER NOT NULL,
                    PRIMARY KEY (collection, field, is_unique)
                )
            """)
        except (sqlite3.Error, OSError) as e:
            raise EngineConnectionError(
                f"Failed to open SQLite database {self.path}: {e}", target=self.path
            ) from e

        self._conn = conn
        logger.info(f"Opened SQLite database: {self.path}")
        return conn

    def disconnect(self) -> None:
        """Close the connection (no-op when closed).

        Raises:
            EngineConnectionError: If closing fails
        """
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as e:
            raise EngineConnectionError(
                f"Failed to close SQLite database {self.path}: {e}", target=self.path
            ) from e
        finally:
            self._conn = None
        logger.info(f"Closed SQLite database: {self.path}")


class _WhereCompiler:
    """Compiles a native filter mapping into a SQL WHERE clause."""

    def __init__(self) -> None:
        self.params: List[Any] = []

    def compile(self, native: Mapping[str, Any]) -> str:
        clauses: List[str] = []
        for key, expected in native.items():
            if key in ("$or", "$and"):
                if not isinstance(expected, (list, tuple)):
                    raise InvalidFilterError(f"{key} expects a list, got {type(expected).__name__}")
                parts = [f"({self.compile(branch)})" for branch in expected]
                if not parts:
                    clauses.append("0" if key == "$or" else "1")
                else:
                    clauses.append("(" + (" OR " if key == "$or" else " AND ").join(parts) + ")")
            elif key.startswith("$"):
                raise InvalidFilterError(f"Unknown top-level operator '{key}'")
            else:
                field = _validate_field(key)
                if self._is_operator_set(expected):
                    for op, operand in expected.items():
                        clauses.append(self._operator(field, op, operand))
                else:
                    clauses.append(self._literal(field, expected))
        return " AND ".join(clauses) if clauses else "1"

    @staticmethod
    def _is_operator_set(value: Any) -> bool:
        return (
            isinstance(value, Mapping)
            and bool(value)
            and all(isinstance(key, str) and key.startswith("$") for key in value)
        )

    @staticmethod
    def _column(field: str) -> str:
        return f"json_extract(document, '$.{field}')"

    @staticmethod
    def _type(field: str) -> str:
        return f"json_type(document, '$.{field}')"

    def _literal(self, field: str, value: Any) -> str:
        column, json_type = self._column(field), self._type(field)
        if value is None:
            return f"{column} IS NULL"
        if isinstance(value, bool):
            return f"{json_type} = '{'true' if value else 'false'}'"
        if isinstance(value, (int, float)):
            self.params.append(value)
            return f"({json_type} IN ('integer', 'real') AND {column} = ?)"
        if isinstance(value, (Mapping, list, tuple)):
            self.params.append(json.dumps(value, sort_keys=True, separators=(",", ":")))
            return f"({json_type} IN ('object', 'array') AND {column} = json(?))"
        self.params.append(value)
        return f"({json_type} = 'text' AND {column} = ?)"

    def _operator(self, field: str, op: str, operand: Any) -> str:
        column, json_type = self._column(field), self._type(field)
        if op == "$eq":
            return self._literal(field, operand)
        if op == "$ne":
            return f"NOT COALESCE(({self._literal(field, operand)}), 0)"
        if op in ("$gt", "$gte", "$lt", "$lte"):
            if operand is None:
                return "0"
            sql_op = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}[op]
            self.params.append(operand)
            if isinstance(operand, (int, float)) and not isinstance(operand, bool):
                return f"({json_type} IN ('integer', 'real') AND {column} {sql_op} ?)"
            if isinstance(operand, str):
                return f"({json_type} = 'text' AND {column} {sql_op} ?)"
            return f"{column} {sql_op} ?"
        if op in ("$in", "$nin"):
            if not isinstance(operand, (list, tuple)):
                raise InvalidFilterError(f"{op} expects a list, got {type(operand).__name__}")
            parts = [self._literal(field, item) for item in operand]
            clause = "(" + " OR ".join(parts) + ")" if parts else "0"
            return clause if op == "$in" else f"NOT COALESCE({clause}, 0)"
        if op == "$regex":
            if isinstance(operand, re.Pattern):
                pattern = operand.pattern
                if operand.flags & re.IGNORECASE:
                    pattern = f"(?i){pattern}"
            elif isinstance(operand, str):
                pattern = operand
            else:
                raise InvalidFilterError(
                    f"$regex expects a string or compiled pattern, got {type(operand).__name__}"
                )
            self.params.append(pattern)
            return f"({json_type} = 'text' AND {column} REGEXP ?)"
        raise InvalidFilterError(f"Unknown query operator '{op}'")


def compile_where(query_filter: Optional[QueryFilter]) -> Tuple[str, List[Any]]:
    """Compile a QueryFilter into a WHERE clause and its parameters."""
    compiler = _WhereCompiler()
    clause = compiler.compile(compile_filter(query_filter))
    return clause, compiler.params


class SqliteEngine:
    """SQLite implementation of StorageEngine for one collection.

    Attributes:
        database: Shared SQLite database
        collection: Table name
        unique_indexes: Fields covered by uniqueness constraints
        indexes: Additional non-unique indexed fields

    Thread safety:
        Statements are serialized by the database lock. The shared
        connection is opened with check_same_thread=False.

    Example:
        >>> engine = SqliteEngine(SqliteDatabase("store.db"), "users", unique_indexes=["email"])
        >>> await engine.connect()
        >>> await engine.create({"email": "a@example.com"})
    """

    def __init__(
        self,
        database: SqliteDatabase,
        collection: str,
        unique_indexes: Sequence[str] = (),
        indexes: Sequence[str] = (),
    ) -> None:
        if not _IDENTIFIER_RE.match(collection) or collection == _METADATA_TABLE:
            raise ValueError(f"Invalid collection name '{collection}'")
        for field in (*unique_indexes, *indexes):
            if not _FIELD_RE.match(field):
                raise ValueError(f"Invalid index field name '{field}'")

        self.database = database
        self.collection = collection
        self.unique_indexes = list(unique_indexes)
        self.indexes = list(indexes)
        self._connected = False
        # index name -> field, used to name the field in constraint errors
        self._index_fields: Dict[str, str] = {}

    @property
    def is_connected(self) -> bool:
        """Whether this engine and its database are connected."""
        return self._connected and self.database.is_connected

    def _require_connection(self) -> sqlite3.Connection:
        if not self.is_connected:
            raise EngineConnectionError(
                f"Collection '{self.collection}' is not connected", target=self.database.path
            )
        return self.database.connection

    def _index_name(self, field: str, unique: bool) -> str:
        prefix = "ux" if unique else "ix"
        return f"{prefix}_{self.collection}_{field.replace('.', '__')}"

    def _ensure_collection(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS "{self.collection}" (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        for unique, fields in ((True, self.unique_indexes), (False, self.indexes)):
            for field in fields:
                name = self._index_name(field, unique)
                conn.execute(
                    f'CREATE {"UNIQUE " if unique else ""}INDEX IF NOT EXISTS "{name}" '
                    f"ON \"{self.collection}\"(json_extract(document, '$.{field}'))"
                )
                conn.execute(
                    f"INSERT OR IGNORE INTO {_METADATA_TABLE} (collection, field, is_unique) "
                    "VALUES (?, ?, ?)",
                    (self.collection, field, 1 if unique else 0),
                )
                self._index_fields[name] = field

    def _constraint_error(self, error: sqlite3.IntegrityError) -> Exception:
        message = str(error)
        if "UNIQUE constraint failed" not in message:
            return error
        fields = [field for name, field in self._index_fields.items() if name in message]
        return ConstraintViolationError(
            f"Duplicate key error in collection '{self.collection}': {message}",
            fields=fields,
        )

    @returns_result("connect")
    async def connect(self) -> sqlite3.Connection:
        """Open the database (if needed) and provision the collection."""
        if self.is_connected:
            return self.database.connection

        async with self.database.lock:
            conn = self.database.connect()
            try:
                self._ensure_collection(conn)
            except sqlite3.Error as e:
                raise EngineConnectionError(
                    f"Failed to provision collection '{self.collection}': {e}",
                    target=self.database.path,
                ) from e
            self._connected = True

        logger.info(f"Connected collection '{self.collection}' ({self.database.path})")
        return conn

    @returns_result("disconnect")
    async def disconnect(self) -> None:
        """Disconnect the collection and close its database."""
        if not self._connected:
            return
        async with self.database.lock:
            self._connected = False
            self.database.disconnect()
        logger.info(f"Disconnected collection '{self.collection}'")

    @returns_result("find")
    async def find(self, query_filter: Optional[QueryFilter] = None) -> List[Document]:
        """Find documents: predicate, sort, pagination, projection."""
        conn = self._require_connection()
        where, params = compile_where(query_filter)
        sql = f'SELECT document FROM "{self.collection}" WHERE {where}'

        order_by = []
        if query_filter is not None:
            for option in query_filter.sort:
                field = _validate_field(option.field)
                direction = "DESC" if option.order == "desc" else "ASC"
                order_by.append(f"{_sort_rank(field)} {direction}")
                order_by.append(f"json_extract(document, '$.{field}') {direction}")
        order_by.append("id ASC")
        sql += " ORDER BY " + ", ".join(order_by)

        if query_filter is not None and query_filter.page and query_filter.limit:
            sql += " LIMIT ? OFFSET ?"
            params.extend([query_filter.limit, (query_filter.page - 1) * query_filter.limit])

        async with self.database.lock:
            rows = conn.execute(sql, params).fetchall()

        fields = query_filter.fields if query_filter is not None else None
        return [apply_projection(json.loads(row["document"]), fields) for row in rows]

    @returns_result("create")
    async def create(self, entity: Mapping[str, Any]) -> Document:
        """Insert a document."""
        conn = self._require_connection()
        encoded = _encode(entity)
        now = int(time.time() * 1000)
        async with self.database.lock:
            try:
                conn.execute(
                    f'INSERT INTO "{self.collection}" (document, created_at, updated_at) '
                    "VALUES (?, ?, ?)",
                    (encoded, now, now),
                )
            except sqlite3.IntegrityError as e:
                raise self._constraint_error(e) from e
        return json.loads(encoded)

    @returns_result("update")
    async def update(self, query_filter: QueryFilter, patch: Mapping[str, Any]) -> List[Document]:
        """Shallow-merge the patch onto each match, one row at a time."""
        conn = self._require_connection()
        where, params = compile_where(query_filter)
        updated: List[Document] = []

        async with self.database.lock:
            rows = conn.execute(
                f'SELECT id, document FROM "{self.collection}" WHERE {where} ORDER BY id ASC',
                params,
            ).fetchall()
            for row in rows:
                merged = {**json.loads(row["document"]), **patch}
                encoded = _encode(merged)
                try:
                    conn.execute(
                        f'UPDATE "{self.collection}" SET document = ?, updated_at = ? WHERE id = ?',
                        (encoded, int(time.time() * 1000), row["id"]),
                    )
                except sqlite3.IntegrityError as e:
                    raise self._constraint_error(e) from e
                updated.append(json.loads(encoded))

        return updated

    @returns_result("delete")
    async def delete(self, query_filter: Optional[QueryFilter] = None) -> int:
        """Delete every match and return how many rows were removed."""
        conn = self._require_connection()
        where, params = compile_where(query_filter)
        async with self.database.lock:
            cursor = conn.execute(f'DELETE FROM "{self.collection}" WHERE {where}', params)
        return cursor.rowcount

    @returns_result("get_indexes")
    async def get_indexes(self) -> List[str]:
        """All indexed fields recorded for the collection, unique ones first."""
        conn = self._require_connection()
        async with self.database.lock:
            rows = conn.execute(
                f"SELECT field FROM {_METADATA_TABLE} WHERE collection = ? "
                "ORDER BY is_unique DESC, rowid ASC",
                (self.collection,),
            ).fetchall()
        return list(dict.fromkeys(row["field"] for row in rows))

    @returns_result("get_unique_indexes")
    async def get_unique_indexes(self) -> List[str]:
        """Fields covered by a unique index on the collection."""
        conn = self._require_connection()
        async with self.database.lock:
            rows = conn.execute(
                f"SELECT field FROM {_METADATA_TABLE} WHERE collection = ? AND is_unique = 1 "
                "ORDER BY rowid ASC",
                (self.collection,),
            ).fetchall()
        return [row["field"] for row in rows]
