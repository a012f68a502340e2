"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). Records are JSON documents; all monetary values are
stored as Decimal strings, never floats.

``atomic()`` is a real transaction on both backends: every write made inside
the block becomes visible to other threads together on commit, or not at all.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON so callers never share state with the store"""
    return json.loads(json.dumps(record, default=_json_default))


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, (Decimal, date, datetime, Enum)):
                result[key] = _json_default(value)
        return result

    @staticmethod
    def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(value) if value else None


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
        pass

    @abstractmethod
    def iter_records(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        batch_size: int = 500
    ) -> Iterator[Dict[str, Any]]:
        """Stream records matching filters in batches, in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested blocks join the outermost transaction; a rollback anywhere
        aborts the whole transaction.
        """
        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Transactions buffer writes per thread; concurrent transactions on other
    threads never see each other's uncommitted writes.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    @property
    def _pending(self) -> Optional[Dict[str, Dict[str, Optional[Dict[str, Any]]]]]:
        """Writes buffered by the current thread's transaction (None marks a delete)"""
        return getattr(self._local, 'pending', None)

    def _merged(self, table: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            merged = dict(self._data[table])
        pending = self._pending
        if pending and table in pending:
            for record_id, record in pending[table].items():
                if record is None:
                    merged.pop(record_id, None)
                else:
                    merged[record_id] = record
        return merged

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        record = _copy(data)
        pending = self._pending
        if pending is not None:
            pending.setdefault(table, {})[record_id] = record
            return
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        pending = self._pending
        if pending and record_id in pending.get(table, {}):
            record = pending[table][record_id]
            return _copy(record) if record is not None else None
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            return _copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [_copy(record) for record in self._merged(table).values()]

    def iter_records(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        batch_size: int = 500
    ) -> Iterator[Dict[str, Any]]:
        """Stream records matching filters; each batch is copied lazily"""
        snapshot = list(self._merged(table).values())
        for start in range(0, len(snapshot), batch_size):
            for record in snapshot[start:start + batch_size]:
                if not filters or _matches(record, filters):
                    yield _copy(record)

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        existed = self.exists(table, record_id)
        pending = self._pending
        if pending is not None:
            pending.setdefault(table, {})[record_id] = None
            return existed
        with self._lock:
            self._ensure_table(table)
            self._data[table].pop(record_id, None)
        return existed

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return record_id in self._merged(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return [
            _copy(record) for record in self._merged(table).values()
            if _matches(record, filters)
        ]

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._merged(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Start (or join) the current thread's transaction"""
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            self._local.pending = {}
        self._local.depth = depth + 1

    def commit(self) -> None:
        """Apply buffered writes once the outermost block commits"""
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth > 1:
            return
        pending = self._pending or {}
        with self._lock:
            for table, records in pending.items():
                self._ensure_table(table)
                for record_id, record in records.items():
                    if record is None:
                        self._data[table].pop(record_id, None)
                    else:
                        self._data[table][record_id] = record
        self._local.pending = None

    def rollback(self) -> None:
        """Discard buffered writes"""
        self._local.pending = None
        self._local.depth = 0

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    A transaction holds the connection lock from BEGIN IMMEDIATE until
    COMMIT/ROLLBACK, so writers are serialized and readers on other threads
    only ever observe committed state.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are issued explicitly. timeout bounds the
        # wait for another connection's write lock
        self._connection = sqlite3.connect(
            self.db_path, timeout=timeout, check_same_thread=False, isolation_level=None
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._local = threading.local()
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @property
    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    @staticmethod
    def _where(filters: Optional[Dict[str, Any]]) -> tuple:
        """Translate equality filters into json_extract conditions"""
        conditions = []
        params: List[Any] = []
        for key, value in (filters or {}).items():
            if value is None:
                conditions.append("json_extract(data, ?) IS NULL")
                params.append(f"$.{key}")
            else:
                conditions.append("json_extract(data, ?) = ?")
                if isinstance(value, bool):
                    value = int(value)
                params.extend([f"$.{key}", value])
        return conditions, params

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=_json_default)

            # Upsert keeps the original rowid so insertion order is stable
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def iter_records(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        batch_size: int = 500
    ) -> Iterator[Dict[str, Any]]:
        """Page through a table by rowid so only one batch is in memory"""
        self._ensure_table(table)
        conditions, params = self._where(filters)
        last_rowid = 0
        while True:
            clause = " AND ".join(["rowid > ?"] + conditions)
            with self._lock:
                rows = self._connection.execute(f"""
                    SELECT rowid, data FROM {table}
                    WHERE {clause}
                    ORDER BY rowid
                    LIMIT ?
                """, [last_rowid, *params, batch_size]).fetchall()
            if not rows:
                return
            for row in rows:
                yield json.loads(row['data'])
            last_rowid = rows[-1]['rowid']

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            conditions, params = self._where(filters)
            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start (or join) a write transaction; holds the connection lock"""
        self._lock.acquire()
        depth = self._depth
        if depth == 0:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except Exception:
                self._lock.release()
                raise
        self._local.depth = depth + 1

    def commit(self) -> None:
        """Commit once the outermost block finishes"""
        depth = self._depth
        if depth == 0:
            return
        self._local.depth = depth - 1
        try:
            if depth == 1:
                self._connection.execute("COMMIT")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Roll back the whole transaction and release every nested hold"""
        depth = self._depth
        if depth == 0:
            return
        self._local.depth = 0
        # Tables created inside the transaction are gone again
        self._tables.clear()
        try:
            self._connection.execute("ROLLBACK")
        finally:
            for _ in range(depth):
                self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported forms: ``memory://``, ``sqlite://`` (in-memory SQLite) and
    ``sqlite:///path/to/file.db``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):])
    if database_url == "sqlite://":
        return SQLiteStorage(":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
