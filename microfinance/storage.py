"""
Storage Backend Module

Abstract document-store interface with in-memory (testing) and SQLite
(persistence) implementations. Each table holds JSON documents keyed by id;
all monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterator
from decimal import Decimal
from datetime import datetime, date, timezone
from enum import Enum
import sqlite3
import json
import logging
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

from .errors import DependencyError

logger = logging.getLogger("microfinance.storage")


def to_storable(value: Any) -> Any:
    """Convert a value to its JSON-safe stored form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storable(v) for v in value]
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: to_storable(getattr(self, f.name)) for f in fields(self)}

    @staticmethod
    def parse_datetime(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(value)

    @staticmethod
    def parse_date(value: Optional[Union[str, date]]) -> Optional[date]:
        if value is None or isinstance(value, date):
            return value
        return date.fromisoformat(value[:10])


def resolve_related(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Normalize a joined relation to a single record or None.

    Joins may come back as a record, a one-element list, an empty list or
    nothing at all depending on the query shape.
    """
    if not raw:
        return None
    if isinstance(raw, list):
        return raw[0] if raw else None
    return raw


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def _order_and_limit(
    records: List[Dict[str, Any]],
    order_by: Optional[str],
    descending: bool,
    limit: Optional[int]
) -> List[Dict[str, Any]]:
    if order_by:
        # Missing values sort first ascending
        def sort_key(record):
            value = record.get(order_by)
            return (value is not None, value if value is not None else "")
        records.sort(key=sort_key, reverse=descending)
    if limit is not None:
        records = records[:limit]
    return records


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record by id"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record; False if it was not there"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def compare_and_swap(
        self,
        table: str,
        record_id: str,
        expected: Dict[str, Any],
        data: Dict[str, Any]
    ) -> bool:
        """
        Replace a record only if its current fields still equal `expected`.

        Returns:
            True if the write happened, False if the record changed or is gone
        """
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


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # Round-trip through JSON so callers never share mutable state with the store
        return json.loads(json.dumps(record, default=str))

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return self._copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._copy(r) for r in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table, filters, order_by=None, descending=False, limit=None):
        with self._lock:
            results = [self._copy(r) for r in self._table(table).values() if _matches(r, filters)]
        return _order_and_limit(results, order_by, descending, limit)

    def compare_and_swap(self, table, record_id, expected, data):
        with self._lock:
            current = self._table(table).get(record_id)
            if current is None or not _matches(current, expected):
                return False
            self._table(table)[record_id] = self._copy(data)
            return True

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._tables: set = set()
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DependencyError(cause=e)
        self._connection.row_factory = sqlite3.Row

        # WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._guard("configure"):
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _guard(self, operation: str, table: Optional[str] = None) -> Iterator[None]:
        """Serialize access and translate driver failures into DependencyError"""
        with self._lock:
            try:
                yield
                self._connection.commit()
            except sqlite3.Error as e:
                self._connection.rollback()
                logger.error(f"SQLite {operation} failed on {table or self.db_path}: {e}")
                raise DependencyError(cause=e)

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
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

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY rowid")
        return [json.loads(row["data"]) for row in cursor.fetchall()]

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._guard("save", table):
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._guard("load", table):
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row["data"]) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._guard("load_all", table):
            self._ensure_table(table)
            return self._rows(table)

    def delete(self, table: str, record_id: str) -> bool:
        with self._guard("delete", table):
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._guard("exists", table):
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            ).fetchone()
            return row is not None

    def find(self, table, filters, order_by=None, descending=False, limit=None):
        with self._guard("find", table):
            self._ensure_table(table)
            results = [r for r in self._rows(table) if _matches(r, filters)]
        return _order_and_limit(results, order_by, descending, limit)

    def compare_and_swap(self, table, record_id, expected, data):
        with self._guard("compare_and_swap", table):
            self._ensure_table(table)
            # BEGIN IMMEDIATE takes the write lock before the read
            self._connection.execute("BEGIN IMMEDIATE")
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None or not _matches(json.loads(row["data"]), expected):
                return False
            self._connection.execute(
                f"UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?",
                (json.dumps(data, default=str), datetime.now(timezone.utc).isoformat(), record_id)
            )
            return True

    def count(self, table: str) -> int:
        with self._guard("count", table):
            self._ensure_table(table)
            return self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {table}"
            ).fetchone()["count"]

    def clear_table(self, table: str) -> None:
        with self._guard("clear_table", table):
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    Supported: "memory://", "sqlite:///path/to.db", "sqlite:///:memory:"
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
