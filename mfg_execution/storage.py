"""SQLite-backed persistence helpers for the execution engine."""

from __future__ import annotations

import logging
import pickle
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

from .domain import ManufacturingOrder, WorkCenter, WorkCenterAssignment, WorkOrder
from .repository import DuplicateRecordError, RecordNotFoundError, matches

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _Session:
    """Connection shared by all repositories of one database."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection
        self.lock = threading.RLock()
        self.depth = 0

    def commit(self) -> None:
        # Writes inside ExecutionDatabase.transaction() commit together.
        if self.depth == 0:
            self.connection.commit()


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists records inside SQLite."""

    def __init__(self, session: _Session, table: str, label: str = "Record") -> None:
        self._session = session
        self._table = table
        self.label = label
        with session.lock:
            session.connection.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
                "id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
            )
            session.connection.commit()

    @property
    def _connection(self) -> sqlite3.Connection:
        return self._session.connection

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        with self._session.lock:
            cursor = self._connection.execute(
                f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)
            )
            return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        with self._session.lock:
            cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
            value = cursor.fetchone()
        return int(value[0]) if value else 0

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        with self._session.lock:
            if item_id in self:
                raise DuplicateRecordError(f"{self.label} {item_id!r} already exists")
            self._connection.execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
                (item_id, pickle.dumps(item)),
            )
            self._session.commit()

    def upsert(self, item_id: str, item: T) -> None:
        with self._session.lock:
            self._connection.execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                (item_id, pickle.dumps(item)),
            )
            self._session.commit()

    def get(self, item_id: str) -> T:
        with self._session.lock:
            cursor = self._connection.execute(
                f"SELECT payload FROM {self._table} WHERE id = ?", (item_id,)
            )
            row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"{self.label} {item_id!r} not found")
        return pickle.loads(row[0])

    def remove(self, item_id: str) -> None:
        with self._session.lock:
            cursor = self._connection.execute(
                f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"{self.label} {item_id!r} not found")
            self._session.commit()

    def list(self) -> List[T]:
        with self._session.lock:
            cursor = self._connection.execute(
                f"SELECT payload FROM {self._table} ORDER BY id"
            )
            rows = cursor.fetchall()
        return [pickle.loads(row[0]) for row in rows]

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]

    def find_by(self, **attributes: Any) -> List[T]:
        return [item for item in self.list() if matches(item, attributes)]


class ExecutionDatabase:
    """Convenience facade bundling SQLite repositories for all aggregates."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        self._session = _Session(connection)
        self.work_centers = SQLiteRepository[WorkCenter](
            self._session, "work_centers", "Work center"
        )
        self.orders = SQLiteRepository[ManufacturingOrder](
            self._session, "orders", "Manufacturing order"
        )
        self.assignments = SQLiteRepository[WorkCenterAssignment](
            self._session, "assignments", "Assignment"
        )
        self.work_orders = SQLiteRepository[WorkOrder](
            self._session, "work_orders", "Work order"
        )

    @property
    def connection(self) -> sqlite3.Connection:
        return self._session.connection

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group all repository writes issued inside the block into one commit."""

        with self._session.lock:
            self._session.depth += 1
            try:
                yield
            except BaseException:
                self._session.depth -= 1
                if self._session.depth == 0:
                    logger.debug("Rolling back execution database transaction")
                    self._session.connection.rollback()
                raise
            else:
                self._session.depth -= 1
                self._session.commit()

    def close(self) -> None:
        self._session.connection.close()

    def __enter__(self) -> "ExecutionDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "ExecutionDatabase"]
