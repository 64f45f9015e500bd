"""Record stores shared by the execution service and its persistence backends."""

from __future__ import annotations

import threading
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Protocol,
    TypeVar,
)

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing or outside the caller's scope."""


class Repository(Protocol[T]):
    """Operations the execution service needs from a record store."""

    label: str

    def __contains__(self, item_id: object) -> bool: ...

    def add(self, item_id: str, item: T) -> None: ...

    def upsert(self, item_id: str, item: T) -> None: ...

    def get(self, item_id: str) -> T: ...

    def remove(self, item_id: str) -> None: ...

    def list(self) -> List[T]: ...

    def filter(self, predicate: Callable[[T], bool]) -> List[T]: ...

    def find_by(self, **attributes: Any) -> List[T]: ...


def matches(item: Any, attributes: Dict[str, Any]) -> bool:
    """Whether ``item`` carries every attribute value in ``attributes``."""

    return all(getattr(item, name) == value for name, value in attributes.items())


class InMemoryRepository(Generic[T]):
    """Thread-safe repository keeping records in insertion order.

    ``label`` names the record kind in error messages, e.g. ``"Work order"``.
    """

    def __init__(self, label: str = "Record") -> None:
        self.label = label
        self._items: Dict[str, T] = {}
        self._lock = threading.Lock()

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def _missing(self, item_id: str) -> RecordNotFoundError:
        return RecordNotFoundError(f"{self.label} {item_id!r} not found")

    def add(self, item_id: str, item: T) -> None:
        with self._lock:
            if item_id in self._items:
                raise DuplicateRecordError(f"{self.label} {item_id!r} already exists")
            self._items[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        with self._lock:
            self._items[item_id] = item

    def get(self, item_id: str) -> T:
        with self._lock:
            item = self._items.get(item_id)
        if item is None:
            raise self._missing(item_id)
        return item

    def remove(self, item_id: str) -> None:
        with self._lock:
            if self._items.pop(item_id, None) is None:
                raise self._missing(item_id)

    def list(self) -> List[T]:
        # Snapshot so callers never iterate while another thread writes.
        with self._lock:
            return list(self._items.values())

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]

    def find_by(self, **attributes: Any) -> List[T]:
        return [item for item in self.list() if matches(item, attributes)]


__all__ = [
    "Repository",
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "matches",
]
