"""Unit of work and keyed locks coordinating work order updates.

A work order update may also touch its parent manufacturing order. Both
writes are staged in a :class:`UnitOfWork` and flushed together inside the
store's transaction, so a failure part way leaves both records untouched.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

TransactionFactory = Callable[[], ContextManager[Any]]


@dataclass(slots=True)
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class KeyedLock:
    """Hands out one re-entrant lock per record identity.

    Entries are reference counted and dropped once no thread holds or waits
    for them, so the map only tracks records that are currently in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.holders += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Acquire the locks for ``keys`` in the given order."""

        acquired: List[Tuple[str, threading.RLock]] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


class UnitOfWork:
    """Collects repository writes and applies them in one transaction."""

    def __init__(self, transaction_factory: Optional[TransactionFactory] = None) -> None:
        self._transaction_factory = transaction_factory or nullcontext
        self._pending: List[Tuple[Any, str, Any]] = []
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        if exc_type is not None:
            self.rollback()
            return
        self.commit()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def register(self, repository: Any, item_id: str, item: Any) -> None:
        """Stage an upsert; a later registration of the same record wins."""

        self._pending = [
            entry
            for entry in self._pending
            if not (entry[0] is repository and entry[1] == item_id)
        ]
        self._pending.append((repository, item_id, item))

    def commit(self) -> None:
        if self.committed:
            return
        with self._transaction_factory():
            for repository, item_id, item in self._pending:
                repository.upsert(item_id, item)
        logger.debug("Unit of work committed %d write(s)", len(self._pending))
        self._pending = []
        self.committed = True

    def rollback(self) -> None:
        if self._pending:
            logger.debug("Unit of work discarded %d write(s)", len(self._pending))
        self._pending = []


__all__ = ["KeyedLock", "UnitOfWork", "TransactionFactory"]
