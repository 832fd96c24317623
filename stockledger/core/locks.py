"""
Keyed in-process locks

One re-entrant lock per key (an inventory item id). Holding the lock of one
item never blocks work on another item, and the holder may post several
movements for the same item without releasing it. A key's lock is dropped
once nobody holds or waits on it, so the registry only grows with the
number of keys in use at the same time.
"""
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List, Optional
import threading
import logging

from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockRegistry:

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def active_keys(self) -> List[Hashable]:
        with self._guard:
            return list(self._locks)

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _Entry()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``key``; raise ConcurrencyConflict if the deadline passes first."""
        entry = self._checkout(key)
        try:
            acquired = entry.lock.acquire(timeout=timeout) if timeout is not None else entry.lock.acquire()
        except BaseException:
            self._checkin(key, entry)
            raise
        if not acquired:
            self._checkin(key, entry)
            logger.warning(f"Lock wait for {key} exceeded {timeout}s")
            raise ConcurrencyConflict(
                f"Could not lock {key} within {timeout}s",
                key=key,
                timeout_seconds=timeout,
            )
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(key, entry)
