from __future__ import annotations

import threading
from typing import Dict


class RepoLockTable:
    """In-process table of per-repository mutexes.

    One ``threading.Lock`` per ``owner/repo`` key. The table lock only guards
    insertion; the per-repository lock is what serializes git operations on a
    working directory. Entries are never evicted.
    """

    def __init__(self) -> None:
        self._table_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _get(self, name: str) -> threading.Lock:
        with self._table_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def lock(self, name: str) -> None:
        # Block outside the table lock so other repositories stay available
        self._get(name).acquire()

    def unlock(self, name: str) -> None:
        with self._table_lock:
            lock = self._locks.get(name)
        if lock is None:
            raise RuntimeError(f"unlock of unknown repository lock: {name}")
        lock.release()

    def locked(self, name: str) -> bool:
        with self._table_lock:
            lock = self._locks.get(name)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._locks)

    def hold(self, name: str) -> "_HeldRepoLock":
        """Context manager form of lock/unlock."""
        return _HeldRepoLock(self, name)


class _HeldRepoLock:
    def __init__(self, table: RepoLockTable, name: str):
        self.table = table
        self.name = name

    def __enter__(self):
        self.table.lock(self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.table.unlock(self.name)
        return False
