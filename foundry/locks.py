"""Per-key mutexes for serializing writes to a single entity.

Unrelated keys never contend: each key gets its own ``threading.Lock``,
created lazily under a short-lived registry lock.
"""
from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLocks:
    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for *key* for the duration of the ``with`` block.

        Usage::

            with locks.hold(f"artifact:{artifact_id}"):
                ...
        """
        lock = self._lock_for(key)
        with lock:
            yield


locks = KeyedLocks()
