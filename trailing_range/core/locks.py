from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from loguru import logger

from trailing_range.core.errors import ReentrantCall


class KeyedLock:
    """Mutual exclusion scoped to a single entity key.

    Operations on different keys never contend. A thread re-entering a key it
    already holds is rejected instead of deadlocking.
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        self._registry_lock = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}
        self._owners: dict[Hashable, int] = {}
        self.logger = logger.bind(component="KeyedLock", namespace=namespace)

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        # a key nobody holds or waits on is forgotten
        with self._registry_lock:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        me = threading.get_ident()
        with self._registry_lock:
            if self._owners.get(key) == me:
                self.logger.error(f"Reentrant access to {self.namespace}:{key}")
                raise ReentrantCall(
                    f"reentrant call on {self.namespace} {key}",
                    namespace=self.namespace,
                    key=str(key),
                )
        lock = self._checkout(key)
        try:
            with lock:
                with self._registry_lock:
                    self._owners[key] = me
                try:
                    yield
                finally:
                    with self._registry_lock:
                        self._owners.pop(key, None)
        finally:
            self._checkin(key)
